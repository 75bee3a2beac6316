from __future__ import annotations

import io
import tempfile
import unittest
from contextlib import redirect_stderr, redirect_stdout
from pathlib import Path

from fetchcache.cache import ResponseCache
from fetchcache.fetcher import OriginFetcher, cached, forwardable_headers
from fetchcache.models import RequestInfo, ResponseInfo


class _StubOrigin:
    def __init__(self, status: int = 200, data: str = "hello") -> None:
        self.status = status
        self.data = data
        self.calls: list[RequestInfo] = []

    def __call__(self, req: RequestInfo) -> ResponseInfo:
        self.calls.append(req)
        return ResponseInfo(self.status, {"content-type": "text/plain"}, self.data if self.status == 200 else "")


class _StubResponse:
    def __init__(self, status_code: int, body: str) -> None:
        self.status_code = status_code
        self.headers = {"Content-Type": "text/plain"}
        self.url = "http://example.com/a"
        self.content = body.encode("utf-8")
        self.closed = False

    def __enter__(self) -> "_StubResponse":
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.closed = True


class _StubSession:
    def __init__(self, status_code: int = 200, body: str = "hello") -> None:
        self.status_code = status_code
        self.body = body
        self.calls: list[dict[str, object]] = []
        self.responses: list[_StubResponse] = []
        self.closed = False

    def request(self, method: str, url: str, **kwargs: object) -> _StubResponse:
        self.calls.append({"method": method, "url": url, **kwargs})
        response = _StubResponse(self.status_code, self.body)
        self.responses.append(response)
        return response

    def close(self) -> None:
        self.closed = True


class CacheAsideTest(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name).resolve() / "cache"
        self.cache = ResponseCache(self.root)
        self._out = io.StringIO()
        self._redirect = redirect_stdout(self._out)
        self._redirect.__enter__()

    def tearDown(self) -> None:
        self._redirect.__exit__(None, None, None)
        self._tmp.cleanup()

    def test_second_request_is_served_from_cache(self) -> None:
        origin = _StubOrigin()
        fetch = cached(self.cache, origin)

        first = fetch(RequestInfo.build("http://example.com/a", headers={"User-Agent": "one"}))
        second = fetch(RequestInfo.build("http://example.com/a", headers={"User-Agent": "two"}))

        self.assertEqual(first.data, "hello")
        self.assertEqual(second.data, "hello")
        self.assertEqual(len(origin.calls), 1)
        self.assertIn("Cache miss GET http://example.com/a", self._out.getvalue())
        self.assertIn("Cache hit GET http://example.com/a", self._out.getvalue())

    def test_failures_are_returned_but_not_cached(self) -> None:
        origin = _StubOrigin(status=500)
        fetch = cached(self.cache, origin)
        req = RequestInfo.build("http://example.com/a")

        first = fetch(req)
        second = fetch(req)

        self.assertEqual(first.status, 500)
        self.assertEqual(second.status, 500)
        self.assertEqual(len(origin.calls), 2)
        self.assertFalse(self.root.exists() and any(self.root.rglob("*.json")))

    def test_corrupt_entry_is_refetched_and_overwritten(self) -> None:
        origin = _StubOrigin(data="fresh")
        fetch = cached(self.cache, origin)
        req = RequestInfo.build("http://example.com/a")
        path = self.cache.path_for(req)
        path.parent.mkdir(parents=True)
        path.write_bytes(b"\x00\x01 definitely not json")

        with redirect_stderr(io.StringIO()):
            res = fetch(req)

        self.assertEqual(res.data, "fresh")
        self.assertEqual(len(origin.calls), 1)
        self.assertEqual(self.cache.get(req), ResponseInfo(200, {"content-type": "text/plain"}, "fresh"))

    def test_storage_errors_propagate(self) -> None:
        origin = _StubOrigin()
        fetch = cached(self.cache, origin)
        req = RequestInfo.build("http://example.com/a")
        self.cache.path_for(req).mkdir(parents=True)

        with self.assertRaises(OSError):
            fetch(req)
        self.assertEqual(origin.calls, [])

    def test_wraps_any_fetch_callable(self) -> None:
        calls: list[str] = []

        def fetch_plain(req: RequestInfo) -> ResponseInfo:
            calls.append(req.url)
            return ResponseInfo(200, {}, req.body)

        fetch = cached(self.cache, fetch_plain)
        req = RequestInfo.build("http://example.com/echo", "POST", body="payload")

        self.assertEqual(fetch(req).data, "payload")
        self.assertEqual(fetch(req).data, "payload")
        self.assertEqual(calls, ["http://example.com/echo"])


class OriginFetcherTest(unittest.TestCase):
    def test_forwards_method_body_and_end_to_end_headers(self) -> None:
        session = _StubSession()
        req = RequestInfo.build(
            "http://example.com/a",
            "POST",
            {
                "Host": "localhost:8080",
                "Connection": "keep-alive",
                "Content-Length": "4",
                "Accept": "text/plain",
            },
            body="ping",
        )

        with OriginFetcher(client=session) as origin:  # type: ignore[arg-type]
            res = origin.fetch(req)

        self.assertEqual(res, ResponseInfo(200, {"content-type": "text/plain"}, "hello"))
        self.assertEqual(len(session.calls), 1)
        call = session.calls[0]
        self.assertEqual(call["method"], "POST")
        self.assertEqual(call["url"], "http://example.com/a")
        self.assertEqual(call["headers"], {"accept": "text/plain"})
        self.assertEqual(call["data"], b"ping")
        self.assertIs(call["stream"], True)
        self.assertTrue(session.responses[0].closed)
        self.assertFalse(session.closed)

    def test_empty_body_is_not_sent(self) -> None:
        session = _StubSession(status_code=404, body="not found page")

        res = OriginFetcher(client=session)(RequestInfo.build("http://example.com/a"))  # type: ignore[arg-type]

        self.assertIsNone(session.calls[0]["data"])
        self.assertEqual(res.status, 404)
        self.assertEqual(res.data, "")

    def test_forwardable_headers_drops_hop_by_hop(self) -> None:
        headers = forwardable_headers(
            {"Transfer-Encoding": "chunked", "TE": "trailers", "X-Trace": "1", "host": "proxy"}
        )

        self.assertEqual(headers, {"X-Trace": "1"})


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
