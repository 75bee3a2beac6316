"""Threaded HTTP front-end that answers with the result of a fetch."""

from __future__ import annotations

import sys
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any
from urllib.parse import parse_qs, urlparse

from requests.exceptions import RequestException

from .display import describe_request
from .fetcher import Fetch
from .models import RequestInfo, ResponseInfo

TARGET_PARAM = "u"
# The body is re-framed after materialization, so the origin's framing is stale.
FRAMING_HEADERS = frozenset(
    {"connection", "content-encoding", "content-length", "keep-alive", "transfer-encoding"}
)


def target_url(path: str) -> str | None:
    """Return the URL carried in the query string of *path*, if any."""

    values = parse_qs(urlparse(path).query).get(TARGET_PARAM)
    if not values or not values[0]:
        return None
    return values[0]


class ProxyRequestHandler(BaseHTTPRequestHandler):
    """Resolve ``?u=<url>`` through ``server.fetch`` and mirror the response."""

    protocol_version = "HTTP/1.1"
    server: "ProxyServer"

    def do_GET(self) -> None:
        self._dispatch()

    do_HEAD = do_POST = do_PUT = do_PATCH = do_DELETE = do_OPTIONS = do_GET

    def _dispatch(self) -> None:
        body = self._read_body()
        url = target_url(self.path)
        if url is None:
            self._send_empty(404)
            return

        try:
            req = RequestInfo.build(url, self.command, self.headers.items(), body)
        except ValueError:
            self._send_empty(400)
            return

        try:
            res = self.server.fetch(req)
        except RequestException as exc:
            print(f"Origin error for {describe_request(req)}: {exc}", file=sys.stderr)
            self._send_empty(502)
            return
        except OSError as exc:
            print(f"Cache storage error for {describe_request(req)}: {exc}", file=sys.stderr)
            self._send_empty(500)
            return

        self._send(res)

    def _read_body(self) -> str:
        encoding = self.headers.get("Transfer-Encoding", "")
        if "chunked" in encoding.lower():
            return self._read_chunked().decode("utf-8", errors="replace")
        length = self.headers.get("Content-Length")
        if not length:
            return ""
        try:
            size = int(length)
        except ValueError:
            # The end of the body is unknown, so the connection cannot be reused.
            self.close_connection = True
            return ""
        if size <= 0:
            return ""
        return self.rfile.read(size).decode("utf-8", errors="replace")

    def _read_chunked(self) -> bytes:
        chunks: list[bytes] = []
        while True:
            line = self.rfile.readline(65537)
            try:
                size = int(line.split(b";", 1)[0].strip(), 16)
            except ValueError:
                self.close_connection = True
                break
            if size == 0:
                # Skip trailers up to the blank line that ends the message.
                while self.rfile.readline(65537) not in (b"\r\n", b"\n", b""):
                    pass
                break
            chunks.append(self.rfile.read(size))
            self.rfile.readline(65537)
        return b"".join(chunks)

    def _send(self, res: ResponseInfo) -> None:
        payload = res.data.encode("utf-8")
        # send_response would add its own Server and Date next to the origin's.
        self.log_request(res.status)
        self.send_response_only(res.status)
        names = {key.lower() for key in res.headers}
        for key, value in res.headers.items():
            if key.lower() in FRAMING_HEADERS:
                continue
            self.send_header(key, value)
        if "date" not in names:
            self.send_header("Date", self.date_time_string())
        self.send_header("Content-Length", str(len(payload)))
        self.end_headers()
        if self.command != "HEAD":
            self.wfile.write(payload)

    def _send_empty(self, status: int) -> None:
        self.close_connection = True
        self.send_response(status)
        self.send_header("Content-Length", "0")
        self.send_header("Connection", "close")
        self.end_headers()

    def log_message(self, format: str, *args: Any) -> None:
        print(f"{self.address_string()} - {format % args}")


class ProxyServer(ThreadingHTTPServer):
    """One handler thread per connection; all of them share ``fetch``."""

    def __init__(self, address: tuple[str, int], fetch: Fetch) -> None:
        super().__init__(address, ProxyRequestHandler)
        self.fetch = fetch


def make_server(host: str, port: int, fetch: Fetch) -> ProxyServer:
    return ProxyServer((host, port), fetch)


def serve(host: str, port: int, fetch: Fetch) -> None:
    server = make_server(host, port, fetch)
    bound_host, bound_port = server.server_address[:2]
    print(f"HTTP webserver running. Access it at: http://{bound_host}:{bound_port}/")
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        print("\nInterrupted by user", file=sys.stderr)
    finally:
        server.server_close()


__all__ = ["ProxyRequestHandler", "ProxyServer", "make_server", "serve", "target_url"]
