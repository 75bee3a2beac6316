"""Origin fetching and the cache-aside wrapper around it."""

from __future__ import annotations

from typing import Callable, Mapping

from requests import Session

from .cache import ResponseCache
from .display import describe_request
from .models import RequestInfo, ResponseInfo

Fetch = Callable[[RequestInfo], ResponseInfo]

HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "proxy-connection",
        "te",
        "trailer",
        "transfer-encoding",
        "upgrade",
    }
)
# Recomputed by the transport for the outgoing request.
TRANSPORT_HEADERS = frozenset({"host", "content-length"})


def forwardable_headers(headers: Mapping[str, str]) -> dict[str, str]:
    """Return the inbound headers that should travel on to the origin."""

    dropped = HOP_BY_HOP_HEADERS | TRANSPORT_HEADERS
    return {key: value for key, value in headers.items() if key.lower() not in dropped}


class OriginFetcher:
    """Fetch requests from their origin server with a shared session."""

    def __init__(self, *, client: Session | None = None) -> None:
        self._session_owner = client is None
        self._session = client or Session()

    def __enter__(self) -> "OriginFetcher":
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.close()

    def close(self) -> None:
        if self._session_owner:
            self._session.close()

    def fetch(self, req: RequestInfo) -> ResponseInfo:
        response = self._session.request(
            req.method,
            req.url,
            headers=forwardable_headers(req.headers),
            data=req.body.encode("utf-8") if req.body else None,
            stream=True,
            allow_redirects=True,
        )
        with response:
            return ResponseInfo.from_response(response)

    __call__ = fetch


def cached(cache: ResponseCache, fetch: Fetch) -> Fetch:
    """Wrap *fetch* so cached responses short-circuit the call.

    A miss calls *fetch* and hands the result to ``cache.set``, which only
    keeps successful responses. The result is returned either way.
    """

    def fetch_through_cache(req: RequestInfo) -> ResponseInfo:
        from_cache = cache.get(req)
        if from_cache is not None:
            print(f"Cache hit {describe_request(req)}")
            return from_cache

        print(f"Cache miss {describe_request(req)}")
        from_fetch = fetch(req)
        cache.set(req, from_fetch)
        return from_fetch

    return fetch_through_cache


__all__ = ["Fetch", "OriginFetcher", "cached", "forwardable_headers"]
