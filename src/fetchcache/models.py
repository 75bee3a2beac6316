"""Request and response envelopes persisted by the cache."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from http.client import IncompleteRead
from types import MappingProxyType
from typing import Any, Iterable, Mapping
from urllib.parse import urlsplit, urlunsplit

from requests import Response
from requests.exceptions import ChunkedEncodingError, ContentDecodingError, RequestException
from urllib3.exceptions import DecodeError, ProtocolError

STREAM_ERRORS = (
    ChunkedEncodingError,
    ContentDecodingError,
    DecodeError,
    ProtocolError,
    IncompleteRead,
)


class MalformedRecordError(ValueError):
    """Raised when a stored cache record cannot be interpreted."""


def normalize_url(url: str) -> str:
    """Return *url* with a lower-case scheme and host and a non-empty path.

    Credentials and the fragment are kept as given.
    """

    parts = urlsplit(url.strip())
    if parts.scheme.lower() not in {"http", "https"} or not parts.hostname:
        raise ValueError(f"Unsupported target URL: {url!r}")
    # The host doubles as a directory name in the cache.
    if parts.hostname in {".", ".."}:
        raise ValueError(f"Unsupported target host: {url!r}")
    # Reading the port raises ValueError when it is not a valid number.
    if parts.port == 0:
        raise ValueError(f"Unsupported target port: {url!r}")
    userinfo, at, host_port = parts.netloc.rpartition("@")
    return urlunsplit(
        parts._replace(
            scheme=parts.scheme.lower(),
            netloc=f"{userinfo}{at}{host_port.lower()}",
            path=parts.path or "/",
        )
    )


def merge_headers(pairs: Iterable[tuple[str, str]]) -> dict[str, str]:
    """Collapse header pairs into a mapping with unique lower-case keys."""

    headers: dict[str, str] = {}
    for key, value in pairs:
        name = key.lower()
        if name in headers:
            headers[name] = f"{headers[name]}, {value}"
        else:
            headers[name] = value
    return headers


def freeze_headers(envelope: Any) -> None:
    """Replace the headers of a frozen envelope with a read-only copy."""

    object.__setattr__(envelope, "headers", MappingProxyType(dict(envelope.headers)))


@dataclass(frozen=True, slots=True)
class RequestInfo:
    url: str
    method: str = "GET"
    headers: Mapping[str, str] = field(default_factory=dict)
    body: str = ""

    def __post_init__(self) -> None:
        freeze_headers(self)

    @classmethod
    def build(
        cls,
        url: str,
        method: str = "GET",
        headers: Mapping[str, str] | Iterable[tuple[str, str]] | None = None,
        body: str = "",
    ) -> "RequestInfo":
        """Normalize the raw pieces of an inbound request."""

        if headers is None:
            pairs: Iterable[tuple[str, str]] = ()
        elif isinstance(headers, Mapping):
            pairs = headers.items()
        else:
            pairs = headers
        return cls(
            url=normalize_url(url),
            method=method.upper(),
            headers=merge_headers(pairs),
            body=body,
        )

    @property
    def host(self) -> str:
        """Host and optional port of the target URL, without credentials."""

        return urlsplit(self.url).netloc.rsplit("@", 1)[-1]

    def to_json(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "method": self.method,
            "headers": dict(self.headers),
            "body": self.body,
        }


def fingerprint(req: RequestInfo) -> str:
    """Return a stable identifier for *req* built from its URL, method and body.

    Headers are blanked before hashing: a different user agent or accept
    header must still resolve to the same cache entry.
    """

    payload = req.to_json()
    payload["headers"] = {}
    encoded = json.dumps(payload, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha1(encoded.encode("utf-8")).hexdigest()


@dataclass(frozen=True, slots=True)
class ResponseInfo:
    status: int
    headers: Mapping[str, str] = field(default_factory=dict)
    data: str = ""

    def __post_init__(self) -> None:
        freeze_headers(self)

    @property
    def is_successful(self) -> bool:
        return self.status == 200

    @classmethod
    def from_response(cls, response: Response) -> "ResponseInfo":
        """Capture a live response; the body is only read for status 200.

        The body is decoded as UTF-8 whatever charset the headers announce.
        """

        data = ""
        if response.status_code == 200:
            try:
                data = response.content.decode("utf-8", errors="replace")
            except STREAM_ERRORS as exc:
                raise RequestException(f"Stream error while reading {response.url}: {exc}") from exc
        return cls(
            status=response.status_code,
            headers=merge_headers(response.headers.items()),
            data=data,
        )

    def to_json(self) -> dict[str, Any]:
        return {"status": self.status, "headers": dict(self.headers), "data": self.data}

    @classmethod
    def from_json(cls, payload: Any) -> "ResponseInfo":
        if not isinstance(payload, dict):
            raise MalformedRecordError(f"Expected an object, got {type(payload).__name__}")
        status = payload.get("status")
        headers = payload.get("headers")
        data = payload.get("data")
        if isinstance(status, bool) or not isinstance(status, int):
            raise MalformedRecordError(f"Invalid status {status!r}")
        if not isinstance(headers, dict) or not all(
            isinstance(key, str) and isinstance(value, str) for key, value in headers.items()
        ):
            raise MalformedRecordError("Headers must map strings to strings")
        if not isinstance(data, str):
            raise MalformedRecordError("Body data must be a string")
        return cls(status=status, headers=dict(headers), data=data)


__all__ = [
    "MalformedRecordError",
    "RequestInfo",
    "ResponseInfo",
    "fingerprint",
    "merge_headers",
    "normalize_url",
]
