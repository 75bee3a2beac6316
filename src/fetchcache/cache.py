"""File-based cache for proxied HTTP responses."""

from __future__ import annotations

import enum
import json
import os
import sys
import threading
import time
from dataclasses import dataclass
from pathlib import Path

from .display import display_path
from .models import MalformedRecordError, RequestInfo, ResponseInfo, fingerprint

DEFAULT_CACHE_ROOT = Path("tmp/cache")


class LookupStatus(enum.Enum):
    HIT = "hit"
    MISSING = "missing"
    MALFORMED = "malformed"


@dataclass(frozen=True, slots=True)
class CacheLookup:
    """Outcome of reading the entry for a request."""

    status: LookupStatus
    path: Path
    response: ResponseInfo | None = None

    @property
    def hit(self) -> bool:
        return self.status is LookupStatus.HIT


class ResponseCache:
    """Store successful origin responses on disk, one JSON file per request.

    Entries live at ``<root>/<host>/<fingerprint>.json`` and are kept until
    something outside the proxy deletes them. A record that cannot be read
    back is treated like a missing one so the next fetch replaces it.
    """

    def __init__(self, root: Path = DEFAULT_CACHE_ROOT) -> None:
        self.root = Path(root)
        self._root = self.root.resolve()

    def set(self, req: RequestInfo, res: ResponseInfo) -> Path | None:
        if not res.is_successful:
            print("Skip cache response because the call was not successful")
            return None

        path = self.path_for(req)
        path.parent.mkdir(parents=True, exist_ok=True)
        item = {
            "date": int(time.time() * 1000),
            "req": req.to_json(),
            "res": res.to_json(),
        }
        # Each writer gets its own temp file; the rename makes the last writer win.
        temp_path = path.with_name(f"{path.name}.{os.getpid()}-{threading.get_ident()}.part")
        try:
            temp_path.write_text(json.dumps(item, indent=2, ensure_ascii=False), encoding="utf-8")
            temp_path.replace(path)
        except Exception:
            temp_path.unlink(missing_ok=True)
            raise
        print(f"Cached {display_path(path, self._root)}")
        return path

    def get(self, req: RequestInfo) -> ResponseInfo | None:
        return self.lookup(req).response

    def lookup(self, req: RequestInfo) -> CacheLookup:
        """Read the entry for *req*.

        Missing and unreadable records are reported separately here; any
        other ``OSError`` propagates to the caller.
        """

        path = self.path_for(req)
        try:
            raw = path.read_bytes()
        except FileNotFoundError:
            return CacheLookup(LookupStatus.MISSING, path)

        try:
            response = self._parse(raw)
        except MalformedRecordError as exc:
            print(
                f"Discarding malformed cache record {display_path(path, self._root)}: {exc}",
                file=sys.stderr,
            )
            return CacheLookup(LookupStatus.MALFORMED, path)
        return CacheLookup(LookupStatus.HIT, path, response)

    def path_for(self, req: RequestInfo) -> Path:
        target = (self._root / req.host / f"{fingerprint(req)}.json").resolve()
        try:
            target.relative_to(self._root)
        except ValueError as exc:
            raise ValueError(f"Unexpected cache path outside cache root: {req.url}") from exc
        return target

    def _parse(self, raw: bytes) -> ResponseInfo:
        try:
            item = json.loads(raw.decode("utf-8"))
        except UnicodeDecodeError as exc:
            raise MalformedRecordError(f"Record is not valid UTF-8: {exc}") from exc
        except json.JSONDecodeError as exc:
            raise MalformedRecordError(f"Record contains invalid JSON: {exc}") from exc
        if not isinstance(item, dict):
            raise MalformedRecordError("Record is not a JSON object")
        return ResponseInfo.from_json(item.get("res"))


__all__ = ["CacheLookup", "DEFAULT_CACHE_ROOT", "LookupStatus", "ResponseCache"]
