"""Helper functions for presenting proxy output."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:  # Avoid circular imports at runtime
    from .models import RequestInfo


def display_path(path: Path, root: Path) -> str:
    try:
        return str(path.relative_to(root))
    except ValueError:
        return str(path)


def describe_request(req: "RequestInfo") -> str:
    return f"{req.method} {req.url}"
