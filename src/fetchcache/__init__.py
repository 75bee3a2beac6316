"""Command line entry-point for the caching fetch proxy."""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Sequence

from .cache import DEFAULT_CACHE_ROOT, ResponseCache
from .fetcher import OriginFetcher, cached
from .server import serve

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8080


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Proxy HTTP requests given as ?u=<url> and keep successful responses on disk.",
    )
    parser.add_argument(
        "--cache-root",
        dest="cache_root",
        type=Path,
        default=DEFAULT_CACHE_ROOT,
        help=f"Directory where cached responses are stored (default: {DEFAULT_CACHE_ROOT})",
    )
    parser.add_argument(
        "--host",
        default=DEFAULT_HOST,
        help=f"Interface to listen on (default: {DEFAULT_HOST})",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=DEFAULT_PORT,
        help=f"Port to listen on (default: {DEFAULT_PORT})",
    )
    return parser


def main(argv: Sequence[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    cache = ResponseCache(args.cache_root)
    with OriginFetcher() as origin:
        serve(args.host, args.port, cached(cache, origin.fetch))


__all__ = [
    "main",
    "build_parser",
]
