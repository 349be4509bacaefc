"""Compact page-range rendering, e.g. ``{3, 4, 5, 9}`` -> ``"p3-p5, p9"``."""

from __future__ import annotations

import re
from collections.abc import Iterable

_RANGE_RE = re.compile(r"^p(\d+)(?:-p(\d+))?$")


def compress_pages(pages: Iterable[int]) -> str:
    ordered = sorted(set(pages))
    if not ordered:
        raise ValueError("Cannot compress an empty page set")

    runs: list[str] = []
    start = prev = ordered[0]
    for page in ordered[1:]:
        if page == prev + 1:
            prev = page
            continue
        runs.append(_render_run(start, prev))
        start = prev = page
    runs.append(_render_run(start, prev))
    return ", ".join(runs)


def expand_page_ranges(text: str) -> set[int]:
    pages: set[int] = set()
    for token in text.split(","):
        match = _RANGE_RE.match(token.strip())
        if not match:
            raise ValueError(f"Malformed page range: {token.strip()!r}")
        start = int(match.group(1))
        end = int(match.group(2)) if match.group(2) else start
        if end < start:
            raise ValueError(f"Descending page range: {token.strip()!r}")
        pages.update(range(start, end + 1))
    return pages


def _render_run(start: int, end: int) -> str:
    return f"p{start}" if start == end else f"p{start}-p{end}"
