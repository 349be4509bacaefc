from __future__ import annotations

import re
from collections.abc import Iterable

from cagminutes.domain.models.document import PageText

CAG_REFERENCE_PATTERN = re.compile(r"\d{2}/CAG/\d{4}")


def scan_text(text: str) -> set[str]:
    return set(CAG_REFERENCE_PATTERN.findall(text or ""))


def scan_pages(pages: Iterable[PageText]) -> dict[str, set[int]]:
    """Map each CAG reference to the set of page numbers it appears on."""
    locations: dict[str, set[int]] = {}
    for page in pages:
        for reference_id in scan_text(page.text):
            locations.setdefault(reference_id, set()).add(page.number)
    return locations
