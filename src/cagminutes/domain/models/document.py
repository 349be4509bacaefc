from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class DocumentReference:
    url: str
    title: str


@dataclass(slots=True)
class ProcessedDocument:
    url: str
    content_hash: str
    processed_at: str


@dataclass(slots=True)
class ReferenceLocation:
    document_url: str
    reference_id: str
    page_ranges: str
    processed_at: str
    id: int | None = None


@dataclass(frozen=True, slots=True)
class PageText:
    number: int
    text: str
