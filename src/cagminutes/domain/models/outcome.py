from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from cagminutes.domain.models.document import DocumentReference


class DocumentStage(str, Enum):
    START = "start"
    CHECK_EXISTING = "check_existing"
    DOWNLOADING = "downloading"
    HASHING = "hashing"
    EXTRACTING = "extracting"
    SCANNING = "scanning"
    COMMITTING = "committing"
    DONE = "done"
    FAILED = "failed"


class DocumentStatus(str, Enum):
    DONE = "done"
    SKIPPED = "skipped"
    UNCHANGED = "unchanged"
    FAILED = "failed"


class ProcessingMode(str, Enum):
    # Skip any url that already has a processed row.
    ONCE = "once"
    # Re-fetch processed urls and rescan only when the content digest moved.
    CHANGED = "changed"


@dataclass(slots=True)
class DocumentOutcome:
    reference: DocumentReference
    status: DocumentStatus
    stage: DocumentStage
    content_hash: str | None = None
    references_found: int = 0
    error: str | None = None
    elapsed_seconds: float = 0.0

    def to_log_row(self) -> dict[str, object]:
        return {
            "url": self.reference.url,
            "title": self.reference.title,
            "status": self.status.value,
            "stage": self.stage.value,
            "content_hash": self.content_hash,
            "references_found": self.references_found,
            "error": self.error,
            "elapsed_seconds": round(self.elapsed_seconds, 4),
        }


@dataclass(slots=True)
class BatchReport:
    outcomes: list[DocumentOutcome] = field(default_factory=list)

    def _count(self, status: DocumentStatus) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status is status)

    @property
    def attempted(self) -> int:
        return len(self.outcomes)

    @property
    def done(self) -> int:
        return self._count(DocumentStatus.DONE)

    @property
    def skipped(self) -> int:
        return self._count(DocumentStatus.SKIPPED)

    @property
    def unchanged(self) -> int:
        return self._count(DocumentStatus.UNCHANGED)

    @property
    def failed(self) -> int:
        return self._count(DocumentStatus.FAILED)

    def failures(self) -> list[DocumentOutcome]:
        return [outcome for outcome in self.outcomes if outcome.status is DocumentStatus.FAILED]
