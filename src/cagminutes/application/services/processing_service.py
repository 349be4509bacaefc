from __future__ import annotations

import json
import logging
import threading
import time
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Callable

from cagminutes.core.cag_references import scan_pages
from cagminutes.core.errors import DocumentDecodeError
from cagminutes.core.hashing import compute_file_digest
from cagminutes.core.page_ranges import compress_pages
from cagminutes.domain.models.document import DocumentReference
from cagminutes.domain.models.outcome import (
    BatchReport,
    DocumentOutcome,
    DocumentStage,
    DocumentStatus,
    ProcessingMode,
)
from cagminutes.infrastructure.db.gateway import PersistenceGateway
from cagminutes.infrastructure.http.downloader import DownloadManager
from cagminutes.infrastructure.parsers.pdf_text import PdfTextExtractor

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[dict[str, object]], None]


class DocumentProcessingService:
    """Runs every listed document through download, scan and commit.

    Documents are processed concurrently and independently. A failure is
    recorded on that document's outcome and never reaches its siblings; only
    the download step is capacity-gated (by the download manager).
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        downloader: DownloadManager,
        extractor: PdfTextExtractor,
        *,
        mode: ProcessingMode = ProcessingMode.ONCE,
        max_workers: int | None = None,
        log_path: Path | None = None,
    ) -> None:
        self.gateway = gateway
        self.downloader = downloader
        self.extractor = extractor
        self.mode = mode
        self.max_workers = max_workers
        self.log_path = log_path
        self._emit_lock = threading.Lock()

    def run(
        self,
        references: Iterable[DocumentReference],
        progress_callback: ProgressCallback | None = None,
    ) -> BatchReport:
        worklist = self._unique_by_url(references)
        total = len(worklist)
        self._emit(progress_callback, {"event": "batch_start", "total": total, "mode": self.mode.value})
        if not worklist:
            return BatchReport()

        workers = self.max_workers or total
        logger.info("Processing %s documents with %s workers (mode=%s)", total, workers, self.mode.value)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="cagminutes-doc") as executor:
            futures = [
                executor.submit(self._process_with_events, index, total, reference, progress_callback)
                for index, reference in enumerate(worklist, start=1)
            ]
            outcomes = [future.result() for future in futures]

        report = BatchReport(outcomes=outcomes)
        logger.info(
            "Batch complete: %s attempted, %s done, %s skipped, %s unchanged, %s failed",
            report.attempted,
            report.done,
            report.skipped,
            report.unchanged,
            report.failed,
        )
        return report

    def process_document(self, reference: DocumentReference) -> DocumentOutcome:
        started = time.perf_counter()
        stage = DocumentStage.START
        content_hash: str | None = None
        logger.info("Processing %s", reference.title)

        def finish(
            status: DocumentStatus,
            at: DocumentStage,
            *,
            references_found: int = 0,
            error: str | None = None,
        ) -> DocumentOutcome:
            outcome = DocumentOutcome(
                reference=reference,
                status=status,
                stage=at,
                content_hash=content_hash,
                references_found=references_found,
                error=error,
                elapsed_seconds=time.perf_counter() - started,
            )
            self._append_log(outcome)
            return outcome

        try:
            stage = DocumentStage.CHECK_EXISTING
            previous_hash: str | None = None
            if self.mode is ProcessingMode.ONCE:
                if self.gateway.is_processed(reference.url):
                    logger.info("Already processed: %s", reference.title)
                    return finish(DocumentStatus.SKIPPED, DocumentStage.DONE)
            else:
                existing = self.gateway.get_processed(reference.url)
                previous_hash = existing.content_hash if existing else None

            stage = DocumentStage.DOWNLOADING
            local_path = self.downloader.fetch(
                reference.url,
                title=reference.title,
                refresh=previous_hash is not None,
            )
            if local_path is None:
                return finish(DocumentStatus.FAILED, DocumentStage.FAILED, error="download failed")

            stage = DocumentStage.HASHING
            content_hash = compute_file_digest(local_path)
            if previous_hash is not None and previous_hash == content_hash:
                logger.info("Unchanged since last scan: %s", reference.title)
                return finish(DocumentStatus.UNCHANGED, DocumentStage.DONE)

            stage = DocumentStage.EXTRACTING
            pages = self.extractor.extract_pages(local_path)

            stage = DocumentStage.SCANNING
            locations = scan_pages(pages)
            references_by_id = {
                reference_id: compress_pages(page_numbers)
                for reference_id, page_numbers in locations.items()
            }

            stage = DocumentStage.COMMITTING
            self.gateway.commit(reference.url, content_hash, references_by_id)
        except DocumentDecodeError as exc:
            logger.error("Could not decode %s: %s", reference.title, exc)
            return finish(DocumentStatus.FAILED, stage, error=str(exc))
        except Exception as exc:
            logger.exception("Error processing %s during %s", reference.title, stage.value)
            return finish(DocumentStatus.FAILED, stage, error=str(exc))

        logger.info("Found %s CAG references in %s", len(references_by_id), reference.title)
        return finish(DocumentStatus.DONE, DocumentStage.DONE, references_found=len(references_by_id))

    def _process_with_events(
        self,
        index: int,
        total: int,
        reference: DocumentReference,
        progress_callback: ProgressCallback | None,
    ) -> DocumentOutcome:
        self._emit(
            progress_callback,
            {"event": "document_start", "index": index, "total": total, "url": reference.url, "title": reference.title},
        )
        outcome = self.process_document(reference)
        self._emit(
            progress_callback,
            {"event": "document_done", "index": index, "total": total, **outcome.to_log_row()},
        )
        return outcome

    def _append_log(self, outcome: DocumentOutcome) -> None:
        if self.log_path is None:
            return
        row = json.dumps(outcome.to_log_row(), ensure_ascii=True)
        with self._emit_lock:
            try:
                self.log_path.parent.mkdir(parents=True, exist_ok=True)
                with self.log_path.open("a", encoding="utf-8") as f:
                    f.write(row + "\n")
            except OSError as exc:
                logger.warning("Cannot append run log %s: %s", self.log_path, exc)

    def _emit(self, callback: ProgressCallback | None, payload: dict[str, object]) -> None:
        if callback is None:
            return
        with self._emit_lock:
            callback(payload)

    @staticmethod
    def _unique_by_url(references: Iterable[DocumentReference]) -> list[DocumentReference]:
        seen: set[str] = set()
        unique: list[DocumentReference] = []
        for reference in references:
            if reference.url in seen:
                logger.info("Duplicate listing ignored: %s", reference.url)
                continue
            seen.add(reference.url)
            unique.append(reference)
        return unique
