from __future__ import annotations

import logging
import sqlite3
import threading
import time
from collections.abc import Mapping
from pathlib import Path
from typing import Callable, TypeVar

from cagminutes.core.errors import PersistenceError
from cagminutes.core.time import now_utc_iso
from cagminutes.domain.models.document import ProcessedDocument, ReferenceLocation
from cagminutes.infrastructure.db.retry import retry_under_lock
from cagminutes.infrastructure.db.sqlite import get_connection

logger = logging.getLogger(__name__)

T = TypeVar("T")

_REQUIRED_TABLES = ("processed_documents", "reference_locations")


class PersistenceGateway:
    """Single point of contact with the results database.

    Owns one connection shared by every worker thread and one lock that
    serialises all access to it. Each operation holds the lock for a single
    attempt and retries on SQLite lock contention with linear backoff.
    """

    def __init__(
        self,
        db_path: Path,
        *,
        max_attempts: int = 3,
        backoff_seconds: float = 0.1,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.db_path = db_path
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self._sleep = sleep
        self._lock = threading.Lock()
        try:
            self._conn = get_connection(db_path, check_same_thread=False)
        except sqlite3.Error as exc:
            raise PersistenceError(f"Cannot open database {db_path}: {exc}") from exc
        self._check_schema()

    def __enter__(self) -> PersistenceGateway:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def is_processed(self, url: str) -> bool:
        def _op() -> bool:
            row = self._conn.execute(
                "SELECT 1 FROM processed_documents WHERE url = ?",
                (url,),
            ).fetchone()
            return row is not None

        return self._run(_op)

    def get_processed(self, url: str) -> ProcessedDocument | None:
        def _op() -> ProcessedDocument | None:
            row = self._conn.execute(
                "SELECT * FROM processed_documents WHERE url = ?",
                (url,),
            ).fetchone()
            return self._to_processed(row) if row else None

        return self._run(_op)

    def commit(self, url: str, content_hash: str, references_by_id: Mapping[str, str]) -> None:
        """Replace the processed row and every reference row for ``url`` atomically."""

        def _op() -> None:
            processed_at = now_utc_iso()
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                self._conn.execute(
                    """
                    INSERT INTO processed_documents (url, content_hash, processed_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(url) DO UPDATE SET
                        content_hash = excluded.content_hash,
                        processed_at = excluded.processed_at
                    """,
                    (url, content_hash, processed_at),
                )
                self._conn.execute(
                    "DELETE FROM reference_locations WHERE document_url = ?",
                    (url,),
                )
                self._conn.executemany(
                    """
                    INSERT INTO reference_locations (
                        document_url,
                        reference_id,
                        page_ranges,
                        processed_at
                    ) VALUES (?, ?, ?, ?)
                    """,
                    [
                        (url, reference_id, page_ranges, processed_at)
                        for reference_id, page_ranges in sorted(references_by_id.items())
                    ],
                )
                self._conn.commit()
            except BaseException:
                self._conn.rollback()
                raise

        self._run(_op)

    def list_locations_for_document(self, url: str) -> list[ReferenceLocation]:
        def _op() -> list[ReferenceLocation]:
            rows = self._conn.execute(
                """
                SELECT * FROM reference_locations
                WHERE document_url = ?
                ORDER BY reference_id
                """,
                (url,),
            ).fetchall()
            return [self._to_location(row) for row in rows]

        return self._run(_op)

    def list_locations_for_reference(self, reference_id: str) -> list[ReferenceLocation]:
        def _op() -> list[ReferenceLocation]:
            rows = self._conn.execute(
                """
                SELECT * FROM reference_locations
                WHERE reference_id = ?
                ORDER BY document_url
                """,
                (reference_id,),
            ).fetchall()
            return [self._to_location(row) for row in rows]

        return self._run(_op)

    def list_processed(self, limit: int = 100) -> list[ProcessedDocument]:
        def _op() -> list[ProcessedDocument]:
            rows = self._conn.execute(
                """
                SELECT * FROM processed_documents
                ORDER BY processed_at DESC, url
                LIMIT ?
                """,
                (limit,),
            ).fetchall()
            return [self._to_processed(row) for row in rows]

        return self._run(_op)

    def _run(self, operation: Callable[[], T]) -> T:
        return retry_under_lock(
            self._lock,
            operation,
            attempts=self.max_attempts,
            backoff_seconds=self.backoff_seconds,
            sleep=self._sleep,
        )

    def _check_schema(self) -> None:
        with self._lock:
            rows = self._conn.execute(
                "SELECT name FROM sqlite_master WHERE type = 'table'"
            ).fetchall()
        present = {row["name"] for row in rows}
        missing = [name for name in _REQUIRED_TABLES if name not in present]
        if missing:
            self._conn.close()
            raise PersistenceError(
                f"Database {self.db_path} is missing tables: {', '.join(missing)}. Run 'cagminutes init' first."
            )

    @staticmethod
    def _to_processed(row) -> ProcessedDocument:
        return ProcessedDocument(
            url=row["url"],
            content_hash=row["content_hash"],
            processed_at=row["processed_at"],
        )

    @staticmethod
    def _to_location(row) -> ReferenceLocation:
        return ReferenceLocation(
            id=row["id"],
            document_url=row["document_url"],
            reference_id=row["reference_id"],
            page_ranges=row["page_ranges"],
            processed_at=row["processed_at"],
        )
