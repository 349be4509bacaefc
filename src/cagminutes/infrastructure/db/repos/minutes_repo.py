from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path

from cagminutes.domain.models.document import DocumentReference
from cagminutes.infrastructure.db.sqlite import get_connection


class MinutesRepo:
    """Read access to the crawled ``minutes`` listing, plus local seeding."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path

    def list_references(self) -> list[DocumentReference]:
        with get_connection(self.db_path) as conn:
            # The crawler re-inserts rows on every run; keep the first listing of each url.
            rows = conn.execute(
                """
                SELECT url, title FROM minutes
                WHERE id IN (SELECT MIN(id) FROM minutes GROUP BY url)
                ORDER BY id
                """
            ).fetchall()
        return [DocumentReference(url=row["url"], title=row["title"]) for row in rows]

    def insert_many(self, references: Iterable[DocumentReference]) -> int:
        with get_connection(self.db_path) as conn:
            existing = {row["url"] for row in conn.execute("SELECT url FROM minutes").fetchall()}
            fresh: list[DocumentReference] = []
            for reference in references:
                if reference.url in existing:
                    continue
                existing.add(reference.url)
                fresh.append(reference)
            conn.executemany(
                "INSERT INTO minutes (title, url) VALUES (?, ?)",
                [(reference.title, reference.url) for reference in fresh],
            )
            conn.commit()
        return len(fresh)
