from __future__ import annotations

from datetime import datetime, timezone


def now_utc_iso(moment: datetime | None = None) -> str:
    """Timestamp stored on processed rows: ISO 8601, UTC, whole seconds."""
    value = moment.astimezone(timezone.utc) if moment else datetime.now(timezone.utc)
    return value.replace(microsecond=0).isoformat()
