"""Timezone-aware UTC helpers.

Active windows, instance timestamps and the picker clock are UTC-aware
throughout; naive values only enter through SQLite rows and caller input.
"""

from datetime import UTC, datetime


def utc_now() -> datetime:
    return datetime.now(UTC)


def ensure_utc(dt: datetime | None) -> datetime | None:
    """Normalize to aware UTC. Naive values are taken to be UTC already."""
    if dt is None:
        return None
    return dt.replace(tzinfo=UTC) if dt.tzinfo is None else dt.astimezone(UTC)
