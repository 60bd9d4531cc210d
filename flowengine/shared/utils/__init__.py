"""Shared utility helpers (datetimes, identifiers)."""

from flowengine.shared.utils.datetime import ensure_utc, utc_now
from flowengine.shared.utils.generators import generate_cuid

__all__ = ["ensure_utc", "generate_cuid", "utc_now"]
