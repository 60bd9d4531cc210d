"""Deterministic rollout bucketing.

A flow with rollout_pct = P admits a subject when the subject's bucket is
<= P. Buckets come from CRC32 so they are identical across processes,
restarts and hosts; namespace and salt isolate unrelated rollouts from each
other.
"""

import zlib


def stable_bucket(namespace: str | None, salt: str | None, key: str) -> int:
    """Return the bucket in [0, 100) for a rollout key."""
    raw = f"{namespace or ''}|{salt or ''}|{key}".encode("utf-8")
    return zlib.crc32(raw) % 100


def admits(rollout_pct: int | None, bucket: int) -> bool:
    """Return whether a flow's rollout admits the bucket (None = everyone)."""
    return rollout_pct is None or rollout_pct >= bucket
