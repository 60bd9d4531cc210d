"""Cache key builders.

Key components (subject_type, subject_id) must not contain CACHE_KEY_SEP
to avoid ambiguous or colliding keys.
"""

from flowengine.core.constants import CACHE_KEY_SEP, CACHE_PREFIX_FLOW_USE


def _validate_key_component(value: str, name: str) -> None:
    """Raise ValueError if value contains the cache key separator."""
    if CACHE_KEY_SEP in value:
        raise ValueError(
            f"Cache key component {name!r} must not contain separator {CACHE_KEY_SEP!r}"
        )


def flow_use_key(subject_type: str, subject_id: str) -> str:
    """Cache key for a subject's flow binding."""
    _validate_key_component(subject_type, "subject_type")
    _validate_key_component(subject_id, "subject_id")
    return CACHE_KEY_SEP.join((CACHE_PREFIX_FLOW_USE, subject_type, subject_id))
