"""Cache port used by the binding repository."""

from typing import Any, Protocol


class CacheProtocol(Protocol):
    """What FlowUseRepository needs from a cache.

    Implementations must degrade to misses and no-ops when unavailable
    rather than raise.
    """

    def is_available(self) -> bool: ...

    async def get(self, key: str) -> Any: ...

    async def set(self, key: str, value: Any, ttl: int = 300) -> bool: ...

    async def delete(self, key: str) -> bool: ...
