"""Cache: Redis service and key builders for subject -> flow binding lookups."""

from flowengine.infrastructure.cache.cache_protocol import CacheProtocol
from flowengine.infrastructure.cache.keys import flow_use_key
from flowengine.infrastructure.cache.redis_cache import CacheService

__all__ = ["CacheProtocol", "CacheService", "flow_use_key"]
