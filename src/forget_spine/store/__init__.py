"""
Backing store: client protocol, implementations and the fill/persist adapter.
"""

from __future__ import annotations

from forget_spine.core.settings import Settings, resolve_redis_url
from forget_spine.store.adapter import fill, persist
from forget_spine.store.base import DistributionStore
from forget_spine.store.memory import InMemoryStore


def create_store(settings: Settings) -> DistributionStore:
    """Build the store client selected by ``settings.store_backend``.

    Raises:
        InvalidConfigError: ``redis_host`` is malformed.
    """
    if settings.store_backend == "memory":
        return InMemoryStore()

    from forget_spine.store.redis import RedisStore

    return RedisStore(
        resolve_redis_url(settings.redis_host),
        max_connections=settings.store_pool_size,
        timeout=settings.store_timeout,
    )


__all__ = [
    "DistributionStore",
    "InMemoryStore",
    "create_store",
    "fill",
    "persist",
]
