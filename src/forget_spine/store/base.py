"""
Store client protocol.

The decaying-distribution engine never talks to a connection directly; it is
handed a :class:`DistributionStore`. Each implementation owns its own
connection management, so there is no process-wide connection or lock.

Implementations:
    - :class:`~forget_spine.store.redis.RedisStore`: Redis hashes over a
      bounded connection pool
    - :class:`~forget_spine.store.memory.InMemoryStore`: single-process,
      for development and tests

All methods raise :class:`~forget_spine.core.errors.StoreUnavailableError`
on transport/protocol failure and never on a single malformed value; values
come back as raw strings and are parsed by the store adapter.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Protocol


class DistributionStore(Protocol):
    """Hash-per-distribution backing store."""

    async def get_all(self, name: str) -> dict[str, str]:
        """Return every field/value pair of ``name`` (empty if absent)."""
        ...

    async def get_fields(self, name: str, *keys: str) -> list[str | None]:
        """Return the raw values of ``keys`` in order, ``None`` where absent."""
        ...

    async def increment(self, name: str, field: str, amount: int, *, now: int) -> None:
        """Atomically add ``amount`` to ``field`` and ``_Z``; set ``_T`` if absent."""
        ...

    async def write(
        self,
        name: str,
        values: Mapping[str, int],
        *,
        expect: Mapping[str, str | None] | None = None,
    ) -> None:
        """Atomically set ``values`` on ``name``.

        With ``expect``, the write only happens if every listed key still
        holds the given raw value (``None`` meaning absent); otherwise
        :class:`~forget_spine.core.errors.ConcurrentUpdateError` is raised
        and nothing is written.
        """
        ...

    async def set_rate(self, name: str, rate: float) -> None:
        """Out-of-band write of the ``_R`` override."""
        ...

    async def clear_rate(self, name: str) -> None:
        """Remove the ``_R`` override."""
        ...

    async def ping(self) -> bool:
        """Raise if the store is unreachable."""
        ...

    async def close(self) -> None:
        ...
