"""
In-process distribution store.

Mirrors the Redis layout exactly (string values, ``_Z``/``_T``/``_R``
metadata keys, all-or-nothing writes, guarded writes) so the service and the
update pipeline behave identically against it. Single-process only: use it
for development (``FORGET_STORE_BACKEND=memory``) and tests.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping

from forget_spine.core.errors import ConcurrentUpdateError
from forget_spine.distribution import RATE_KEY, TOTAL_KEY, UPDATED_KEY


class InMemoryStore:
    """Dictionary of hashes guarded by one ``asyncio.Lock``."""

    def __init__(self, initial: Mapping[str, Mapping[str, object]] | None = None) -> None:
        self._hashes: dict[str, dict[str, str]] = {
            name: {k: str(v) for k, v in fields.items()} for name, fields in (initial or {}).items()
        }
        self._lock = asyncio.Lock()

    def snapshot(self, name: str) -> dict[str, str]:
        """Synchronous copy of a hash, for inspection."""
        return dict(self._hashes.get(name, {}))

    async def get_all(self, name: str) -> dict[str, str]:
        async with self._lock:
            return dict(self._hashes.get(name, {}))

    async def get_fields(self, name: str, *keys: str) -> list[str | None]:
        async with self._lock:
            record = self._hashes.get(name, {})
            return [record.get(k) for k in keys]

    async def increment(self, name: str, field: str, amount: int, *, now: int) -> None:
        async with self._lock:
            record = self._hashes.setdefault(name, {})
            record[field] = str(int(record.get(field, "0")) + amount)
            record[TOTAL_KEY] = str(int(record.get(TOTAL_KEY, "0")) + amount)
            record.setdefault(UPDATED_KEY, str(now))

    async def write(
        self,
        name: str,
        values: Mapping[str, int],
        *,
        expect: Mapping[str, str | None] | None = None,
    ) -> None:
        if not values:
            return
        async with self._lock:
            record = self._hashes.get(name, {})
            if expect:
                found = {k: record.get(k) for k in expect}
                if found != dict(expect):
                    raise ConcurrentUpdateError(
                        f"{name} changed since it was loaded"
                    ).with_context(
                        distribution=name, operation="write", expected=dict(expect), found=found
                    )
            record.update({k: str(v) for k, v in values.items()})
            self._hashes[name] = record

    async def set_rate(self, name: str, rate: float) -> None:
        async with self._lock:
            self._hashes.setdefault(name, {})[RATE_KEY] = repr(float(rate))

    async def clear_rate(self, name: str) -> None:
        async with self._lock:
            self._hashes.get(name, {}).pop(RATE_KEY, None)

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        pass


__all__ = ["InMemoryStore"]
