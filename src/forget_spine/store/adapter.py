"""
Store adapter: reconcile raw hashes into :class:`Distribution` objects and
write decayed snapshots back.

``fill`` issues a single get-all call and partitions the result:

    _Z       discarded as a total (always recomputed), kept in ``revision``
    _T       ``last_update``
    _R       ``rate`` when it parses to a value in (0, 1], else the default
    other    ``data`` after integer parsing

Malformed individual values are logged and skipped; only a failing store
call makes ``fill`` fail.

``persist`` writes every data field plus ``_Z`` and ``_T`` in one
transaction, guarded by the revision captured at load time. It never writes
``_R``: a rate override only changes through an explicit out-of-band write.
"""

from __future__ import annotations

import math

from forget_spine.core.errors import FieldParseError
from forget_spine.core.logging import get_logger
from forget_spine.distribution import RATE_KEY, TOTAL_KEY, UPDATED_KEY, Distribution
from forget_spine.store.base import DistributionStore

logger = get_logger(__name__)


def parse_count(raw: str | None, *, distribution: str, field: str) -> int:
    """Parse a stored count; ``None`` (absent) reads as 0."""
    if raw is None:
        return 0
    try:
        value = int(raw)
    except (TypeError, ValueError) as exc:
        raise FieldParseError(f"not an integer: {raw!r}", raw=raw, cause=exc).with_context(
            distribution=distribution, field=field
        ) from exc
    if value < 0:
        raise FieldParseError(f"negative count: {raw!r}", raw=raw).with_context(
            distribution=distribution, field=field
        )
    return value


def parse_rate(raw: str | None, *, distribution: str) -> float | None:
    """Parse a stored ``_R``; ``None`` when absent."""
    if raw is None:
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError) as exc:
        raise FieldParseError(f"not a number: {raw!r}", raw=raw, cause=exc).with_context(
            distribution=distribution, field=RATE_KEY
        ) from exc
    if not math.isfinite(value) or not 0 < value <= 1:
        raise FieldParseError(f"rate outside (0, 1]: {raw!r}", raw=raw).with_context(
            distribution=distribution, field=RATE_KEY
        )
    return value


async def fill(store: DistributionStore, name: str, *, default_rate: float) -> Distribution:
    """Load ``name`` from the store.

    Raises:
        StoreUnavailableError: The get-all call itself failed.
    """
    raw = await store.get_all(name)
    dist = Distribution(name=name, rate=default_rate)
    dist.revision = (raw.get(TOTAL_KEY), raw.get(UPDATED_KEY))

    for key, value in raw.items():
        if key == TOTAL_KEY:
            continue
        try:
            if key == RATE_KEY:
                dist.rate = parse_rate(value, distribution=name) or default_rate
            elif key == UPDATED_KEY:
                dist.last_update = parse_count(value, distribution=name, field=key) or None
            elif key:
                dist.data[key] = parse_count(value, distribution=name, field=key)
        except FieldParseError as exc:
            logger.warning("field_parse_error", **exc.to_dict())

    dist.recompute_total()
    return dist


async def persist(store: DistributionStore, dist: Distribution) -> None:
    """Write ``dist`` back atomically.

    Raises:
        ConcurrentUpdateError: ``_Z``/``_T`` changed since ``dist`` was loaded.
        StoreUnavailableError: The transaction failed; nothing was written.
    """
    dist.recompute_total()
    stamp = dist.last_update or 0
    values = dict(dist.data)
    values[TOTAL_KEY] = dist.total
    values[UPDATED_KEY] = stamp

    total_raw, updated_raw = dist.revision
    await store.write(dist.name, values, expect={TOTAL_KEY: total_raw, UPDATED_KEY: updated_raw})

    dist.revision = (str(dist.total), str(stamp))
    logger.debug("distribution_persisted", distribution=dist.name, fields=len(dist.data), Z=dist.total)


__all__ = ["fill", "parse_count", "parse_rate", "persist"]
