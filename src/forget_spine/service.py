"""
Distribution service: the operations exposed to the request layer.

Each operation answers its caller synchronously and then hands a job to the
:class:`~forget_spine.pipeline.UpdatePipeline`; persistence never adds to
the response time except through queue backpressure under
``OverflowPolicy.BLOCK``.

    increment           atomic store increment, then refresh job
    query_field         HMGET field/_Z/_T, decay once, then refresh job
    query_distribution  fill, decay all, then persist the decayed copy
    set_rate            out-of-band write of the _R override
"""

from __future__ import annotations

import math
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from forget_spine.core.errors import FieldParseError, StoreUnavailableError, ValidationError
from forget_spine.core.logging import get_logger
from forget_spine.core.settings import Settings
from forget_spine.decay import decay, unix_now
from forget_spine.distribution import TOTAL_KEY, UPDATED_KEY, Distribution, is_reserved
from forget_spine.pipeline import Job, UpdatePipeline
from forget_spine.store.adapter import fill, parse_count
from forget_spine.store.base import DistributionStore

logger = get_logger(__name__)


# ── Parameter validation ─────────────────────────────────────────────────


def validate_name(value: str | None, param: str = "distribution") -> str:
    if value is None or not value.strip():
        raise ValidationError(f"Missing required parameter '{param}'", param=param, value=value)
    return value


def validate_field(value: str | None) -> str:
    value = validate_name(value, "field")
    if is_reserved(value):
        raise ValidationError(
            f"'{value}' is a reserved key", param="field", value=value, constraint="not reserved"
        )
    return value


def validate_rate(value: float | None) -> float | None:
    if value is None:
        return None
    if not math.isfinite(value) or not 0 < value <= 1:
        raise ValidationError(
            "rate must be in (0, 1]", param="rate", value=value, constraint="0 < rate <= 1"
        )
    return value


def validate_amount(value: int) -> int:
    if value < 1:
        raise ValidationError("N must be a positive integer", param="N", value=value, constraint="N >= 1")
    return value


# ── Results ──────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class FieldSnapshot:
    """Decayed point view of one field."""

    distribution: str
    field: str
    count: int
    total: int
    probability: float
    rate: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "distribution": self.distribution,
            "field": self.field,
            "count": self.count,
            "Z": self.total,
            "probability": self.probability,
            "rate": self.rate,
        }


# ── Service ──────────────────────────────────────────────────────────────


class DistributionService:
    """Request-facing operations over decaying distributions."""

    def __init__(
        self,
        store: DistributionStore,
        pipeline: UpdatePipeline | None = None,
        *,
        default_rate: float = 0.5,
        decay_interval: float = 1.0,
        clock: Callable[[], int] = unix_now,
    ) -> None:
        self._store = store
        self._pipeline = pipeline
        self._default_rate = default_rate
        self._decay_interval = decay_interval
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        store: DistributionStore,
        pipeline: UpdatePipeline | None,
        settings: Settings,
        *,
        clock: Callable[[], int] = unix_now,
    ) -> DistributionService:
        return cls(
            store,
            pipeline,
            default_rate=settings.default_rate,
            decay_interval=settings.decay_interval,
            clock=clock,
        )

    @property
    def store(self) -> DistributionStore:
        return self._store

    @property
    def pipeline(self) -> UpdatePipeline | None:
        return self._pipeline

    async def increment(self, distribution: str, field: str, n: int = 1) -> bool:
        """Add ``n`` to ``field`` and ``_Z``; ``_T`` is set on first write.

        Returns whether the atomic increment succeeded. A refresh job is
        queued either way.
        """
        distribution = validate_name(distribution)
        field = validate_field(field)
        n = validate_amount(n)

        try:
            await self._store.increment(distribution, field, n, now=self._clock())
            ok = True
        except StoreUnavailableError as exc:
            logger.error("increment_failed", **exc.to_dict())
            ok = False

        await self._enqueue(Job.refresh(distribution))
        return ok

    async def query_field(
        self, distribution: str, field: str, rate: float | None = None
    ) -> FieldSnapshot:
        """Decayed count and probability of one field.

        Uses ``rate`` when given, else the default rate; the stored ``_R``
        is neither read nor written here.

        Raises:
            StoreUnavailableError: The multi-get failed.
        """
        distribution = validate_name(distribution)
        field = validate_field(field)
        rate = validate_rate(rate) or self._default_rate

        raw_count, raw_total, raw_updated = await self._store.get_fields(
            distribution, field, TOTAL_KEY, UPDATED_KEY
        )
        count = self._parse_or_zero(raw_count, distribution, field)
        total = self._parse_or_zero(raw_total, distribution, TOTAL_KEY)
        last_update = self._parse_or_zero(raw_updated, distribution, UPDATED_KEY) or None

        count, total = decay(
            count, total, last_update, rate, self._clock(), interval=self._decay_interval
        )
        probability = count / total if total else 0.0

        await self._enqueue(Job.refresh(distribution))
        return FieldSnapshot(
            distribution=distribution,
            field=field,
            count=count,
            total=total,
            probability=probability,
            rate=rate,
        )

    async def query_distribution(self, distribution: str, rate: float | None = None) -> Distribution:
        """Full decayed snapshot of ``distribution``.

        Rate precedence: ``rate`` argument, stored ``_R``, default. The
        decayed copy is queued for persistence as-is.

        Raises:
            StoreUnavailableError: The get-all call failed.
        """
        distribution = validate_name(distribution)
        rate = validate_rate(rate)

        dist = await fill(self._store, distribution, default_rate=self._default_rate)
        if rate is not None:
            dist.rate = rate
        dist.decay(self._clock(), interval=self._decay_interval)

        await self._enqueue(Job.persist(dist.copy()))
        return dist

    async def set_rate(self, distribution: str, rate: float | None) -> None:
        """Set (or with ``None`` remove) the ``_R`` override."""
        distribution = validate_name(distribution)
        rate = validate_rate(rate)
        if rate is None:
            await self._store.clear_rate(distribution)
        else:
            await self._store.set_rate(distribution, rate)
        logger.info("rate_override_changed", distribution=distribution, rate=rate)

    async def _enqueue(self, job: Job) -> None:
        # one-shot callers (the CLI) run without background persistence
        if self._pipeline is not None:
            await self._pipeline.enqueue(job)

    @staticmethod
    def _parse_or_zero(raw: str | None, distribution: str, field: str) -> int:
        try:
            return parse_count(raw, distribution=distribution, field=field)
        except FieldParseError as exc:
            logger.warning("field_parse_error", **exc.to_dict())
            return 0


__all__ = [
    "DistributionService",
    "FieldSnapshot",
    "validate_amount",
    "validate_field",
    "validate_name",
    "validate_rate",
]
