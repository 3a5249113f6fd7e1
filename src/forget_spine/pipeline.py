"""
Update pipeline: asynchronous, per-name serialized persistence.

Every externally triggered operation ends by handing a :class:`Job` to the
pipeline and returning its own response; a background worker later reloads,
decays and persists the distribution. Persistence failures are logged and
the job is dropped, never surfaced to the caller.

ARCHITECTURE
────────────
::

    enqueue(Job) ──crc32(name) % N──▶ queue[i] (bounded FIFO) ──▶ worker[i]
                                                                    │
         Job.refresh(name):   fill ─▶ decay(now) ─▶ persist ◀───────┤
         Job.persist(dist):                          persist ◀──────┘

    - All jobs for one name land on the same queue, so refresh cycles for a
      name never interleave and run in FIFO order.
    - ``persist`` is guarded by the revision seen at load time. When another
      writer (an increment, typically) got in between, the worker reloads
      and tries again, up to ``max_conflict_retries`` times.
    - When a queue is full the overflow policy decides: ``block`` the
      producer, ``drop_oldest`` queued job, or ``reject`` the new one.

Example::

    pipeline = UpdatePipeline(store, workers=4, queue_size=10)
    await pipeline.start()
    await pipeline.enqueue(Job.refresh("orders"))
    ...
    await pipeline.stop()
"""

from __future__ import annotations

import asyncio
import zlib
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from forget_spine.core.errors import ConcurrentUpdateError, StoreUnavailableError
from forget_spine.core.logging import LogContext, get_logger
from forget_spine.core.settings import Settings
from forget_spine.decay import unix_now
from forget_spine.distribution import Distribution
from forget_spine.store.adapter import fill, persist
from forget_spine.store.base import DistributionStore

logger = get_logger(__name__)


class OverflowPolicy(str, Enum):
    """What ``enqueue`` does when the target queue is full."""

    BLOCK = "block"
    DROP_OLDEST = "drop_oldest"
    REJECT = "reject"


@dataclass(frozen=True)
class Job:
    """One unit of pipeline work.

    ``snapshot is None`` means reload, decay and persist from scratch;
    otherwise the snapshot is already decayed and is persisted as-is.
    """

    name: str
    snapshot: Distribution | None = None

    @classmethod
    def refresh(cls, name: str) -> Job:
        return cls(name=name)

    @classmethod
    def persist(cls, dist: Distribution) -> Job:
        return cls(name=dist.name, snapshot=dist)

    @property
    def precomputed(self) -> bool:
        return self.snapshot is not None


@dataclass
class PipelineStats:
    """Counters since the pipeline started."""

    enqueued: int = 0
    processed: int = 0
    failed: int = 0
    dropped: int = 0
    conflicts: int = 0
    queued: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "enqueued": self.enqueued,
            "processed": self.processed,
            "failed": self.failed,
            "dropped": self.dropped,
            "conflicts": self.conflicts,
            "queued": self.queued,
        }


class UpdatePipeline:
    """Bounded queues drained by a fixed pool of asyncio worker tasks.

    Parameters
    ----------
    store : DistributionStore
        Where distributions are loaded from and persisted to.
    default_rate : float
        Rate used for distributions without an ``_R`` override.
    workers : int
        Number of worker tasks (and queues).
    queue_size : int
        Capacity of each worker's queue.
    overflow : OverflowPolicy
        Behaviour of ``enqueue`` on a full queue.
    max_conflict_retries : int
        Number of reloads allowed after a guarded write conflict.
    decay_interval : float
        Seconds per decay step.
    clock : Callable[[], int]
        Source of "now" in unix seconds.
    """

    def __init__(
        self,
        store: DistributionStore,
        *,
        default_rate: float = 0.5,
        workers: int = 1,
        queue_size: int = 10,
        overflow: OverflowPolicy | str = OverflowPolicy.BLOCK,
        max_conflict_retries: int = 3,
        decay_interval: float = 1.0,
        clock: Callable[[], int] = unix_now,
    ) -> None:
        if workers < 1:
            raise ValueError("workers must be >= 1")
        if queue_size < 1:
            raise ValueError("queue_size must be >= 1")
        self._store = store
        self._default_rate = default_rate
        self._workers = workers
        self._queue_size = queue_size
        self._overflow = OverflowPolicy(overflow)
        self._max_conflict_retries = max_conflict_retries
        self._decay_interval = decay_interval
        self._clock = clock

        self._queues: list[asyncio.Queue[Job]] = []
        self._tasks: list[asyncio.Task[None]] = []
        self._stats = PipelineStats()

    @classmethod
    def from_settings(
        cls,
        store: DistributionStore,
        settings: Settings,
        *,
        clock: Callable[[], int] = unix_now,
    ) -> UpdatePipeline:
        return cls(
            store,
            default_rate=settings.default_rate,
            workers=settings.nworkers,
            queue_size=settings.queue_size,
            overflow=settings.overflow_policy,
            max_conflict_retries=settings.max_conflict_retries,
            decay_interval=settings.decay_interval,
            clock=clock,
        )

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    @property
    def workers(self) -> int:
        return self._workers

    def shard_for(self, name: str) -> int:
        """Index of the worker that owns ``name``."""
        return zlib.crc32(name.encode("utf-8")) % self._workers

    # ── Lifecycle ────────────────────────────────────────────────────

    async def start(self) -> None:
        """Create the queues and spawn the worker tasks."""
        if self.running:
            logger.warning("pipeline_already_running")
            return

        self._queues = [asyncio.Queue(maxsize=self._queue_size) for _ in range(self._workers)]
        self._tasks = [
            asyncio.create_task(self._worker(i), name=f"forget-spine-worker-{i}")
            for i in range(self._workers)
        ]
        logger.info(
            "pipeline_started",
            workers=self._workers,
            queue_size=self._queue_size,
            overflow=self._overflow.value,
        )

    async def stop(self, *, drain: bool = True) -> None:
        """Stop the workers, optionally after the queued jobs are handled."""
        if not self.running:
            return

        if drain:
            await self.join()

        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("pipeline_stopped", **self.stats().to_dict())

    async def join(self) -> None:
        """Wait until every queued job has been processed."""
        await asyncio.gather(*(q.join() for q in self._queues))

    # ── Producer side ────────────────────────────────────────────────

    async def enqueue(self, job: Job) -> bool:
        """Queue ``job`` on the worker that owns its name.

        Returns ``False`` when the job was rejected by the overflow policy.
        Blocks only under ``OverflowPolicy.BLOCK`` with a full queue.
        """
        if not self.running:
            raise RuntimeError("UpdatePipeline not started. Call start() first.")

        queue = self._queues[self.shard_for(job.name)]

        if self._overflow is OverflowPolicy.BLOCK:
            await queue.put(job)
        elif queue.full() and self._overflow is OverflowPolicy.REJECT:
            self._stats.dropped += 1
            logger.warning("job_rejected", distribution=job.name, queue_size=self._queue_size)
            return False
        else:
            if queue.full():
                evicted = queue.get_nowait()
                queue.task_done()
                self._stats.dropped += 1
                logger.warning("job_evicted", distribution=evicted.name, replaced_by=job.name)
            queue.put_nowait(job)

        self._stats.enqueued += 1
        return True

    # ── Consumer side ────────────────────────────────────────────────

    async def _worker(self, index: int) -> None:
        queue = self._queues[index]
        logger.debug("worker_started", worker=index)
        while True:
            job = await queue.get()
            try:
                async with LogContext(worker=index, distribution=job.name):
                    await self.process(job)
            except Exception as e:
                self._stats.failed += 1
                logger.error("worker_job_error", worker=index, distribution=job.name, error=str(e))
            finally:
                queue.task_done()

    async def process(self, job: Job) -> bool:
        """Persist one job; returns whether the store was updated.

        Store failures are logged and the job is dropped. Write conflicts
        are retried from a fresh load.
        """
        dist = job.snapshot
        attempts = 0
        while True:
            try:
                if dist is None:
                    dist = await fill(self._store, job.name, default_rate=self._default_rate)
                    dist.decay(self._clock(), interval=self._decay_interval)
                await persist(self._store, dist)
            except ConcurrentUpdateError as exc:
                self._stats.conflicts += 1
                if attempts >= self._max_conflict_retries:
                    self._stats.failed += 1
                    logger.warning("refresh_abandoned", attempts=attempts + 1, **exc.to_dict())
                    return False
                attempts += 1
                logger.debug("refresh_conflict", attempt=attempts, distribution=job.name)
                dist = None
            except StoreUnavailableError as exc:
                self._stats.failed += 1
                logger.warning("refresh_dropped", precomputed=job.precomputed, **exc.to_dict())
                return False
            else:
                self._stats.processed += 1
                return True

    def stats(self) -> PipelineStats:
        self._stats.queued = sum(q.qsize() for q in self._queues)
        return self._stats


__all__ = ["Job", "OverflowPolicy", "PipelineStats", "UpdatePipeline"]
