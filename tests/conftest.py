"""
Shared pytest fixtures for forget-spine tests.

This module provides:
- A controllable clock so decay is deterministic
- A fresh in-memory store per test
- A started update pipeline and a service wired to both
- Settings isolation
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import pytest_asyncio

from forget_spine.core.settings import reset_settings
from forget_spine.pipeline import UpdatePipeline
from forget_spine.service import DistributionService
from forget_spine.store.memory import InMemoryStore

T0 = 1_700_000_000


class FakeClock:
    """Callable returning a fixed unix time that tests move forward."""

    def __init__(self, now: int = T0) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += seconds


# =============================================================================
# Markers
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Mark tests without an explicit marker as unit tests."""
    for item in items:
        test_path = Path(item.fspath).relative_to(Path(__file__).parent)
        if "api" in test_path.parts:
            item.add_marker(pytest.mark.integration)

        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def clean_settings(monkeypatch: pytest.MonkeyPatch):
    """Isolate tests from FORGET_* variables and the settings singleton."""
    import os

    for key in list(os.environ):
        if key.startswith("FORGET_"):
            monkeypatch.delenv(key, raising=False)
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest_asyncio.fixture
async def pipeline(store: InMemoryStore, clock: FakeClock) -> AsyncGenerator[UpdatePipeline, None]:
    pipe = UpdatePipeline(store, default_rate=0.5, workers=2, queue_size=10, clock=clock)
    await pipe.start()
    yield pipe
    await pipe.stop(drain=False)


@pytest_asyncio.fixture
async def service(
    store: InMemoryStore, pipeline: UpdatePipeline, clock: FakeClock
) -> DistributionService:
    return DistributionService(store, pipeline, default_rate=0.5, clock=clock)
