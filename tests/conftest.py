from __future__ import annotations

import asyncio
import uuid
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import pytest

from stallbook.models.booking import Snapshot


class SnapshotRecorder:
    """Subscriber that keeps every snapshot it receives."""

    def __init__(self) -> None:
        self.snapshots: list[Snapshot] = []
        self._changed = asyncio.Event()

    def __call__(self, snapshot: Snapshot) -> None:
        self.snapshots.append(snapshot)
        self._changed.set()

    @property
    def latest(self) -> Snapshot:
        return self.snapshots[-1]

    async def wait_for(self, predicate: Callable[[Snapshot], bool], timeout: float = 1.0) -> Snapshot:
        async def _wait() -> Snapshot:
            while True:
                if self.snapshots and predicate(self.latest):
                    return self.latest
                self._changed.clear()
                await self._changed.wait()

        return await asyncio.wait_for(_wait(), timeout)


class StepClock:
    """Deterministic clock advancing one second per call."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, tzinfo=UTC)

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


@pytest.fixture
def recorder() -> Callable[[], SnapshotRecorder]:
    return SnapshotRecorder


@pytest.fixture
def clock() -> StepClock:
    return StepClock()


@pytest.fixture
def channel_name() -> str:
    return f"test-stalls-{uuid.uuid4().hex}"
