"""In-process mock store.

The booking map lives in memory and is the single source of truth for
this instance.  Transactions are serialized by one lock.  After each
commit the full map is broadcast to peer instances, which merge it into
their own maps according to the configured :class:`MergePolicy`.

Convergence across instances is best effort: two instances can commit
conflicting bookings in the window before a broadcast arrives, and the
later broadcast wins on the receiving side.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError

from stallbook.config import MergePolicy
from stallbook.exceptions import ConflictAborted
from stallbook.models.booking import BookingRecord, PendingBooking, Snapshot, stall_key
from stallbook.store.base import (
    BufferedTransaction,
    Operation,
    SnapshotCallback,
    SnapshotFanout,
    T,
    Unsubscribe,
    classify_operation_error,
)
from stallbook.sync.channel import BroadcastChannel
from stallbook.sync.messages import SyncMessage, SyncMessageType

_logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class _MockTransaction(BufferedTransaction):
    def __init__(self, records: dict[str, BookingRecord]) -> None:
        super().__init__()
        self._records = records

    async def _fetch(self, key: str) -> BookingRecord | None:
        return self._records.get(key)


class MockStore:
    """Volatile store replicating the networked store's guarantees locally.

    Usage::

        async with MockStore(channel=LocalBroadcastChannel("btsa-stalls")) as store:
            unsubscribe = store.subscribe(render)
    """

    def __init__(
        self,
        *,
        channel: BroadcastChannel | None = None,
        clock: Callable[[], datetime] = _utcnow,
        merge_policy: MergePolicy = MergePolicy.MERGE,
        instance_id: str | None = None,
    ) -> None:
        self._configured_channel = channel
        self._channel: BroadcastChannel | None = None
        self._clock = clock
        self._merge_policy = MergePolicy(merge_policy)
        self.instance_id = instance_id or secrets.token_hex(8)
        self._records: dict[str, BookingRecord] = {}
        self._fanout = SnapshotFanout()
        self._lock = asyncio.Lock()
        self._tasks: set[asyncio.Task[None]] = set()
        self._opened = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> MockStore:
        await self.open()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    @property
    def is_shared(self) -> bool:
        """Whether commits are propagated to peer instances."""
        return self._channel is not None and self._opened

    async def open(self) -> None:
        """Attach to the broadcast channel and ask peers for their state.

        A channel that cannot be opened is skipped with a warning; the store
        then keeps working for this instance only until it is reopened.
        """
        if self._opened:
            return
        self._opened = True
        channel = self._configured_channel
        if channel is None:
            _logger.info("Mock store %s has no broadcast channel; changes stay local", self.instance_id)
            return
        try:
            await channel.open()
        except Exception:
            _logger.warning(
                "Broadcast channel %s unavailable; mock store limited to this instance",
                channel.name,
                exc_info=True,
            )
            return
        self._channel = channel
        channel.listen(self._on_channel_message)
        self._broadcast(SyncMessage.hello(self.instance_id))

    async def close(self) -> None:
        tasks = list(self._tasks)
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        channel = self._channel
        self._channel = None
        self._opened = False
        if channel is not None:
            await channel.close()

    # ------------------------------------------------------------------
    # Store contract
    # ------------------------------------------------------------------

    def snapshot(self) -> Snapshot:
        return Snapshot(self._records, taken_at=self._clock())

    def subscribe(self, on_snapshot: SnapshotCallback) -> Unsubscribe:
        """Register an observer and deliver the current state to it right away."""
        unsubscribe = self._fanout.add(on_snapshot)
        self._fanout.deliver(on_snapshot, self.snapshot())
        return unsubscribe

    async def transact(self, stall_id: int | str, operation: Operation[T]) -> T:
        key = stall_key(stall_id)
        async with self._lock:
            tx = _MockTransaction(self._records)
            try:
                result = await operation(tx)
            except Exception as exc:
                error = classify_operation_error(exc, key)
                if isinstance(error, ConflictAborted):
                    _logger.debug("Transaction on stall %s aborted: %s", key, error)
                if error is exc:
                    raise
                raise error from exc

            released = self._commit(tx.writes)
            self._fanout.publish(self.snapshot())
            self._broadcast(SyncMessage.sync(self.instance_id, self._records, released))
        return result

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _commit(self, writes: dict[str, PendingBooking | None]) -> dict[str, datetime]:
        """Apply buffered writes; return tombstones for deleted records."""
        now = self._clock()
        released: dict[str, datetime] = {}
        for key, value in writes.items():
            if value is None:
                previous = self._records.pop(key, None)
                if previous is not None:
                    released[key] = previous.timestamp
            else:
                self._records[key] = value.stamp(now)
        return released

    def _broadcast(self, message: SyncMessage) -> None:
        channel = self._channel
        if channel is None:
            return
        try:
            channel.post(message.to_wire())
        except Exception:
            _logger.warning("Broadcast on %s failed; peers may be stale", channel.name, exc_info=True)

    def _on_channel_message(self, raw: dict[str, Any]) -> None:
        try:
            message = SyncMessage.model_validate(raw)
        except ValidationError:
            _logger.debug("Ignoring malformed sync message: %r", raw, exc_info=True)
            return
        if message.sender == self.instance_id:
            return
        task = asyncio.get_running_loop().create_task(self._apply_remote(message))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _apply_remote(self, message: SyncMessage) -> None:
        # Merges wait for any running transaction so they never interleave with one.
        async with self._lock:
            if message.type == SyncMessageType.HELLO:
                if self._records:
                    self._broadcast(SyncMessage.sync(self.instance_id, self._records))
                return
            if self._merge(message):
                self._fanout.publish(self.snapshot())

    def _merge(self, message: SyncMessage) -> bool:
        before = dict(self._records)
        if self._merge_policy == MergePolicy.REPLACE:
            self._records = dict(message.payload)
        else:
            self._records.update(message.payload)
            for key, released_at in message.released.items():
                local = self._records.get(key)
                if key not in message.payload and local is not None and local.timestamp == released_at:
                    del self._records[key]
        return before != self._records
