"""The booking-store contract shared by every backend.

Callers depend on :class:`Store` only.  A store offers two things:

* ``subscribe`` delivers a full :class:`Snapshot` now and after every
  change from any client, until the returned handle is called.
* ``transact`` runs a read-check-write operation atomically against a
  :class:`Transaction` view and notifies subscribers on commit.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Protocol, TypeVar, runtime_checkable

from stallbook.exceptions import StallBookError, TransactionError
from stallbook.models.booking import BookingRecord, PendingBooking, Snapshot, stall_key

_logger = logging.getLogger(__name__)

T = TypeVar("T")

SnapshotCallback = Callable[[Snapshot], None]
Unsubscribe = Callable[[], None]


@dataclass(frozen=True, slots=True)
class RecordRead:
    """Result of reading one stall inside a transaction."""

    exists: bool
    record: BookingRecord | None = None


class Transaction(Protocol):
    """Transactional view handed to a ``transact`` operation."""

    async def read(self, stall_id: int | str) -> RecordRead:
        ...

    def write(self, stall_id: int | str, value: PendingBooking | None) -> None:
        ...


Operation = Callable[[Transaction], Awaitable[T]]


@runtime_checkable
class Store(Protocol):
    """Capability interface implemented by ``MockStore`` and ``FirestoreStore``."""

    def subscribe(self, on_snapshot: SnapshotCallback) -> Unsubscribe:
        ...

    async def transact(self, stall_id: int | str, operation: Operation[T]) -> T:
        ...

    async def open(self) -> None:
        ...

    async def close(self) -> None:
        ...

    async def __aenter__(self) -> Store:
        ...

    async def __aexit__(self, *exc: Any) -> None:
        ...


class BufferedTransaction:
    """Transaction view that buffers writes until commit.

    Reads consult the buffer first so an operation sees its own writes.
    Subclasses supply ``_fetch`` for keys that have not been written.
    """

    def __init__(self) -> None:
        self._writes: dict[str, PendingBooking | None] = {}

    @property
    def writes(self) -> dict[str, PendingBooking | None]:
        return dict(self._writes)

    async def _fetch(self, key: str) -> BookingRecord | None:
        raise NotImplementedError

    async def read(self, stall_id: int | str) -> RecordRead:
        key = stall_key(stall_id)
        if key in self._writes:
            pending = self._writes[key]
            if pending is None:
                return RecordRead(exists=False)
            # Not yet stamped; the store assigns the timestamp on commit.
            return RecordRead(exists=True)
        record = await self._fetch(key)
        return RecordRead(exists=record is not None, record=record)

    def write(self, stall_id: int | str, value: PendingBooking | None) -> None:
        if value is not None and not isinstance(value, PendingBooking):
            raise TypeError(f"expected PendingBooking or None, got {type(value).__name__}")
        self._writes[stall_key(stall_id)] = value


def classify_operation_error(exc: Exception, stall_id: str) -> StallBookError:
    """Map an exception raised while running an operation onto the store taxonomy.

    Conflicts and other stallbook errors pass through unchanged; anything
    else becomes a :class:`TransactionError`.
    """
    if isinstance(exc, StallBookError):
        return exc
    return TransactionError(f"Transaction on stall {stall_id} failed: {exc!r}")


class SnapshotFanout:
    """Registry of snapshot subscribers.

    Each subscriber gets its own delivery stream; a subscriber that raises
    is logged and skipped without affecting the others.
    """

    def __init__(self) -> None:
        self._subscribers: dict[int, SnapshotCallback] = {}
        self._next_token = 0

    def __len__(self) -> int:
        return len(self._subscribers)

    def add(self, callback: SnapshotCallback) -> Unsubscribe:
        token = self._next_token
        self._next_token += 1
        self._subscribers[token] = callback

        def unsubscribe() -> None:
            self._subscribers.pop(token, None)

        return unsubscribe

    def is_active(self, callback: SnapshotCallback) -> bool:
        return any(cb is callback for cb in self._subscribers.values())

    def deliver(self, callback: SnapshotCallback, snapshot: Snapshot) -> None:
        try:
            callback(snapshot)
        except Exception:
            _logger.warning("Snapshot subscriber %r failed", callback, exc_info=True)

    def publish(self, snapshot: Snapshot) -> None:
        for callback in list(self._subscribers.values()):
            self.deliver(callback, snapshot)
