"""Booking-state stores.

``Store`` is the contract; ``MockStore`` and ``FirestoreStore`` are the two
interchangeable implementations.  Use ``stallbook.selector.select_store``
to pick one from configuration.
"""

from stallbook.store.base import (
    BufferedTransaction,
    RecordRead,
    SnapshotCallback,
    SnapshotFanout,
    Store,
    Transaction,
    Unsubscribe,
)
from stallbook.store.firestore import FirestoreStore
from stallbook.store.mock import MockStore

__all__ = [
    "BufferedTransaction",
    "FirestoreStore",
    "MockStore",
    "RecordRead",
    "SnapshotCallback",
    "SnapshotFanout",
    "Store",
    "Transaction",
    "Unsubscribe",
]
