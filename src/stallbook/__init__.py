"""stallbook - exclusive exhibition stall booking over a live booking store."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("stallbook")
except PackageNotFoundError:
    __version__ = "0+local"
from stallbook.booking import BookingService
from stallbook.config import FirestoreConfig, MergePolicy, StallBookConfig, SyncTransport
from stallbook.exceptions import (
    AlreadyBookedError,
    BackendUnavailableError,
    BookingValidationError,
    BroadcastError,
    ConflictAborted,
    NotBookedError,
    StallBookConfigError,
    StallBookError,
    TransactionContentionError,
    TransactionError,
)
from stallbook.models import (
    Booked,
    BookingRecord,
    BookOutcome,
    Conflict,
    ConflictReason,
    Failure,
    FailureReason,
    PendingBooking,
    Released,
    ReleaseOutcome,
    Snapshot,
)
from stallbook.selector import is_placeholder, select_store
from stallbook.store import FirestoreStore, MockStore, RecordRead, Store, Transaction
from stallbook.sync import LocalBroadcastChannel, MqttBroadcastChannel

__all__ = [
    "__version__",
    "AlreadyBookedError",
    "BackendUnavailableError",
    "BookOutcome",
    "Booked",
    "BookingRecord",
    "BookingService",
    "BookingValidationError",
    "BroadcastError",
    "Conflict",
    "ConflictAborted",
    "ConflictReason",
    "Failure",
    "FailureReason",
    "FirestoreConfig",
    "FirestoreStore",
    "LocalBroadcastChannel",
    "MergePolicy",
    "MockStore",
    "MqttBroadcastChannel",
    "NotBookedError",
    "PendingBooking",
    "RecordRead",
    "ReleaseOutcome",
    "Released",
    "Snapshot",
    "StallBookConfig",
    "StallBookConfigError",
    "StallBookError",
    "Store",
    "SyncTransport",
    "Transaction",
    "TransactionContentionError",
    "TransactionError",
    "is_placeholder",
    "select_store",
]
