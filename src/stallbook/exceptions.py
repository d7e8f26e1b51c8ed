"""Custom exception hierarchy for stallbook."""

from __future__ import annotations


class StallBookError(Exception):
    """Base exception for all stallbook errors."""


class StallBookConfigError(StallBookError):
    """Invalid or missing configuration."""


class BookingValidationError(StallBookError):
    """Caller-side input rejected before any store access.

    Raised for an empty company name or a stall id outside the
    configured range.  Never produced by a store.
    """


class ConflictAborted(StallBookError):
    """A transaction aborted because its precondition no longer holds.

    Conflicts are expected outcomes of racing clients, not faults.  They
    propagate out of ``Store.transact`` unchanged so the caller can
    classify them.
    """

    def __init__(self, message: str, *, stall_id: str = "") -> None:
        self.stall_id = stall_id
        super().__init__(message)


class AlreadyBookedError(ConflictAborted):
    """The stall already carries a booking record."""


class NotBookedError(ConflictAborted):
    """The stall has no booking record to release."""


class TransactionError(StallBookError):
    """A transaction failed for a reason other than a conflict."""


class BackendUnavailableError(TransactionError):
    """Connectivity or backend-internal failure (network, non-2xx, invalid JSON)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str = "",
    ) -> None:
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(message)


class TransactionContentionError(BackendUnavailableError):
    """The backend aborted a commit because a concurrent transaction won.

    ``Store.transact`` retries these internally; callers only see one
    after every attempt was exhausted.
    """


class BroadcastError(StallBookError):
    """A broadcast channel could not be opened or could not post."""
