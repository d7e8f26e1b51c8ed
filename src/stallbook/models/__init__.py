"""Data models for bookings, snapshots and call outcomes."""

from stallbook.models.booking import BookingRecord, PendingBooking, Snapshot, stall_key
from stallbook.models.outcomes import (
    BookOutcome,
    Booked,
    Conflict,
    ConflictReason,
    Failure,
    FailureReason,
    Released,
    ReleaseOutcome,
)

__all__ = [
    "BookOutcome",
    "Booked",
    "BookingRecord",
    "Conflict",
    "ConflictReason",
    "Failure",
    "FailureReason",
    "PendingBooking",
    "ReleaseOutcome",
    "Released",
    "Snapshot",
    "stall_key",
]
