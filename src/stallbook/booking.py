"""Booking protocol: book and release as atomic read-check-write transactions.

Both operations are submitted to the store as one unit, so exclusivity is
the store's job.  Expected outcomes (success, conflict, invalid input,
backend trouble) are returned as models; nothing is retried automatically.
"""

from __future__ import annotations

import logging

from stallbook._constants import DEFAULT_TOTAL_STALLS
from stallbook.exceptions import (
    AlreadyBookedError,
    BookingValidationError,
    NotBookedError,
    StallBookConfigError,
)
from stallbook.models.booking import PendingBooking, Snapshot, stall_key
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
from stallbook.store.base import Store, Transaction

_logger = logging.getLogger(__name__)


class BookingService:
    """Books and releases stalls ``1..total_stalls`` against a store."""

    def __init__(self, store: Store, *, total_stalls: int = DEFAULT_TOTAL_STALLS) -> None:
        if total_stalls < 1:
            raise StallBookConfigError(f"total_stalls must be at least 1, got {total_stalls}")
        self._store = store
        self.total_stalls = total_stalls

    @property
    def store(self) -> Store:
        return self._store

    def stall_ids(self) -> list[int]:
        return list(range(1, self.total_stalls + 1))

    def available_stalls(self, snapshot: Snapshot) -> list[int]:
        """Free stalls in *snapshot*; empty when every stall is booked."""
        return snapshot.available(self.total_stalls)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate_stall(self, stall_id: int | str | None) -> int:
        if stall_id is None or (isinstance(stall_id, str) and not stall_id.strip()):
            raise BookingValidationError("Please select a stall.")
        try:
            stall = int(stall_key(stall_id))
        except ValueError:
            raise BookingValidationError(f"Unknown stall {stall_id!r}.") from None
        if not 1 <= stall <= self.total_stalls:
            raise BookingValidationError(f"Stall {stall} does not exist (valid stalls are 1-{self.total_stalls}).")
        return stall

    def validate(self, stall_id: int | str | None, company: str | None) -> tuple[int, str]:
        """Check a booking request without touching the store.

        Returns the normalized ``(stall_id, company)``; raises
        :class:`BookingValidationError` otherwise.
        """
        name = company.strip() if isinstance(company, str) else ""
        if not name:
            raise BookingValidationError("Company name is required.")
        return self.validate_stall(stall_id), name

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def book(self, stall_id: int | str | None, company: str | None) -> BookOutcome:
        """Book *stall_id* for *company* if it is still available."""
        try:
            stall, name = self.validate(stall_id, company)
        except BookingValidationError as exc:
            return Failure(reason=FailureReason.INVALID, detail=str(exc))

        async def claim(tx: Transaction) -> None:
            current = await tx.read(stall)
            if current.exists:
                raise AlreadyBookedError(f"Stall {stall} is already booked", stall_id=str(stall))
            tx.write(stall, PendingBooking(company=name))

        try:
            await self._store.transact(stall, claim)
        except AlreadyBookedError:
            return Conflict(stall_id=stall, reason=ConflictReason.ALREADY_BOOKED)
        except Exception:
            _logger.warning("Booking stall %s for %r failed", stall, name, exc_info=True)
            return Failure(reason=FailureReason.BACKEND_UNAVAILABLE)

        _logger.info("Stall %s booked for %s", stall, name)
        return Booked(stall_id=stall, company=name)

    async def release(self, stall_id: int | str | None) -> ReleaseOutcome:
        """Remove the booking on *stall_id*, making it available again."""
        try:
            stall = self.validate_stall(stall_id)
        except BookingValidationError as exc:
            return Failure(reason=FailureReason.INVALID, action="Release", detail=str(exc))

        async def vacate(tx: Transaction) -> None:
            current = await tx.read(stall)
            if not current.exists:
                raise NotBookedError(f"Stall {stall} is not booked", stall_id=str(stall))
            tx.write(stall, None)

        try:
            await self._store.transact(stall, vacate)
        except NotBookedError:
            return Conflict(stall_id=stall, reason=ConflictReason.NOT_BOOKED)
        except Exception:
            _logger.warning("Releasing stall %s failed", stall, exc_info=True)
            return Failure(reason=FailureReason.BACKEND_UNAVAILABLE, action="Release")

        _logger.info("Stall %s released", stall)
        return Released(stall_id=stall)
