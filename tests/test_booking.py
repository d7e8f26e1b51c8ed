from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import pytest

from stallbook.booking import BookingService
from stallbook.exceptions import BackendUnavailableError, StallBookConfigError
from stallbook.models.booking import Snapshot
from stallbook.models.outcomes import Booked, Conflict, ConflictReason, Failure, FailureReason, Released
from stallbook.store.base import Operation, SnapshotCallback, T, Unsubscribe
from stallbook.store.mock import MockStore


@dataclass
class _SpyStore:
    """Counts transactions; optionally fails them like an unreachable backend."""

    error: Exception | None = None
    calls: list[str] = field(default_factory=list)

    def subscribe(self, on_snapshot: SnapshotCallback) -> Unsubscribe:
        on_snapshot(Snapshot())
        return lambda: None

    async def transact(self, stall_id: int | str, operation: Operation[T]) -> T:
        self.calls.append(str(stall_id))
        if self.error is not None:
            raise self.error
        raise AssertionError("spy store only records calls")

    async def open(self) -> None:
        return None

    async def close(self) -> None:
        return None

    async def __aenter__(self) -> _SpyStore:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        return None


@pytest.fixture
def service() -> BookingService:
    return BookingService(MockStore(), total_stalls=10)


def test_total_stalls_must_be_positive() -> None:
    with pytest.raises(StallBookConfigError):
        BookingService(MockStore(), total_stalls=0)


def test_stall_ids_cover_range(service: BookingService) -> None:
    assert service.stall_ids() == list(range(1, 11))


@pytest.mark.asyncio
async def test_book_then_release_round_trip(service: BookingService, recorder: Callable) -> None:
    rec = recorder()
    service.store.subscribe(rec)

    booked = await service.book(5, "  Acme  ")
    assert booked == Booked(stall_id=5, company="Acme")
    assert rec.latest["5"].company == "Acme"

    released = await service.release(5)
    assert released == Released(stall_id=5)
    assert not rec.latest.is_booked(5)


@pytest.mark.asyncio
async def test_concurrent_bookings_have_exactly_one_winner(service: BookingService) -> None:
    companies = [f"Company {n}" for n in range(8)]

    outcomes = await asyncio.gather(*(service.book(3, name) for name in companies))

    winners = [outcome for outcome in outcomes if isinstance(outcome, Booked)]
    losers = [outcome for outcome in outcomes if isinstance(outcome, Conflict)]
    assert len(winners) == 1
    assert len(losers) == len(companies) - 1
    assert all(outcome.reason == ConflictReason.ALREADY_BOOKED for outcome in losers)

    async def read_company(tx: Any) -> str:
        return (await tx.read(3)).record.company

    assert await service.store.transact(3, read_company) == winners[0].company


@pytest.mark.asyncio
async def test_booking_taken_stall_is_conflict(service: BookingService) -> None:
    await service.book(2, "Acme")

    outcome = await service.book("2", "Beta")

    assert outcome == Conflict(stall_id=2, reason=ConflictReason.ALREADY_BOOKED)
    assert outcome.message == "Stall already taken. Please choose another."


@pytest.mark.asyncio
async def test_second_release_reports_not_booked(service: BookingService) -> None:
    await service.book(4, "Acme")
    assert isinstance(await service.release(4), Released)

    outcome = await service.release(4)

    assert outcome == Conflict(stall_id=4, reason=ConflictReason.NOT_BOOKED)


@pytest.mark.asyncio
async def test_released_stall_can_be_booked_again(service: BookingService) -> None:
    await service.book(6, "Acme")
    await service.release(6)

    assert await service.book(6, "Beta") == Booked(stall_id=6, company="Beta")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("stall", "company", "detail"),
    [
        (3, "", "Company name is required."),
        (3, "   ", "Company name is required."),
        (None, "Acme", "Please select a stall."),
        ("", "Acme", "Please select a stall."),
        (0, "Acme", "Stall 0 does not exist (valid stalls are 1-10)."),
        (11, "Acme", "Stall 11 does not exist (valid stalls are 1-10)."),
        ("abc", "Acme", "Unknown stall 'abc'."),
    ],
)
async def test_invalid_requests_never_reach_store(stall: Any, company: str, detail: str) -> None:
    spy = _SpyStore()
    service = BookingService(spy, total_stalls=10)

    outcome = await service.book(stall, company)

    assert outcome == Failure(reason=FailureReason.INVALID, detail=detail)
    assert outcome.message == detail
    assert spy.calls == []


@pytest.mark.asyncio
async def test_invalid_release_never_reaches_store() -> None:
    spy = _SpyStore()
    service = BookingService(spy, total_stalls=10)

    outcome = await service.release(99)

    assert isinstance(outcome, Failure)
    assert outcome.reason == FailureReason.INVALID
    assert spy.calls == []


@pytest.mark.asyncio
async def test_range_boundaries_are_bookable(service: BookingService) -> None:
    assert isinstance(await service.book(1, "Acme"), Booked)
    assert isinstance(await service.book(10, "Acme"), Booked)


@pytest.mark.asyncio
async def test_backend_failure_reports_retry_without_retrying() -> None:
    spy = _SpyStore(error=BackendUnavailableError("offline", status_code=503))
    service = BookingService(spy, total_stalls=10)

    booking = await service.book(3, "Acme")
    release = await service.release(3)

    assert booking == Failure(reason=FailureReason.BACKEND_UNAVAILABLE)
    assert booking.message == "Booking failed - please retry."
    assert release.message == "Release failed - please retry."
    assert spy.calls == ["3", "3"]


@pytest.mark.asyncio
async def test_available_stalls_until_full() -> None:
    service = BookingService(MockStore(), total_stalls=3)
    rec_snapshots: list[Snapshot] = []
    service.store.subscribe(rec_snapshots.append)

    assert service.available_stalls(rec_snapshots[-1]) == [1, 2, 3]
    for stall in (1, 2, 3):
        await service.book(stall, "Acme")

    assert service.available_stalls(rec_snapshots[-1]) == []


@pytest.mark.asyncio
@pytest.mark.parametrize("company", [5, ["Acme"], object()])
async def test_non_text_company_is_invalid(company: Any) -> None:
    spy = _SpyStore()
    service = BookingService(spy, total_stalls=10)

    outcome = await service.book(5, company)

    assert outcome == Failure(reason=FailureReason.INVALID, detail="Company name is required.")
    assert spy.calls == []
