"""Booking records and snapshots.

A stall is booked exactly when a :class:`BookingRecord` exists under its
key.  Keys are the string form of the stall's integer id (``"5"``), which
is also the document id used by the Firestore backend.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from datetime import UTC, datetime
from types import MappingProxyType
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator


def stall_key(stall_id: int | str) -> str:
    """Normalize a stall id to its storage key.

    ``5``, ``"5"`` and ``" 05 "`` all map to ``"5"``.  Raises
    :class:`ValueError` for anything that is not an integer.
    """
    if isinstance(stall_id, bool):
        raise ValueError(f"stall id must be an integer, got {stall_id!r}")
    if isinstance(stall_id, int):
        return str(stall_id)
    text = str(stall_id).strip()
    try:
        return str(int(text))
    except ValueError:
        raise ValueError(f"stall id must be an integer, got {stall_id!r}") from None


class BookingRecord(BaseModel):
    """An occupied stall: who booked it, and when the store recorded it."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    company: str
    timestamp: datetime

    @field_validator("company")
    @classmethod
    def _company_non_empty(cls, value: str) -> str:
        company = value.strip()
        if not company:
            raise ValueError("company must be non-empty")
        return company

    @field_validator("timestamp")
    @classmethod
    def _ensure_tz_aware(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value


class PendingBooking(BaseModel):
    """A booking as written by a transaction, before the store stamps it.

    Callers never supply the timestamp; the store assigns it on commit.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    company: str

    @field_validator("company")
    @classmethod
    def _company_non_empty(cls, value: str) -> str:
        company = value.strip()
        if not company:
            raise ValueError("company must be non-empty")
        return company

    def stamp(self, timestamp: datetime) -> BookingRecord:
        return BookingRecord(company=self.company, timestamp=timestamp)


class Snapshot(Mapping[str, BookingRecord]):
    """Immutable point-in-time view of every occupied stall.

    Snapshots are total: each delivery supersedes the previous one.
    Stall ids not present are available.
    """

    __slots__ = ("_records", "taken_at")

    def __init__(
        self,
        records: Mapping[str, BookingRecord] | Iterable[tuple[str, BookingRecord]] = (),
        *,
        taken_at: datetime | None = None,
    ) -> None:
        self._records: Mapping[str, BookingRecord] = MappingProxyType(dict(records))
        self.taken_at = taken_at or datetime.now(UTC)

    def __getitem__(self, key: str) -> BookingRecord:
        return self._records[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Snapshot):
            return dict(self._records) == dict(other._records)
        if isinstance(other, Mapping):
            return dict(self._records) == dict(other)
        return NotImplemented

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"Snapshot({dict(self._records)!r})"

    def is_booked(self, stall_id: int | str) -> bool:
        return stall_key(stall_id) in self._records

    def booked_ids(self) -> list[int]:
        """Occupied stall ids in ascending order."""
        return sorted(int(key) for key in self._records)

    def available(self, total_stalls: int) -> list[int]:
        """Free stall ids in ``[1, total_stalls]`` in ascending order."""
        return [stall for stall in range(1, total_stalls + 1) if str(stall) not in self._records]

    def to_payload(self) -> dict[str, dict[str, Any]]:
        """JSON-compatible form, keyed by stall key."""
        return {key: record.model_dump(mode="json") for key, record in self._records.items()}
