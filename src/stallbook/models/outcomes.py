"""Results of booking and release calls.

The booking service never raises for expected outcomes; it returns one of
these models.  ``message`` is the text a front end shows the user.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, ConfigDict


class ConflictReason(StrEnum):
    ALREADY_BOOKED = "already_booked"
    NOT_BOOKED = "not_booked"


class FailureReason(StrEnum):
    INVALID = "invalid"
    BACKEND_UNAVAILABLE = "backend_unavailable"


class _Outcome(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    ok: bool = False

    @property
    def message(self) -> str:
        raise NotImplementedError


class Booked(_Outcome):
    kind: Literal["booked"] = "booked"
    ok: bool = True
    stall_id: int
    company: str

    @property
    def message(self) -> str:
        return f"Stall {self.stall_id} booked for {self.company}."


class Released(_Outcome):
    kind: Literal["released"] = "released"
    ok: bool = True
    stall_id: int

    @property
    def message(self) -> str:
        return f"Stall {self.stall_id} is available again."


class Conflict(_Outcome):
    kind: Literal["conflict"] = "conflict"
    stall_id: int
    reason: ConflictReason

    @property
    def message(self) -> str:
        if self.reason == ConflictReason.ALREADY_BOOKED:
            return "Stall already taken. Please choose another."
        return f"Stall {self.stall_id} is not booked; nothing to release."


class Failure(_Outcome):
    kind: Literal["failure"] = "failure"
    reason: FailureReason
    action: str = "Booking"
    detail: str = ""

    @property
    def message(self) -> str:
        if self.reason == FailureReason.INVALID:
            return self.detail or "Invalid booking request."
        return f"{self.action} failed - please retry."


BookOutcome = Booked | Conflict | Failure
ReleaseOutcome = Released | Conflict | Failure
