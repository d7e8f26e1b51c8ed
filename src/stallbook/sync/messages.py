"""Messages exchanged between mock stores over a broadcast channel."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from stallbook.models.booking import BookingRecord


class SyncMessageType(StrEnum):
    SYNC = "sync"
    HELLO = "hello"


class SyncMessage(BaseModel):
    """Full-state broadcast from one mock store instance.

    ``payload`` is the sender's whole booking map.  ``released`` holds
    tombstones: stall key -> timestamp of the record the sender deleted,
    so peers remove that exact booking and nothing newer.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    type: SyncMessageType
    sender: str = Field(..., min_length=1)
    payload: dict[str, BookingRecord] = Field(default_factory=dict)
    released: dict[str, datetime] = Field(default_factory=dict)

    @classmethod
    def sync(
        cls,
        sender: str,
        records: Mapping[str, BookingRecord],
        released: Mapping[str, datetime] | None = None,
    ) -> SyncMessage:
        return cls(
            type=SyncMessageType.SYNC,
            sender=sender,
            payload=dict(records),
            released=dict(released or {}),
        )

    @classmethod
    def hello(cls, sender: str) -> SyncMessage:
        return cls(type=SyncMessageType.HELLO, sender=sender)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json")
