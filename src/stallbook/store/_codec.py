"""Conversion between Firestore REST documents and booking models.

Layout: one document per booked stall, id = stall key, fields
``company`` (stringValue) and ``timestamp`` (timestampValue).
"""

from __future__ import annotations

import logging
import re
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError

from stallbook.models.booking import BookingRecord, PendingBooking

_logger = logging.getLogger(__name__)

# Firestore emits up to nanosecond precision; datetime keeps microseconds.
_FRACTION_RE = re.compile(r"\.(\d{6})\d+")


def parse_timestamp(value: str) -> datetime:
    """Parse an RFC 3339 ``timestampValue`` into an aware UTC datetime."""
    text = _FRACTION_RE.sub(r".\1", value.strip())
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def encode_write(document_name: str, value: PendingBooking | None) -> dict[str, Any]:
    """Build a commit write: an upsert stamped with the server's request time, or a delete."""
    if value is None:
        return {"delete": document_name}
    return {
        "update": {
            "name": document_name,
            "fields": {"company": {"stringValue": value.company}},
        },
        "updateTransforms": [
            {"fieldPath": "timestamp", "setToServerValue": "REQUEST_TIME"},
        ],
    }


def document_key(document: dict[str, Any]) -> str:
    name = document.get("name")
    if not isinstance(name, str) or "/" not in name:
        raise ValueError(f"document without a resource name: {document!r}")
    return name.rsplit("/", 1)[1]


def decode_record(document: dict[str, Any]) -> BookingRecord:
    """Turn a Firestore document into a :class:`BookingRecord`.

    Documents written without a ``timestamp`` field fall back to their
    ``createTime``.
    """
    fields = document.get("fields") or {}
    company = (fields.get("company") or {}).get("stringValue")
    raw_ts = (fields.get("timestamp") or {}).get("timestampValue") or document.get("createTime")
    if not isinstance(company, str) or not isinstance(raw_ts, str):
        raise ValueError(f"document {document.get('name')!r} lacks company or timestamp")
    return BookingRecord(company=company, timestamp=parse_timestamp(raw_ts))


def decode_documents(documents: list[dict[str, Any]]) -> dict[str, BookingRecord]:
    """Decode a collection listing, skipping documents that do not parse."""
    records: dict[str, BookingRecord] = {}
    for document in documents:
        try:
            records[document_key(document)] = decode_record(document)
        except (ValueError, ValidationError):
            _logger.warning("Skipping malformed booking document %r", document.get("name"), exc_info=True)
    return records
