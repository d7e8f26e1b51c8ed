from __future__ import annotations

from datetime import UTC, datetime

import pytest

from stallbook.models.booking import BookingRecord, PendingBooking
from stallbook.store._codec import decode_documents, decode_record, document_key, encode_write, parse_timestamp

_NAME = "projects/expo/databases/(default)/documents/stalls/5"


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("2026-01-01T12:00:00Z", datetime(2026, 1, 1, 12, 0, tzinfo=UTC)),
        ("2026-01-01T12:00:00.123456789Z", datetime(2026, 1, 1, 12, 0, 0, 123456, tzinfo=UTC)),
        ("2026-01-01T13:00:00+01:00", datetime(2026, 1, 1, 12, 0, tzinfo=UTC)),
    ],
)
def test_parse_timestamp(raw: str, expected: datetime) -> None:
    assert parse_timestamp(raw) == expected


def test_encode_write_leaves_timestamp_to_server() -> None:
    write = encode_write(_NAME, PendingBooking(company="Acme"))

    assert write["update"] == {"name": _NAME, "fields": {"company": {"stringValue": "Acme"}}}
    assert write["updateTransforms"] == [{"fieldPath": "timestamp", "setToServerValue": "REQUEST_TIME"}]


def test_encode_write_delete() -> None:
    assert encode_write(_NAME, None) == {"delete": _NAME}


def test_decode_record_falls_back_to_create_time() -> None:
    document = {
        "name": _NAME,
        "fields": {"company": {"stringValue": "Acme"}},
        "createTime": "2026-01-02T03:04:05.000001Z",
    }

    assert decode_record(document) == BookingRecord(
        company="Acme",
        timestamp=datetime(2026, 1, 2, 3, 4, 5, 1, tzinfo=UTC),
    )


def test_document_key_requires_resource_name() -> None:
    assert document_key({"name": _NAME}) == "5"
    with pytest.raises(ValueError):
        document_key({})


def test_decode_documents_skips_bad_entries() -> None:
    good = {
        "name": _NAME,
        "fields": {"company": {"stringValue": "Acme"}, "timestamp": {"timestampValue": "2026-01-01T00:00:00Z"}},
    }
    blank_company = {
        "name": _NAME.replace("/5", "/6"),
        "fields": {"company": {"stringValue": " "}, "timestamp": {"timestampValue": "2026-01-01T00:00:00Z"}},
    }

    records = decode_documents([good, blank_company, {"fields": {}}])

    assert list(records) == ["5"]
