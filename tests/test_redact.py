from __future__ import annotations

from stallbook._redact import redact_for_log, redact_url


def test_redact_for_log_redacts_sensitive_keys() -> None:
    payload = {
        "key": "AIza-secret",
        "transaction": "tx-handle==",
        "writes": [{"delete": "projects/p/databases/(default)/documents/stalls/5"}],
        "nested": {"Authorization": "Bearer abc"},
    }

    redacted = redact_for_log(payload)
    assert redacted["key"] == "<redacted>"
    assert redacted["transaction"] == "<redacted>"
    assert redacted["nested"]["Authorization"] == "<redacted>"
    assert redacted["writes"] == payload["writes"]


def test_redact_for_log_truncates_long_strings() -> None:
    long_value = "x" * 600
    redacted = redact_for_log({"value": long_value}, max_string=10)
    assert redacted["value"].startswith("x" * 10)
    assert "<truncated>" in redacted["value"]


def test_redact_url_masks_api_key() -> None:
    url = "https://firestore.googleapis.com/v1/projects/p/databases/(default)/documents/stalls?key=AIza-secret&pageSize=300"

    redacted = redact_url(url)

    assert "AIza-secret" not in redacted
    assert "key=<redacted>" in redacted
    assert "pageSize=300" in redacted


def test_redact_url_without_query_is_unchanged() -> None:
    url = "https://firestore.googleapis.com/v1/projects/p/databases/(default)/documents:commit"
    assert redact_url(url) == url
