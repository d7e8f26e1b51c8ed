"""Configuration for stallbook stores and the booking service."""

from __future__ import annotations

import dataclasses
import os
from collections.abc import Mapping
from enum import StrEnum
from typing import Any

from stallbook._constants import (
    DEFAULT_CHANNEL_NAME,
    DEFAULT_COLLECTION,
    DEFAULT_MQTT_PORT,
    DEFAULT_MQTT_TOPIC_PREFIX,
    DEFAULT_TOTAL_STALLS,
    FIRESTORE_BASE_URL,
    FIRESTORE_DEFAULT_DATABASE,
)
from stallbook.exceptions import StallBookConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _env_number(env: Mapping[str, str], key: str, kind: type) -> Any:
    raw = env.get(key)
    if raw is None:
        return None
    try:
        return kind(raw)
    except ValueError as exc:
        raise StallBookConfigError(f"{key} must be a {kind.__name__}, got {raw!r}") from exc


class SyncTransport(StrEnum):
    """How a mock store reaches its peers."""

    LOCAL = "local"
    MQTT = "mqtt"
    NONE = "none"


class MergePolicy(StrEnum):
    """How a mock store folds a peer's broadcast into its own map."""

    MERGE = "merge"
    REPLACE = "replace"


@dataclasses.dataclass(frozen=True)
class FirestoreConfig:
    """Connection bundle for the Cloud Firestore backend.

    Parameters
    ----------
    api_key : str
        Web API key, sent as the ``key`` query parameter.
    auth_domain : str
        Firebase auth domain.  Carried for completeness; the REST calls
        do not need it.
    project_id : str
        Google Cloud project id.
    database : str
        Firestore database id.
    collection : str
        Collection holding one document per booked stall.
    base_url : str
        REST API root.
    poll_interval : float
        Seconds between snapshot polls while subscribers are registered.
    request_timeout : float
        Total timeout for a single HTTP request.
    max_attempts : int
        How many times a transaction is run when commits hit contention.
    """

    api_key: str = dataclasses.field(default="", repr=False)
    auth_domain: str = ""
    project_id: str = ""
    database: str = FIRESTORE_DEFAULT_DATABASE
    collection: str = DEFAULT_COLLECTION
    base_url: str = FIRESTORE_BASE_URL
    poll_interval: float = 2.0
    request_timeout: float = 10.0
    max_attempts: int = 5

    @property
    def documents_path(self) -> str:
        """Resource path of the database's document root."""
        return f"projects/{self.project_id}/databases/{self.database}/documents"

    @classmethod
    def from_env(cls, **overrides: Any) -> FirestoreConfig:
        """Create a Firestore configuration from ``FIREBASE_*`` variables."""
        env = os.environ
        _ENV_CONFIG_MAP = {
            "FIREBASE_API_KEY": "api_key",
            "FIREBASE_AUTH_DOMAIN": "auth_domain",
            "FIREBASE_PROJECT_ID": "project_id",
            "FIREBASE_DATABASE": "database",
            "FIREBASE_COLLECTION": "collection",
        }
        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_CONFIG_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        poll = _env_number(env, "STALLBOOK_POLL_INTERVAL", float)
        if poll is not None and "poll_interval" not in overrides:
            config_kwargs["poll_interval"] = poll

        timeout = _env_number(env, "STALLBOOK_REQUEST_TIMEOUT", float)
        if timeout is not None and "request_timeout" not in overrides:
            config_kwargs["request_timeout"] = timeout

        config_kwargs.update(overrides)
        return cls(**config_kwargs)


@dataclasses.dataclass(frozen=True)
class StallBookConfig:
    """Top-level configuration.

    ``firestore`` is ``None`` (or holds placeholder values) when no real
    backend is configured, in which case the mock store is used and
    ``sync_transport`` decides how mock instances find each other.
    """

    total_stalls: int = DEFAULT_TOTAL_STALLS
    firestore: FirestoreConfig | None = None
    channel_name: str = DEFAULT_CHANNEL_NAME
    sync_transport: SyncTransport = SyncTransport.LOCAL
    merge_policy: MergePolicy = MergePolicy.MERGE
    mqtt_host: str = "localhost"
    mqtt_port: int = DEFAULT_MQTT_PORT
    mqtt_keepalive: int = 60
    mqtt_tls: bool = False
    mqtt_topic_prefix: str = DEFAULT_MQTT_TOPIC_PREFIX

    def __post_init__(self) -> None:
        if self.total_stalls < 1:
            raise StallBookConfigError(f"total_stalls must be at least 1, got {self.total_stalls}")
        try:
            object.__setattr__(self, "sync_transport", SyncTransport(self.sync_transport))
            object.__setattr__(self, "merge_policy", MergePolicy(self.merge_policy))
        except ValueError as exc:
            raise StallBookConfigError(str(exc)) from exc
        if not self.channel_name.strip():
            raise StallBookConfigError("channel_name must be non-empty")

    @classmethod
    def from_env(cls, **overrides: Any) -> StallBookConfig:
        """Create configuration from environment variables.

        Reads ``STALLBOOK_*`` variables for the service and ``FIREBASE_*``
        variables for the backend.  Explicit keyword arguments override
        environment values.
        """
        env = os.environ

        firestore_overrides = overrides.pop("firestore", None)
        if isinstance(firestore_overrides, FirestoreConfig):
            firestore: FirestoreConfig | None = firestore_overrides
        elif isinstance(firestore_overrides, dict):
            firestore = FirestoreConfig.from_env(**firestore_overrides)
        elif any(key.startswith("FIREBASE_") for key in env):
            firestore = FirestoreConfig.from_env()
        else:
            firestore = None

        _ENV_CONFIG_MAP = {
            "STALLBOOK_CHANNEL": "channel_name",
            "STALLBOOK_SYNC_TRANSPORT": "sync_transport",
            "STALLBOOK_MERGE_POLICY": "merge_policy",
            "STALLBOOK_MQTT_HOST": "mqtt_host",
            "STALLBOOK_MQTT_TOPIC_PREFIX": "mqtt_topic_prefix",
        }
        config_kwargs: dict[str, Any] = {"firestore": firestore}
        for env_key, field_name in _ENV_CONFIG_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        _ENV_INT_MAP = {
            "STALLBOOK_TOTAL_STALLS": "total_stalls",
            "STALLBOOK_MQTT_PORT": "mqtt_port",
            "STALLBOOK_MQTT_KEEPALIVE": "mqtt_keepalive",
        }
        for env_key, field_name in _ENV_INT_MAP.items():
            value = _env_number(env, env_key, int)
            if value is not None and field_name not in overrides:
                config_kwargs[field_name] = value

        if "mqtt_tls" not in overrides:
            config_kwargs["mqtt_tls"] = _env_bool(env.get("STALLBOOK_MQTT_TLS"), False)

        config_kwargs.update(overrides)
        return cls(**config_kwargs)
