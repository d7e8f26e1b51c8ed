"""Backend selection: a real Firestore store when configured, the mock otherwise."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

import aiohttp

from stallbook._constants import PLACEHOLDER_PREFIX
from stallbook.config import FirestoreConfig, StallBookConfig, SyncTransport
from stallbook.store.base import Store
from stallbook.store.firestore import FirestoreStore
from stallbook.store.mock import MockStore
from stallbook.sync.channel import BroadcastChannel, LocalBroadcastChannel
from stallbook.sync.mqtt import MqttBroadcastChannel

_logger = logging.getLogger(__name__)


def _is_unset(value: str) -> bool:
    stripped = value.strip()
    return not stripped or stripped.startswith(PLACEHOLDER_PREFIX)


def is_placeholder(config: FirestoreConfig | None) -> bool:
    """Whether *config* is missing or still holds template values (``YOUR_KEY``, ``YOUR_PID``, empty)."""
    if config is None:
        return True
    return _is_unset(config.api_key) or _is_unset(config.project_id)


def build_channel(config: StallBookConfig) -> BroadcastChannel | None:
    """Broadcast channel for a mock store, or ``None`` for an isolated one."""
    if config.sync_transport == SyncTransport.NONE:
        return None
    if config.sync_transport == SyncTransport.MQTT:
        return MqttBroadcastChannel(
            config.channel_name,
            host=config.mqtt_host,
            port=config.mqtt_port,
            keepalive=config.mqtt_keepalive,
            tls=config.mqtt_tls,
            topic_prefix=config.mqtt_topic_prefix,
        )
    return LocalBroadcastChannel(config.channel_name)


def select_store(
    config: StallBookConfig,
    *,
    session: aiohttp.ClientSession | None = None,
    channel: BroadcastChannel | None = None,
    clock: Callable[[], datetime] | None = None,
) -> Store:
    """Build the store for this process.

    Called once at startup; the returned store is not yet opened.  Use it
    as ``async with select_store(config) as store:``.
    """
    firestore = config.firestore
    if firestore is None or is_placeholder(firestore):
        _logger.warning("Running with mock store - real-time sync via %s channel only.", config.sync_transport)
        mock_channel = channel if channel is not None else build_channel(config)
        if clock is None:
            return MockStore(channel=mock_channel, merge_policy=config.merge_policy)
        return MockStore(channel=mock_channel, merge_policy=config.merge_policy, clock=clock)

    _logger.info("Using Firestore project %s", firestore.project_id)
    return FirestoreStore(firestore, session=session)
