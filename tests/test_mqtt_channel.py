from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import pytest

from stallbook._mqtt import MqttBroadcastRuntime, MqttEndpoint
from stallbook.booking import BookingService
from stallbook.exceptions import BroadcastError
from stallbook.models.outcomes import Booked
from stallbook.store.mock import MockStore
from stallbook.sync.mqtt import MqttBroadcastChannel


@dataclass
class _FakeBroker:
    """Routes published payloads to every runtime subscribed to the topic, sender included."""

    runtimes: list[_FakeRuntime] = field(default_factory=list)
    published: list[tuple[str, bytes]] = field(default_factory=list)
    refuse_connections: bool = False

    def factory(self, **kwargs: Any) -> _FakeRuntime:
        return _FakeRuntime(broker=self, **kwargs)

    def route(self, topic: str, payload: bytes) -> None:
        self.published.append((topic, payload))
        for runtime in self.runtimes:
            if runtime.topic == topic:
                runtime.loop.call_soon_threadsafe(runtime.on_payload, payload)


@dataclass(eq=False)
class _FakeRuntime:
    broker: _FakeBroker
    loop: asyncio.AbstractEventLoop
    on_payload: Callable[[bytes], None]
    keepalive: int
    logger: logging.Logger
    topic: str | None = None

    def start(self, endpoint: MqttEndpoint) -> None:
        if self.broker.refuse_connections:
            raise BroadcastError(f"MQTT connect to {endpoint.host}:{endpoint.port} failed")
        self.topic = endpoint.topic
        self.broker.runtimes.append(self)

    def publish(self, payload: bytes) -> None:
        assert self.topic is not None
        self.broker.route(self.topic, payload)

    def stop(self) -> None:
        if self in self.broker.runtimes:
            self.broker.runtimes.remove(self)
        self.topic = None


def _channel(broker: _FakeBroker, name: str = "btsa-stalls") -> MqttBroadcastChannel:
    return MqttBroadcastChannel(name, host="broker.test", topic_prefix="expo", runtime_factory=broker.factory)


async def _settle() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_messages_reach_peers_but_not_sender() -> None:
    broker = _FakeBroker()
    sender, receiver = _channel(broker), _channel(broker)
    sent: list[dict[str, Any]] = []
    received: list[dict[str, Any]] = []
    await sender.open()
    await receiver.open()
    sender.listen(sent.append)
    receiver.listen(received.append)

    sender.post({"type": "hello", "sender": "a"})
    await _settle()

    assert sent == []
    assert received == [{"type": "hello", "sender": "a"}]
    topic, payload = broker.published[0]
    assert topic == "expo/btsa-stalls"
    assert json.loads(payload)["message"] == {"type": "hello", "sender": "a"}

    await sender.close()
    await receiver.close()
    assert broker.runtimes == []


@pytest.mark.asyncio
async def test_channels_with_other_names_are_isolated() -> None:
    broker = _FakeBroker()
    hall_a, hall_b = _channel(broker, "hall-a"), _channel(broker, "hall-b")
    received: list[dict[str, Any]] = []
    await hall_a.open()
    await hall_b.open()
    hall_b.listen(received.append)

    hall_a.post({"type": "hello", "sender": "a"})
    await _settle()

    assert received == []


@pytest.mark.asyncio
async def test_post_before_open_fails() -> None:
    with pytest.raises(BroadcastError):
        _channel(_FakeBroker()).post({"type": "hello"})


@pytest.mark.asyncio
async def test_undecodable_payloads_are_dropped() -> None:
    broker = _FakeBroker()
    channel = _channel(broker)
    received: list[dict[str, Any]] = []
    await channel.open()
    channel.listen(received.append)

    broker.route(channel.topic, b"\xff\xfe")
    broker.route(channel.topic, b"not json")
    broker.route(channel.topic, json.dumps({"origin": "peer", "message": "flat"}).encode())
    await _settle()

    assert received == []


@pytest.mark.asyncio
async def test_mock_stores_sync_over_mqtt(recorder: Callable) -> None:
    broker = _FakeBroker()
    async with MockStore(channel=_channel(broker)) as store_a, MockStore(channel=_channel(broker)) as store_b:
        rec = recorder()
        store_b.subscribe(rec)

        outcome = await BookingService(store_a).book(12, "Acme")

        assert isinstance(outcome, Booked)
        snapshot = await rec.wait_for(lambda snap: snap.is_booked(12))
        assert snapshot["12"].company == "Acme"


@pytest.mark.asyncio
async def test_unreachable_broker_leaves_store_local() -> None:
    broker = _FakeBroker(refuse_connections=True)
    async with MockStore(channel=_channel(broker)) as store:
        assert not store.is_shared
        assert isinstance(await BookingService(store).book(1, "Acme"), Booked)


@pytest.mark.asyncio
async def test_runtime_publish_requires_start() -> None:
    runtime = MqttBroadcastRuntime(loop=asyncio.get_running_loop(), on_payload=lambda payload: None)
    assert not runtime.is_running
    with pytest.raises(BroadcastError):
        runtime.publish(b"{}")
    runtime.stop()
