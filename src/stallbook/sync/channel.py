"""Broadcast channels: publish a message to every peer on the same channel name.

``LocalBroadcastChannel`` connects instances living in the same Python
process (any event loop); ``stallbook.sync.mqtt.MqttBroadcastChannel``
reaches peers in other processes through an MQTT broker.  Neither echoes
a message back to its sender.
"""

from __future__ import annotations

import asyncio
import json
import logging
import weakref
from collections.abc import Callable, Mapping
from typing import Any, Protocol, runtime_checkable

from stallbook.exceptions import BroadcastError

_logger = logging.getLogger(__name__)

MessageHandler = Callable[[dict[str, Any]], None]


@runtime_checkable
class BroadcastChannel(Protocol):
    """Structural interface used by the mock store."""

    name: str

    async def open(self) -> None:
        ...

    def listen(self, handler: MessageHandler) -> None:
        ...

    def post(self, message: Mapping[str, Any]) -> None:
        ...

    async def close(self) -> None:
        ...


_LOCAL_CHANNELS: dict[str, weakref.WeakSet[LocalBroadcastChannel]] = {}


def _clone(message: Mapping[str, Any]) -> dict[str, Any]:
    """Deep copy through JSON so peers never share mutable state with the sender."""
    try:
        cloned = json.loads(json.dumps(message))
    except (TypeError, ValueError) as exc:
        raise BroadcastError(f"Message is not JSON-serializable: {exc}") from exc
    if not isinstance(cloned, dict):
        raise BroadcastError("Broadcast messages must be JSON objects")
    return cloned


class LocalBroadcastChannel:
    """In-process named channel.

    Delivery is asynchronous: ``post`` schedules the handler of every other
    open channel with the same name on that channel's event loop.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._handler: MessageHandler | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def is_open(self) -> bool:
        return self._loop is not None

    async def open(self) -> None:
        self._loop = asyncio.get_running_loop()
        _LOCAL_CHANNELS.setdefault(self.name, weakref.WeakSet()).add(self)
        _logger.debug("Local broadcast channel %s opened", self.name)

    def listen(self, handler: MessageHandler) -> None:
        self._handler = handler

    def post(self, message: Mapping[str, Any]) -> None:
        if self._loop is None:
            raise BroadcastError(f"Channel {self.name} is not open")
        peers = [peer for peer in _LOCAL_CHANNELS.get(self.name, ()) if peer is not self]
        for peer in peers:
            loop = peer._loop
            if loop is None or loop.is_closed():
                continue
            loop.call_soon_threadsafe(peer._deliver, _clone(message))

    def _deliver(self, message: dict[str, Any]) -> None:
        handler = self._handler
        if self._loop is None or handler is None:
            return
        try:
            handler(message)
        except Exception:
            _logger.warning("Broadcast handler on %s failed", self.name, exc_info=True)

    async def close(self) -> None:
        peers = _LOCAL_CHANNELS.get(self.name)
        if peers is not None:
            peers.discard(self)
            if not peers:
                _LOCAL_CHANNELS.pop(self.name, None)
        self._loop = None
        self._handler = None
