"""Broadcast channel that reaches mock stores in other processes via MQTT."""

from __future__ import annotations

import asyncio
import json
import logging
import secrets
from collections.abc import Callable, Mapping
from typing import Any

from stallbook._mqtt import MqttBroadcastRuntime, MqttEndpoint
from stallbook.exceptions import BroadcastError
from stallbook.sync.channel import MessageHandler

_logger = logging.getLogger(__name__)

RuntimeFactory = Callable[..., MqttBroadcastRuntime]


class MqttBroadcastChannel:
    """Publish/subscribe on ``{topic_prefix}/{name}``.

    Every message is wrapped in an envelope carrying this channel's random
    origin id so the channel can drop its own echoes from the broker.
    """

    def __init__(
        self,
        name: str,
        *,
        host: str,
        port: int = 1883,
        keepalive: int = 60,
        tls: bool = False,
        topic_prefix: str = "stallbook",
        runtime_factory: RuntimeFactory = MqttBroadcastRuntime,
    ) -> None:
        self.name = name
        self._origin = secrets.token_hex(8)
        self._endpoint = MqttEndpoint(
            host=host,
            port=port,
            topic=f"{topic_prefix.rstrip('/')}/{name}",
            client_id=f"stallbook-{self._origin}",
            tls=tls,
        )
        self._keepalive = keepalive
        self._runtime_factory = runtime_factory
        self._runtime: MqttBroadcastRuntime | None = None
        self._handler: MessageHandler | None = None

    @property
    def topic(self) -> str:
        return self._endpoint.topic

    async def open(self) -> None:
        loop = asyncio.get_running_loop()
        runtime = self._runtime_factory(
            loop=loop,
            on_payload=self._handle_payload,
            keepalive=self._keepalive,
            logger=_logger,
        )
        await loop.run_in_executor(None, runtime.start, self._endpoint)
        self._runtime = runtime

    def listen(self, handler: MessageHandler) -> None:
        self._handler = handler

    def post(self, message: Mapping[str, Any]) -> None:
        runtime = self._runtime
        if runtime is None:
            raise BroadcastError(f"Channel {self.name} is not open")
        try:
            envelope = json.dumps({"origin": self._origin, "message": message}, separators=(",", ":"))
        except (TypeError, ValueError) as exc:
            raise BroadcastError(f"Message is not JSON-serializable: {exc}") from exc
        runtime.publish(envelope.encode("utf-8"))

    def _handle_payload(self, payload: bytes) -> None:
        try:
            envelope = json.loads(payload.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            _logger.debug("Dropping undecodable MQTT payload on %s", self.topic, exc_info=True)
            return
        if not isinstance(envelope, dict) or envelope.get("origin") == self._origin:
            return
        message = envelope.get("message")
        handler = self._handler
        if not isinstance(message, dict) or handler is None:
            return
        try:
            handler(message)
        except Exception:
            _logger.warning("Broadcast handler on %s failed", self.name, exc_info=True)

    async def close(self) -> None:
        runtime = self._runtime
        self._runtime = None
        self._handler = None
        if runtime is None:
            return
        await asyncio.get_running_loop().run_in_executor(None, runtime.stop)
