"""Cross-instance propagation for mock stores.

A store publishes its full booking map after every commit; peers merge
what they receive.  Any transport satisfying ``BroadcastChannel`` works.
"""

from stallbook.sync.channel import BroadcastChannel, LocalBroadcastChannel
from stallbook.sync.messages import SyncMessage, SyncMessageType
from stallbook.sync.mqtt import MqttBroadcastChannel

__all__ = [
    "BroadcastChannel",
    "LocalBroadcastChannel",
    "MqttBroadcastChannel",
    "SyncMessage",
    "SyncMessageType",
]
