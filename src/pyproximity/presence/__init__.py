"""Presence feed adapters.

Everything in this package produces :class:`~pyproximity.models.PresenceUpdate`
snapshots for a counterpart; none of it decides whether the counterpart is
online.
"""

from pyproximity.presence.mqtt import MqttPresenceTracker, decode_presence_message, presence_topic
from pyproximity.presence.tracker import InMemoryPresenceTracker, PresenceTracker
from pyproximity.presence.websocket import WebSocketPresenceTracker

__all__ = [
    "InMemoryPresenceTracker",
    "MqttPresenceTracker",
    "PresenceTracker",
    "WebSocketPresenceTracker",
    "decode_presence_message",
    "presence_topic",
]
