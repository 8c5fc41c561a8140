"""MQTT presence feed.

Counterpart presence documents are published as JSON on
``{topic_prefix}/{user_id}``.  A threaded paho-mqtt client receives them
and hands parsed snapshots to the asyncio loop.
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
from collections.abc import AsyncGenerator
from typing import Any, cast

import paho.mqtt.client as mqtt

from pyproximity._constants import DEFAULT_PRESENCE_TOPIC_PREFIX
from pyproximity._redact import redact_for_log
from pyproximity.config import ProximityConfig
from pyproximity.exceptions import ProximityError, SubscriptionFailureError
from pyproximity.models.presence import PresenceUpdate, parse_presence_payload


def presence_topic(topic_prefix: str, user_id: str) -> str:
    return f"{topic_prefix.rstrip('/')}/{user_id}"


def decode_presence_message(topic: str, payload: bytes, *, topic_prefix: str) -> PresenceUpdate | None:
    """Decode one MQTT message into a snapshot.

    Returns ``None`` for topics outside *topic_prefix* or payloads that are
    not JSON.  An empty payload (retained message cleared) yields an empty
    snapshot: the counterpart is no longer known.
    """
    prefix = topic_prefix.rstrip("/") + "/"
    if not topic.startswith(prefix):
        return None
    user_id = topic[len(prefix) :]
    if not user_id or "/" in user_id:
        return None

    text = payload.decode("utf-8", errors="replace").strip()
    if not text:
        return PresenceUpdate(user_id=user_id)
    try:
        parsed: Any = json.loads(text)
    except json.JSONDecodeError:
        return None
    return parse_presence_payload(parsed, user_id=user_id)


class MqttPresenceTracker:
    """paho-mqtt presence feed that emits snapshots onto an asyncio loop.

    Usage::

        async with MqttPresenceTracker("broker.example.com") as presence:
            async for update in presence.subscribe("user-42"):
                ...

    Reconnects are handled by paho's network loop using the backoff bounds
    from :class:`~pyproximity.config.ProximityConfig`.
    """

    def __init__(
        self,
        host: str,
        port: int = 8883,
        *,
        config: ProximityConfig | None = None,
        topic_prefix: str = DEFAULT_PRESENCE_TOPIC_PREFIX,
        client_id: str = "",
        username: str | None = None,
        password: str | None = None,
        use_tls: bool = True,
        keepalive: int = 60,
        max_queue: int = 16,
        logger: logging.Logger | None = None,
    ) -> None:
        self._host = host
        self._port = port
        self._config = config or ProximityConfig()
        self._topic_prefix = topic_prefix
        self._client_id = client_id
        self._username = username
        self._password = password
        self._use_tls = use_tls
        self._keepalive = keepalive
        self._max_queue = max(1, max_queue)
        self._logger = logger or logging.getLogger(__name__)

        self._loop: asyncio.AbstractEventLoop | None = None
        self._client: mqtt.Client | None = None
        self._running = False
        # Guarded by _topics_lock: read from the paho network thread on (re)connect.
        self._topics: dict[str, int] = {}
        self._topics_lock = threading.Lock()
        self._subscribers: dict[str, set[asyncio.Queue[PresenceUpdate | BaseException]]] = {}

    @property
    def is_running(self) -> bool:
        """Whether the MQTT network loop is running."""
        return self._running

    async def __aenter__(self) -> MqttPresenceTracker:
        self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        self.stop()

    # ------------------------------------------------------------------
    # Runtime
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Connect (asynchronously, with automatic reconnects) and start the network loop."""
        self.stop()
        self._loop = asyncio.get_running_loop()
        self._logger.debug(
            "MQTT presence start requested host=%s port=%s prefix=%s",
            self._host,
            self._port,
            self._topic_prefix,
        )

        client = mqtt.Client(
            callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
            client_id=self._client_id,
            protocol=mqtt.MQTTv311,
        )
        client.enable_logger(self._logger)
        if self._username is not None:
            client.username_pw_set(self._username, self._password)
        if self._use_tls:
            client.tls_set()
        client.reconnect_delay_set(
            min_delay=max(1, int(self._config.presence_retry_initial_s)),
            max_delay=max(1, int(self._config.presence_retry_max_s)),
        )

        client.on_connect = self._on_connect
        client.on_message = self._on_message
        client.on_disconnect = self._on_disconnect

        try:
            client.connect_async(self._host, self._port, keepalive=self._keepalive)
        except (OSError, ValueError) as exc:
            raise SubscriptionFailureError(f"MQTT connect to {self._host}:{self._port} failed: {exc}") from exc
        client.loop_start()

        self._client = client
        self._running = True
        self._logger.debug("MQTT presence network loop started")

    def stop(self) -> None:
        """Stop the network loop and fail every open subscription."""
        client = self._client
        self._client = None
        was_running = self._running
        self._running = False

        for user_id, queues in list(self._subscribers.items()):
            for queue in queues:
                self._offer(queue, SubscriptionFailureError("MQTT presence feed stopped", user_id=user_id))

        if client is None:
            return
        try:
            if was_running:
                self._logger.debug("MQTT disconnect requested")
                client.disconnect()
        finally:
            client.loop_stop()
            self._logger.debug("MQTT presence network loop stopped")

    # ------------------------------------------------------------------
    # paho callbacks (network thread)
    # ------------------------------------------------------------------

    def _on_connect(self, c: mqtt.Client, _userdata: Any, _flags: Any, reason_code: Any, _properties: Any) -> None:
        if reason_code.value != 0:
            self._logger.warning("MQTT presence connect failed: %s", reason_code)
            return
        with self._topics_lock:
            topics = list(self._topics)
        self._logger.debug("MQTT presence connected, resubscribing %d topic(s)", len(topics))
        for topic in topics:
            c.subscribe(topic, qos=1)

    def _on_message(self, _c: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
        update = decode_presence_message(msg.topic, msg.payload, topic_prefix=self._topic_prefix)
        if update is None:
            self._logger.debug("Ignoring presence message topic=%s", msg.topic)
            return
        self._logger.debug("Presence message topic=%s update=%s", msg.topic, redact_for_log(update.model_dump()))
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._dispatch, update)

    def _on_disconnect(
        self,
        _client: mqtt.Client,
        _userdata: Any,
        _disconnect_flags: Any,
        reason_code: Any,
        _properties: Any,
    ) -> None:
        if self._running:
            self._logger.warning("MQTT presence disconnected (%s); paho will reconnect", reason_code)

    # ------------------------------------------------------------------
    # Subscriptions (event loop thread)
    # ------------------------------------------------------------------

    def _offer(self, queue: asyncio.Queue[PresenceUpdate | BaseException], item: PresenceUpdate | BaseException) -> None:
        if queue.full():
            try:
                queue.get_nowait()
            except asyncio.QueueEmpty:
                pass
        queue.put_nowait(item)

    def _dispatch(self, update: PresenceUpdate) -> None:
        for queue in self._subscribers.get(update.user_id, ()):
            self._offer(queue, update)

    def _add_topic(self, topic: str) -> None:
        with self._topics_lock:
            count = self._topics.get(topic, 0)
            self._topics[topic] = count + 1
        if count == 0 and self._client is not None:
            self._client.subscribe(topic, qos=1)

    def _remove_topic(self, topic: str) -> None:
        with self._topics_lock:
            count = self._topics.get(topic, 0) - 1
            if count > 0:
                self._topics[topic] = count
                return
            self._topics.pop(topic, None)
        if self._client is not None:
            self._client.unsubscribe(topic)

    async def subscribe(self, user_id: str) -> AsyncGenerator[PresenceUpdate, None]:
        if not self._running:
            raise ProximityError("MQTT presence tracker not started. Use 'async with MqttPresenceTracker(...)'")

        topic = presence_topic(self._topic_prefix, user_id)
        queue: asyncio.Queue[PresenceUpdate | BaseException] = asyncio.Queue(maxsize=self._max_queue)
        self._subscribers.setdefault(user_id, set()).add(queue)
        self._add_topic(topic)
        try:
            while True:
                item = await queue.get()
                if isinstance(item, BaseException):
                    raise item
                yield item
        finally:
            subscribers = self._subscribers.get(user_id)
            if subscribers is not None:
                subscribers.discard(queue)
                if not subscribers:
                    del self._subscribers[user_id]
            self._remove_topic(topic)
