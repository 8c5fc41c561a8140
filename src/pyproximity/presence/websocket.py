"""WebSocket presence feed over aiohttp.

The presence service streams one JSON document per change on
``{base_url}/presence/{user_id}``; the first message is the current
document.  Dropped connections are retried with exponential backoff.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncGenerator, Awaitable, Callable, Mapping
from typing import Any

import aiohttp

from pyproximity._redact import redact_for_log
from pyproximity.config import ProximityConfig
from pyproximity.exceptions import ProximityError, SubscriptionFailureError
from pyproximity.models.presence import PresenceUpdate, parse_presence_payload
from pyproximity.presence._retry import backoff_delay

_logger = logging.getLogger(__name__)


class WebSocketPresenceTracker:
    """aiohttp WebSocket client for a presence service.

    Usage::

        async with WebSocketPresenceTracker("wss://presence.example.com") as presence:
            async for update in presence.subscribe("user-42"):
                ...

    A caller-provided ``aiohttp.ClientSession`` is used as-is and never
    closed by the tracker.
    """

    def __init__(
        self,
        base_url: str,
        *,
        config: ProximityConfig | None = None,
        session: aiohttp.ClientSession | None = None,
        headers: Mapping[str, str] | None = None,
        heartbeat_s: float = 30.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._config = config or ProximityConfig()
        self._external_session = session is not None
        self._http_session = session
        self._headers = dict(headers or {})
        self._heartbeat_s = heartbeat_s
        self._sleep = sleep

    async def __aenter__(self) -> WebSocketPresenceTracker:
        if self._http_session is None:
            self._http_session = aiohttp.ClientSession()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None

    def url_for(self, user_id: str) -> str:
        return f"{self._base_url}/presence/{user_id}"

    def _require_session(self) -> aiohttp.ClientSession:
        if self._http_session is None:
            raise ProximityError("Tracker not initialized. Use 'async with WebSocketPresenceTracker(...)'")
        return self._http_session

    def _decode(self, user_id: str, text: str) -> PresenceUpdate | None:
        try:
            payload = json.loads(text)
        except json.JSONDecodeError:
            _logger.debug("Ignoring non-JSON presence message for user=%s", user_id)
            return None
        _logger.debug("Presence message user=%s payload=%s", user_id, redact_for_log(payload))
        return parse_presence_payload(payload, user_id=user_id)

    async def subscribe(self, user_id: str) -> AsyncGenerator[PresenceUpdate, None]:
        session = self._require_session()
        url = self.url_for(user_id)
        failures = 0

        while True:
            try:
                async with session.ws_connect(url, headers=self._headers, heartbeat=self._heartbeat_s) as ws:
                    _logger.debug("Presence WebSocket connected user=%s", user_id)
                    async for msg in ws:
                        if msg.type == aiohttp.WSMsgType.TEXT:
                            # A connection only counts as healthy once it delivers data.
                            failures = 0
                            update = self._decode(user_id, msg.data)
                            if update is not None:
                                yield update
                        elif msg.type == aiohttp.WSMsgType.ERROR:
                            raise SubscriptionFailureError(
                                f"WebSocket error for {user_id}: {ws.exception()}",
                                user_id=user_id,
                            )
                    raise SubscriptionFailureError(
                        f"Presence WebSocket closed for {user_id} (code={ws.close_code})",
                        user_id=user_id,
                    )
            except (aiohttp.ClientError, SubscriptionFailureError, TimeoutError) as exc:
                failures += 1
                if failures > self._config.presence_max_retries:
                    _logger.warning("Presence feed for user=%s failed after %d attempt(s)", user_id, failures)
                    raise SubscriptionFailureError(
                        f"Presence feed for {user_id} failed: {exc}",
                        user_id=user_id,
                        attempts=failures,
                    ) from exc
                delay = backoff_delay(
                    failures,
                    initial_s=self._config.presence_retry_initial_s,
                    max_s=self._config.presence_retry_max_s,
                )
                _logger.warning(
                    "Presence feed for user=%s interrupted (%s); retry %d in %.1fs",
                    user_id,
                    exc,
                    failures,
                    delay,
                )
                await self._sleep(delay)
