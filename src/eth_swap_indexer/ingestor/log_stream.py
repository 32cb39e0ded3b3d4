"""``eth_subscribe`` logs stream over WebSocket.

Subscribes to Uniswap V2/V3 ``Swap`` topics and forwards each log to a
callback. The connection is re-established with exponential backoff on
errors, and forcibly recycled when no message arrives within the idle
timeout (some providers silently stop pushing on long-lived sockets).
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

import websockets
from websockets.asyncio.client import ClientConnection, connect

from .decoder import SWAP_TOPICS
from .models import RawSwapLog

logger = logging.getLogger(__name__)

DEFAULT_PING_INTERVAL = 20  # seconds
DEFAULT_IDLE_RECONNECT_SECONDS = 15.0
DEFAULT_MAX_RECONNECT_DELAY = 30  # seconds
DEFAULT_INITIAL_RECONNECT_DELAY = 1  # seconds
SUBSCRIBE_REQUEST_ID = 1


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


@dataclass
class StreamStats:
    logs_received: int = 0
    reconnect_count: int = 0
    idle_reconnects: int = 0
    last_message_time: float | None = None
    connected_since: float | None = None
    last_error: str | None = None
    subscription_id: str | None = None


class LogStreamError(Exception):
    """Base exception for log stream errors."""


class LogStreamConnectionError(LogStreamError):
    """Raised when connecting or subscribing fails."""


class LogStreamIdleError(LogStreamError):
    """Raised when the stream has been silent longer than the idle timeout."""


LogCallback = Callable[[RawSwapLog], Awaitable[None]]
StateCallback = Callable[[ConnectionState], Awaitable[None]]


def build_subscribe_request(topics: Sequence[str] = SWAP_TOPICS) -> dict[str, Any]:
    return {
        "jsonrpc": "2.0",
        "id": SUBSCRIBE_REQUEST_ID,
        "method": "eth_subscribe",
        "params": ["logs", {"topics": [list(topics)]}],
    }


class LogStreamHandler:
    """WebSocket client delivering swap logs to ``on_log``."""

    def __init__(
        self,
        *,
        ws_url: str,
        on_log: LogCallback,
        on_state_change: StateCallback | None = None,
        topics: Sequence[str] = SWAP_TOPICS,
        idle_reconnect_seconds: float = DEFAULT_IDLE_RECONNECT_SECONDS,
        ping_interval: int = DEFAULT_PING_INTERVAL,
        max_reconnect_delay: int = DEFAULT_MAX_RECONNECT_DELAY,
        initial_reconnect_delay: int = DEFAULT_INITIAL_RECONNECT_DELAY,
    ) -> None:
        self._ws_url = ws_url
        self._on_log = on_log
        self._on_state_change = on_state_change
        self._topics = tuple(topics)
        self._idle_reconnect = idle_reconnect_seconds
        self._ping_interval = ping_interval
        self._max_reconnect_delay = max_reconnect_delay
        self._initial_reconnect_delay = initial_reconnect_delay

        self._state = ConnectionState.DISCONNECTED
        self._stats = StreamStats()

        self._ws: ClientConnection | None = None
        self._running = False
        self._stop_event: asyncio.Event | None = None
        self._last_message_monotonic = 0.0

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def stats(self) -> StreamStats:
        return self._stats

    async def _set_state(self, new_state: ConnectionState) -> None:
        if self._state != new_state:
            old = self._state
            self._state = new_state
            logger.info("Log stream state: %s -> %s", old.value, new_state.value)
            if self._on_state_change:
                try:
                    await self._on_state_change(new_state)
                except Exception as e:  # pragma: no cover
                    logger.error("Error in state change callback: %s", e)

    async def _connect(self) -> ClientConnection:
        await self._set_state(ConnectionState.CONNECTING)
        try:
            ws = await connect(
                self._ws_url,
                ping_interval=self._ping_interval,
                ping_timeout=self._ping_interval * 2,
                max_size=None,
            )
        except (OSError, websockets.WebSocketException, TimeoutError) as e:
            self._stats.last_error = str(e)
            raise LogStreamConnectionError(f"Failed to connect to {self._ws_url}: {e}") from e

        await ws.send(json.dumps(build_subscribe_request(self._topics)))

        await self._set_state(ConnectionState.CONNECTED)
        self._stats.connected_since = time.time()
        self._last_message_monotonic = time.monotonic()
        logger.info("Connected to log stream: %s", self._ws_url)
        return ws

    async def handle_message(self, message: str) -> None:
        """Dispatch one raw WebSocket text frame."""
        try:
            data = json.loads(message)
        except json.JSONDecodeError:
            logger.warning("Invalid JSON message on log stream")
            return

        if data.get("id") == SUBSCRIBE_REQUEST_ID:
            if "error" in data:
                raise LogStreamConnectionError(f"eth_subscribe rejected: {data['error']}")
            self._stats.subscription_id = str(data.get("result"))
            logger.info("Subscribed to swap logs (subscription %s)", self._stats.subscription_id)
            return

        if data.get("method") != "eth_subscription":
            logger.debug("Ignoring log stream message: %s", message[:200])
            return

        payload = (data.get("params") or {}).get("result")
        if not isinstance(payload, dict):
            return
        try:
            log = RawSwapLog.from_rpc_log(payload)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Failed to parse log payload: %s", e)
            return

        self._stats.logs_received += 1
        self._stats.last_message_time = time.time()
        await self._on_log(log)

    async def _listen(self, ws: ClientConnection) -> None:
        try:
            while self._running:
                try:
                    message = await asyncio.wait_for(ws.recv(), timeout=1.0)
                except TimeoutError:
                    message = None

                now = time.monotonic()
                if message is None:
                    if now - self._last_message_monotonic >= self._idle_reconnect:
                        self._stats.idle_reconnects += 1
                        raise LogStreamIdleError(
                            f"No messages for {self._idle_reconnect:.0f}s, reconnecting"
                        )
                    continue

                self._last_message_monotonic = now
                if isinstance(message, bytes):
                    message = message.decode("utf-8", errors="replace")
                await self.handle_message(message)
        except websockets.ConnectionClosed as e:
            logger.warning("Log stream connection closed: %s", e)
            raise

    async def start(self) -> None:
        """Run the connect/listen loop until :meth:`stop` is called."""
        if self._running:
            raise RuntimeError("Log stream already running")
        self._running = True
        self._stop_event = asyncio.Event()

        delay: float = self._initial_reconnect_delay
        while self._running and self._stop_event and not self._stop_event.is_set():
            try:
                self._ws = await self._connect()
                delay = self._initial_reconnect_delay
                await self._listen(self._ws)
            except LogStreamIdleError as e:
                logger.warning("%s", e)
                self._stats.reconnect_count += 1
                await self._set_state(ConnectionState.RECONNECTING)
            except (LogStreamError, websockets.WebSocketException, OSError) as e:
                self._stats.reconnect_count += 1
                self._stats.last_error = str(e)
                logger.warning("Log stream error, reconnecting in %.1fs: %s", delay, e)
                await self._set_state(ConnectionState.RECONNECTING)
                await asyncio.sleep(delay)
                delay = min(self._max_reconnect_delay, delay * 2)
            finally:
                with contextlib.suppress(Exception):
                    if self._ws:
                        await self._ws.close()
                self._ws = None

        await self._set_state(ConnectionState.DISCONNECTED)

    async def stop(self) -> None:
        self._running = False
        if self._stop_event:
            self._stop_event.set()
        if self._ws:
            with contextlib.suppress(Exception):
                await self._ws.close()
