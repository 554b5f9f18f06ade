"""
Stream gateway connection manager.

Registers a connection over HTTP to get a one-time endpoint and ticket, then
keeps a WebSocket open against it. Every inbound envelope is acked before it
is routed; SYSTEM envelopes are handled here, CALLBACK envelopes go to the
handler for their exact topic, EVENT envelopes to the ``"*"`` handler.
Dropped sockets are reconnected with exponential backoff until the attempt
budget runs out.
"""

import asyncio
import contextlib
import inspect
import json
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union

import httpx
from websockets.asyncio.client import connect as _ws_connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from dingtalk_bridge.auth import Credentials
from dingtalk_bridge.config import ReconnectPolicy
from dingtalk_bridge.errors import ApiError, ConnectTimeoutError, SocketError
from dingtalk_bridge.models.envelope import (
    BOT_MESSAGE_TOPIC,
    EVENT_TOPIC_WILDCARD,
    EnvelopeType,
    StreamEnvelope,
    SystemTopic,
)
from dingtalk_bridge.transport.envelope import build_ack, parse_envelope
from dingtalk_bridge.transport.http import HttpClient

logger = logging.getLogger(__name__)

DEFAULT_UA = "dingtalk-stream-bridge/0.1.0"
DEFAULT_SUBSCRIPTIONS = [
    {"topic": EVENT_TOPIC_WILDCARD, "type": EnvelopeType.EVENT.value},
    {"topic": BOT_MESSAGE_TOPIC, "type": EnvelopeType.CALLBACK.value},
]

EnvelopeHandler = Callable[[StreamEnvelope], Union[None, Awaitable[None]]]


async def websockets_connect(url: str, **kwargs: Any) -> Any:
    """Connect wrapper for testability."""
    return await _ws_connect(url, **kwargs)


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSED = "closed"


class StreamClient:
    def __init__(
        self,
        http: HttpClient,
        credentials: Credentials,
        reconnect: Optional[ReconnectPolicy] = None,
        connect_timeout: float = 30.0,
        disconnect_delay: float = 10.0,
        subscriptions: Optional[list[dict[str, str]]] = None,
        ua: str = DEFAULT_UA,
    ):
        self._http = http
        self._credentials = credentials
        self._policy = reconnect or ReconnectPolicy()
        self._connect_timeout = connect_timeout
        self._disconnect_delay = disconnect_delay
        self._subscriptions = subscriptions or DEFAULT_SUBSCRIPTIONS
        self._ua = ua

        self._ws: Any = None
        self._state = ConnectionState.DISCONNECTED
        self._handlers: dict[str, EnvelopeHandler] = {}
        self._reader_task: Optional[asyncio.Task[None]] = None
        self._reconnect_task: Optional[asyncio.Task[None]] = None
        self._attempts = 0
        self._closing = False
        self._closed = asyncio.Event()

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED and self._ws is not None

    @property
    def reconnect_attempts(self) -> int:
        return self._attempts

    def on_message(self, topic: str, handler: EnvelopeHandler) -> None:
        """Register the handler for a topic, replacing any previous one."""
        self._handlers[topic] = handler

    async def connect(self) -> None:
        """Register, open the socket and start reading. Raises SocketError / ConnectTimeoutError."""
        if self.connected:
            return
        self._closing = False
        self._closed.clear()
        await self._open()

    async def wait_closed(self) -> None:
        """Wait until the client is closed, explicitly or after giving up on reconnects."""
        await self._closed.wait()

    async def disconnect(self) -> None:
        """Close the socket, drop handlers and cancel pending reconnects. Idempotent."""
        self._closing = True
        self._handlers.clear()

        current = asyncio.current_task()
        reconnect_task, self._reconnect_task = self._reconnect_task, None
        if reconnect_task is not None and reconnect_task is not current and not reconnect_task.done():
            reconnect_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reconnect_task

        await self._close_socket()

        reader_task, self._reader_task = self._reader_task, None
        if reader_task is not None and reader_task is not current and not reader_task.done():
            reader_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reader_task

        if self._state != ConnectionState.CLOSED:
            logger.info("Stream client disconnected")
        self._state = ConnectionState.CLOSED
        self._closed.set()

    async def _open(self) -> None:
        self._state = ConnectionState.CONNECTING
        try:
            registration = await self._http.register_connection(
                self._credentials.app_key,
                self._credentials.app_secret,
                self._subscriptions,
                self._ua,
            )
        except (ApiError, httpx.HTTPError, KeyError, TypeError) as e:
            self._state = ConnectionState.DISCONNECTED
            raise SocketError(f"Failed to register stream connection: {e}")

        endpoint = registration["endpoint"]
        logger.info("Connecting to stream endpoint %s", endpoint)
        try:
            ws = await asyncio.wait_for(
                websockets_connect(f"{endpoint}?ticket={registration['ticket']}", open_timeout=None),
                timeout=self._connect_timeout,
            )
        except asyncio.TimeoutError:
            self._state = ConnectionState.DISCONNECTED
            raise ConnectTimeoutError(f"WebSocket did not open within {self._connect_timeout}s")
        except (OSError, WebSocketException) as e:
            self._state = ConnectionState.DISCONNECTED
            raise SocketError(f"WebSocket connection failed: {e}")

        if self._closing:
            await ws.close()
            return

        self._ws = ws
        self._state = ConnectionState.CONNECTED
        self._attempts = 0
        self._reader_task = asyncio.create_task(self._read_loop(ws))
        logger.info("Stream WebSocket connected")

    async def _close_socket(self) -> None:
        ws, self._ws = self._ws, None
        if ws is None:
            return
        try:
            await ws.close()
        except (OSError, WebSocketException):
            logger.debug("Error closing stream socket", exc_info=True)

    async def _read_loop(self, ws: Any) -> None:
        try:
            async for raw in ws:
                await self._handle_frame(ws, raw)
        except ConnectionClosed as e:
            logger.warning("Stream socket closed: %s", e)
        except (OSError, WebSocketException):
            logger.exception("Stream socket failed")

        if self._ws is not ws:
            # Closed on purpose: disconnect() or a server disconnect directive
            return
        self._ws = None
        if self._closing:
            return
        logger.warning("Stream WebSocket closed")
        self._state = ConnectionState.DISCONNECTED
        self._schedule_reconnect()

    async def _handle_frame(self, ws: Any, raw: Union[str, bytes]) -> None:
        envelope = parse_envelope(raw)
        if envelope is None:
            logger.warning("Dropping unparsable stream frame")
            return

        logger.debug("Received %s frame: %s", envelope.type.value, envelope.topic)
        await self._send_ack(ws, envelope)

        if envelope.type == EnvelopeType.SYSTEM:
            self._handle_system(envelope)
            return

        topic = envelope.topic if envelope.type == EnvelopeType.CALLBACK else EVENT_TOPIC_WILDCARD
        handler = self._handlers.get(topic)
        if handler is None:
            logger.debug("No handler registered for %s", topic)
            return
        try:
            result = handler(envelope)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Handler for %s failed", topic)

    async def _send_ack(self, ws: Any, envelope: StreamEnvelope) -> None:
        try:
            await ws.send(json.dumps(build_ack(envelope)))
        except (OSError, WebSocketException) as e:
            logger.warning("Failed to ack %s: %s", envelope.message_id, e)

    def _handle_system(self, envelope: StreamEnvelope) -> None:
        if envelope.topic == SystemTopic.PING:
            logger.debug("Received ping")
        elif envelope.topic == SystemTopic.DISCONNECT:
            logger.warning("Received disconnect, reconnecting in %ss", self._disconnect_delay)
            self._schedule_reconnect(initial_delay=self._disconnect_delay)
        else:
            logger.debug("Ignoring system topic %s", envelope.topic)

    def _schedule_reconnect(self, initial_delay: Optional[float] = None) -> None:
        if self._closing:
            return
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        self._reconnect_task = asyncio.create_task(self._reconnect_loop(initial_delay))

    async def _reconnect_loop(self, initial_delay: Optional[float]) -> None:
        if initial_delay is not None:
            await asyncio.sleep(initial_delay)
            await self._close_socket()
            self._state = ConnectionState.DISCONNECTED

        while not self._closing:
            if self._attempts >= self._policy.max_attempts:
                logger.error(
                    "Max reconnection attempts (%d) reached, stream bridge is inactive",
                    self._policy.max_attempts,
                )
                self._state = ConnectionState.CLOSED
                self._closed.set()
                return
            self._attempts += 1
            delay = self._policy.delay(self._attempts)
            logger.info("Reconnecting in %.1fs (attempt %d)", delay, self._attempts)
            await asyncio.sleep(delay)
            if self._closing:
                return
            try:
                await self._open()
                return
            except SocketError as e:
                logger.error("Reconnection failed: %s", e)
