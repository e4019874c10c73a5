"""Transport layer: one STOMP-over-WebSocket subscription per (userId, processId) pair."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from enum import Enum
from functools import partial
from typing import Any, Awaitable, Callable, Protocol
from urllib.parse import urlencode, urlparse
from uuid import uuid4

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from tarot_events.core.config import Settings
from tarot_events.events.dispatcher import ProcessResult
from tarot_events.events.validator import decode_json
from tarot_events.infra.observability.logger import get_logger
from tarot_events.transport.stomp_frames import (
    StompFrame,
    StompProtocolError,
    connect_frame,
    decode_frames,
    disconnect_frame,
    send_frame,
    subscribe_frame,
)

logger = get_logger(__name__)

ConnectionKey = tuple[str, str]
ConnectFactory = Callable[[str], Awaitable[Any]]

_TRANSPORT_ERRORS = (OSError, asyncio.TimeoutError, StompProtocolError, WebSocketException)


class ConnectionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    SUBSCRIBED = "subscribed"
    DISCONNECTED = "disconnected"
    ERRORED = "errored"


_ACTIVE_STATES = {ConnectionState.CONNECTING, ConnectionState.SUBSCRIBED}


class EventSink(Protocol):
    """Anything that accepts decoded frame bodies, usually an EventHandlerRegistry."""

    async def process(self, raw_event: Any) -> ProcessResult: ...


@dataclass(frozen=True)
class StompConfig:
    """Endpoint and destinations used by one client."""

    url: str = "ws://localhost:8083/ws"
    subscribe_destination: str = "/user/topic/messages"
    register_destination: str = "/app/register"
    connect_timeout_seconds: float = 10.0
    host: str | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "StompConfig":
        return cls(
            url=settings.stomp_url,
            subscribe_destination=settings.stomp_subscribe_destination,
            register_destination=settings.stomp_register_destination,
            connect_timeout_seconds=settings.stomp_connect_timeout_seconds,
        )


class LiveConnectionRegistry:
    """Caller-owned set of pairs that currently hold a live connection."""

    def __init__(self) -> None:
        self._live: set[ConnectionKey] = set()

    def claim(self, key: ConnectionKey) -> bool:
        if key in self._live:
            return False
        self._live.add(key)
        return True

    def release(self, key: ConnectionKey) -> None:
        self._live.discard(key)

    def is_live(self, key: ConnectionKey) -> bool:
        return key in self._live

    def __len__(self) -> int:
        return len(self._live)


def _default_connect_factory() -> ConnectFactory:
    return partial(websockets.connect, subprotocols=["v12.stomp", "v11.stomp"])


class StompEventClient:
    """Subscribe to the private message topic and feed inbound events to a sink.

    There is no reconnect: a transport failure leaves the client
    in ERRORED and the owner decides whether to call `connect()` again.
    """

    def __init__(
        self,
        *,
        user_id: str,
        process_id: str,
        sink: EventSink,
        config: StompConfig | None = None,
        live_pairs: LiveConnectionRegistry | None = None,
        connect_factory: ConnectFactory | None = None,
    ) -> None:
        self._user_id = user_id
        self._process_id = process_id
        self._sink = sink
        self._config = config or StompConfig()
        self._live_pairs = live_pairs
        self._connect_factory = connect_factory or _default_connect_factory()
        self._state = ConnectionState.IDLE
        self._ws: Any | None = None
        self._reader: asyncio.Task[None] | None = None
        self._pending: set[asyncio.Task[None]] = set()
        self._closing = False
        self._claimed = False

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def key(self) -> ConnectionKey:
        return (self._user_id, self._process_id)

    @property
    def is_subscribed(self) -> bool:
        return self._state is ConnectionState.SUBSCRIBED

    async def __aenter__(self) -> "StompEventClient":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.disconnect()

    async def connect(self) -> bool:
        """Open, handshake, subscribe and register; returns False when skipped or failed."""
        if not self._user_id or not self._process_id:
            logger.warning(
                "stomp.connect_skipped reason=missing_ids user_id=%r process_id=%r",
                self._user_id,
                self._process_id,
            )
            return False
        if self._state in _ACTIVE_STATES:
            logger.info("stomp.connect_skipped reason=already_active key=%s state=%s", self.key, self._state.value)
            return False
        if self._live_pairs is not None:
            if not self._live_pairs.claim(self.key):
                logger.info("stomp.connect_skipped reason=pair_live key=%s", self.key)
                return False
            self._claimed = True

        self._state = ConnectionState.CONNECTING
        self._closing = False
        timeout = self._config.connect_timeout_seconds
        try:
            ws = await asyncio.wait_for(self._connect_factory(self._build_url()), timeout)
            self._ws = ws
            await ws.send(connect_frame(self._host()).encode())
            reply = await asyncio.wait_for(ws.recv(), timeout)
            self._expect_connected(reply)
            await ws.send(subscribe_frame("sub-0", self._config.subscribe_destination).encode())
            await ws.send(
                send_frame(
                    self._config.register_destination,
                    json.dumps({}),
                    self._correlation_headers(),
                ).encode()
            )
        except _TRANSPORT_ERRORS as exc:
            await self._fail(f"handshake failed: {str(exc) or type(exc).__name__}")
            return False
        except BaseException:
            # Cancelled mid-handshake: give back the socket and the pair before unwinding.
            logger.info("stomp.connect_aborted key=%s", self.key)
            await self._close_socket()
            self._finish(ConnectionState.DISCONNECTED)
            raise

        if self._closing:
            await self._close_socket()
            self._finish(ConnectionState.DISCONNECTED)
            return False

        self._state = ConnectionState.SUBSCRIBED
        self._reader = asyncio.create_task(self._read_loop(ws))
        logger.info(
            "stomp.subscribed key=%s destination=%s",
            self.key,
            self._config.subscribe_destination,
        )
        return True

    async def send(self, destination: str, payload: Any) -> bool:
        """Best-effort publish; dropped with a warning unless subscribed."""
        ws = self._ws
        if self._state is not ConnectionState.SUBSCRIBED or ws is None:
            logger.warning(
                "stomp.send_dropped reason=not_connected destination=%s state=%s",
                destination,
                self._state.value,
            )
            return False
        frame = send_frame(
            destination,
            json.dumps(payload, ensure_ascii=False),
            self._correlation_headers(),
        )
        try:
            await ws.send(frame.encode())
        except (ConnectionClosed, OSError) as exc:
            logger.warning("stomp.send_dropped reason=closed destination=%s error=%s", destination, exc)
            return False
        return True

    async def disconnect(self) -> None:
        """Graceful teardown; a no-op when nothing is active."""
        if self._state not in _ACTIVE_STATES:
            logger.debug("stomp.disconnect_skipped key=%s state=%s", self.key, self._state.value)
            return
        self._closing = True
        if self._state is ConnectionState.CONNECTING:
            # connect() finishes the teardown once its pending await returns.
            await self._close_socket()
            return

        ws = self._ws
        if ws is not None:
            try:
                await ws.send(disconnect_frame(f"disconnect-{uuid4().hex[:8]}").encode())
            except (WebSocketException, OSError) as exc:
                logger.debug("stomp.disconnect_frame_failed key=%s error=%s", self.key, exc)
        await self._close_socket()

        reader = self._reader
        self._reader = None
        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()
            await asyncio.gather(reader, return_exceptions=True)
        await self.drain()
        self._finish(ConnectionState.DISCONNECTED)
        logger.info("stomp.disconnected key=%s", self.key)

    async def rebind(self, *, user_id: str, process_id: str) -> bool:
        """Tear down the current pair and connect with a new one."""
        await self.disconnect()
        self._user_id = user_id
        self._process_id = process_id
        self._state = ConnectionState.IDLE
        return await self.connect()

    async def drain(self) -> None:
        """Wait for dispatches already handed to the sink."""
        current = asyncio.current_task()
        pending = [task for task in self._pending if task is not current]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def _read_loop(self, ws: Any) -> None:
        try:
            async for message in ws:
                if not self._handle_message(message):
                    await self._fail("server sent an ERROR frame")
                    return
        except ConnectionClosed as exc:
            if not self._closing:
                await self._fail(f"connection closed: {exc}")
            return
        if not self._closing:
            await self._fail("connection closed by peer")

    def _handle_message(self, message: str | bytes) -> bool:
        try:
            frames = decode_frames(message)
        except (StompProtocolError, UnicodeDecodeError) as exc:
            logger.warning("stomp.frame_dropped key=%s reason=%s", self.key, exc)
            return True
        for frame in frames:
            if frame.command == "MESSAGE":
                self._schedule_dispatch(frame)
            elif frame.command == "ERROR":
                logger.error(
                    "stomp.error_frame key=%s message=%s body=%s",
                    self.key,
                    frame.headers.get("message", ""),
                    frame.body,
                )
                return False
            else:
                logger.debug("stomp.frame_ignored key=%s command=%s", self.key, frame.command)
        return True

    def _schedule_dispatch(self, frame: StompFrame) -> None:
        # Tasks start in delivery order; completion order follows the handlers.
        task = asyncio.create_task(self._dispatch(frame.body))
        self._pending.add(task)
        task.add_done_callback(self._dispatch_done)

    def _dispatch_done(self, task: asyncio.Task[None]) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("stomp.dispatch_failed key=%s error=%s", self.key, exc, exc_info=exc)

    async def _dispatch(self, body: str) -> None:
        raw_event, failure = decode_json(body)
        if failure is not None:
            logger.warning("stomp.frame_dropped key=%s reason=%s", self.key, failure.error)
            return
        result = await self._sink.process(raw_event)
        if not result.success:
            logger.info(
                "stomp.event_not_processed key=%s kind=%s error=%s",
                self.key,
                result.kind,
                result.error,
            )

    def _expect_connected(self, reply: str | bytes) -> None:
        frames = decode_frames(reply)
        if not frames:
            raise StompProtocolError("empty reply to CONNECT")
        frame = frames[0]
        if frame.command == "ERROR":
            raise StompProtocolError(frame.headers.get("message") or frame.body or "broker refused CONNECT")
        if frame.command != "CONNECTED":
            raise StompProtocolError(f"unexpected reply to CONNECT: {frame.command}")

    async def _fail(self, reason: str) -> None:
        closing = self._closing
        await self._close_socket()
        if closing:
            self._finish(ConnectionState.DISCONNECTED)
            return
        self._finish(ConnectionState.ERRORED)
        logger.error("stomp.errored key=%s reason=%s", self.key, reason)

    async def _close_socket(self) -> None:
        ws = self._ws
        self._ws = None
        if ws is None:
            return
        try:
            await ws.close()
        except (WebSocketException, OSError) as exc:
            logger.debug("stomp.close_failed key=%s error=%s", self.key, exc)

    def _finish(self, state: ConnectionState) -> None:
        self._state = state
        if self._claimed and self._live_pairs is not None:
            self._live_pairs.release(self.key)
        self._claimed = False

    def _correlation_headers(self) -> dict[str, str]:
        return {"userId": self._user_id, "processId": self._process_id}

    def _build_url(self) -> str:
        query = urlencode({"userId": self._user_id, "processId": self._process_id})
        separator = "&" if "?" in self._config.url else "?"
        return f"{self._config.url}{separator}{query}"

    def _host(self) -> str:
        return self._config.host or urlparse(self._config.url).hostname or "localhost"
