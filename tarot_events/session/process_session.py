"""Session layer: one consumer per (userId, processId) wiring registry, transport and replay."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from tarot_events.events.dispatcher import EventHandlerRegistry, EventHandlers, ProcessResult
from tarot_events.events.replay_buffer import ReplayBuffer
from tarot_events.infra.observability.logger import get_logger
from tarot_events.protocol.events import BaseEvent, is_terminal_event
from tarot_events.transport.stomp_client import (
    ConnectFactory,
    ConnectionKey,
    ConnectionState,
    LiveConnectionRegistry,
    StompConfig,
    StompEventClient,
)

logger = get_logger(__name__)

UNKNOWN_EVENT_NAME = "event.unknown"


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


class ProcessSession:
    """Relay accepted events into the replay buffer until a terminal event arrives.

    After the reading or a `process.ended` with a final status the session
    latches and ignores any late frame for the rest of its life.
    """

    def __init__(
        self,
        *,
        user_id: str,
        process_id: str,
        replay_buffer: ReplayBuffer,
        stomp_config: StompConfig,
        live_pairs: LiveConnectionRegistry,
        connect_factory: ConnectFactory | None = None,
        log_events: bool = False,
    ) -> None:
        self.user_id = user_id
        self.process_id = process_id
        self.created_at = _utc_now_iso()
        self._replay_buffer = replay_buffer
        self._log_events = log_events
        self._ignore_events = False
        self._events_relayed = 0
        self.registry = EventHandlerRegistry()
        self.registry.rebuild(
            EventHandlers(
                on_divination_requested=self._relay,
                on_process_started=self._relay,
                on_process_ended=self._relay,
                on_divination_generation=self._relay,
                on_incorrect_blik_code=self._relay,
                on_payment_completed=self._relay,
                on_business_error=self._relay,
                on_technical_error=self._relay,
                on_unknown_event=self._relay_unknown,
            )
        )
        self.client = StompEventClient(
            user_id=user_id,
            process_id=process_id,
            sink=self,
            config=stomp_config,
            live_pairs=live_pairs,
            connect_factory=connect_factory,
        )

    @property
    def key(self) -> ConnectionKey:
        return (self.user_id, self.process_id)

    @property
    def state(self) -> ConnectionState:
        return self.client.state

    @property
    def ignoring_events(self) -> bool:
        return self._ignore_events

    @property
    def events_relayed(self) -> int:
        return self._events_relayed

    async def process(self, raw_event: Any) -> ProcessResult:
        if self._ignore_events:
            logger.debug("session.event_ignored key=%s", self.key)
            return ProcessResult(success=False, error="ignored after terminal event")
        return await self.registry.process(raw_event)

    def _relay(self, event: BaseEvent) -> None:
        terminal = is_terminal_event(event)
        self._record(event.event_type, event.to_wire(), terminal=terminal)
        if terminal:
            self._ignore_events = True
            logger.info("session.terminal_event key=%s type=%s", self.key, event.event_type)

    def _relay_unknown(self, raw_event: Any) -> None:
        logger.warning("session.unknown_event key=%s raw=%s", self.key, raw_event)
        self._record(UNKNOWN_EVENT_NAME, {"raw": raw_event})

    def _record(self, event_name: str, data: dict[str, Any], *, terminal: bool = False) -> None:
        self._replay_buffer.append(
            user_id=self.user_id,
            process_id=self.process_id,
            event_name=event_name,
            data=data,
            terminal=terminal,
        )
        self._events_relayed += 1
        if self._log_events:
            logger.info("session.event key=%s type=%s", self.key, event_name)


class ProcessSessionManager:
    """Own every relay session and the live-pair guard they share."""

    def __init__(
        self,
        *,
        replay_buffer: ReplayBuffer,
        stomp_config: StompConfig,
        connect_factory: ConnectFactory | None = None,
        log_events: bool = False,
    ) -> None:
        self._replay_buffer = replay_buffer
        self._stomp_config = stomp_config
        self._connect_factory = connect_factory
        self._log_events = log_events
        self._live_pairs = LiveConnectionRegistry()
        self._sessions: dict[ConnectionKey, ProcessSession] = {}

    @property
    def live_pairs(self) -> LiveConnectionRegistry:
        return self._live_pairs

    async def open(self, *, user_id: str, process_id: str) -> tuple[ProcessSession, bool]:
        """Return the session for the pair and whether a new connection was started."""
        key = (user_id, process_id)
        session = self._sessions.get(key)
        if session is None:
            session = ProcessSession(
                user_id=user_id,
                process_id=process_id,
                replay_buffer=self._replay_buffer,
                stomp_config=self._stomp_config,
                live_pairs=self._live_pairs,
                connect_factory=self._connect_factory,
                log_events=self._log_events,
            )
            self._sessions[key] = session
        opened = await session.client.connect()
        return session, opened

    def get(self, *, user_id: str, process_id: str) -> ProcessSession | None:
        return self._sessions.get((user_id, process_id))

    def list_sessions(self) -> list[ProcessSession]:
        return sorted(self._sessions.values(), key=lambda item: item.created_at, reverse=True)

    async def close(self, *, user_id: str, process_id: str) -> bool:
        """Disconnect and forget one session; return True when it existed."""
        session = self._sessions.pop((user_id, process_id), None)
        if session is None:
            return False
        await session.client.disconnect()
        return True

    async def close_all(self) -> None:
        for key in list(self._sessions):
            await self.close(user_id=key[0], process_id=key[1])
