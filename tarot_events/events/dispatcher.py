"""Event layer: handler registry that routes validated events to caller callbacks."""

from __future__ import annotations

import inspect
from dataclasses import dataclass, fields
from typing import Any, Awaitable, Callable, Literal

from tarot_events.events.validator import (
    EventValidator,
    ParseErrorKind,
    decode_json,
    extract_event_type,
)
from tarot_events.infra.observability.logger import get_logger

logger = get_logger(__name__)

EventHandler = Callable[[Any], Awaitable[None] | None]
UnknownEventHandler = Callable[[Any], Awaitable[None] | None]

ProcessErrorKind = ParseErrorKind | Literal["dispatch_error", "unhandled_event"]


class UnsupportedEventTypeError(ValueError):
    """Raised when a handler is registered for a tag the validator does not know."""


@dataclass(frozen=True)
class ProcessResult:
    """Uniform outcome of one `process` call; failures never raise."""

    success: bool
    error: str | None = None
    kind: ProcessErrorKind | None = None
    event_type: str | None = None


@dataclass
class EventHandlers:
    """Handler set supplied by one consumer; unset callbacks are simply not registered."""

    on_divination_requested: EventHandler | None = None
    on_process_started: EventHandler | None = None
    on_process_ended: EventHandler | None = None
    on_divination_generation: EventHandler | None = None
    on_incorrect_blik_code: EventHandler | None = None
    on_payment_completed: EventHandler | None = None
    on_business_error: EventHandler | None = None
    on_technical_error: EventHandler | None = None
    on_unknown_event: UnknownEventHandler | None = None


HANDLER_FIELDS: dict[str, str] = {
    "on_divination_requested": "divination.requested",
    "on_process_started": "process.started",
    "on_process_ended": "process.ended",
    "on_divination_generation": "divination.generation",
    "on_incorrect_blik_code": "payment.blik.incorrect",
    "on_payment_completed": "payment.completed",
    "on_business_error": "error.business",
    "on_technical_error": "error.technical",
}


def _describe(exc: BaseException) -> str:
    text = str(exc)
    return text if text else type(exc).__name__


async def _invoke(handler: Callable[[Any], Any], value: Any) -> None:
    outcome = handler(value)
    if inspect.isawaitable(outcome):
        await outcome


class EventHandlerRegistry:
    """Mutable tag -> handler table with one fallback for invalid or unhandled events."""

    def __init__(self, *, validator: EventValidator | None = None) -> None:
        self._validator = validator or EventValidator()
        self._handlers: dict[str, EventHandler] = {}
        self._unknown_handler: UnknownEventHandler | None = None

    @property
    def validator(self) -> EventValidator:
        return self._validator

    def register(self, event_type: str, handler: EventHandler) -> "EventHandlerRegistry":
        if not self._validator.has_parser(event_type):
            raise UnsupportedEventTypeError(f"unsupported event type: {event_type}")
        self._handlers[event_type] = handler
        return self

    on = register

    def register_unknown_handler(self, handler: UnknownEventHandler) -> "EventHandlerRegistry":
        self._unknown_handler = handler
        return self

    on_unknown = register_unknown_handler

    def clear(self) -> "EventHandlerRegistry":
        self._handlers.clear()
        self._unknown_handler = None
        return self

    def rebuild(self, handlers: EventHandlers) -> "EventHandlerRegistry":
        """Replace the whole handler set, e.g. after the consumer's callbacks changed."""
        self.clear()
        for item in fields(handlers):
            callback = getattr(handlers, item.name)
            if callback is None:
                continue
            if item.name == "on_unknown_event":
                self.register_unknown_handler(callback)
            else:
                self.register(HANDLER_FIELDS[item.name], callback)
        return self

    def has_handler(self, event_type: str) -> bool:
        return event_type in self._handlers

    def handlers(self) -> dict[str, EventHandler]:
        return dict(self._handlers)

    async def process(self, raw_event: Any) -> ProcessResult:
        parsed = self._validator.parse(raw_event)
        if not parsed.success or parsed.data is None:
            await self._run_fallback(raw_event)
            return ProcessResult(
                success=False,
                error=parsed.error,
                kind=parsed.kind,
                event_type=extract_event_type(raw_event),
            )

        event = parsed.data
        event_type = event.event_type
        handler = self._handlers.get(event_type)
        if handler is None:
            logger.debug("event.unhandled type=%s", event_type)
            await self._run_fallback(raw_event)
            return ProcessResult(
                success=False,
                error=f"no handler registered for type: {event_type}",
                kind="unhandled_event",
                event_type=event_type,
            )

        try:
            await _invoke(handler, event)
        except Exception as exc:
            logger.warning("event.dispatch_failed type=%s error=%s", event_type, _describe(exc))
            return ProcessResult(
                success=False,
                error=f"dispatch failed: {_describe(exc)}",
                kind="dispatch_error",
                event_type=event_type,
            )
        return ProcessResult(success=True, event_type=event_type)

    async def process_json(self, text: str | bytes | bytearray) -> ProcessResult:
        """Parse raw frame text first; malformed JSON never reaches any handler."""
        raw_event, failure = decode_json(text)
        if failure is not None:
            return ProcessResult(success=False, error=failure.error, kind=failure.kind)
        return await self.process(raw_event)

    async def _run_fallback(self, raw_event: Any) -> None:
        if self._unknown_handler is None:
            return
        try:
            await _invoke(self._unknown_handler, raw_event)
        except Exception:
            logger.exception("event.unknown_handler_failed")
