"""Event layer: runtime validation of decoded backend payloads against known event shapes."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Literal, Mapping

from pydantic import ValidationError

from tarot_events.infra.observability.logger import get_logger
from tarot_events.protocol.events import DEFAULT_EVENT_MODELS, BaseEvent

logger = get_logger(__name__)

ParseErrorKind = Literal[
    "malformed_json",
    "missing_structure",
    "unknown_event_type",
    "validation_error",
]

MISSING_TYPE_STRUCTURE = "missing type structure"


@dataclass(frozen=True)
class ParseResult:
    """Normalized validation outcome: a typed event or a human-readable reason."""

    success: bool
    data: BaseEvent | None = None
    error: str | None = None
    kind: ParseErrorKind | None = None


def extract_event_type(raw: Any) -> str | None:
    """Return the nested `type.type` tag, or None when the shape is missing."""
    if not isinstance(raw, dict):
        return None
    type_field = raw.get("type")
    if not isinstance(type_field, dict):
        return None
    tag = type_field.get("type")
    return tag if isinstance(tag, str) else None


def _failed(kind: ParseErrorKind, error: str) -> ParseResult:
    return ParseResult(success=False, error=error, kind=kind)


def decode_json(text: str | bytes | bytearray) -> tuple[Any, ParseResult | None]:
    """Decode frame text; a decode error becomes a failed result instead of raising."""
    try:
        return json.loads(text), None
    except (TypeError, ValueError) as exc:
        return None, _failed("malformed_json", f"JSON parsing failed: {exc}")


class EventValidator:
    """Tag-keyed validator registry; each instance owns its own copy of the table."""

    def __init__(self, models: Mapping[str, type[BaseEvent]] | None = None) -> None:
        source = DEFAULT_EVENT_MODELS if models is None else models
        self._models: dict[str, type[BaseEvent]] = dict(source)

    def parse(self, raw: Any) -> ParseResult:
        tag = extract_event_type(raw)
        if tag is None:
            return _failed("missing_structure", MISSING_TYPE_STRUCTURE)

        model = self._models.get(tag)
        if model is None:
            return _failed("unknown_event_type", f"unknown event type: {tag}")

        try:
            event = model.model_validate(raw)
        except ValidationError as exc:
            logger.debug("event.validation_failed type=%s errors=%s", tag, exc.errors())
            return _failed("validation_error", f"event validation failed for type: {tag}")
        return ParseResult(success=True, data=event)

    def parse_json(self, text: str | bytes | bytearray) -> ParseResult:
        raw, failure = decode_json(text)
        if failure is not None:
            return failure
        return self.parse(raw)

    def register_parser(self, tag: str, model: type[BaseEvent]) -> None:
        """Add or replace the model used for `tag`."""
        if not tag:
            raise ValueError("event tag must be a non-empty string")
        self._models[tag] = model

    def unregister_parser(self, tag: str) -> None:
        self._models.pop(tag, None)

    def has_parser(self, tag: str) -> bool:
        return tag in self._models

    def supported_event_types(self) -> list[str]:
        return list(self._models)


_default_validator = EventValidator()


def parse_event(raw: Any) -> ParseResult:
    return _default_validator.parse(raw)


def parse_event_from_json(text: str | bytes | bytearray) -> ParseResult:
    return _default_validator.parse_json(text)
