"""Observability layer: one console format for relay API, sessions and STOMP transport."""

from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

_SERVER_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")
# websockets logs every frame at DEBUG; keep it at WARNING unless the relay itself runs at DEBUG.
_WIRE_LOGGERS = ("websockets", "websockets.client")


def setup_logging(level: str = "INFO") -> None:
    normalized = level.upper()
    logging.basicConfig(level=normalized, format=LOG_FORMAT, force=True)
    for name in _SERVER_LOGGERS:
        _reroute(name, normalized)
    wire_level = normalized if normalized == "DEBUG" else "WARNING"
    for name in _WIRE_LOGGERS:
        _reroute(name, wire_level)


def _reroute(name: str, level: str) -> None:
    logger = logging.getLogger(name)
    logger.handlers.clear()
    logger.setLevel(level)
    logger.propagate = True


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
