"""Configuration layer: load runtime settings from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    """Immutable application settings used across relay/transport layers."""

    app_name: str = "Tarot Event Relay"
    app_version: str = "0.1.0"
    env: str = "dev"
    log_level: str = "INFO"
    host: str = "0.0.0.0"
    port: int = 8000
    cors_allow_origins: str = "http://localhost:3000,http://127.0.0.1:3000"
    stomp_url: str = "ws://localhost:8083/ws"
    stomp_subscribe_destination: str = "/user/topic/messages"
    stomp_register_destination: str = "/app/register"
    stomp_connect_timeout_seconds: float = 10.0
    orchestrator_base_url: str = "http://localhost:8080"
    orchestrator_timeout_seconds: float = 30.0
    replay_buffer_size: int = 200
    sse_keepalive_seconds: float = 1.0
    sse_max_wait_seconds: int = 120
    log_events: bool = False

    @classmethod
    def from_env(cls) -> "Settings":
        """Create settings from process env with deterministic defaults."""
        return cls(
            app_name=os.getenv("APP_NAME", cls.app_name),
            app_version=os.getenv("APP_VERSION", cls.app_version),
            env=os.getenv("APP_ENV", cls.env),
            log_level=os.getenv("LOG_LEVEL", cls.log_level),
            host=os.getenv("HOST", cls.host),
            port=int(os.getenv("PORT", str(cls.port))),
            cors_allow_origins=os.getenv("CORS_ALLOW_ORIGINS", cls.cors_allow_origins),
            stomp_url=os.getenv("STOMP_URL", cls.stomp_url),
            stomp_subscribe_destination=os.getenv(
                "STOMP_SUBSCRIBE_DESTINATION", cls.stomp_subscribe_destination
            ),
            stomp_register_destination=os.getenv(
                "STOMP_REGISTER_DESTINATION", cls.stomp_register_destination
            ),
            stomp_connect_timeout_seconds=float(
                os.getenv(
                    "STOMP_CONNECT_TIMEOUT_SECONDS",
                    str(cls.stomp_connect_timeout_seconds),
                )
            ),
            orchestrator_base_url=os.getenv("ORCHESTRATOR_BASE_URL", cls.orchestrator_base_url),
            orchestrator_timeout_seconds=float(
                os.getenv(
                    "ORCHESTRATOR_TIMEOUT_SECONDS",
                    str(cls.orchestrator_timeout_seconds),
                )
            ),
            replay_buffer_size=int(os.getenv("REPLAY_BUFFER_SIZE", str(cls.replay_buffer_size))),
            sse_keepalive_seconds=float(
                os.getenv("SSE_KEEPALIVE_SECONDS", str(cls.sse_keepalive_seconds))
            ),
            sse_max_wait_seconds=int(
                os.getenv("SSE_MAX_WAIT_SECONDS", str(cls.sse_max_wait_seconds))
            ),
            log_events=_env_bool("LOG_EVENTS", cls.log_events),
        )
