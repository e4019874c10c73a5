"""Composition layer: build and hold long-lived service objects for dependency injection."""

from __future__ import annotations

from dataclasses import dataclass

from tarot_events.core.config import Settings
from tarot_events.events.replay_buffer import ReplayBuffer
from tarot_events.infra.http.orchestrator_client import OrchestratorClient, OrchestratorConfig
from tarot_events.session.process_session import ProcessSessionManager
from tarot_events.transport.stomp_client import ConnectFactory, StompConfig


@dataclass
class AppContainer:
    """Container object attached to FastAPI app state."""

    settings: Settings
    replay_buffer: ReplayBuffer
    sessions: ProcessSessionManager
    orchestrator: OrchestratorClient


def build_container(
    settings: Settings,
    *,
    connect_factory: ConnectFactory | None = None,
) -> AppContainer:
    """Construct runtime dependencies in one place."""
    replay_buffer = ReplayBuffer(max_events_per_process=settings.replay_buffer_size)
    sessions = ProcessSessionManager(
        replay_buffer=replay_buffer,
        stomp_config=StompConfig.from_settings(settings),
        connect_factory=connect_factory,
        log_events=settings.log_events,
    )
    orchestrator = OrchestratorClient(
        OrchestratorConfig(
            base_url=settings.orchestrator_base_url,
            timeout_seconds=settings.orchestrator_timeout_seconds,
        )
    )
    return AppContainer(
        settings=settings,
        replay_buffer=replay_buffer,
        sessions=sessions,
        orchestrator=orchestrator,
    )
