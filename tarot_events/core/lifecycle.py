"""Lifecycle hooks for startup diagnostics and session teardown."""

from __future__ import annotations

from tarot_events.core.container import AppContainer
from tarot_events.infra.observability.logger import get_logger

logger = get_logger(__name__)


def on_startup(container: AppContainer) -> None:
    settings = container.settings
    logger.info(
        "Relay ready: stomp_url=%s orchestrator=%s env=%s",
        settings.stomp_url,
        settings.orchestrator_base_url,
        settings.env,
    )


async def on_shutdown(container: AppContainer) -> None:
    await container.sessions.close_all()
    logger.info("Tarot event relay shutdown complete.")
