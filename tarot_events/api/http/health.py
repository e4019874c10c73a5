"""HTTP API layer: liveness plus a count of open relay sessions and live STOMP pairs."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from tarot_events.api.deps import get_container
from tarot_events.core.container import AppContainer

router = APIRouter(tags=["health"])


@router.get("/health")
def health(container: AppContainer = Depends(get_container)) -> dict:
    sessions = container.sessions
    return {
        "status": "ok",
        "env": container.settings.env,
        "version": container.settings.app_version,
        "sessions": len(sessions.list_sessions()),
        "live_connections": len(sessions.live_pairs),
    }
