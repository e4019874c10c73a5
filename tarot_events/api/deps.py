"""API layer: request-scoped access to the container and the session manager."""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request

from tarot_events.core.container import AppContainer
from tarot_events.session.process_session import ProcessSession, ProcessSessionManager


def get_container(request: Request) -> AppContainer:
    return request.app.state.container  # type: ignore[return-value]


def get_sessions(container: AppContainer = Depends(get_container)) -> ProcessSessionManager:
    return container.sessions


def require_session(
    user_id: str,
    process_id: str,
    sessions: ProcessSessionManager = Depends(get_sessions),
) -> ProcessSession:
    """Resolve the `{user_id}/{process_id}` path pair to an open session or 404."""
    session = sessions.get(user_id=user_id, process_id=process_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"session '{user_id}/{process_id}' not found")
    return session
