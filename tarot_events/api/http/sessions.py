"""HTTP API layer: open, inspect, feed and close relay sessions."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Response, status

from tarot_events.api.deps import get_sessions, require_session
from tarot_events.infra.observability.logger import get_logger
from tarot_events.protocol.messages import (
    ProcessResultDto,
    SendRequest,
    SendResponse,
    SessionDto,
    SessionOpenRequest,
    SessionOpenResponse,
)
from tarot_events.session.process_session import ProcessSession, ProcessSessionManager

router = APIRouter(prefix="/api/sessions", tags=["sessions"])
logger = get_logger(__name__)


def _to_dto(session: ProcessSession) -> SessionDto:
    return SessionDto(
        user_id=session.user_id,
        process_id=session.process_id,
        state=session.state.value,
        ignoring_events=session.ignoring_events,
        events_relayed=session.events_relayed,
        created_at=session.created_at,
    )


@router.post("", response_model=SessionOpenResponse)
async def open_session(
    request: SessionOpenRequest,
    sessions: ProcessSessionManager = Depends(get_sessions),
) -> SessionOpenResponse:
    session, opened = await sessions.open(user_id=request.user_id, process_id=request.process_id)
    logger.info(
        "api.sessions.open user_id=%s process_id=%s opened=%s state=%s",
        request.user_id,
        request.process_id,
        opened,
        session.state.value,
    )
    return SessionOpenResponse(opened=opened, **_to_dto(session).model_dump())


@router.get("", response_model=list[SessionDto])
def list_sessions(sessions: ProcessSessionManager = Depends(get_sessions)) -> list[SessionDto]:
    return [_to_dto(session) for session in sessions.list_sessions()]


@router.get("/{user_id}/{process_id}", response_model=SessionDto)
def get_session(session: ProcessSession = Depends(require_session)) -> SessionDto:
    return _to_dto(session)


@router.delete("/{user_id}/{process_id}", status_code=status.HTTP_204_NO_CONTENT)
async def close_session(
    user_id: str,
    process_id: str,
    sessions: ProcessSessionManager = Depends(get_sessions),
) -> Response:
    if not await sessions.close(user_id=user_id, process_id=process_id):
        raise HTTPException(status_code=404, detail=f"session '{user_id}/{process_id}' not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{user_id}/{process_id}/events", response_model=ProcessResultDto)
async def dispatch_event(
    raw_event: Any = Body(...),
    session: ProcessSession = Depends(require_session),
) -> ProcessResultDto:
    """Run one raw event through the session exactly as if the broker had pushed it."""
    result = await session.process(raw_event)
    return ProcessResultDto(
        success=result.success,
        error=result.error,
        kind=result.kind,
        event_type=result.event_type,
    )


@router.post("/{user_id}/{process_id}/send", response_model=SendResponse)
async def send_frame(
    request: SendRequest,
    session: ProcessSession = Depends(require_session),
) -> SendResponse:
    sent = await session.client.send(request.destination, request.payload)
    return SendResponse(sent=sent)
