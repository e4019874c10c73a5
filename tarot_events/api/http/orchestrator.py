"""HTTP API layer: start divination processes and submit BLIK payments upstream."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException

from tarot_events.api.deps import get_container
from tarot_events.core.container import AppContainer
from tarot_events.infra.http.orchestrator_client import InvalidBlikCodeError, OrchestratorRequestError
from tarot_events.infra.observability.logger import get_logger
from tarot_events.protocol.messages import BlikPaymentRequest, BlikPaymentResponse, DivinationFormData

router = APIRouter(prefix="/api", tags=["orchestrator"])
logger = get_logger(__name__)


@router.post("/processes/{user_id}")
def start_process(
    user_id: str,
    form: DivinationFormData,
    container: AppContainer = Depends(get_container),
) -> Any:
    try:
        return container.orchestrator.start_divination_process(user_id=user_id, form=form)
    except OrchestratorRequestError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc


@router.post("/payments/blik", response_model=BlikPaymentResponse)
def submit_blik_payment(
    request: BlikPaymentRequest,
    container: AppContainer = Depends(get_container),
) -> BlikPaymentResponse:
    try:
        upstream_status = container.orchestrator.send_blik_payment(
            user_id=request.user_id,
            process_id=request.process_id,
            blik_code=request.blik_code,
        )
    except InvalidBlikCodeError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except OrchestratorRequestError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    logger.info(
        "api.payments.blik user_id=%s process_id=%s upstream_status=%s",
        request.user_id,
        request.process_id,
        upstream_status,
    )
    return BlikPaymentResponse(accepted=True, upstream_status=upstream_status)
