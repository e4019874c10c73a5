"""Protocol layer: request/response DTOs shared by the relay API and orchestrator client."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class DivinationFormData(BaseModel):
    """User answers collected before a reading; forwarded to the orchestrator as-is."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., min_length=1)
    date_of_birth: str = Field(..., alias="dateOfBirth", min_length=1)
    favorite_color: str = Field(..., alias="favoriteColor", min_length=1)
    favorite_number: str = Field(..., alias="favoriteNumber", min_length=1)
    relationship_status: str = Field(..., alias="relationshipStatus", min_length=1)


class BlikPaymentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="userId", min_length=1)
    process_id: str = Field(..., alias="processId", min_length=1)
    blik_code: str = Field(..., alias="blikCode")


class BlikPaymentResponse(BaseModel):
    accepted: bool
    upstream_status: int


class SessionOpenRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    process_id: str = Field(..., min_length=1)


class SessionDto(BaseModel):
    """Current view of one relay session."""

    user_id: str
    process_id: str
    state: str
    ignoring_events: bool
    events_relayed: int
    created_at: str


class SessionOpenResponse(SessionDto):
    opened: bool


class ProcessResultDto(BaseModel):
    success: bool
    error: str | None = None
    kind: str | None = None
    event_type: str | None = None


class SendRequest(BaseModel):
    destination: str = Field(..., min_length=1)
    payload: dict[str, Any] = Field(default_factory=dict)


class SendResponse(BaseModel):
    sent: bool
