"""Protocol layer: backend-pushed event shapes keyed by the nested `type.type` tag."""

from __future__ import annotations

from enum import Enum
from types import MappingProxyType
from typing import Any, ClassVar, Literal, Mapping, Union

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictStr, field_validator


class DivinationProcessStatus(str, Enum):
    """Lifecycle status of one backend divination process."""

    STARTED = "Started"
    PENDING = "Pending"
    PAYMENT_ACCEPTED = "PaymentAccepted"
    FAILED_INTEGRATION_WITH_CHATGPT = "FailedIntegrationWithChatGPT"
    FINISHED_WITH_WRONG_PAYMENT_STATUS = "FinishedWithWrongPaymentStatus"
    FINISHED = "Finished"


class DivinationGenerationStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"


class PaymentState(str, Enum):
    PENDING = "PENDING"
    PAYMENT_SUCCEEDED = "PAYMENT_SUCCEEDED"
    PAYMENT_FAILED_TECHNICAL_ERROR = "PAYMENT_FAILED_TECHNICAL_ERROR"
    PAYMENT_FAILED_BUSINESS_ERROR = "PAYMENT_FAILED_BUSINESS_ERROR"


EventType = Literal[
    "divination.requested",
    "process.started",
    "process.ended",
    "divination.generation",
    "payment.blik.incorrect",
    "payment.completed",
    "error.business",
    "error.technical",
]


class _WireModel(BaseModel):
    model_config = ConfigDict(frozen=True)


class EventTypeRef(_WireModel):
    """Nested discriminant object: `{"type": "<tag>"}`."""

    type: StrictStr


class TarotCard(_WireModel):
    """One drawn card as announced by `divination.requested`."""

    card_name: StrictStr = Field(alias="cardName")
    description: StrictStr
    is_reversed: StrictBool = Field(alias="isReversed")


class BaseEvent(_WireModel):
    """Common envelope for every backend event.

    Subclasses pin `tag`; the nested discriminant must equal it, so a model
    can never be built for a payload that names another event.
    """

    tag: ClassVar[str] = ""

    type: EventTypeRef

    @field_validator("type")
    @classmethod
    def _check_tag(cls, value: EventTypeRef) -> EventTypeRef:
        if cls.tag and value.type != cls.tag:
            raise ValueError(f"expected event type {cls.tag}, got {value.type}")
        return value

    @property
    def event_type(self) -> str:
        return self.type.type

    @classmethod
    def create(cls, **fields: Any) -> "BaseEvent":
        """Build an event from wire-named fields, filling the discriminant."""
        return cls.model_validate({"type": {"type": cls.tag}, **fields})

    def to_wire(self) -> dict[str, Any]:
        """Return the camelCase JSON-compatible payload."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class DivinationRequestedEvent(BaseEvent):
    tag: ClassVar[str] = "divination.requested"

    cards: list[TarotCard]


class ProcessStartedEvent(BaseEvent):
    tag: ClassVar[str] = "process.started"

    # Absent is allowed; an explicit null is not (defaults skip validation).
    process_id: StrictStr = Field(default=None, alias="processId")


class ProcessEndedEvent(BaseEvent):
    tag: ClassVar[str] = "process.ended"

    status: DivinationProcessStatus
    message: StrictStr


class DivinationGenerationEvent(BaseEvent):
    tag: ClassVar[str] = "divination.generation"

    divination: StrictStr
    status: DivinationGenerationStatus


class IncorrectBlikCodeEvent(BaseEvent):
    tag: ClassVar[str] = "payment.blik.incorrect"

    message: StrictStr


class PaymentCompletedEvent(BaseEvent):
    tag: ClassVar[str] = "payment.completed"

    state: PaymentState
    message: StrictStr


class BusinessErrorEvent(BaseEvent):
    tag: ClassVar[str] = "error.business"

    message: StrictStr


class TechnicalErrorEvent(BaseEvent):
    tag: ClassVar[str] = "error.technical"

    message: StrictStr


FrontendEvent = Union[
    DivinationRequestedEvent,
    ProcessStartedEvent,
    ProcessEndedEvent,
    DivinationGenerationEvent,
    IncorrectBlikCodeEvent,
    PaymentCompletedEvent,
    BusinessErrorEvent,
    TechnicalErrorEvent,
]

DEFAULT_EVENT_MODELS: Mapping[str, type[BaseEvent]] = MappingProxyType(
    {
        model.tag: model
        for model in (
            DivinationRequestedEvent,
            ProcessStartedEvent,
            ProcessEndedEvent,
            DivinationGenerationEvent,
            IncorrectBlikCodeEvent,
            PaymentCompletedEvent,
            BusinessErrorEvent,
            TechnicalErrorEvent,
        )
    }
)

FINAL_PROCESS_STATUSES: frozenset[DivinationProcessStatus] = frozenset(
    {
        DivinationProcessStatus.FAILED_INTEGRATION_WITH_CHATGPT,
        DivinationProcessStatus.FINISHED_WITH_WRONG_PAYMENT_STATUS,
        DivinationProcessStatus.FINISHED,
    }
)


def is_terminal_event(event: BaseEvent) -> bool:
    """True once the backend has nothing more to say about the process.

    That is the reading itself, or a `process.ended` carrying a final status;
    intermediate statuses such as Pending or PaymentAccepted do not count.
    """
    if isinstance(event, DivinationGenerationEvent):
        return True
    return isinstance(event, ProcessEndedEvent) and event.status in FINAL_PROCESS_STATUSES
