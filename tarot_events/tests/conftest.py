"""Test fixtures shared by unit/integration tests."""

from __future__ import annotations

import pytest

from tarot_events.tests.fakes import FakeBroker


@pytest.fixture
def broker() -> FakeBroker:
    return FakeBroker()


@pytest.fixture
def samples() -> dict[str, dict]:
    """One wire payload per known event tag, each conforming exactly."""
    return {
        "divination.requested": {
            "type": {"type": "divination.requested"},
            "cards": [
                {"cardName": "The Moon", "description": "d", "isReversed": True},
                {"cardName": "The Sun", "description": "warmth", "isReversed": False},
            ],
        },
        "process.started": {"type": {"type": "process.started"}, "processId": "p1"},
        "process.ended": {
            "type": {"type": "process.ended"},
            "status": "FinishedWithWrongPaymentStatus",
            "message": "payment status mismatch",
        },
        "divination.generation": {
            "type": {"type": "divination.generation"},
            "divination": "The stars align.",
            "status": "SUCCESS",
        },
        "payment.blik.incorrect": {
            "type": {"type": "payment.blik.incorrect"},
            "message": "Incorrect BLIK code.",
        },
        "payment.completed": {
            "type": {"type": "payment.completed"},
            "state": "PAYMENT_SUCCEEDED",
            "message": "ok",
        },
        "error.business": {"type": {"type": "error.business"}, "message": "limit reached"},
        "error.technical": {"type": {"type": "error.technical"}, "message": "backend down"},
    }
