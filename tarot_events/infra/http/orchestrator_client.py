"""HTTP infra: orchestrator and payment service calls via standard HTTP payloads."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any
from urllib import error, parse, request

from tarot_events.infra.observability.logger import get_logger
from tarot_events.protocol.messages import DivinationFormData

_BLIK_CODE_PATTERN = re.compile(r"^\d{6}$")
logger = get_logger(__name__)


class InvalidBlikCodeError(ValueError):
    """Raised before any network call when the BLIK code is not six digits."""


class OrchestratorRequestError(RuntimeError):
    """Raised when the orchestrator or payment service rejects or cannot serve a call."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


@dataclass(frozen=True)
class OrchestratorConfig:
    base_url: str
    timeout_seconds: float


class OrchestratorClient:
    """Minimal sync client for process start and BLIK payment endpoints."""

    def __init__(self, config: OrchestratorConfig) -> None:
        self._config = config

    def start_divination_process(self, *, user_id: str, form: DivinationFormData) -> Any:
        path = f"/orchestrator-service/process/{parse.quote(user_id, safe='')}"
        logger.info("orchestrator.start_process user_id=%s", user_id)
        _, raw = self._post_json(path, form.model_dump(by_alias=True))
        try:
            return json.loads(raw) if raw.strip() else {}
        except json.JSONDecodeError as exc:
            raise OrchestratorRequestError(f"invalid JSON from orchestrator: {exc}") from exc

    def send_blik_payment(self, *, user_id: str, process_id: str, blik_code: str) -> int:
        if not _BLIK_CODE_PATTERN.fullmatch(blik_code):
            raise InvalidBlikCodeError("BLIK code must be exactly 6 digits")
        logger.info("payment.blik_submitted user_id=%s process_id=%s", user_id, process_id)
        status, _ = self._post_json(
            "/payment-service/blik",
            {"userId": user_id, "processId": process_id, "BLIKCode": blik_code},
        )
        return status

    def _post_json(self, path: str, payload: dict[str, Any]) -> tuple[int, str]:
        endpoint = self._config.base_url.rstrip("/") + path
        body = json.dumps(payload).encode("utf-8")
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        req = request.Request(endpoint, data=body, headers=headers, method="POST")
        try:
            with request.urlopen(req, timeout=self._config.timeout_seconds) as resp:
                return resp.status, resp.read().decode("utf-8", errors="replace")
        except error.HTTPError as exc:
            detail = exc.read().decode("utf-8", errors="replace")
            logger.warning("orchestrator.http_error endpoint=%s status=%s body=%s", endpoint, exc.code, detail[:200])
            raise OrchestratorRequestError(
                f"{endpoint} answered {exc.code}",
                status=exc.code,
            ) from exc
        except (error.URLError, TimeoutError) as exc:
            logger.warning("orchestrator.unreachable endpoint=%s error=%s", endpoint, exc)
            raise OrchestratorRequestError(f"{endpoint} unreachable: {exc}") from exc
