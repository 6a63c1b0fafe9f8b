"""
SMS Notification Service.

Outbound SMS through the Arkesel v2 HTTP API.  Used for the welcome
message sent after registration.

Architectural notes:
    - Configuration sourced from the injected ``AppConfig``.
    - ``send_sms`` is synchronous and returns a ``ServiceResult``; it
      never raises.
    - ``notify`` is fire-and-forget: it hands the send to a daemon
      thread and returns immediately.
    - SMS config validated lazily on first send (instance-level flag).
"""

from __future__ import annotations

import threading
from typing import Any, Optional

import httpx

from pu_connect.config import AppConfig
from pu_connect.logger import StructuredLogger
from pu_connect.models.service_models import ServiceResult
from pu_connect.services.base_service import BaseService


class SmsService(BaseService):
    """Messaging collaborator backed by Arkesel.

    Parameters
    ----------
    config:
        Application configuration holding the Arkesel key and sender id.
    logger:
        Structured JSON logger.
    client:
        Pre-built ``httpx.Client``; one is created from *config* when
        omitted.
    """

    def __init__(
        self,
        config: AppConfig,
        logger: StructuredLogger,
        client: Optional[httpx.Client] = None,
    ) -> None:
        super().__init__(logger)
        self._config: AppConfig = config
        self._client: Optional[httpx.Client] = client
        self._validated: bool = False

    # ------------------------------------------------------------------
    # Messaging collaborator contract
    # ------------------------------------------------------------------

    def notify(self, recipients: list[str], text: str) -> threading.Thread:
        """Send *text* to *recipients* without blocking the caller.

        Returns the worker thread so tests can join it.
        """
        worker = threading.Thread(
            target=self.send_sms,
            args=(list(recipients), text),
            name="SmsNotify",
            daemon=True,
        )
        worker.start()
        return worker

    # ------------------------------------------------------------------
    # Arkesel API
    # ------------------------------------------------------------------

    def send_sms(self, recipients: list[str], message: str) -> ServiceResult[dict[str, Any]]:
        """POST one message to Arkesel.

        Returns a ``ServiceResult`` describing the outcome; failures are
        logged, never raised.
        """
        if not self._ensure_configured():
            return ServiceResult(
                success=False,
                error="SMS is not configured.",
                status_code=500,
            )

        recipients = [r.strip() for r in recipients if r and r.strip()]
        if not recipients:
            self._logger.warning("SMS skipped: no recipients.")
            return ServiceResult(success=False, error="No recipients.", status_code=400)

        try:
            response = self._http().post(
                "/sms/send",
                json={
                    "sender": self._config.ARKESEL_SENDER_ID,
                    "message": message,
                    "recipients": recipients,
                },
            )
            response.raise_for_status()
            body: dict[str, Any] = response.json()
        except httpx.HTTPStatusError as exc:
            self._logger.error(
                "Arkesel rejected SMS (%d): %s",
                exc.response.status_code,
                exc.response.text,
            )
            return ServiceResult(
                success=False,
                error=f"SMS provider returned {exc.response.status_code}",
                status_code=exc.response.status_code,
            )
        except (httpx.HTTPError, ValueError) as exc:
            self._logger.error("Arkesel SMS error: %s", exc)
            return ServiceResult(success=False, error=str(exc), status_code=503)

        self._logger.info(
            "SMS sent to %d recipient(s).",
            len(recipients),
            extra={"event": "SMS_SENT", "recipients": ",".join(recipients)},
        )
        return ServiceResult(success=True, data=body)

    def get_balance(self) -> int:
        """Return the remaining SMS units, or ``0`` when unknown.

        Public for operator and admin tooling; the entry point logs it at
        startup.
        """
        if not self._ensure_configured():
            return 0
        try:
            response = self._http().get("/clients/balance")
            response.raise_for_status()
            body: dict[str, Any] = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            self._logger.error("Arkesel balance error: %s", exc)
            return 0

        data = body.get("data") if isinstance(body, dict) else None
        if not isinstance(data, dict):
            return 0
        try:
            return int(data.get("sms_unit", 0) or 0)
        except (TypeError, ValueError):
            return 0

    def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            self._client.close()
            self._client = None

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _ensure_configured(self) -> bool:
        if self._validated:
            return True
        try:
            self._config.validate_sms_config()
        except ValueError as exc:
            self._logger.warning("SMS configuration error: %s", exc)
            return False
        self._validated = True
        return True

    def _http(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(
                base_url=self._config.ARKESEL_BASE_URL,
                headers={
                    "api-key": self._config.ARKESEL_API_KEY.get_secret_value(),
                    "Content-Type": "application/json",
                },
                timeout=self._config.SMS_TIMEOUT_S,
            )
        return self._client
