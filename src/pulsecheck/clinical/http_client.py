"""HTTP client for the external clinical handoff service."""

from __future__ import annotations

from typing import Any

import requests
import structlog

from pulsecheck.core.exceptions import HandoffError
from pulsecheck.models.handoff import ClinicalHandoffPayload, HandoffReceipt

logger = structlog.get_logger(__name__)

# Request timeout and throttling are worth retrying; other 4xx are not.
_RETRYABLE_CLIENT_ERRORS = {408, 429}


class HttpClinicalHandoffClient:
    """IClinicalHandoffClient over the clinical service's REST API.

    One call is one attempt; retry policy lives in the HandoffOrchestrator.
    """

    def __init__(self, base_url: str, api_key: str, timeout: float = 5.0,
                 session: requests.Session | None = None) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.update({
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            "X-Pulse-Integration": "true",
        })

    def submit(self, payload: ClinicalHandoffPayload, idempotency_key: str) -> HandoffReceipt:
        url = f"{self._base_url}/escalations"
        try:
            resp = self._session.post(
                url,
                json=payload.to_document(),
                headers={"Idempotency-Key": idempotency_key},
                timeout=self._timeout,
            )
        except requests.Timeout as exc:
            raise HandoffError(f"Clinical service timed out after {self._timeout}s") from exc
        except requests.RequestException as exc:
            raise HandoffError(f"Clinical service unreachable: {exc}") from exc

        if resp.status_code >= 400:
            retryable = resp.status_code >= 500 or resp.status_code in _RETRYABLE_CLIENT_ERRORS
            raise HandoffError(
                f"Clinical service returned {resp.status_code}",
                retryable=retryable,
                status_code=resp.status_code,
            )

        body = self._json(resp)
        if body.get("success") is False:
            error = body.get("error") or {}
            raise HandoffError(
                f"Clinical service rejected escalation: {error.get('code', 'UNKNOWN')}",
                retryable=error.get("code") == "NETWORK_ERROR",
                status_code=resp.status_code,
            )
        data = body.get("data") or body
        if not isinstance(data, dict):
            raise HandoffError(
                "Clinical service returned an unexpected data envelope",
                retryable=False,
                status_code=resp.status_code,
            )
        reference_id = data.get("escalationId") or data.get("referenceId")
        if not reference_id:
            raise HandoffError(
                "Clinical service response missing escalation reference",
                retryable=False,
                status_code=resp.status_code,
            )
        logger.info("CLINICAL_ESCALATION_SUBMITTED", escalation_id=idempotency_key,
                    status=data.get("status", "received"))
        return HandoffReceipt(
            reference_id=reference_id,
            status=data.get("status", "received"),
            estimated_contact_time=data.get("estimatedContactTime"),
        )

    def health_check(self) -> bool:
        try:
            resp = self._session.get(f"{self._base_url}/health", timeout=self._timeout)
        except requests.RequestException:
            return False
        return resp.ok

    @staticmethod
    def _json(resp: requests.Response) -> dict[str, Any]:
        try:
            body = resp.json()
        except ValueError as exc:
            raise HandoffError(
                "Clinical service returned a non-JSON body",
                retryable=False,
                status_code=resp.status_code,
            ) from exc
        if not isinstance(body, dict):
            raise HandoffError(
                "Clinical service returned an unexpected body",
                retryable=False,
                status_code=resp.status_code,
            )
        return body
