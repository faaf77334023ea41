"""Mock clinical handoff client for local development and testing.

Returns deterministic receipts. No real clinical service calls.
"""

from __future__ import annotations

import hashlib
import threading

from pulsecheck.core.exceptions import HandoffError
from pulsecheck.models.escalation import EscalationTier
from pulsecheck.models.handoff import ClinicalHandoffPayload, HandoffReceipt


class MockClinicalHandoffClient:
    """IClinicalHandoffClient that honours idempotency keys like the real service.

    ``fail_times`` makes the next N calls raise, to exercise retry paths.
    """

    def __init__(self, fail_times: int = 0, retryable: bool = True) -> None:
        self._lock = threading.Lock()
        self._receipts: dict[str, HandoffReceipt] = {}
        self._fail_times = fail_times
        self._retryable = retryable
        self.calls: list[tuple[str, ClinicalHandoffPayload]] = []

    def fail_next(self, times: int, retryable: bool = True) -> None:
        with self._lock:
            self._fail_times = times
            self._retryable = retryable

    @property
    def cases_opened(self) -> int:
        return len(self._receipts)

    def submit(self, payload: ClinicalHandoffPayload, idempotency_key: str) -> HandoffReceipt:
        with self._lock:
            self.calls.append((idempotency_key, payload))
            if self._fail_times > 0:
                self._fail_times -= 1
                raise HandoffError(
                    "Mock clinical service unavailable",
                    retryable=self._retryable,
                    status_code=503 if self._retryable else 400,
                )
            if idempotency_key in self._receipts:
                return self._receipts[idempotency_key]

            digest = hashlib.sha256(idempotency_key.encode()).hexdigest()[:12]
            critical = payload.tier == EscalationTier.CRITICAL_RISK
            receipt = HandoffReceipt(
                reference_id=f"ae-esc-{digest}",
                status="assigned" if critical else "received",
                estimated_contact_time="Within 15 minutes" if critical else "Within 24 hours",
            )
            self._receipts[idempotency_key] = receipt
            return receipt

    def health_check(self) -> bool:
        return True
