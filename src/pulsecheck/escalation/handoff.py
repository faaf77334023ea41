"""Clinical handoff orchestration: claim once, submit with bounded retry, record the outcome."""

from __future__ import annotations

import time
from typing import Callable, Optional

import structlog

from pulsecheck.core.exceptions import (
    ConcurrencyConflictError,
    HandoffError,
    NotFoundError,
    NotificationError,
)
from pulsecheck.core.logging import redact_id
from pulsecheck.core.protocols import (
    IClinicalHandoffClient,
    IEscalationStore,
    IFallbackAlerter,
    IUserDirectory,
)
from pulsecheck.escalation.transitions import ensure_transition
from pulsecheck.models.escalation import (
    EscalationRecord,
    EscalationTier,
    HandoffStatus,
    RecordStatus,
)
from pulsecheck.models.handoff import ClinicalHandoffPayload, HandoffReceipt, ShortUser

logger = structlog.get_logger(__name__)


class HandoffOrchestrator:
    """Submits a record to the clinical service exactly once.

    The record's ``handoff_status`` is moved ``pending -> submitted`` with a
    conditional write before the external call; only the caller that wins that
    write talks to the clinical service. The record id doubles as the
    idempotency key so a retried request after a timeout cannot open a second
    clinical case.
    """

    def __init__(
        self,
        store: IEscalationStore,
        client: IClinicalHandoffClient,
        users: IUserDirectory,
        fallback: Optional[IFallbackAlerter] = None,
        *,
        max_attempts: int = 3,
        backoff_seconds: float = 0.5,
        callback_base_url: str = "",
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._store = store
        self._client = client
        self._users = users
        self._fallback = fallback
        self._max_attempts = max(1, max_attempts)
        self._backoff_seconds = backoff_seconds
        self._callback_base_url = callback_base_url
        self._sleep = sleep

    def request_handoff(self, record: EscalationRecord) -> EscalationRecord:
        """Run the handoff for a record in ``handoff-requested``.

        Returns the record as persisted afterwards. A caller that loses the
        claim gets the current record back without submitting anything.
        """
        if record.status != RecordStatus.HANDOFF_REQUESTED or record.handoff_status != HandoffStatus.PENDING:
            return record

        athlete = self._short_user(record.user_id)
        payload = ClinicalHandoffPayload.from_record(record, athlete, self._callback_base_url)

        try:
            claimed = self._store.update_record(
                record.prepare_update(
                    "handoff_submitted",
                    handoff_status=HandoffStatus.SUBMITTED,
                    guard_handoff=True,
                )
            )
        except ConcurrencyConflictError:
            logger.info("HANDOFF_CLAIM_LOST", escalation_id=record.id)
            return self._reload(record.id)

        logger.info(
            "HANDOFF_CLAIMED",
            escalation_id=claimed.id,
            user_id=redact_id(claimed.user_id),
            tier=int(claimed.tier),
        )

        receipt, attempts, error = self._submit_with_retry(payload, claimed.id)
        if receipt is not None:
            return self._mark_confirmed(claimed, receipt, attempts)
        return self._mark_failed(claimed, error, attempts)

    def _submit_with_retry(
        self, payload: ClinicalHandoffPayload, idempotency_key: str
    ) -> tuple[HandoffReceipt | None, int, HandoffError | None]:
        last_error: HandoffError | None = None
        for attempt in range(self._max_attempts):
            try:
                return self._client.submit(payload, idempotency_key), attempt + 1, None
            except HandoffError as exc:
                last_error = exc
            except Exception as exc:
                # Anything else from the client is a defect on its side, never retried.
                logger.error("HANDOFF_CLIENT_ERROR", escalation_id=idempotency_key, exc_info=True)
                last_error = HandoffError(
                    f"Clinical client raised {type(exc).__name__}", retryable=False
                )
            logger.warning(
                "HANDOFF_ATTEMPT_FAILED",
                escalation_id=idempotency_key,
                attempt=attempt + 1,
                retryable=last_error.retryable,
                status_code=last_error.status_code,
            )
            if not last_error.retryable or attempt == self._max_attempts - 1:
                return None, attempt + 1, last_error
            self._sleep(self._backoff_seconds * (2 ** attempt))
        return None, self._max_attempts, last_error

    def _mark_confirmed(
        self, record: EscalationRecord, receipt: HandoffReceipt, attempts: int
    ) -> EscalationRecord:
        ensure_transition(record, RecordStatus.HANDOFF_COMPLETE)
        update = record.prepare_update(
            "handoff_confirmed",
            status=RecordStatus.HANDOFF_COMPLETE,
            handoff_status=HandoffStatus.CONFIRMED,
            guard_handoff=True,
            detail=f"clinical reference {receipt.reference_id}",
            clinical_reference_id=receipt.reference_id,
            handoff_attempts=attempts,
        )
        try:
            updated = self._store.update_record(update)
        except ConcurrencyConflictError:
            logger.error(
                "HANDOFF_RESULT_NOT_RECORDED",
                escalation_id=record.id,
                clinical_reference_id=receipt.reference_id,
            )
            return self._reload(record.id)
        logger.info(
            "HANDOFF_CONFIRMED",
            escalation_id=record.id,
            clinical_reference_id=receipt.reference_id,
            attempts=attempts,
        )
        return updated

    def _mark_failed(
        self, record: EscalationRecord, error: HandoffError | None, attempts: int
    ) -> EscalationRecord:
        ensure_transition(record, RecordStatus.HANDOFF_FAILED)
        reason = str(error) if error is not None else "handoff failed"
        update = record.prepare_update(
            "handoff_failed",
            status=RecordStatus.HANDOFF_FAILED,
            handoff_status=HandoffStatus.FAILED,
            guard_handoff=True,
            detail=f"after {attempts} attempt(s)",
            handoff_attempts=attempts,
            handoff_error=reason,
        )
        try:
            updated = self._store.update_record(update)
        except ConcurrencyConflictError:
            logger.error("HANDOFF_RESULT_NOT_RECORDED", escalation_id=record.id, outcome="failed")
            updated = self._reload(record.id)
        else:
            logger.error(
                "HANDOFF_FAILED",
                escalation_id=record.id,
                tier=int(record.tier),
                attempts=attempts,
            )

        if record.tier == EscalationTier.CRITICAL_RISK:
            self._alert_fallback(updated, reason)
        return updated

    def _alert_fallback(self, record: EscalationRecord, reason: str) -> None:
        if self._fallback is None:
            logger.critical("FALLBACK_ALERTER_MISSING", escalation_id=record.id)
            return
        try:
            self._fallback.alert(record, reason)
        except NotificationError as exc:
            logger.critical("FALLBACK_ALERT_FAILED", escalation_id=record.id, error=str(exc))
        except Exception:
            logger.critical("FALLBACK_ALERT_FAILED", escalation_id=record.id, exc_info=True)

    def _short_user(self, user_id: str) -> ShortUser:
        """Redacted identity for the payload. A directory outage must not stop the handoff."""
        try:
            profile = self._users.get_profile(user_id)
        except Exception:
            logger.warning("HANDOFF_PROFILE_UNAVAILABLE", user_id=redact_id(user_id), exc_info=True)
            profile = None
        return ShortUser.from_profile(user_id, profile)

    def _reload(self, record_id: str) -> EscalationRecord:
        current = self._store.get_record(record_id)
        if current is None:
            raise NotFoundError(f"Escalation {record_id} not found")
        return current
