"""Escalation engine: turns classifier output into auditable escalation records.

Per tier:

- MonitorOnly: record seeded ``acknowledged``, coach notified, no modal.
- ElevatedRisk: record seeded ``pending-consent``, coach notified, consent modal.
  Handoff only after the user accepts.
- CriticalRisk: record seeded ``handoff-requested``, coach notified, mandatory
  modal. Handoff runs before ``evaluate`` returns.

One conversation has at most one active record. A classification at or below
the active tier is suppressed; a higher one supersedes the active record in
the same atomic write that creates the new one.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

import structlog

from pulsecheck.core.exceptions import (
    ConcurrencyConflictError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from pulsecheck.core.logging import redact_id
from pulsecheck.core.protocols import IEscalationStore
from pulsecheck.escalation.handoff import HandoffOrchestrator
from pulsecheck.escalation.transitions import ensure_transition
from pulsecheck.models.base import utc_now
from pulsecheck.models.coach import CoachEscalationView
from pulsecheck.models.escalation import (
    Classification,
    ConsentResult,
    ConsentStatus,
    ConversationEscalationState,
    ConversationView,
    EscalationRecord,
    EscalationTier,
    EvaluationResult,
    HandoffStatus,
    RecordStatus,
    RecordUpdate,
    StatusHistoryEntry,
)
from pulsecheck.notifications.dispatcher import CoachNotificationDispatcher

logger = structlog.get_logger(__name__)

_SEED = {
    EscalationTier.MONITOR_ONLY: (
        RecordStatus.ACKNOWLEDGED, ConsentStatus.NOT_REQUIRED, HandoffStatus.NOT_REQUIRED,
    ),
    EscalationTier.ELEVATED_RISK: (
        RecordStatus.PENDING_CONSENT, ConsentStatus.PENDING, HandoffStatus.NOT_REQUIRED,
    ),
    EscalationTier.CRITICAL_RISK: (
        RecordStatus.HANDOFF_REQUESTED, ConsentStatus.NOT_REQUIRED, HandoffStatus.PENDING,
    ),
}


def _new_id() -> str:
    return str(uuid.uuid4())


class EscalationEngine:
    """Core state machine over IEscalationStore."""

    def __init__(
        self,
        store: IEscalationStore,
        handoff: HandoffOrchestrator,
        notifications: Optional[CoachNotificationDispatcher] = None,
        *,
        cas_max_attempts: int = 5,
        consent_expiry_hours: int = 72,
        id_factory: Callable[[], str] = _new_id,
    ) -> None:
        self._store = store
        self._handoff = handoff
        self._notifications = notifications
        self._cas_max_attempts = max(1, cas_max_attempts)
        self._consent_expiry = timedelta(hours=consent_expiry_hours)
        self._id_factory = id_factory

    # ---- evaluate ----

    def evaluate(
        self,
        conversation_id: str,
        user_id: str,
        message: str,
        classification: Classification | dict[str, Any],
        message_id: str = "",
        conversation_summary: str | None = None,
    ) -> EvaluationResult:
        """Apply one classified chat message to the conversation.

        ``conversation_summary`` is stored on a newly created record and sent
        with its clinical handoff.

        Raises:
            ValidationError: malformed classification or missing ids. Nothing is written.
            ConcurrencyConflictError: the conversation kept changing for every attempt.
        """
        parsed = Classification.parse(classification)
        if not conversation_id or not user_id:
            raise ValidationError("conversation_id and user_id are required")

        record: EscalationRecord | None = None
        for attempt in range(self._cas_max_attempts):
            state = self._store.get_state(conversation_id) or ConversationEscalationState.empty(
                conversation_id
            )
            active = self._active_record(state)

            if active is not None and active.tier >= parsed.tier:
                logger.info(
                    "ESCALATION_SUPPRESSED",
                    conversation_id=conversation_id,
                    escalation_id=active.id,
                    active_tier=int(active.tier),
                    classified_tier=int(parsed.tier),
                )
                return EvaluationResult(outcome="suppressed", record=active)

            if parsed.tier == EscalationTier.NONE or not parsed.should_escalate:
                return EvaluationResult(outcome="noop")

            record = self._seed_record(
                conversation_id, user_id, message, parsed, message_id, conversation_summary
            )
            supersede = self._supersede_update(active, record) if active is not None else None
            new_state = state.model_copy(update={
                "active_record_id": record.id,
                "active_tier": record.tier,
                "is_in_safety_mode": record.tier == EscalationTier.CRITICAL_RISK,
                "last_escalation_at": record.created_at,
                "version": state.version + 1,
            })
            try:
                self._store.create_record(record, new_state, state.version, supersede)
            except ConcurrencyConflictError:
                logger.info(
                    "ESCALATION_CAS_CONFLICT",
                    conversation_id=conversation_id,
                    attempt=attempt + 1,
                )
                record = None
                continue
            break

        if record is None:
            raise ConcurrencyConflictError(
                f"Conversation {conversation_id} changed on every one of "
                f"{self._cas_max_attempts} attempts"
            )

        logger.info(
            "ESCALATION_RECORD_CREATED",
            escalation_id=record.id,
            conversation_id=conversation_id,
            user_id=redact_id(user_id),
            tier=int(record.tier),
            category=record.category.value,
            status=record.status.value,
            superseded=active.id if active is not None else None,
        )

        # Mandatory handoff runs before anything on the coach path.
        if record.tier == EscalationTier.CRITICAL_RISK:
            logger.critical("CRITICAL_ESCALATION_HANDOFF", escalation_id=record.id)
            record = self._handoff.request_handoff(record)

        self._notify_coach(record)

        return EvaluationResult(
            outcome="created",
            record=record,
            requires_user_consent_modal=record.tier == EscalationTier.ELEVATED_RISK,
            requires_mandatory_modal=record.tier == EscalationTier.CRITICAL_RISK,
        )

    def _notify_coach(self, record: EscalationRecord) -> None:
        if self._notifications is None:
            return
        try:
            self._notifications.dispatch(record)
        except Exception:
            logger.error("COACH_DISPATCH_FAILED", escalation_id=record.id, exc_info=True)

    def _active_record(self, state: ConversationEscalationState) -> EscalationRecord | None:
        if not state.active_record_id:
            return None
        record = self._store.get_record(state.active_record_id)
        if record is None or not record.is_active:
            return None
        return record

    def _seed_record(
        self,
        conversation_id: str,
        user_id: str,
        message: str,
        classification: Classification,
        message_id: str,
        conversation_summary: str | None = None,
    ) -> EscalationRecord:
        status, consent, handoff = _SEED[classification.tier]
        now = utc_now()
        return EscalationRecord(
            id=self._id_factory(),
            user_id=user_id,
            conversation_id=conversation_id,
            tier=classification.tier,
            category=classification.category,
            status=status,
            consent_status=consent,
            handoff_status=handoff,
            trigger_content=message,
            trigger_message_id=message_id,
            classification_reason=classification.reason,
            classification_confidence=classification.confidence,
            conversation_summary=conversation_summary or None,
            created_at=now,
            updated_at=now,
            history=[
                StatusHistoryEntry(
                    at=now,
                    event="created",
                    actor="classifier",
                    to_status=status,
                    consent_status=consent,
                    handoff_status=handoff,
                    detail=classification.tier.label,
                )
            ],
        )

    @staticmethod
    def _supersede_update(active: EscalationRecord, replacement: EscalationRecord) -> RecordUpdate:
        ensure_transition(active, RecordStatus.CLOSED)
        return active.prepare_update(
            "superseded",
            status=RecordStatus.CLOSED,
            detail=f"superseded by {replacement.id} ({replacement.tier.label})",
            closed_at=replacement.created_at,
            closed_by="system",
            close_reason="superseded",
        )

    # ---- consent ----

    def submit_consent(self, escalation_id: str, user_id: str, accepted: bool) -> ConsentResult:
        """Record the user's consent decision for an ElevatedRisk record.

        Repeating the decision already applied is a no-op success; the opposite
        decision raises InvalidStateError and changes nothing.
        """
        for attempt in range(self._cas_max_attempts):
            record = self._store.get_record(escalation_id)
            if record is None or record.user_id != user_id:
                raise NotFoundError(f"Escalation {escalation_id} not found")
            try:
                return self._apply_consent(record, accepted)
            except ConcurrencyConflictError:
                logger.info("CONSENT_CAS_CONFLICT", escalation_id=escalation_id, attempt=attempt + 1)
        raise ConcurrencyConflictError(f"Escalation {escalation_id} kept changing during consent")

    def _apply_consent(self, record: EscalationRecord, accepted: bool) -> ConsentResult:
        if record.tier != EscalationTier.ELEVATED_RISK:
            raise InvalidStateError(record.id, record.status.value, "consent does not apply to this tier")

        wanted = ConsentStatus.ACCEPTED if accepted else ConsentStatus.DECLINED
        if record.consent_status == ConsentStatus.PENDING:
            if record.status != RecordStatus.PENDING_CONSENT:
                raise InvalidStateError(record.id, record.status.value, "consent is no longer awaited")
            if not accepted:
                return self._decline(record)
            ensure_transition(record, RecordStatus.CONSENT_ACCEPTED)
            record = self._store.update_record(
                record.prepare_update(
                    "consent_accepted",
                    status=RecordStatus.CONSENT_ACCEPTED,
                    consent_status=ConsentStatus.ACCEPTED,
                    actor="user",
                    consent_at=utc_now(),
                )
            )
            logger.info("CONSENT_ACCEPTED", escalation_id=record.id)
        elif record.consent_status != wanted:
            raise InvalidStateError(
                record.id, record.status.value, f"consent already {record.consent_status.value}"
            )
        elif not accepted:
            return ConsentResult(record=record, message="Consent decision already recorded")

        return self._continue_handoff(record)

    def _decline(self, record: EscalationRecord) -> ConsentResult:
        ensure_transition(record, RecordStatus.CONSENT_DECLINED)
        now = utc_now()
        record = self._store.update_record_and_release(
            record.prepare_update(
                "consent_declined",
                status=RecordStatus.CONSENT_DECLINED,
                consent_status=ConsentStatus.DECLINED,
                actor="user",
                consent_at=now,
                closed_at=now,
                closed_by="user",
                close_reason="consent_declined",
            ),
            record.conversation_id,
        )
        logger.info("CONSENT_DECLINED", escalation_id=record.id)
        return ConsentResult(record=record, message="Consent declined")

    def _continue_handoff(self, record: EscalationRecord) -> ConsentResult:
        """Drive an accepted record through handoff. Safe to re-run: each step
        only fires from the status it expects."""
        if record.status == RecordStatus.CONSENT_ACCEPTED:
            ensure_transition(record, RecordStatus.HANDOFF_REQUESTED)
            record = self._store.update_record(
                record.prepare_update(
                    "handoff_requested",
                    status=RecordStatus.HANDOFF_REQUESTED,
                    handoff_status=HandoffStatus.PENDING,
                )
            )
        if record.status == RecordStatus.HANDOFF_REQUESTED:
            record = self._handoff.request_handoff(record)

        if record.status == RecordStatus.HANDOFF_FAILED:
            return ConsentResult(
                record=record,
                handoff_failed=True,
                retryable=True,
                message="We could not reach the clinical team right now. Please try again shortly.",
            )
        return ConsentResult(record=record, message="Consent accepted")

    # ---- lifecycle ----

    def acknowledge(self, escalation_id: str, actor: str) -> EscalationRecord:
        """Coach or clinician acknowledges a record whose handoff has settled."""
        for _ in range(self._cas_max_attempts):
            record = self.get_record(escalation_id)
            if record.status == RecordStatus.ACKNOWLEDGED:
                return record
            ensure_transition(record, RecordStatus.ACKNOWLEDGED)
            try:
                updated = self._store.update_record(
                    record.prepare_update("acknowledged", status=RecordStatus.ACKNOWLEDGED, actor=actor)
                )
            except ConcurrencyConflictError:
                continue
            logger.info("ESCALATION_ACKNOWLEDGED", escalation_id=escalation_id, actor=actor)
            return updated
        raise ConcurrencyConflictError(f"Escalation {escalation_id} kept changing during acknowledge")

    def close(self, escalation_id: str, actor: str, reason: str = "resolved") -> EscalationRecord:
        """Close any non-terminal record and release the conversation slot."""
        for _ in range(self._cas_max_attempts):
            record = self.get_record(escalation_id)
            if record.status == RecordStatus.CLOSED:
                return record
            ensure_transition(record, RecordStatus.CLOSED)
            try:
                updated = self._store.update_record_and_release(
                    record.prepare_update(
                        "closed",
                        status=RecordStatus.CLOSED,
                        actor=actor,
                        detail=reason,
                        closed_at=utc_now(),
                        closed_by=actor,
                        close_reason=reason,
                    ),
                    record.conversation_id,
                )
            except ConcurrencyConflictError:
                continue
            logger.info("ESCALATION_CLOSED", escalation_id=escalation_id, actor=actor, reason=reason)
            return updated
        raise ConcurrencyConflictError(f"Escalation {escalation_id} kept changing during close")

    def set_summary(self, escalation_id: str, summary: str, actor: str = "system") -> EscalationRecord:
        """Attach the conversation summary forwarded to the clinical team.

        Allowed in any status; later handoffs for the record carry the latest text.
        """
        summary = summary.strip()
        if not summary:
            raise ValidationError("summary must not be empty")
        record = self.get_record(escalation_id)
        updated = self._store.update_record(
            record.prepare_update(
                "summary_set",
                actor=actor,
                guard_status=False,
                conversation_summary=summary,
            )
        )
        logger.info("ESCALATION_SUMMARY_SET", escalation_id=escalation_id, length=len(summary))
        return updated

    def expire_stale_consents(self, now: datetime | None = None) -> list[EscalationRecord]:
        """Decline ElevatedRisk records whose consent has been pending too long."""
        now = now or utc_now()
        cutoff = now - self._consent_expiry
        expired: list[EscalationRecord] = []
        for record in self._store.list_records(status=RecordStatus.PENDING_CONSENT):
            if record.created_at > cutoff:
                continue
            try:
                expired.append(
                    self._store.update_record_and_release(
                        record.prepare_update(
                            "consent_expired",
                            status=RecordStatus.CONSENT_DECLINED,
                            consent_status=ConsentStatus.DECLINED,
                            detail=f"no decision within {self._consent_expiry}",
                            closed_at=now,
                            closed_by="system",
                            close_reason="consent_timed_out",
                        ),
                        record.conversation_id,
                    )
                )
            except ConcurrencyConflictError:
                logger.info("CONSENT_EXPIRY_SKIPPED", escalation_id=record.id)
        if expired:
            logger.info("CONSENTS_EXPIRED", count=len(expired))
        return expired

    # ---- reads ----

    def get_record(self, escalation_id: str) -> EscalationRecord:
        record = self._store.get_record(escalation_id)
        if record is None:
            raise NotFoundError(f"Escalation {escalation_id} not found")
        return record

    def get_conversation_state(self, conversation_id: str) -> ConversationEscalationState:
        return self._store.get_state(conversation_id) or ConversationEscalationState.empty(
            conversation_id
        )

    def conversation_view(self, conversation_id: str) -> ConversationView:
        """UI state for one conversation, derived from its escalation state only."""
        state = self.get_conversation_state(conversation_id)
        active = self._active_record(state)
        if active is None:
            return ConversationView(conversation_id=conversation_id)
        return ConversationView(
            conversation_id=conversation_id,
            active_record_id=active.id,
            active_tier=active.tier,
            is_in_safety_mode=state.is_in_safety_mode,
            awaiting_consent=active.status == RecordStatus.PENDING_CONSENT,
            handoff_status=active.handoff_status,
        )

    def records_for_user(self, user_id: str) -> list[EscalationRecord]:
        return self._store.list_records(user_id=user_id)

    def records_for_conversation(self, conversation_id: str) -> list[EscalationRecord]:
        return self._store.list_records(conversation_id=conversation_id)

    def recent_records(self, limit: int = 50) -> list[EscalationRecord]:
        """Newest records across all conversations, for the admin view."""
        if limit < 1:
            raise ValidationError("limit must be at least 1")
        return self._store.list_records()[:limit]

    def coach_views(self, coach_id: str, active_only: bool = False) -> list[CoachEscalationView]:
        records = self._store.list_records(coach_id=coach_id)
        if active_only:
            records = [r for r in records if r.is_active]
        return [CoachEscalationView.from_record(r) for r in records]
