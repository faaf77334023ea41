"""Escalation domain models: tiers, records, conversation state, engine results.

Tier ordering drives suppression: a conversation's active tier can only be
raised by a new classification, never lowered.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from enum import IntEnum, StrEnum
from typing import Any, Literal, Optional

from pydantic import Field, ValidationError as PydanticValidationError, computed_field, field_validator

from pulsecheck.core.exceptions import ValidationError
from pulsecheck.models.base import DocumentModel, utc_now


class EscalationTier(IntEnum):
    NONE = 0
    MONITOR_ONLY = 1  # Notify coach, no user-facing modal
    ELEVATED_RISK = 2  # Consent-based clinical handoff
    CRITICAL_RISK = 3  # Mandatory clinical handoff

    @property
    def label(self) -> str:
        return {
            EscalationTier.NONE: "None",
            EscalationTier.MONITOR_ONLY: "Monitor Only",
            EscalationTier.ELEVATED_RISK: "Elevated Risk",
            EscalationTier.CRITICAL_RISK: "Critical Risk",
        }[self]


class EscalationCategory(StrEnum):
    # Typically tier 1
    PERFORMANCE_STRESS = "performance-stress"
    FATIGUE = "fatigue"
    EMOTIONAL_VARIABILITY = "emotional-variability"
    BURNOUT = "burnout"
    # Typically tier 2
    PERSISTENT_DISTRESS = "persistent-distress"
    ANXIETY_INDICATORS = "anxiety-indicators"
    DISORDERED_EATING = "disordered-eating"
    IDENTITY_IMPACT = "identity-impact"
    INJURY_PSYCHOLOGICAL = "injury-psychological"
    RECURRENT_TIER1 = "recurrent-tier1"
    # Typically tier 3
    SELF_HARM = "self-harm"
    SUICIDAL_IDEATION = "suicidal-ideation"
    IMMINENT_SAFETY_RISK = "imminent-safety-risk"
    SEVERE_PSYCHOLOGICAL_DISTRESS = "severe-psychological-distress"
    ABUSE_DISCLOSURE = "abuse-disclosure"
    RAPID_DETERIORATION = "rapid-deterioration"

    GENERAL = "general"

    @property
    def label(self) -> str:
        return _CATEGORY_LABELS[self]


_CATEGORY_LABELS = {
    EscalationCategory.PERFORMANCE_STRESS: "Performance Stress",
    EscalationCategory.FATIGUE: "Fatigue",
    EscalationCategory.EMOTIONAL_VARIABILITY: "Emotional Variability",
    EscalationCategory.BURNOUT: "Burnout",
    EscalationCategory.PERSISTENT_DISTRESS: "Persistent Distress",
    EscalationCategory.ANXIETY_INDICATORS: "Anxiety Indicators",
    EscalationCategory.DISORDERED_EATING: "Disordered Eating",
    EscalationCategory.IDENTITY_IMPACT: "Identity Impact",
    EscalationCategory.INJURY_PSYCHOLOGICAL: "Injury-Related",
    EscalationCategory.RECURRENT_TIER1: "Recurrent Concerns",
    EscalationCategory.SELF_HARM: "Self-Harm",
    EscalationCategory.SUICIDAL_IDEATION: "Suicidal Ideation",
    EscalationCategory.IMMINENT_SAFETY_RISK: "Imminent Safety Risk",
    EscalationCategory.SEVERE_PSYCHOLOGICAL_DISTRESS: "Severe Distress",
    EscalationCategory.ABUSE_DISCLOSURE: "Abuse Disclosure",
    EscalationCategory.RAPID_DETERIORATION: "Rapid Deterioration",
    EscalationCategory.GENERAL: "General",
}


class RecordStatus(StrEnum):
    PENDING_CONSENT = "pending-consent"
    CONSENT_ACCEPTED = "consent-accepted"
    CONSENT_DECLINED = "consent-declined"
    HANDOFF_REQUESTED = "handoff-requested"
    HANDOFF_COMPLETE = "handoff-complete"
    HANDOFF_FAILED = "handoff-failed"
    ACKNOWLEDGED = "acknowledged"
    CLOSED = "closed"


class ConsentStatus(StrEnum):
    NOT_REQUIRED = "not-required"
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"


class HandoffStatus(StrEnum):
    NOT_REQUIRED = "not-required"
    PENDING = "pending"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    FAILED = "failed"


# Records in these states no longer occupy the conversation's active slot.
INACTIVE_STATUSES = frozenset({RecordStatus.CONSENT_DECLINED, RecordStatus.CLOSED})


class Classification(DocumentModel):
    """Classifier output. Untrusted: validated strictly, never clamped or coerced."""

    tier: EscalationTier
    category: EscalationCategory = EscalationCategory.GENERAL
    confidence: float = Field(strict=True, ge=0.0, le=1.0)
    reason: str = ""
    should_escalate: bool = Field(strict=True)
    suggested_response: Optional[str] = None

    @field_validator("tier", mode="before")
    @classmethod
    def _integer_tier(cls, value: Any) -> Any:
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError("tier must be an integer between 0 and 3")
        return value

    @field_validator("confidence")
    @classmethod
    def _finite_confidence(cls, value: float) -> float:
        if math.isnan(value):
            raise ValueError("confidence must be a number between 0.0 and 1.0")
        return value

    @classmethod
    def parse(cls, raw: Any) -> "Classification":
        """Validate raw classifier output, raising the domain ValidationError."""
        if isinstance(raw, cls):
            return raw
        try:
            return cls.model_validate(raw)
        except PydanticValidationError as exc:
            raise ValidationError(
                "Invalid classifier output",
                errors=exc.errors(include_url=False, include_context=False),
            ) from exc


class StatusHistoryEntry(DocumentModel):
    """One append-only audit entry. Every record mutation writes exactly one."""

    at: datetime = Field(default_factory=utc_now)
    event: str
    actor: str = "system"
    from_status: Optional[RecordStatus] = None
    to_status: RecordStatus
    consent_status: ConsentStatus
    handoff_status: HandoffStatus
    detail: str = ""


class EscalationRecord(DocumentModel):
    """Durable audit entity for one detected risk event and its resolution."""

    id: str
    user_id: str
    conversation_id: str
    tier: EscalationTier
    category: EscalationCategory = EscalationCategory.GENERAL
    status: RecordStatus
    consent_status: ConsentStatus = ConsentStatus.NOT_REQUIRED
    handoff_status: HandoffStatus = HandoffStatus.NOT_REQUIRED

    trigger_content: str = ""
    trigger_message_id: str = ""
    classification_reason: str = ""
    classification_confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    conversation_summary: Optional[str] = None  # caller-supplied, forwarded to the clinical team

    coach_id: Optional[str] = None
    coach_notified: bool = False
    coach_notified_at: Optional[datetime] = None

    consent_at: Optional[datetime] = None
    clinical_reference_id: Optional[str] = None
    handoff_attempts: int = 0
    handoff_error: Optional[str] = None

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    closed_at: Optional[datetime] = None
    closed_by: Optional[str] = None
    close_reason: Optional[str] = None

    history: list[StatusHistoryEntry] = Field(default_factory=list)

    @property
    def is_active(self) -> bool:
        return self.status not in INACTIVE_STATUSES

    def history_entry(
        self,
        event: str,
        *,
        to_status: RecordStatus | None = None,
        consent_status: ConsentStatus | None = None,
        handoff_status: HandoffStatus | None = None,
        actor: str = "system",
        detail: str = "",
    ) -> StatusHistoryEntry:
        """Build the audit entry describing a mutation applied to this record."""
        return StatusHistoryEntry(
            event=event,
            actor=actor,
            from_status=self.status,
            to_status=to_status or self.status,
            consent_status=consent_status or self.consent_status,
            handoff_status=handoff_status or self.handoff_status,
            detail=detail,
        )

    def prepare_update(
        self,
        event: str,
        *,
        status: RecordStatus | None = None,
        consent_status: ConsentStatus | None = None,
        handoff_status: HandoffStatus | None = None,
        actor: str = "system",
        detail: str = "",
        guard_status: bool = True,
        guard_handoff: bool = False,
        **fields: Any,
    ) -> "RecordUpdate":
        """Describe a conditional mutation plus the history entry it appends.

        With ``guard_status`` the store only applies the update while the record
        is still in its current status; ``guard_handoff`` adds the same check on
        ``handoff_status``.
        """
        changes: dict[str, Any] = dict(fields)
        if status is not None:
            changes["status"] = status
        if consent_status is not None:
            changes["consent_status"] = consent_status
        if handoff_status is not None:
            changes["handoff_status"] = handoff_status
        return RecordUpdate(
            record_id=self.id,
            changes=changes,
            entry=self.history_entry(
                event,
                to_status=status,
                consent_status=consent_status,
                handoff_status=handoff_status,
                actor=actor,
                detail=detail,
            ),
            expected_status=self.status if guard_status else None,
            expected_handoff_status=self.handoff_status if guard_handoff else None,
        )


@dataclass
class RecordUpdate:
    """A conditional, history-appending change to one escalation record."""

    record_id: str
    changes: dict[str, Any]
    entry: StatusHistoryEntry
    expected_status: Optional[RecordStatus] = None
    expected_handoff_status: Optional[HandoffStatus] = None

    def matches(self, record: EscalationRecord) -> bool:
        if self.expected_status is not None and record.status != self.expected_status:
            return False
        if (
            self.expected_handoff_status is not None
            and record.handoff_status != self.expected_handoff_status
        ):
            return False
        return True

    def apply(self, record: EscalationRecord) -> EscalationRecord:
        data = record.model_dump()
        data.update(self.changes)
        data["updated_at"] = self.entry.at
        data["history"] = [*record.history, self.entry]
        return EscalationRecord.model_validate(data)


class ConversationEscalationState(DocumentModel):
    """Single current-state document per conversation."""

    conversation_id: str
    active_record_id: Optional[str] = None
    active_tier: EscalationTier = EscalationTier.NONE
    is_in_safety_mode: bool = False
    last_escalation_at: Optional[datetime] = None
    version: int = 0

    @classmethod
    def empty(cls, conversation_id: str) -> "ConversationEscalationState":
        return cls(conversation_id=conversation_id)


class EvaluationResult(DocumentModel):
    """What the chat endpoint renders. Modal behavior comes from the two flags only."""

    outcome: Literal["created", "suppressed", "noop"]
    record: Optional[EscalationRecord] = None
    requires_user_consent_modal: bool = False
    requires_mandatory_modal: bool = False

    @computed_field
    @property
    def suppressed(self) -> bool:
        return self.outcome == "suppressed"


class ConsentResult(DocumentModel):
    record: EscalationRecord
    handoff_failed: bool = False
    retryable: bool = False
    message: str = ""


class ConversationView(DocumentModel):
    """UI state for one conversation, derived only from its escalation state."""

    conversation_id: str
    active_record_id: Optional[str] = None
    active_tier: EscalationTier = EscalationTier.NONE
    is_in_safety_mode: bool = False
    awaiting_consent: bool = False
    handoff_status: HandoffStatus = HandoffStatus.NOT_REQUIRED
