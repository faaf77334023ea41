"""Coach-facing escalation views. Status labels only, never clinical detail."""

from __future__ import annotations

from datetime import datetime

from pulsecheck.models.base import DocumentModel
from pulsecheck.models.escalation import (
    EscalationCategory,
    EscalationRecord,
    EscalationTier,
    HandoffStatus,
)


def coach_status_label(tier: EscalationTier, handoff_status: HandoffStatus) -> str:
    if tier == EscalationTier.CRITICAL_RISK:
        if handoff_status == HandoffStatus.CONFIRMED:
            return "Engaged with care"
        return "Clinical escalation initiated"
    if tier == EscalationTier.ELEVATED_RISK:
        if handoff_status == HandoffStatus.CONFIRMED:
            return "Connected with support"
        return "Elevated concern flagged"
    return "Being monitored"


class CoachEscalationSummary(DocumentModel):
    """What a coach notification carries."""

    escalation_id: str
    athlete_id: str
    tier: EscalationTier
    category: EscalationCategory

    @property
    def title(self) -> str:
        if self.tier == EscalationTier.MONITOR_ONLY:
            return "Athlete Check-In (Monitor)"
        return "Athlete Check-In Alert"

    @property
    def message(self) -> str:
        if self.tier == EscalationTier.MONITOR_ONLY:
            return (
                "An athlete you coach was flagged for monitor-only concern. "
                "Please review when you can."
            )
        return (
            "An athlete you coach had an escalation event and was handed off to a "
            "clinical professional. Please check your dashboard."
        )

    @classmethod
    def from_record(cls, record: EscalationRecord) -> "CoachEscalationSummary":
        return cls(
            escalation_id=record.id,
            athlete_id=record.user_id,
            tier=record.tier,
            category=record.category,
        )


class CoachEscalationView(DocumentModel):
    id: str
    athlete_id: str
    status_label: str
    tier: EscalationTier
    category: EscalationCategory
    flagged_at: datetime
    last_updated: datetime
    can_message: bool = True

    @classmethod
    def from_record(cls, record: EscalationRecord) -> "CoachEscalationView":
        return cls(
            id=record.id,
            athlete_id=record.user_id,
            status_label=coach_status_label(record.tier, record.handoff_status),
            tier=record.tier,
            category=record.category,
            flagged_at=record.created_at,
            last_updated=record.updated_at,
        )
