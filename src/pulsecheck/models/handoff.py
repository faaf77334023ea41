"""Clinical handoff payload models sent to the external clinical service."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import Field

from pulsecheck.models.base import DocumentModel, utc_now
from pulsecheck.models.escalation import EscalationCategory, EscalationRecord, EscalationTier


class ShortUser(DocumentModel):
    """Redacted identity: id and display name only, no free-text PHI."""

    user_id: str
    display_name: str = "Unknown User"

    @classmethod
    def from_profile(cls, user_id: str, profile: dict[str, Any] | None) -> "ShortUser":
        profile = profile or {}
        name = (profile.get("displayName") or profile.get("username") or "").strip()
        return cls(user_id=user_id, display_name=name or "Unknown User")


class ClinicalHandoffPayload(DocumentModel):
    escalation_id: str  # also sent as the idempotency key
    user_id: str
    conversation_id: str
    athlete: ShortUser
    tier: EscalationTier
    category: EscalationCategory
    trigger_content: str
    classification_reason: str
    conversation_summary: Optional[str] = None
    escalation_timestamp: datetime = Field(default_factory=utc_now)
    callback_url: str = ""

    @classmethod
    def from_record(
        cls, record: EscalationRecord, athlete: ShortUser, callback_base_url: str = ""
    ) -> "ClinicalHandoffPayload":
        callback = ""
        if callback_base_url:
            callback = f"{callback_base_url.rstrip('/')}/api/clinical-callback?userId={record.user_id}"
        return cls(
            escalation_id=record.id,
            user_id=record.user_id,
            conversation_id=record.conversation_id,
            athlete=athlete,
            tier=record.tier,
            category=record.category,
            trigger_content=record.trigger_content,
            classification_reason=record.classification_reason,
            conversation_summary=record.conversation_summary,
            callback_url=callback,
        )


class HandoffReceipt(DocumentModel):
    """Clinical service acknowledgement of a submitted escalation."""

    reference_id: str
    status: str = "received"  # received, processing, assigned
    estimated_contact_time: Optional[str] = None
