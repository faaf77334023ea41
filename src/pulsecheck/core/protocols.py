"""Protocol interfaces for all PulseCheck abstractions.

All inter-layer communication uses these Protocols: structural typing,
no inheritance required, easy to test with isinstance().
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from pulsecheck.models.coach import CoachEscalationSummary
    from pulsecheck.models.condition import EscalationCondition
    from pulsecheck.models.escalation import (
        ConversationEscalationState,
        EscalationRecord,
        RecordStatus,
        RecordUpdate,
    )
    from pulsecheck.models.handoff import ClinicalHandoffPayload, HandoffReceipt


# ---------------------------------------------------------------------------
# Persistence: Escalation records + conversation state
# ---------------------------------------------------------------------------

@runtime_checkable
class IEscalationStore(Protocol):
    """Append-only escalation records plus one live state document per conversation."""

    def get_record(self, record_id: str) -> EscalationRecord | None: ...

    def get_state(self, conversation_id: str) -> ConversationEscalationState | None: ...

    def create_record(
        self,
        record: EscalationRecord,
        state: ConversationEscalationState,
        expected_version: int,
        supersede: RecordUpdate | None = None,
    ) -> None:
        """Atomically insert ``record`` and write ``state`` if the stored state
        version still equals ``expected_version``. ``supersede`` closes the
        previously active record in the same write.

        Raises ConcurrencyConflictError when any condition fails.
        """
        ...

    def update_record(self, update: RecordUpdate) -> EscalationRecord: ...

    def update_record_and_release(
        self, update: RecordUpdate, conversation_id: str
    ) -> EscalationRecord:
        """Apply ``update`` and clear the conversation's active slot if it still
        points at the record, in one atomic write."""
        ...

    def list_records(
        self,
        *,
        conversation_id: str | None = None,
        user_id: str | None = None,
        coach_id: str | None = None,
        status: RecordStatus | None = None,
    ) -> list[EscalationRecord]: ...


# ---------------------------------------------------------------------------
# Persistence: Escalation conditions
# ---------------------------------------------------------------------------

@runtime_checkable
class IConditionStore(Protocol):
    """Admin reference data. At most one active condition per (tier, category)."""

    def get_condition(self, condition_id: str) -> EscalationCondition | None: ...

    def list_conditions(
        self, *, active_only: bool = False, tier: int | None = None
    ) -> list[EscalationCondition]: ...

    def create_condition(self, condition: EscalationCondition) -> None: ...

    def replace_condition(
        self, previous: EscalationCondition, updated: EscalationCondition
    ) -> None: ...

    def delete_condition(self, condition: EscalationCondition) -> None:
        """Remove ``condition`` and release its (tier, category) slot. Raises
        ConcurrencyConflictError if it changed since it was read."""
        ...


# ---------------------------------------------------------------------------
# Persistence: Cache Backend
# ---------------------------------------------------------------------------

@runtime_checkable
class ICacheBackend(Protocol):
    """Redis-compatible cache interface."""

    def get(self, key: str) -> str | None: ...

    def setex(self, key: str, ttl: int, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


# ---------------------------------------------------------------------------
# User directory
# ---------------------------------------------------------------------------

@runtime_checkable
class IUserDirectory(Protocol):
    """Read-only view of user profiles and coach links."""

    def get_profile(self, user_id: str) -> dict[str, Any] | None: ...

    def get_linked_coach(self, user_id: str) -> str | None: ...


# ---------------------------------------------------------------------------
# External services
# ---------------------------------------------------------------------------

@runtime_checkable
class IClinicalHandoffClient(Protocol):
    """External HIPAA clinical service. Raises HandoffError on failure."""

    def submit(
        self, payload: ClinicalHandoffPayload, idempotency_key: str
    ) -> HandoffReceipt: ...


@runtime_checkable
class ICoachNotifier(Protocol):
    """Delivers an escalation summary to a coach. Never carries message content."""

    def notify(self, coach_id: str, summary: CoachEscalationSummary) -> None: ...


@runtime_checkable
class IFallbackAlerter(Protocol):
    """Pages on-call staff when a mandatory handoff could not be completed."""

    def alert(self, record: EscalationRecord, reason: str) -> None: ...
