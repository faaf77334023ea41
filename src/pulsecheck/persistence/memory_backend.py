"""In-memory backends for unit tests and local development: dict-backed fakes.

A single re-entrant lock per store stands in for DynamoDB's conditional writes
and transactions, so the same conflict semantics hold under threads.
"""

from __future__ import annotations

import threading
from typing import Any

from pulsecheck.core.exceptions import (
    ConcurrencyConflictError,
    DuplicateConditionError,
    NotFoundError,
)
from pulsecheck.models.condition import EscalationCondition
from pulsecheck.models.escalation import (
    ConversationEscalationState,
    EscalationRecord,
    EscalationTier,
    RecordStatus,
    RecordUpdate,
)


class MemoryEscalationStore:
    """Dict-backed IEscalationStore."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._records: dict[str, EscalationRecord] = {}
        self._states: dict[str, ConversationEscalationState] = {}

    def get_record(self, record_id: str) -> EscalationRecord | None:
        with self._lock:
            record = self._records.get(record_id)
            return record.model_copy(deep=True) if record else None

    def get_state(self, conversation_id: str) -> ConversationEscalationState | None:
        with self._lock:
            state = self._states.get(conversation_id)
            return state.model_copy() if state else None

    def create_record(
        self,
        record: EscalationRecord,
        state: ConversationEscalationState,
        expected_version: int,
        supersede: RecordUpdate | None = None,
    ) -> None:
        with self._lock:
            if record.id in self._records:
                raise ConcurrencyConflictError(f"Escalation {record.id} already exists")
            stored = self._states.get(state.conversation_id)
            current_version = stored.version if stored else 0
            if current_version != expected_version:
                raise ConcurrencyConflictError(
                    f"Conversation state version moved: expected {expected_version}, "
                    f"found {current_version}"
                )
            superseded = None
            if supersede is not None:
                previous = self._records.get(supersede.record_id)
                if previous is None or not supersede.matches(previous):
                    raise ConcurrencyConflictError(
                        f"Superseded escalation {supersede.record_id} changed concurrently"
                    )
                superseded = supersede.apply(previous)

            self._records[record.id] = record.model_copy(deep=True)
            self._states[state.conversation_id] = state.model_copy()
            if superseded is not None:
                self._records[superseded.id] = superseded

    def update_record(self, update: RecordUpdate) -> EscalationRecord:
        with self._lock:
            return self._apply(update)

    def update_record_and_release(
        self, update: RecordUpdate, conversation_id: str
    ) -> EscalationRecord:
        with self._lock:
            updated = self._apply(update)
            state = self._states.get(conversation_id)
            if state is not None and state.active_record_id == update.record_id:
                self._states[conversation_id] = state.model_copy(
                    update={
                        "active_record_id": None,
                        "active_tier": EscalationTier.NONE,
                        "is_in_safety_mode": False,
                        "version": state.version + 1,
                    }
                )
            return updated

    def list_records(
        self,
        *,
        conversation_id: str | None = None,
        user_id: str | None = None,
        coach_id: str | None = None,
        status: RecordStatus | None = None,
    ) -> list[EscalationRecord]:
        with self._lock:
            records = [
                r.model_copy(deep=True)
                for r in self._records.values()
                if (conversation_id is None or r.conversation_id == conversation_id)
                and (user_id is None or r.user_id == user_id)
                and (coach_id is None or r.coach_id == coach_id)
                and (status is None or r.status == status)
            ]
        return sorted(records, key=lambda r: r.created_at, reverse=True)

    def _apply(self, update: RecordUpdate) -> EscalationRecord:
        current = self._records.get(update.record_id)
        if current is None:
            raise NotFoundError(f"Escalation {update.record_id} not found")
        if not update.matches(current):
            raise ConcurrencyConflictError(
                f"Escalation {update.record_id} changed concurrently (now {current.status})"
            )
        updated = update.apply(current)
        self._records[updated.id] = updated
        return updated.model_copy(deep=True)


class MemoryConditionStore:
    """Dict-backed IConditionStore. Active (tier, category) pairs are unique."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._conditions: dict[str, EscalationCondition] = {}

    def get_condition(self, condition_id: str) -> EscalationCondition | None:
        with self._lock:
            condition = self._conditions.get(condition_id)
            return condition.model_copy(deep=True) if condition else None

    def list_conditions(
        self, *, active_only: bool = False, tier: int | None = None
    ) -> list[EscalationCondition]:
        with self._lock:
            items = [
                c.model_copy(deep=True)
                for c in self._conditions.values()
                if (not active_only or c.is_active) and (tier is None or c.tier == tier)
            ]
        return sorted(items, key=lambda c: (c.tier, -c.priority, c.title))

    def create_condition(self, condition: EscalationCondition) -> None:
        with self._lock:
            if condition.id in self._conditions:
                raise ConcurrencyConflictError(f"Condition {condition.id} already exists")
            if condition.is_active:
                self._check_unique(condition, ignore_id=None)
            self._conditions[condition.id] = condition.model_copy(deep=True)

    def replace_condition(
        self, previous: EscalationCondition, updated: EscalationCondition
    ) -> None:
        with self._lock:
            stored = self._conditions.get(previous.id)
            if stored is None:
                raise NotFoundError(f"Condition {previous.id} not found")
            if stored.updated_at != previous.updated_at:
                raise ConcurrencyConflictError(f"Condition {previous.id} changed concurrently")
            if updated.is_active:
                self._check_unique(updated, ignore_id=updated.id)
            self._conditions[updated.id] = updated.model_copy(deep=True)

    def delete_condition(self, condition: EscalationCondition) -> None:
        with self._lock:
            stored = self._conditions.get(condition.id)
            if stored is None:
                raise NotFoundError(f"Condition {condition.id} not found")
            if stored.updated_at != condition.updated_at:
                raise ConcurrencyConflictError(f"Condition {condition.id} changed concurrently")
            del self._conditions[condition.id]

    def _check_unique(self, condition: EscalationCondition, ignore_id: str | None) -> None:
        for other in self._conditions.values():
            if (
                other.id != ignore_id
                and other.is_active
                and other.uniqueness_key == condition.uniqueness_key
            ):
                raise DuplicateConditionError(int(condition.tier), condition.category.value)


class MemoryCacheBackend:
    """Dict-backed ICacheBackend."""

    def __init__(self) -> None:
        self._store: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._store.get(key)

    def setex(self, key: str, ttl: int, value: str) -> None:
        self._store[key] = value

    def delete(self, key: str) -> None:
        self._store.pop(key, None)


class MemoryUserDirectory:
    """Dict-backed IUserDirectory seeded with raw profile documents."""

    def __init__(self, profiles: dict[str, dict[str, Any]] | None = None) -> None:
        self._profiles: dict[str, dict[str, Any]] = dict(profiles or {})
        self._coaches: dict[str, str] = {}

    def add_profile(self, user_id: str, profile: dict[str, Any]) -> None:
        self._profiles[user_id] = profile

    def link_coach(self, athlete_id: str, coach_id: str) -> None:
        self._coaches[athlete_id] = coach_id

    def get_profile(self, user_id: str) -> dict[str, Any] | None:
        return self._profiles.get(user_id)

    def get_linked_coach(self, user_id: str) -> str | None:
        return self._coaches.get(user_id)
