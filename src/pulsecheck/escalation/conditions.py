"""Admin management of escalation conditions and the classifier training context."""

from __future__ import annotations

import uuid
from typing import Optional

import structlog

from pulsecheck.core.exceptions import NotFoundError
from pulsecheck.core.protocols import ICacheBackend, IConditionStore
from pulsecheck.models.base import utc_now
from pulsecheck.models.condition import (
    EscalationCondition,
    EscalationConditionInput,
    EscalationConditionUpdate,
)
from pulsecheck.models.escalation import EscalationTier

logger = structlog.get_logger(__name__)

TRAINING_CONTEXT_CACHE_KEY = "escalation:training-context"

_TIER_HEADINGS = {
    EscalationTier.MONITOR_ONLY: "### TIER 1: Monitor-Only (notify coach, adaptive support)",
    EscalationTier.ELEVATED_RISK: "### TIER 2: Elevated Risk (consent-based clinical escalation)",
    EscalationTier.CRITICAL_RISK: "### TIER 3: Critical Risk (MANDATORY clinical escalation)",
}

NO_CONDITIONS_CONTEXT = (
    "No specific conditions defined. Use clinical judgment based on standard "
    "sport psychology escalation criteria."
)


def build_training_context(conditions: list[EscalationCondition]) -> str:
    """Render active conditions as the tiered prompt section for the classifier."""
    sections = []
    for tier, heading in _TIER_HEADINGS.items():
        entries = [c.format_for_prompt() for c in conditions if c.tier == tier and c.is_active]
        if entries:
            sections.append(heading + "\n" + "\n\n".join(entries))
    return "\n\n".join(sections) or NO_CONDITIONS_CONTEXT


class ConditionService:
    """CRUD over IConditionStore. Every mutation invalidates the cached context.

    Conditions are reference data only: changing or deactivating one never
    touches existing escalation records.
    """

    def __init__(self, store: IConditionStore, cache: Optional[ICacheBackend] = None,
                 cache_ttl: int = 300) -> None:
        self._store = store
        self._cache = cache
        self._cache_ttl = cache_ttl

    def create(self, data: EscalationConditionInput, created_by: str = "") -> EscalationCondition:
        now = utc_now()
        condition = EscalationCondition(
            **data.model_dump(),
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            created_by=created_by,
        )
        self._store.create_condition(condition)
        self._invalidate()
        logger.info(
            "ESCALATION_CONDITION_CREATED",
            condition_id=condition.id,
            tier=int(condition.tier),
            category=condition.category.value,
        )
        return condition

    def get(self, condition_id: str) -> EscalationCondition:
        condition = self._store.get_condition(condition_id)
        if condition is None:
            raise NotFoundError(f"Condition {condition_id} not found")
        return condition

    def list(self, active_only: bool = False, tier: int | None = None) -> list[EscalationCondition]:
        return self._store.list_conditions(active_only=active_only, tier=tier)

    def update(self, condition_id: str, changes: EscalationConditionUpdate) -> EscalationCondition:
        previous = self.get(condition_id)
        fields = changes.model_dump(exclude_unset=True, exclude_none=True)
        updated = EscalationCondition.model_validate(
            {**previous.model_dump(), **fields, "updated_at": utc_now()}
        )
        self._store.replace_condition(previous, updated)
        self._invalidate()
        logger.info(
            "ESCALATION_CONDITION_UPDATED",
            condition_id=condition_id,
            fields=sorted(fields),
        )
        return updated

    def set_active(self, condition_id: str, is_active: bool) -> EscalationCondition:
        return self.update(condition_id, EscalationConditionUpdate(is_active=is_active))

    def deactivate(self, condition_id: str) -> EscalationCondition:
        return self.set_active(condition_id, False)

    def delete(self, condition_id: str) -> None:
        """Remove a condition outright. Records that cited it keep their own copy."""
        condition = self.get(condition_id)
        self._store.delete_condition(condition)
        self._invalidate()
        logger.info(
            "ESCALATION_CONDITION_DELETED",
            condition_id=condition_id,
            tier=int(condition.tier),
            category=condition.category.value,
        )

    def training_context(self) -> str:
        if self._cache is not None:
            cached = self._cache.get(TRAINING_CONTEXT_CACHE_KEY)
            if cached is not None:
                return cached

        context = build_training_context(self._store.list_conditions(active_only=True))

        if self._cache is not None:
            self._cache.setex(TRAINING_CONTEXT_CACHE_KEY, self._cache_ttl, context)
        return context

    def _invalidate(self) -> None:
        if self._cache is not None:
            self._cache.delete(TRAINING_CONTEXT_CACHE_KEY)
