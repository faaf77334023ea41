"""Tests for ConditionService and the classifier training context."""

from __future__ import annotations

from datetime import timedelta

import pytest

from pulsecheck.core.exceptions import ConcurrencyConflictError, DuplicateConditionError, NotFoundError
from pulsecheck.escalation.conditions import (
    NO_CONDITIONS_CONTEXT,
    TRAINING_CONTEXT_CACHE_KEY,
    ConditionService,
    build_training_context,
)
from pulsecheck.models.condition import EscalationConditionInput, EscalationConditionUpdate
from pulsecheck.models.escalation import EscalationCategory, EscalationTier
from tests.fakes import ATHLETE, CONVERSATION, MemoryCacheBackend, MemoryConditionStore, classification


@pytest.fixture
def cache():
    return MemoryCacheBackend()


@pytest.fixture
def service(cache):
    return ConditionService(MemoryConditionStore(), cache)


def _input(tier=2, category="persistent-distress", title="Persistent distress", **overrides):
    return EscalationConditionInput(tier=tier, category=category, title=title, **overrides)


class TestConditionCrud:
    def test_create_assigns_id_and_audit_fields(self, service):
        condition = service.create(_input(), created_by="admin-1")
        assert condition.id
        assert condition.created_by == "admin-1"
        assert condition.created_at == condition.updated_at
        assert service.get(condition.id) == condition

    def test_duplicate_active_pair_is_rejected(self, service):
        service.create(_input())
        with pytest.raises(DuplicateConditionError):
            service.create(_input(title="Another"))

    def test_inactive_duplicates_are_allowed(self, service):
        service.create(_input())
        inactive = service.create(_input(title="Draft", is_active=False))
        assert inactive.is_active is False

    def test_deactivate_frees_the_pair(self, service):
        first = service.create(_input())
        service.deactivate(first.id)
        assert service.create(_input(title="Replacement")).is_active

    def test_reactivating_into_a_taken_pair_is_rejected(self, service):
        first = service.create(_input())
        service.deactivate(first.id)
        service.create(_input(title="Replacement"))
        with pytest.raises(DuplicateConditionError):
            service.set_active(first.id, True)

    def test_update_changes_only_given_fields(self, service):
        condition = service.create(_input(keywords=["weeks"]))
        updated = service.update(condition.id, EscalationConditionUpdate(description="Two weeks or more"))
        assert updated.description == "Two weeks or more"
        assert updated.keywords == ["weeks"]
        assert updated.updated_at >= condition.updated_at
        assert updated.created_at == condition.created_at

    def test_unknown_condition(self, service):
        with pytest.raises(NotFoundError):
            service.get("missing")
        with pytest.raises(NotFoundError):
            service.deactivate("missing")

    def test_list_filters_and_orders(self, service):
        service.create(_input(tier=3, category="self-harm", title="Self-harm", priority=100))
        service.create(_input(tier=1, category="fatigue", title="Fatigue"))
        service.create(_input(tier=1, category="burnout", title="Burnout", priority=5))
        service.create(_input(tier=1, category="general", title="Old", is_active=False))

        assert [c.title for c in service.list(active_only=True)] == ["Burnout", "Fatigue", "Self-harm"]
        assert [c.title for c in service.list(tier=1)] == ["Burnout", "Fatigue", "Old"]


class TestConditionDelete:
    def test_delete_removes_and_frees_the_pair(self, service):
        condition = service.create(_input())

        service.delete(condition.id)

        with pytest.raises(NotFoundError):
            service.get(condition.id)
        assert service.list() == []
        assert service.create(_input(title="Replacement")).is_active

    def test_delete_inactive_condition(self, service):
        draft = service.create(_input(is_active=False))
        service.delete(draft.id)
        assert service.list() == []

    def test_delete_unknown_condition(self, service):
        with pytest.raises(NotFoundError):
            service.delete("missing")

    def test_delete_invalidates_training_context(self, service, cache):
        condition = service.create(_input(title="Soon gone"))
        assert "Soon gone" in service.training_context()

        service.delete(condition.id)

        assert cache.get(TRAINING_CONTEXT_CACHE_KEY) is None
        assert service.training_context() == NO_CONDITIONS_CONTEXT

    def test_stale_delete_is_a_conflict(self):
        store = MemoryConditionStore()
        service = ConditionService(store)
        condition = service.create(_input())
        stale = condition.model_copy(update={"updated_at": condition.updated_at - timedelta(seconds=1)})

        with pytest.raises(ConcurrencyConflictError):
            store.delete_condition(stale)
        assert service.get(condition.id) == condition


class TestTrainingContext:
    def test_empty_store_uses_default_guidance(self, service):
        assert service.training_context() == NO_CONDITIONS_CONTEXT

    def test_groups_active_conditions_by_tier(self):
        store = MemoryConditionStore()
        service = ConditionService(store)
        service.create(_input(tier=3, category="self-harm", title="Self-harm"))
        service.create(_input(tier=1, category="fatigue", title="Fatigue"))
        service.create(_input(tier=2, category="burnout", title="Hidden", is_active=False))

        context = service.training_context()

        assert context.startswith("### TIER 1: Monitor-Only")
        assert "### TIER 3: Critical Risk (MANDATORY clinical escalation)\n- **Self-harm**" in context
        assert "TIER 2" not in context
        assert "Hidden" not in context

    def test_build_skips_inactive(self):
        assert build_training_context([]) == NO_CONDITIONS_CONTEXT

    def test_context_is_cached_until_a_mutation(self, service, cache):
        condition = service.create(_input())
        first = service.training_context()
        assert cache.get(TRAINING_CONTEXT_CACHE_KEY) == first

        service.update(condition.id, EscalationConditionUpdate(title="Renamed distress"))

        assert cache.get(TRAINING_CONTEXT_CACHE_KEY) is None
        assert "Renamed distress" in service.training_context()

    def test_cached_value_is_served(self, service, cache):
        cache.setex(TRAINING_CONTEXT_CACHE_KEY, 300, "cached context")
        assert service.training_context() == "cached context"


class TestConditionsAreReferenceData:
    def test_deactivating_leaves_records_untouched(self, engine, store, service):
        condition = service.create(_input(tier=EscalationTier.ELEVATED_RISK,
                                          category=EscalationCategory.PERSISTENT_DISTRESS))
        record = engine.evaluate(CONVERSATION, ATHLETE, "text", classification(2, "persistent-distress")).record
        before = store.get_record(record.id)

        service.deactivate(condition.id)

        assert store.get_record(record.id) == before

    def test_deleting_leaves_records_untouched(self, engine, store, service):
        condition = service.create(_input(tier=EscalationTier.CRITICAL_RISK,
                                          category=EscalationCategory.SELF_HARM, title="Self-harm"))
        record = engine.evaluate(CONVERSATION, ATHLETE, "text", classification(3, "self-harm")).record
        before = store.get_record(record.id)

        service.delete(condition.id)

        assert store.get_record(record.id) == before
        assert before.category is EscalationCategory.SELF_HARM
