"""Tests for HandoffOrchestrator: claim, retry with backoff, outcome, fallback."""

from __future__ import annotations

import threading

import pytest

from pulsecheck.escalation.handoff import HandoffOrchestrator
from pulsecheck.models.escalation import (
    ConsentStatus,
    ConversationEscalationState,
    EscalationCategory,
    EscalationRecord,
    EscalationTier,
    HandoffStatus,
    RecordStatus,
)
from tests.fakes import (
    ATHLETE,
    CONVERSATION,
    BrokenClinicalClient,
    RecordingFallbackAlerter,
    SlowClinicalClient,
    UnreachableUserDirectory,
)


def _seed(store, tier=EscalationTier.CRITICAL_RISK, status=RecordStatus.HANDOFF_REQUESTED,
          handoff_status=HandoffStatus.PENDING, record_id="esc-0001"):
    record = EscalationRecord(
        id=record_id,
        user_id=ATHLETE,
        conversation_id=CONVERSATION,
        tier=tier,
        category=EscalationCategory.SELF_HARM,
        status=status,
        consent_status=ConsentStatus.NOT_REQUIRED,
        handoff_status=handoff_status,
        trigger_content="I keep hurting myself",
        classification_reason="self-harm disclosure",
    )
    state = ConversationEscalationState(
        conversation_id=CONVERSATION, active_record_id=record.id, active_tier=tier, version=1
    )
    store.create_record(record, state, expected_version=0)
    return record


class TestSuccessfulHandoff:
    def test_confirms_on_first_attempt(self, handoff, store, clinical, sleeps):
        record = _seed(store)

        result = handoff.request_handoff(record)

        assert result.status is RecordStatus.HANDOFF_COMPLETE
        assert result.handoff_status is HandoffStatus.CONFIRMED
        assert result.handoff_attempts == 1
        assert result.clinical_reference_id.startswith("ae-esc-")
        assert len(clinical.calls) == 1
        assert sleeps == []
        assert store.get_record(record.id).status is RecordStatus.HANDOFF_COMPLETE

    def test_record_id_is_the_idempotency_key(self, handoff, store, clinical):
        record = _seed(store)
        handoff.request_handoff(record)
        key, payload = clinical.calls[0]
        assert key == record.id
        assert payload.escalation_id == record.id

    def test_payload_carries_redacted_identity(self, handoff, store, clinical):
        handoff.request_handoff(_seed(store))
        _, payload = clinical.calls[0]
        doc = payload.to_document()
        assert doc["athlete"] == {"userId": ATHLETE, "displayName": "Jordan Lee"}
        assert doc["callbackUrl"] == f"https://pulse.example/api/clinical-callback?userId={ATHLETE}"
        assert doc["triggerContent"] == "I keep hurting myself"

    def test_retries_with_exponential_backoff(self, handoff, store, clinical, sleeps):
        clinical.fail_next(2)

        result = handoff.request_handoff(_seed(store))

        assert result.status is RecordStatus.HANDOFF_COMPLETE
        assert result.handoff_attempts == 3
        assert sleeps == [0.5, 1.0]
        assert clinical.cases_opened == 1


class TestFailedHandoff:
    def test_exhausted_retries_mark_failed_and_page(self, handoff, store, clinical, fallback, sleeps):
        clinical.fail_next(5)
        record = _seed(store)

        result = handoff.request_handoff(record)

        assert result.status is RecordStatus.HANDOFF_FAILED
        assert result.handoff_status is HandoffStatus.FAILED
        assert result.handoff_attempts == 3
        assert len(clinical.calls) == 3
        assert sleeps == [0.5, 1.0]
        assert fallback.alerts == [(record.id, "Mock clinical service unavailable")]
        assert result.history[-1].event == "handoff_failed"

    def test_non_retryable_error_stops_immediately(self, handoff, store, clinical, sleeps):
        clinical.fail_next(1, retryable=False)

        result = handoff.request_handoff(_seed(store))

        assert result.status is RecordStatus.HANDOFF_FAILED
        assert result.handoff_attempts == 1
        assert sleeps == []

    def test_elevated_failure_does_not_page(self, handoff, store, clinical, fallback):
        clinical.fail_next(3)
        result = handoff.request_handoff(_seed(store, tier=EscalationTier.ELEVATED_RISK))
        assert result.status is RecordStatus.HANDOFF_FAILED
        assert fallback.alerts == []

    def test_fallback_failure_is_contained(self, store, clinical, users, sleeps):
        fallback = RecordingFallbackAlerter(fail=True)
        orchestrator = HandoffOrchestrator(store, clinical, users, fallback, sleep=sleeps.append)
        clinical.fail_next(3)

        result = orchestrator.request_handoff(_seed(store))

        assert result.status is RecordStatus.HANDOFF_FAILED
        assert len(fallback.alerts) == 1

    def test_missing_fallback_is_contained(self, store, clinical, users, sleeps):
        orchestrator = HandoffOrchestrator(store, clinical, users, None, sleep=sleeps.append)
        clinical.fail_next(3)
        assert orchestrator.request_handoff(_seed(store)).status is RecordStatus.HANDOFF_FAILED

    def test_unexpected_client_error_fails_and_pages(self, store, users, fallback, sleeps):
        clinical = BrokenClinicalClient()
        orchestrator = HandoffOrchestrator(store, clinical, users, fallback, sleep=sleeps.append)
        record = _seed(store)

        result = orchestrator.request_handoff(record)

        assert result.status is RecordStatus.HANDOFF_FAILED
        assert result.handoff_status is HandoffStatus.FAILED
        assert result.handoff_attempts == 1
        assert result.handoff_error == "Clinical client raised ValueError"
        assert len(clinical.calls) == 1
        assert sleeps == []
        assert fallback.alerts == [(record.id, "Clinical client raised ValueError")]
        assert store.get_record(record.id).status is RecordStatus.HANDOFF_FAILED

    def test_alerter_raising_unexpected_error_is_contained(self, store, users, clinical, sleeps):
        class ExplodingAlerter:
            def alert(self, record, reason):
                raise RuntimeError("pager SDK bug")

        orchestrator = HandoffOrchestrator(store, clinical, users, ExplodingAlerter(), sleep=sleeps.append)
        clinical.fail_next(3)

        assert orchestrator.request_handoff(_seed(store)).status is RecordStatus.HANDOFF_FAILED


class TestProfileLookup:
    def test_directory_outage_still_submits(self, store, clinical, fallback, sleeps):
        orchestrator = HandoffOrchestrator(
            store, clinical, UnreachableUserDirectory(), fallback, sleep=sleeps.append
        )
        record = _seed(store)

        result = orchestrator.request_handoff(record)

        assert result.status is RecordStatus.HANDOFF_COMPLETE
        _, payload = clinical.calls[0]
        assert payload.athlete.user_id == ATHLETE
        assert payload.athlete.display_name == "Unknown User"


class TestClaim:
    @pytest.mark.parametrize(
        "status, handoff_status",
        [
            (RecordStatus.HANDOFF_COMPLETE, HandoffStatus.CONFIRMED),
            (RecordStatus.HANDOFF_REQUESTED, HandoffStatus.SUBMITTED),
            (RecordStatus.CLOSED, HandoffStatus.PENDING),
        ],
    )
    def test_only_pending_requests_are_submitted(self, handoff, store, clinical, status, handoff_status):
        record = _seed(store, status=status, handoff_status=handoff_status)
        assert handoff.request_handoff(record) == record
        assert clinical.calls == []

    def test_stale_caller_loses_claim(self, handoff, store, clinical):
        record = _seed(store)
        handoff.request_handoff(record)

        # Same stale snapshot a second time: the conditional claim fails.
        result = handoff.request_handoff(record)

        assert len(clinical.calls) == 1
        assert result.status is RecordStatus.HANDOFF_COMPLETE
        assert result.id == record.id

    def test_concurrent_requests_submit_once(self, store, users, fallback, sleeps):
        clinical = SlowClinicalClient()
        orchestrator = HandoffOrchestrator(store, clinical, users, fallback, sleep=sleeps.append)
        record = _seed(store)
        results = []

        winner = threading.Thread(target=lambda: results.append(orchestrator.request_handoff(record)))
        winner.start()
        assert clinical.entered.wait(timeout=5)

        loser = orchestrator.request_handoff(record)
        clinical.release.set()
        winner.join()

        assert loser.handoff_status is HandoffStatus.SUBMITTED
        assert results[0].status is RecordStatus.HANDOFF_COMPLETE
        assert [key for key, _ in clinical.calls] == [record.id]
