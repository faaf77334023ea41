"""Shared test doubles: re-export memory backends plus recording collaborators."""

from __future__ import annotations

import threading
from typing import Any

from pulsecheck.clinical.mock_client import MockClinicalHandoffClient
from pulsecheck.core.exceptions import NotificationError, PersistenceError
from pulsecheck.models.escalation import EscalationRecord
from pulsecheck.notifications.coach import MemoryCoachNotifier
from pulsecheck.persistence.memory_backend import (
    MemoryCacheBackend,
    MemoryConditionStore,
    MemoryEscalationStore,
    MemoryUserDirectory,
)

__all__ = [
    "ATHLETE",
    "BrokenClinicalClient",
    "COACH",
    "CONVERSATION",
    "FailingCoachNotifier",
    "MemoryCacheBackend",
    "MemoryCoachNotifier",
    "MemoryConditionStore",
    "MemoryEscalationStore",
    "MemoryUserDirectory",
    "MockClinicalHandoffClient",
    "RecordingFallbackAlerter",
    "SlowClinicalClient",
    "UnreachableUserDirectory",
    "classification",
]

ATHLETE = "athlete-0001"
COACH = "coach-0001"
CONVERSATION = "conv-0001"


def classification(tier: int, category: str = "general", /, **overrides: Any) -> dict[str, Any]:
    """Classifier output in the wire (camelCase) shape."""
    data: dict[str, Any] = {
        "tier": tier,
        "category": category,
        "confidence": 0.9,
        "reason": f"tier {tier} signal",
        "shouldEscalate": tier > 0,
    }
    data.update(overrides)
    return data


class RecordingFallbackAlerter:
    """IFallbackAlerter that records alerts, optionally failing after recording."""

    def __init__(self, fail: bool = False) -> None:
        self.alerts: list[tuple[str, str]] = []
        self._fail = fail

    def alert(self, record: EscalationRecord, reason: str) -> None:
        self.alerts.append((record.id, reason))
        if self._fail:
            raise NotificationError("pager unreachable")


class FailingCoachNotifier:
    """ICoachNotifier whose delivery always fails, by default with NotificationError."""

    def __init__(self, error: Exception | None = None) -> None:
        self.attempts = 0
        self._error = error or NotificationError("push provider down")

    def notify(self, coach_id: str, summary: Any) -> None:
        self.attempts += 1
        raise self._error


class BrokenClinicalClient(MockClinicalHandoffClient):
    """Clinical client that records each call and then raises a non-domain error."""

    def submit(self, payload, idempotency_key):
        self.calls.append((idempotency_key, payload))
        raise ValueError("unexpected response shape")


class UnreachableUserDirectory(MemoryUserDirectory):
    """User directory whose profile reads fail; coach links still resolve."""

    def get_profile(self, user_id: str) -> dict[str, Any] | None:
        raise PersistenceError("profiles table unavailable")


class SlowClinicalClient(MockClinicalHandoffClient):
    """Mock client that parks each submit until ``release`` is set, so racing
    callers overlap inside the external call."""

    def __init__(self) -> None:
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()

    def submit(self, payload, idempotency_key):
        self.entered.set()
        self.release.wait(timeout=5)
        return super().submit(payload, idempotency_key)
