"""Unit test fixtures: an engine wired to memory backends and recording fakes."""

from __future__ import annotations

import pytest

from pulsecheck.escalation.engine import EscalationEngine
from pulsecheck.escalation.handoff import HandoffOrchestrator
from pulsecheck.notifications.dispatcher import CoachNotificationDispatcher
from tests.fakes import (
    ATHLETE,
    COACH,
    MemoryCoachNotifier,
    MemoryEscalationStore,
    MemoryUserDirectory,
    MockClinicalHandoffClient,
    RecordingFallbackAlerter,
)


@pytest.fixture
def store():
    return MemoryEscalationStore()


@pytest.fixture
def users():
    directory = MemoryUserDirectory()
    directory.add_profile(ATHLETE, {"displayName": "Jordan Lee", "email": "jordan@example.com"})
    directory.link_coach(ATHLETE, COACH)
    return directory


@pytest.fixture
def clinical():
    return MockClinicalHandoffClient()


@pytest.fixture
def notifier():
    return MemoryCoachNotifier()


@pytest.fixture
def fallback():
    return RecordingFallbackAlerter()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def handoff(store, clinical, users, fallback, sleeps):
    return HandoffOrchestrator(
        store, clinical, users, fallback,
        max_attempts=3, backoff_seconds=0.5,
        callback_base_url="https://pulse.example",
        sleep=sleeps.append,
    )


@pytest.fixture
def engine(store, handoff, users, notifier):
    dispatcher = CoachNotificationDispatcher(store, users, notifier, inline=True)
    return EscalationEngine(store, handoff, dispatcher)
