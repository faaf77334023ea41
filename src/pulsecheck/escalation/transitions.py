"""Allowed record status transitions. Only ``Closed`` is reachable from everywhere."""

from __future__ import annotations

from pulsecheck.core.exceptions import InvalidStateError
from pulsecheck.models.escalation import EscalationRecord, RecordStatus

TRANSITIONS: dict[RecordStatus, frozenset[RecordStatus]] = {
    RecordStatus.PENDING_CONSENT: frozenset({
        RecordStatus.CONSENT_ACCEPTED,
        RecordStatus.CONSENT_DECLINED,
        RecordStatus.CLOSED,
    }),
    RecordStatus.CONSENT_ACCEPTED: frozenset({
        RecordStatus.HANDOFF_REQUESTED,
        RecordStatus.CLOSED,
    }),
    RecordStatus.HANDOFF_REQUESTED: frozenset({
        RecordStatus.HANDOFF_COMPLETE,
        RecordStatus.HANDOFF_FAILED,
        RecordStatus.CLOSED,
    }),
    RecordStatus.HANDOFF_COMPLETE: frozenset({RecordStatus.ACKNOWLEDGED, RecordStatus.CLOSED}),
    RecordStatus.HANDOFF_FAILED: frozenset({RecordStatus.ACKNOWLEDGED, RecordStatus.CLOSED}),
    RecordStatus.ACKNOWLEDGED: frozenset({RecordStatus.CLOSED}),
    RecordStatus.CONSENT_DECLINED: frozenset(),
    RecordStatus.CLOSED: frozenset(),
}


def can_transition(current: RecordStatus, target: RecordStatus) -> bool:
    return target in TRANSITIONS[current]


def ensure_transition(record: EscalationRecord, target: RecordStatus) -> None:
    """Raise InvalidStateError unless ``record`` may move to ``target``."""
    if not can_transition(record.status, target):
        raise InvalidStateError(
            record.id, record.status.value, f"cannot move to {target.value}"
        )
