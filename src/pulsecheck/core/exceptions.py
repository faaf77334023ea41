"""PulseCheck exception hierarchy."""

from __future__ import annotations


class PulseCheckError(Exception):
    """Base exception for all PulseCheck errors."""

    code = "internal_error"


class ValidationError(PulseCheckError):
    """Malformed classifier input or request payload."""

    code = "validation_error"

    def __init__(self, message: str, errors: list[dict] | None = None) -> None:
        self.errors = errors or []
        super().__init__(message)


class NotFoundError(PulseCheckError):
    """Unknown escalation, conversation, or condition id."""

    code = "not_found"


class InvalidStateError(PulseCheckError):
    """Operation not allowed in the record's current state."""

    code = "invalid_state"

    def __init__(self, record_id: str, current: str, message: str) -> None:
        self.record_id = record_id
        self.current = current
        super().__init__(f"Escalation {record_id} ({current}): {message}")


class ConcurrencyConflictError(PulseCheckError):
    """A conditional write lost a race with a concurrent writer."""

    code = "conflict"


class DuplicateConditionError(PulseCheckError):
    """An active condition already exists for the (tier, category) pair."""

    code = "duplicate_condition"

    def __init__(self, tier: int, category: str) -> None:
        self.tier = tier
        self.category = category
        super().__init__(f"Active condition already exists for tier={tier} category={category!r}")


class HandoffError(PulseCheckError):
    """Clinical handoff service call failed."""

    code = "handoff_failed"

    def __init__(self, message: str, *, retryable: bool = True, status_code: int | None = None) -> None:
        self.retryable = retryable
        self.status_code = status_code
        super().__init__(message)


class NotificationError(PulseCheckError):
    """Coach notification or fallback alert failed. Never surfaced to callers."""

    code = "notification_failed"


class PersistenceError(PulseCheckError):
    """DynamoDB operation failed."""

    code = "persistence_error"


class CacheError(PulseCheckError):
    """Redis cache operation failed."""

    code = "cache_error"
