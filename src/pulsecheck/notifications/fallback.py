"""On-call fallback alerts for mandatory handoffs that could not be completed."""

from __future__ import annotations

import requests
import structlog

from pulsecheck.core.exceptions import NotificationError
from pulsecheck.core.logging import redact_id
from pulsecheck.models.escalation import EscalationRecord

logger = structlog.get_logger(__name__)


def _alert_body(record: EscalationRecord, reason: str) -> dict:
    # No trigger content: on-call staff open the record through the admin tools.
    return {
        "type": "clinical-handoff-failed",
        "escalationId": record.id,
        "conversationId": record.conversation_id,
        "tier": int(record.tier),
        "tierLabel": record.tier.label,
        "category": record.category.value,
        "reason": reason,
        "handoffAttempts": record.handoff_attempts,
        "createdAt": record.created_at.isoformat(),
    }


class HttpFallbackAlerter:
    """Posts a page to the on-call webhook."""

    def __init__(self, webhook_url: str, timeout: float = 5.0) -> None:
        self._webhook_url = webhook_url
        self._timeout = timeout

    def alert(self, record: EscalationRecord, reason: str) -> None:
        try:
            resp = requests.post(
                self._webhook_url, json=_alert_body(record, reason), timeout=self._timeout
            )
        except requests.RequestException as exc:
            raise NotificationError(f"On-call webhook unreachable: {exc}") from exc
        if resp.status_code >= 300:
            raise NotificationError(f"On-call webhook returned {resp.status_code}")
        logger.critical(
            "ON_CALL_ALERT_SENT",
            escalation_id=record.id,
            user_id=redact_id(record.user_id),
            reason=reason,
        )


class LoggingFallbackAlerter:
    """Emits the page as a critical log event for log-based alerting."""

    def alert(self, record: EscalationRecord, reason: str) -> None:
        logger.critical(
            "ON_CALL_ALERT",
            user_id=redact_id(record.user_id),
            alert=_alert_body(record, reason),
        )
