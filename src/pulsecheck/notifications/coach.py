"""Coach notifiers. Summaries carry ids, tier and category, never message content."""

from __future__ import annotations

import threading
from typing import Any

from botocore.exceptions import ClientError

from pulsecheck.core.exceptions import NotificationError
from pulsecheck.models.base import utc_now
from pulsecheck.models.coach import CoachEscalationSummary
from pulsecheck.persistence.dynamodb_backend import (
    NOTIFICATIONS_TABLE,
    create_client,
    serialize_item,
)


class DynamoDBCoachNotifier:
    """Production ICoachNotifier: writes an in-app notification document that
    the coach dashboard and push pipeline read."""

    def __init__(self, table_suffix: str = "", region: str = "us-east-1",
                 endpoint_url: str | None = None, client: Any = None,
                 dashboard_url: str = "") -> None:
        self._table_name = f"{NOTIFICATIONS_TABLE}{table_suffix}"
        self._client = client or create_client(region, endpoint_url)
        self._dashboard_url = dashboard_url

    def notify(self, coach_id: str, summary: CoachEscalationSummary) -> None:
        created_at = utc_now().isoformat()
        item = {
            "PK": f"COACH#{coach_id}",
            "SK": f"NOTIFICATION#{created_at}#{summary.escalation_id}",
            "type": "escalation-alert",
            "title": summary.title,
            "message": summary.message,
            "escalationId": summary.escalation_id,
            "athleteId": summary.athlete_id,
            "tier": int(summary.tier),
            "read": False,
            "createdAt": created_at,
        }
        if self._dashboard_url:
            item["dashboardUrl"] = self._dashboard_url
        try:
            self._client.put_item(TableName=self._table_name, Item=serialize_item(item))
        except ClientError as exc:
            raise NotificationError(
                f"Failed to store coach notification for escalation {summary.escalation_id}: {exc}"
            ) from exc


class MemoryCoachNotifier:
    """List-backed ICoachNotifier for local development and tests."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.sent: list[tuple[str, CoachEscalationSummary]] = []

    def notify(self, coach_id: str, summary: CoachEscalationSummary) -> None:
        with self._lock:
            self.sent.append((coach_id, summary))
