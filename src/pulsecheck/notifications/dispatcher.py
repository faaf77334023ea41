"""Fire-and-forget coach notification dispatch."""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
from typing import Optional

import structlog

from pulsecheck.core.exceptions import PulseCheckError
from pulsecheck.core.logging import redact_id
from pulsecheck.core.protocols import ICoachNotifier, IEscalationStore, IUserDirectory
from pulsecheck.models.base import utc_now
from pulsecheck.models.coach import CoachEscalationSummary
from pulsecheck.models.escalation import EscalationRecord

logger = structlog.get_logger(__name__)


class CoachNotificationDispatcher:
    """Looks up the athlete's coach, notifies them, and annotates the record.

    Runs on a thread pool so the escalation request never waits on delivery;
    ``inline=True`` delivers on the calling thread (tests, scripts). Failures
    are logged and never reach the caller.
    """

    def __init__(
        self,
        store: IEscalationStore,
        users: IUserDirectory,
        notifier: ICoachNotifier,
        *,
        max_workers: int = 4,
        inline: bool = False,
    ) -> None:
        self._store = store
        self._users = users
        self._notifier = notifier
        self._executor: Optional[ThreadPoolExecutor] = None
        if not inline:
            self._executor = ThreadPoolExecutor(
                max_workers=max_workers, thread_name_prefix="coach-notify"
            )

    def dispatch(self, record: EscalationRecord) -> Optional[Future]:
        if self._executor is None:
            self._deliver(record)
            return None
        return self._executor.submit(self._deliver, record)

    def shutdown(self, wait: bool = True) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait)

    def _deliver(self, record: EscalationRecord) -> bool:
        try:
            coach_id = self._users.get_linked_coach(record.user_id)
            if not coach_id:
                logger.info(
                    "COACH_NOTIFICATION_SKIPPED",
                    escalation_id=record.id,
                    reason="no_coach_connected",
                )
                return False
            self._notifier.notify(coach_id, CoachEscalationSummary.from_record(record))
            current = self._store.get_record(record.id) or record
            self._store.update_record(
                current.prepare_update(
                    "coach_notified",
                    guard_status=False,
                    detail=f"coach {redact_id(coach_id)}",
                    coach_id=coach_id,
                    coach_notified=True,
                    coach_notified_at=utc_now(),
                )
            )
        except PulseCheckError as exc:
            logger.warning(
                "COACH_NOTIFICATION_FAILED",
                escalation_id=record.id,
                error_code=exc.code,
                error=str(exc),
            )
            return False
        except Exception as exc:
            # Notifiers are external integrations; whatever they raise stays here.
            logger.error(
                "COACH_NOTIFICATION_FAILED",
                escalation_id=record.id,
                error_code="UNEXPECTED_ERROR",
                error_type=type(exc).__name__,
                exc_info=True,
            )
            return False

        logger.info(
            "COACH_NOTIFIED",
            escalation_id=record.id,
            coach_id=redact_id(coach_id),
            tier=int(record.tier),
        )
        return True
