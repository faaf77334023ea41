"""Service wiring and FastAPI dependencies."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from fastapi import Request

from pulsecheck.clinical.http_client import HttpClinicalHandoffClient
from pulsecheck.clinical.mock_client import MockClinicalHandoffClient
from pulsecheck.core.config import AppSettings
from pulsecheck.core.protocols import ICoachNotifier, IFallbackAlerter
from pulsecheck.escalation.conditions import ConditionService
from pulsecheck.escalation.engine import EscalationEngine
from pulsecheck.escalation.handoff import HandoffOrchestrator
from pulsecheck.notifications.coach import DynamoDBCoachNotifier, MemoryCoachNotifier
from pulsecheck.notifications.dispatcher import CoachNotificationDispatcher
from pulsecheck.notifications.fallback import HttpFallbackAlerter, LoggingFallbackAlerter
from pulsecheck.persistence import Persistence, create_persistence


@dataclass
class Services:
    settings: AppSettings
    persistence: Persistence
    engine: EscalationEngine
    conditions: ConditionService
    dispatcher: CoachNotificationDispatcher
    clinical: Any

    def shutdown(self) -> None:
        self.dispatcher.shutdown(wait=True)


def build_services(
    settings: AppSettings | None = None,
    persistence: Persistence | None = None,
    *,
    clinical: Any = None,
    notifier: ICoachNotifier | None = None,
    fallback: IFallbackAlerter | None = None,
    inline_notifications: bool = False,
) -> Services:
    """Wire stores, external clients and the engine from settings.

    Any collaborator passed explicitly replaces the one settings would build.
    """
    if settings is None:
        settings = AppSettings()
    if persistence is None:
        persistence = create_persistence(settings)

    if clinical is None:
        if settings.clinical.provider == "http":
            clinical = HttpClinicalHandoffClient(
                base_url=settings.clinical.base_url,
                api_key=settings.clinical.api_key,
                timeout=settings.clinical.timeout,
            )
        else:
            clinical = MockClinicalHandoffClient()

    if notifier is None:
        if settings.backend == "aws":
            notifier = DynamoDBCoachNotifier(
                table_suffix=settings.dynamodb.table_suffix,
                region=settings.dynamodb.region,
                endpoint_url=settings.dynamodb.endpoint_url,
                dashboard_url=settings.notifications.dashboard_url,
            )
        else:
            notifier = MemoryCoachNotifier()

    if fallback is None:
        if settings.notifications.on_call_webhook_url:
            fallback = HttpFallbackAlerter(
                settings.notifications.on_call_webhook_url,
                timeout=settings.notifications.webhook_timeout,
            )
        else:
            fallback = LoggingFallbackAlerter()

    handoff = HandoffOrchestrator(
        persistence.escalations,
        clinical,
        persistence.users,
        fallback,
        max_attempts=settings.clinical.max_attempts,
        backoff_seconds=settings.clinical.backoff_seconds,
        callback_base_url=settings.clinical.callback_base_url,
    )
    dispatcher = CoachNotificationDispatcher(
        persistence.escalations,
        persistence.users,
        notifier,
        max_workers=settings.notifications.max_workers,
        inline=inline_notifications,
    )
    engine = EscalationEngine(
        persistence.escalations,
        handoff,
        dispatcher,
        cas_max_attempts=settings.escalation.cas_max_attempts,
        consent_expiry_hours=settings.escalation.consent_expiry_hours,
    )
    conditions = ConditionService(
        persistence.conditions,
        persistence.cache,
        cache_ttl=settings.escalation.condition_cache_ttl,
    )
    return Services(
        settings=settings,
        persistence=persistence,
        engine=engine,
        conditions=conditions,
        dispatcher=dispatcher,
        clinical=clinical,
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_engine(request: Request) -> EscalationEngine:
    return request.app.state.services.engine


def get_conditions(request: Request) -> ConditionService:
    return request.app.state.services.conditions
