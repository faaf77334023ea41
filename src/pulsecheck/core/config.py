"""Application configuration using pydantic-settings with grouped env prefixes."""

from __future__ import annotations

from typing import Literal

from pydantic_settings import BaseSettings


class DynamoDBConfig(BaseSettings):
    """DynamoDB configuration."""

    model_config = {"env_prefix": "PULSECHECK_DYNAMO_"}

    table_suffix: str = ""  # "-dev", "-uat", or "" for prod
    region: str = "us-east-1"
    endpoint_url: str | None = None  # LocalStack override


class RedisConfig(BaseSettings):
    """Redis cache configuration."""

    model_config = {"env_prefix": "PULSECHECK_REDIS_"}

    host: str = "localhost"
    port: int = 6379
    db: int = 0


class ClinicalConfig(BaseSettings):
    """External clinical handoff service configuration."""

    model_config = {"env_prefix": "PULSECHECK_CLINICAL_"}

    provider: Literal["mock", "http"] = "mock"
    base_url: str = "https://api.auntedna.com/v1"
    api_key: str = ""
    timeout: float = 5.0
    max_attempts: int = 3
    backoff_seconds: float = 0.5  # doubled after every failed attempt
    callback_base_url: str = "https://fitwithpulse.ai"


class NotificationConfig(BaseSettings):
    """Coach notification and on-call fallback configuration."""

    model_config = {"env_prefix": "PULSECHECK_NOTIFY_"}

    max_workers: int = 4
    on_call_webhook_url: str = ""
    webhook_timeout: float = 5.0
    dashboard_url: str = "https://fitwithpulse.ai/coach/dashboard"


class EscalationConfig(BaseSettings):
    """Escalation engine policy knobs."""

    model_config = {"env_prefix": "PULSECHECK_ESCALATION_"}

    consent_expiry_hours: int = 72
    cas_max_attempts: int = 5
    condition_cache_ttl: int = 300  # 5 minutes


class AppSettings(BaseSettings):
    """Root application settings aggregating all sub-configs."""

    model_config = {"env_prefix": "PULSECHECK_"}

    environment: Literal["dev", "uat", "prod"] = "dev"
    log_level: str = "INFO"
    backend: Literal["memory", "aws"] = "memory"

    dynamodb: DynamoDBConfig = DynamoDBConfig()
    redis: RedisConfig = RedisConfig()
    clinical: ClinicalConfig = ClinicalConfig()
    notifications: NotificationConfig = NotificationConfig()
    escalation: EscalationConfig = EscalationConfig()
