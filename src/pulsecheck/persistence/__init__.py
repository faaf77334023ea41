"""Pluggable persistence backends behind Protocol interfaces."""

from __future__ import annotations

from typing import NamedTuple

from pulsecheck.core.config import AppSettings
from pulsecheck.core.protocols import (
    ICacheBackend,
    IConditionStore,
    IEscalationStore,
    IUserDirectory,
)
from pulsecheck.persistence.dynamodb_backend import (
    DynamoDBConditionStore,
    DynamoDBEscalationStore,
    DynamoDBUserDirectory,
    create_client,
)
from pulsecheck.persistence.memory_backend import (
    MemoryCacheBackend,
    MemoryConditionStore,
    MemoryEscalationStore,
    MemoryUserDirectory,
)
from pulsecheck.persistence.redis_backend import RedisCacheBackend


class Persistence(NamedTuple):
    escalations: IEscalationStore
    conditions: IConditionStore
    users: IUserDirectory
    cache: ICacheBackend


def create_persistence(settings: AppSettings | None = None) -> Persistence:
    """Create wired-up persistence backends from application settings.

    ``backend="memory"`` gives dict-backed stores for local development;
    ``backend="aws"`` gives DynamoDB stores sharing one client plus Redis.
    """
    if settings is None:
        settings = AppSettings()

    if settings.backend == "memory":
        return Persistence(
            escalations=MemoryEscalationStore(),
            conditions=MemoryConditionStore(),
            users=MemoryUserDirectory(),
            cache=MemoryCacheBackend(),
        )

    client = create_client(settings.dynamodb.region, settings.dynamodb.endpoint_url)
    suffix = settings.dynamodb.table_suffix
    return Persistence(
        escalations=DynamoDBEscalationStore(table_suffix=suffix, client=client),
        conditions=DynamoDBConditionStore(table_suffix=suffix, client=client),
        users=DynamoDBUserDirectory(table_suffix=suffix, client=client),
        cache=RedisCacheBackend(
            host=settings.redis.host,
            port=settings.redis.port,
            db=settings.redis.db,
        ),
    )
