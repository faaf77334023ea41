"""Unit tests for RedisCacheBackend using fakeredis."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import fakeredis
import pytest
import redis

from pulsecheck.core.exceptions import CacheError
from pulsecheck.escalation.conditions import TRAINING_CONTEXT_CACHE_KEY, ConditionService
from pulsecheck.models.condition import EscalationConditionInput
from pulsecheck.persistence.redis_backend import RedisCacheBackend
from tests.fakes import MemoryConditionStore


@pytest.fixture
def fake_server():
    return fakeredis.FakeServer()


@pytest.fixture
def fake_client(fake_server):
    return fakeredis.FakeRedis(server=fake_server, decode_responses=True)


@pytest.fixture
def backend(fake_client):
    with patch("redis.Redis", return_value=fake_client):
        return RedisCacheBackend(host="localhost", port=6379, db=0)


class TestGet:
    def test_returns_none_on_miss(self, backend):
        assert backend.get("nonexistent") is None

    def test_returns_stored_text(self, backend):
        backend.setex("key1", 300, "### TIER 1: Monitor-Only")
        assert backend.get("key1") == "### TIER 1: Monitor-Only"


class TestSetex:
    def test_keys_are_prefixed_and_expire(self, backend, fake_client):
        backend.setex("mykey", 60, "value")
        assert fake_client.get("pulsecheck:mykey") == "value"
        assert 0 < fake_client.ttl("pulsecheck:mykey") <= 60

    def test_overwrites_existing_value(self, backend):
        backend.setex("k", 60, "old")
        backend.setex("k", 60, "new")
        assert backend.get("k") == "new"


class TestDelete:
    def test_removes_existing_key(self, backend):
        backend.setex("del_me", 60, "val")
        backend.delete("del_me")
        assert backend.get("del_me") is None

    def test_noop_on_missing_key(self, backend):
        backend.delete("never_existed")


class TestErrorWrapping:
    @pytest.fixture
    def broken(self):
        client = MagicMock()
        client.get.side_effect = redis.ConnectionError("connection refused")
        client.setex.side_effect = redis.ConnectionError("connection refused")
        client.delete.side_effect = redis.TimeoutError("timed out")
        with patch("redis.Redis", return_value=client):
            return RedisCacheBackend()

    def test_get_wraps_redis_error(self, broken):
        with pytest.raises(CacheError):
            broken.get("k")

    def test_setex_wraps_redis_error(self, broken):
        with pytest.raises(CacheError):
            broken.setex("k", 60, "v")

    def test_delete_wraps_redis_error(self, broken):
        with pytest.raises(CacheError):
            broken.delete("k")


class TestTrainingContextCache:
    def test_condition_service_caches_in_redis(self, backend, fake_client):
        service = ConditionService(MemoryConditionStore(), backend, cache_ttl=120)
        service.create(EscalationConditionInput(tier=1, category="fatigue", title="Fatigue"))

        context = service.training_context()

        assert fake_client.get(f"pulsecheck:{TRAINING_CONTEXT_CACHE_KEY}") == context
        service.create(EscalationConditionInput(tier=1, category="burnout", title="Burnout"))
        assert fake_client.get(f"pulsecheck:{TRAINING_CONTEXT_CACHE_KEY}") is None
