"""Tests for DynamoDB seed script."""

from __future__ import annotations

import sys
from pathlib import Path

import boto3
import pytest
from moto import mock_aws

from pulsecheck.escalation.conditions import ConditionService
from pulsecheck.persistence.dynamodb_backend import DynamoDBConditionStore

# Make scripts/ importable
sys.path.insert(0, str(Path(__file__).resolve().parent.parent.parent / "scripts"))

from seed_dynamodb import DEFAULT_CONDITIONS, TABLE_NAMES, create_tables, seed_default_conditions  # noqa: E402


@pytest.fixture
def ddb():
    with mock_aws():
        yield boto3.resource("dynamodb", region_name="us-east-1")


class TestCreateTables:
    def test_creates_all_five_tables(self, ddb):
        create_tables(ddb, suffix="-test")
        client = boto3.client("dynamodb", region_name="us-east-1")
        tables = client.list_tables()["TableNames"]
        assert len(tables) == 5
        assert "pulsecheck-escalation-records-test" in tables
        assert sorted(tables) == sorted(f"{name}-test" for name in TABLE_NAMES)

    def test_idempotent_skips_existing(self, ddb):
        create_tables(ddb, suffix="-test")
        create_tables(ddb, suffix="-test")  # should not raise
        client = boto3.client("dynamodb", region_name="us-east-1")
        assert len(client.list_tables()["TableNames"]) == 5


class TestSeedDefaultConditions:
    def test_default_pairs_are_unique(self):
        pairs = {(int(c["tier"]), c["category"]) for c in DEFAULT_CONDITIONS}
        assert len(pairs) == len(DEFAULT_CONDITIONS)

    def test_seeds_conditions_with_guards(self, ddb):
        create_tables(ddb, suffix="-test")
        assert seed_default_conditions(ddb, suffix="-test") == len(DEFAULT_CONDITIONS)

        items = ddb.Table("pulsecheck-escalation-conditions-test").scan()["Items"]
        conditions = [i for i in items if i["SK"] == "CONDITION"]
        guards = [i for i in items if i["SK"] == "GUARD"]
        assert len(conditions) == len(DEFAULT_CONDITIONS)
        assert len(guards) == len(DEFAULT_CONDITIONS)
        assert all(c["createdBy"] == "seed" for c in conditions)

    def test_rerun_creates_nothing(self, ddb):
        create_tables(ddb, suffix="-test")
        seed_default_conditions(ddb, suffix="-test")
        assert seed_default_conditions(ddb, suffix="-test") == 0

    def test_training_context_covers_all_tiers(self, ddb):
        create_tables(ddb, suffix="-test")
        seed_default_conditions(ddb, suffix="-test")

        client = boto3.client("dynamodb", region_name="us-east-1")
        context = ConditionService(DynamoDBConditionStore(table_suffix="-test", client=client)).training_context()

        assert "### TIER 1: Monitor-Only" in context
        assert "### TIER 2: Elevated Risk" in context
        assert "### TIER 3: Critical Risk" in context
        assert "**Suicidal ideation**" in context
