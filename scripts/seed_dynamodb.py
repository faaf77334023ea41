"""Create the PulseCheck DynamoDB tables and seed default escalation conditions.

Usage:
    python scripts/seed_dynamodb.py --endpoint-url http://localhost:4566
"""

from __future__ import annotations

import argparse
from typing import Any

import boto3

from pulsecheck.core.exceptions import DuplicateConditionError
from pulsecheck.escalation.conditions import ConditionService
from pulsecheck.models.condition import EscalationConditionInput
from pulsecheck.models.escalation import EscalationCategory as Cat
from pulsecheck.models.escalation import EscalationTier as Tier
from pulsecheck.persistence.dynamodb_backend import (
    CONDITIONS_TABLE,
    NOTIFICATIONS_TABLE,
    PROFILES_TABLE,
    RECORDS_TABLE,
    STATE_TABLE,
    DynamoDBConditionStore,
    create_client,
)

TABLE_NAMES = [
    RECORDS_TABLE,
    STATE_TABLE,
    CONDITIONS_TABLE,
    PROFILES_TABLE,
    NOTIFICATIONS_TABLE,
]

DEFAULT_CONDITIONS: list[dict[str, Any]] = [
    {
        "tier": Tier.MONITOR_ONLY, "category": Cat.PERFORMANCE_STRESS,
        "title": "Performance stress",
        "description": "Pressure about competition or results within a normal range.",
        "example_phrases": ["I'm so nervous about the meet", "I can't stop thinking about my times"],
        "keywords": ["nervous", "pressure", "choke"],
    },
    {
        "tier": Tier.MONITOR_ONLY, "category": Cat.FATIGUE,
        "title": "Temporary fatigue",
        "description": "Tiredness or low motivation without functional impairment.",
        "example_phrases": ["I'm exhausted after this week", "I don't feel like training"],
        "keywords": ["tired", "exhausted", "unmotivated"],
    },
    {
        "tier": Tier.MONITOR_ONLY, "category": Cat.BURNOUT,
        "title": "Early burnout signs",
        "description": "Loss of enjoyment in the sport and cynicism about training.",
        "example_phrases": ["I don't love this anymore"],
        "keywords": ["burned out", "pointless", "quit"],
    },
    {
        "tier": Tier.ELEVATED_RISK, "category": Cat.PERSISTENT_DISTRESS,
        "title": "Persistent distress",
        "description": "Low mood or distress lasting two weeks or more.",
        "example_phrases": ["I've felt empty for weeks", "Nothing has felt okay for a while"],
        "keywords": ["weeks", "empty", "hopeless"],
        "priority": 10,
    },
    {
        "tier": Tier.ELEVATED_RISK, "category": Cat.DISORDERED_EATING,
        "title": "Disordered eating patterns",
        "description": "Restriction, purging, or compensatory exercise around food.",
        "example_phrases": ["I skipped meals to make weight again", "I feel guilty every time I eat"],
        "keywords": ["make weight", "purge", "restrict"],
        "priority": 10,
    },
    {
        "tier": Tier.ELEVATED_RISK, "category": Cat.INJURY_PSYCHOLOGICAL,
        "title": "Psychological impact from injury",
        "description": "Loss of identity or withdrawal following an injury.",
        "example_phrases": ["Without my sport I don't know who I am"],
        "keywords": ["injury", "who I am", "worthless"],
    },
    {
        "tier": Tier.CRITICAL_RISK, "category": Cat.SUICIDAL_IDEATION,
        "title": "Suicidal ideation",
        "description": "Thoughts of ending life or wishing not to be alive.",
        "example_phrases": ["I don't want to be here anymore", "Everyone would be better off without me"],
        "keywords": ["kill myself", "end it", "not be alive"],
        "priority": 100,
    },
    {
        "tier": Tier.CRITICAL_RISK, "category": Cat.SELF_HARM,
        "title": "Self-harm",
        "description": "Any mention of hurting oneself, including cutting.",
        "example_phrases": ["I've been hurting myself again"],
        "keywords": ["cutting", "hurt myself", "self-harm"],
        "priority": 100,
    },
    {
        "tier": Tier.CRITICAL_RISK, "category": Cat.ABUSE_DISCLOSURE,
        "title": "Abuse disclosure",
        "description": "Disclosure of past or present abuse.",
        "example_phrases": ["My coach touches me and I don't like it"],
        "keywords": ["abuse", "hit me", "touches me"],
        "priority": 90,
    },
]


def create_tables(ddb: Any, suffix: str = "") -> None:
    """Create all PulseCheck tables. Skips tables that already exist."""
    client = ddb.meta.client
    existing = client.list_tables().get("TableNames", [])

    for name in TABLE_NAMES:
        table_name = f"{name}{suffix}"
        if table_name in existing:
            print(f"  Table {table_name} already exists, skipping")
            continue
        client.create_table(
            TableName=table_name,
            KeySchema=[
                {"AttributeName": "PK", "KeyType": "HASH"},
                {"AttributeName": "SK", "KeyType": "RANGE"},
            ],
            AttributeDefinitions=[
                {"AttributeName": "PK", "AttributeType": "S"},
                {"AttributeName": "SK", "AttributeType": "S"},
            ],
            BillingMode="PAY_PER_REQUEST",
        )
        print(f"  Created table {table_name}")


def seed_default_conditions(ddb: Any, suffix: str = "", created_by: str = "seed") -> int:
    """Create the default active conditions. Pairs that already have an active
    condition are left alone, so re-running is safe. Returns the number created."""
    # The resource's own client transforms native values, so the store gets a plain one.
    meta = ddb.meta.client.meta
    client = create_client(meta.region_name, meta.endpoint_url)
    service = ConditionService(DynamoDBConditionStore(table_suffix=suffix, client=client))
    created = 0
    for data in DEFAULT_CONDITIONS:
        try:
            service.create(EscalationConditionInput(**data), created_by=created_by)
        except DuplicateConditionError:
            print(f"  Condition {data['title']!r} already active, skipping")
            continue
        created += 1
    print(f"  Seeded {created} escalation conditions")
    return created


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed DynamoDB tables for PulseCheck")
    parser.add_argument("--endpoint-url", default=None, help="DynamoDB endpoint (e.g. http://localhost:4566)")
    parser.add_argument("--table-suffix", default="", help="Table name suffix (e.g. -dev)")
    parser.add_argument("--region", default="us-east-1", help="AWS region")
    args = parser.parse_args()

    kwargs: dict[str, Any] = {"region_name": args.region}
    if args.endpoint_url:
        kwargs["endpoint_url"] = args.endpoint_url

    ddb = boto3.resource("dynamodb", **kwargs)

    print("Creating tables...")
    create_tables(ddb, suffix=args.table_suffix)

    print("Seeding conditions...")
    seed_default_conditions(ddb, suffix=args.table_suffix)

    print("Done!")


if __name__ == "__main__":
    main()
