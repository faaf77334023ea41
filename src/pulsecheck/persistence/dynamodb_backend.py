"""DynamoDB backends implementing IEscalationStore, IConditionStore and IUserDirectory.

Every table uses a PK/SK key schema. Writes that must be atomic across items
(record + conversation state, condition + uniqueness guard) go through
TransactWriteItems, so the low-level client is used throughout with explicit
type (de)serialization.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

import boto3
import structlog
from boto3.dynamodb.types import TypeDeserializer, TypeSerializer
from botocore.exceptions import ClientError
from pydantic.alias_generators import to_camel
from pydantic_core import to_jsonable_python

from pulsecheck.core.exceptions import (
    ConcurrencyConflictError,
    DuplicateConditionError,
    NotFoundError,
    PersistenceError,
)
from pulsecheck.models.condition import EscalationCondition
from pulsecheck.models.escalation import (
    ConversationEscalationState,
    EscalationRecord,
    RecordStatus,
    RecordUpdate,
)

logger = structlog.get_logger(__name__)

RECORDS_TABLE = "pulsecheck-escalation-records"
STATE_TABLE = "pulsecheck-conversation-escalation-state"
CONDITIONS_TABLE = "pulsecheck-escalation-conditions"
PROFILES_TABLE = "pulsecheck-user-profiles"
NOTIFICATIONS_TABLE = "pulsecheck-coach-notifications"

_CONFLICT_CODES = {"ConditionalCheckFailedException", "TransactionCanceledException"}

_serializer = TypeSerializer()
_deserializer = TypeDeserializer()


def _to_dynamodb(value: Any) -> Any:
    """Recursively convert floats to Decimal; DynamoDB rejects float."""
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, dict):
        return {k: _to_dynamodb(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_to_dynamodb(v) for v in value]
    return value


def _decode_decimals(value: Any) -> Any:
    """Convert Decimal values in a DynamoDB item back to int/float."""
    if isinstance(value, Decimal):
        return int(value) if value == int(value) else float(value)
    if isinstance(value, dict):
        return {k: _decode_decimals(v) for k, v in value.items()}
    if isinstance(value, (list, set)):
        return [_decode_decimals(v) for v in value]
    return value


def serialize_item(item: dict[str, Any]) -> dict[str, Any]:
    return {k: _serializer.serialize(_to_dynamodb(v)) for k, v in item.items()}


def deserialize_item(item: dict[str, Any]) -> dict[str, Any]:
    return _decode_decimals({k: _deserializer.deserialize(v) for k, v in item.items()})


def _is_conflict(exc: ClientError) -> bool:
    return exc.response.get("Error", {}).get("Code") in _CONFLICT_CODES


def create_client(region: str = "us-east-1", endpoint_url: str | None = None):
    kwargs: dict = {"region_name": region}
    if endpoint_url:
        kwargs["endpoint_url"] = endpoint_url
    return boto3.client("dynamodb", **kwargs)


class _DynamoDBTables:
    """Table naming and client wiring shared by the stores."""

    def __init__(self, table_suffix: str = "", region: str = "us-east-1",
                 endpoint_url: str | None = None, client: Any = None) -> None:
        self._table_suffix = table_suffix
        self._client = client or create_client(region, endpoint_url)

    def _table(self, base: str) -> str:
        return f"{base}{self._table_suffix}"

    def _get_item(self, table_base: str, pk: str, sk: str) -> dict[str, Any] | None:
        try:
            resp = self._client.get_item(
                TableName=self._table(table_base),
                Key=serialize_item({"PK": pk, "SK": sk}),
                ConsistentRead=True,
            )
        except ClientError as exc:
            raise PersistenceError(f"DynamoDB GetItem failed for {pk!r}: {exc}") from exc
        item = resp.get("Item")
        return deserialize_item(item) if item else None

    def _scan(self, table_base: str, **kwargs: Any) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        paginator = self._client.get_paginator("scan")
        try:
            for page in paginator.paginate(TableName=self._table(table_base), **kwargs):
                items.extend(deserialize_item(i) for i in page.get("Items", []))
        except ClientError as exc:
            raise PersistenceError(f"DynamoDB Scan failed on {table_base!r}: {exc}") from exc
        return items

    def _transact(self, items: list[dict[str, Any]], conflict_message: str) -> None:
        try:
            self._client.transact_write_items(TransactItems=items)
        except ClientError as exc:
            if _is_conflict(exc):
                logger.info("DYNAMODB_TRANSACTION_CONFLICT", items=len(items))
                raise ConcurrencyConflictError(conflict_message) from exc
            raise PersistenceError(f"DynamoDB TransactWriteItems failed: {exc}") from exc


# ---------------------------------------------------------------------------
# Escalation records + conversation state
# ---------------------------------------------------------------------------

def _record_key(record_id: str) -> dict[str, str]:
    return {"PK": f"ESCALATION#{record_id}", "SK": "RECORD"}


def _state_key(conversation_id: str) -> dict[str, str]:
    return {"PK": f"CONVERSATION#{conversation_id}", "SK": "STATE"}


def _update_expression(update: RecordUpdate) -> dict[str, Any]:
    """Build UpdateExpression/ConditionExpression kwargs for a RecordUpdate."""
    names: dict[str, str] = {"#updatedAt": "updatedAt", "#history": "history"}
    values: dict[str, Any] = {
        ":updatedAt": to_jsonable_python(update.entry.at),
        ":entry": [update.entry.to_document()],
        ":empty": [],
    }
    sets = ["#updatedAt = :updatedAt",
            "#history = list_append(if_not_exists(#history, :empty), :entry)"]
    removes: list[str] = []
    for i, (field, value) in enumerate(sorted(update.changes.items())):
        names[f"#f{i}"] = to_camel(field)
        if value is None:
            removes.append(f"#f{i}")
        else:
            sets.append(f"#f{i} = :f{i}")
            values[f":f{i}"] = to_jsonable_python(value)

    conditions = ["attribute_exists(PK)"]
    if update.expected_status is not None:
        names["#status"] = "status"
        values[":expectedStatus"] = update.expected_status.value
        conditions.append("#status = :expectedStatus")
    if update.expected_handoff_status is not None:
        names["#handoffStatus"] = "handoffStatus"
        values[":expectedHandoff"] = update.expected_handoff_status.value
        conditions.append("#handoffStatus = :expectedHandoff")

    expression = "SET " + ", ".join(sets)
    if removes:
        expression += " REMOVE " + ", ".join(removes)
    return {
        "UpdateExpression": expression,
        "ConditionExpression": " AND ".join(conditions),
        "ExpressionAttributeNames": names,
        "ExpressionAttributeValues": serialize_item(values),
    }


class DynamoDBEscalationStore(_DynamoDBTables):
    """Production IEscalationStore backed by DynamoDB."""

    def get_record(self, record_id: str) -> EscalationRecord | None:
        key = _record_key(record_id)
        item = self._get_item(RECORDS_TABLE, key["PK"], key["SK"])
        return EscalationRecord.model_validate(item) if item else None

    def get_state(self, conversation_id: str) -> ConversationEscalationState | None:
        key = _state_key(conversation_id)
        item = self._get_item(STATE_TABLE, key["PK"], key["SK"])
        return ConversationEscalationState.model_validate(item) if item else None

    def create_record(
        self,
        record: EscalationRecord,
        state: ConversationEscalationState,
        expected_version: int,
        supersede: RecordUpdate | None = None,
    ) -> None:
        items: list[dict[str, Any]] = [
            {
                "Put": {
                    "TableName": self._table(RECORDS_TABLE),
                    "Item": serialize_item({**_record_key(record.id), **record.to_document()}),
                    "ConditionExpression": "attribute_not_exists(PK)",
                }
            },
            {
                "Put": {
                    "TableName": self._table(STATE_TABLE),
                    "Item": serialize_item(
                        {**_state_key(state.conversation_id), **state.to_document()}
                    ),
                    "ConditionExpression": "attribute_not_exists(PK) OR #v = :expected",
                    "ExpressionAttributeNames": {"#v": "version"},
                    "ExpressionAttributeValues": serialize_item({":expected": expected_version}),
                }
            },
        ]
        if supersede is not None:
            items.append({
                "Update": {
                    "TableName": self._table(RECORDS_TABLE),
                    "Key": serialize_item(_record_key(supersede.record_id)),
                    **_update_expression(supersede),
                }
            })
        self._transact(
            items,
            f"Conversation {state.conversation_id} changed while creating {record.id}",
        )

    def update_record(self, update: RecordUpdate) -> EscalationRecord:
        try:
            resp = self._client.update_item(
                TableName=self._table(RECORDS_TABLE),
                Key=serialize_item(_record_key(update.record_id)),
                ReturnValues="ALL_NEW",
                **_update_expression(update),
            )
        except ClientError as exc:
            if _is_conflict(exc):
                self._raise_missing_or_conflict(update.record_id)
            raise PersistenceError(f"DynamoDB UpdateItem failed: {exc}") from exc
        return EscalationRecord.model_validate(deserialize_item(resp["Attributes"]))

    def update_record_and_release(
        self, update: RecordUpdate, conversation_id: str
    ) -> EscalationRecord:
        state = self.get_state(conversation_id)
        if state is None or state.active_record_id != update.record_id:
            return self.update_record(update)

        items = [
            {
                "Update": {
                    "TableName": self._table(RECORDS_TABLE),
                    "Key": serialize_item(_record_key(update.record_id)),
                    **_update_expression(update),
                }
            },
            {
                "Update": {
                    "TableName": self._table(STATE_TABLE),
                    "Key": serialize_item(_state_key(conversation_id)),
                    "UpdateExpression": (
                        "SET #tier = :none, #safety = :false, #v = :next REMOVE #active"
                    ),
                    "ConditionExpression": "#active = :rid AND #v = :version",
                    "ExpressionAttributeNames": {
                        "#tier": "activeTier",
                        "#safety": "isInSafetyMode",
                        "#active": "activeRecordId",
                        "#v": "version",
                    },
                    "ExpressionAttributeValues": serialize_item({
                        ":none": 0,
                        ":false": False,
                        ":next": state.version + 1,
                        ":version": state.version,
                        ":rid": update.record_id,
                    }),
                }
            },
        ]
        try:
            self._client.transact_write_items(TransactItems=items)
        except ClientError as exc:
            if _is_conflict(exc):
                self._raise_missing_or_conflict(update.record_id)
            raise PersistenceError(f"DynamoDB TransactWriteItems failed: {exc}") from exc
        record = self.get_record(update.record_id)
        if record is None:
            raise NotFoundError(f"Escalation {update.record_id} not found")
        return record

    def list_records(
        self,
        *,
        conversation_id: str | None = None,
        user_id: str | None = None,
        coach_id: str | None = None,
        status: RecordStatus | None = None,
    ) -> list[EscalationRecord]:
        filters = {
            "conversationId": conversation_id,
            "userId": user_id,
            "coachId": coach_id,
            "status": status.value if status is not None else None,
        }
        names: dict[str, str] = {}
        values: dict[str, Any] = {}
        clauses: list[str] = []
        for i, (attr, value) in enumerate(filters.items()):
            if value is None:
                continue
            names[f"#a{i}"] = attr
            values[f":a{i}"] = value
            clauses.append(f"#a{i} = :a{i}")

        kwargs: dict[str, Any] = {}
        if clauses:
            kwargs = {
                "FilterExpression": " AND ".join(clauses),
                "ExpressionAttributeNames": names,
                "ExpressionAttributeValues": serialize_item(values),
            }
        records = [EscalationRecord.model_validate(i) for i in self._scan(RECORDS_TABLE, **kwargs)]
        return sorted(records, key=lambda r: r.created_at, reverse=True)

    def _raise_missing_or_conflict(self, record_id: str) -> None:
        current = self.get_record(record_id)
        if current is None:
            raise NotFoundError(f"Escalation {record_id} not found")
        raise ConcurrencyConflictError(
            f"Escalation {record_id} changed concurrently (now {current.status})"
        )


# ---------------------------------------------------------------------------
# Escalation conditions
# ---------------------------------------------------------------------------

def _condition_key(condition_id: str) -> dict[str, str]:
    return {"PK": f"CONDITION#{condition_id}", "SK": "CONDITION"}


def _guard_key(condition: EscalationCondition) -> dict[str, str]:
    return {"PK": f"ACTIVE#{condition.uniqueness_key}", "SK": "GUARD"}


class DynamoDBConditionStore(_DynamoDBTables):
    """Production IConditionStore. A guard item per active (tier, category) pair
    is written in the same transaction as the condition itself."""

    def get_condition(self, condition_id: str) -> EscalationCondition | None:
        key = _condition_key(condition_id)
        item = self._get_item(CONDITIONS_TABLE, key["PK"], key["SK"])
        return EscalationCondition.model_validate(item) if item else None

    def list_conditions(
        self, *, active_only: bool = False, tier: int | None = None
    ) -> list[EscalationCondition]:
        items = self._scan(
            CONDITIONS_TABLE,
            FilterExpression="SK = :sk",
            ExpressionAttributeValues=serialize_item({":sk": "CONDITION"}),
        )
        conditions = [
            c for c in (EscalationCondition.model_validate(i) for i in items)
            if (not active_only or c.is_active) and (tier is None or c.tier == tier)
        ]
        return sorted(conditions, key=lambda c: (c.tier, -c.priority, c.title))

    def create_condition(self, condition: EscalationCondition) -> None:
        items = [self._put_condition(condition, "attribute_not_exists(PK)", {})]
        if condition.is_active:
            items.append(self._put_guard(condition))
        self._write_conditions(items, condition)

    def replace_condition(
        self, previous: EscalationCondition, updated: EscalationCondition
    ) -> None:
        items = [
            self._put_condition(
                updated,
                "#updatedAt = :previous",
                {":previous": to_jsonable_python(previous.updated_at)},
                names={"#updatedAt": "updatedAt"},
            )
        ]
        same_key = previous.uniqueness_key == updated.uniqueness_key
        if previous.is_active and not (updated.is_active and same_key):
            items.append(self._delete_guard(previous))
        if updated.is_active and not (previous.is_active and same_key):
            items.append(self._put_guard(updated))
        self._write_conditions(items, updated)

    def delete_condition(self, condition: EscalationCondition) -> None:
        items: list[dict[str, Any]] = [
            {
                "Delete": {
                    "TableName": self._table(CONDITIONS_TABLE),
                    "Key": serialize_item(_condition_key(condition.id)),
                    "ConditionExpression": "#updatedAt = :previous",
                    "ExpressionAttributeNames": {"#updatedAt": "updatedAt"},
                    "ExpressionAttributeValues": serialize_item(
                        {":previous": to_jsonable_python(condition.updated_at)}
                    ),
                }
            }
        ]
        if condition.is_active:
            items.append(self._delete_guard(condition))
        try:
            self._transact(items, f"Condition {condition.id} changed concurrently")
        except ConcurrencyConflictError:
            if self.get_condition(condition.id) is None:
                raise NotFoundError(f"Condition {condition.id} not found") from None
            raise

    def _put_condition(self, condition: EscalationCondition, expression: str,
                       values: dict[str, Any], names: dict[str, str] | None = None) -> dict:
        put: dict[str, Any] = {
            "TableName": self._table(CONDITIONS_TABLE),
            "Item": serialize_item({**_condition_key(condition.id), **condition.to_document()}),
            "ConditionExpression": expression,
        }
        if values:
            put["ExpressionAttributeValues"] = serialize_item(values)
        if names:
            put["ExpressionAttributeNames"] = names
        return {"Put": put}

    def _put_guard(self, condition: EscalationCondition) -> dict:
        return {
            "Put": {
                "TableName": self._table(CONDITIONS_TABLE),
                "Item": serialize_item({**_guard_key(condition), "conditionId": condition.id}),
                "ConditionExpression": "attribute_not_exists(PK)",
            }
        }

    def _delete_guard(self, condition: EscalationCondition) -> dict:
        return {
            "Delete": {
                "TableName": self._table(CONDITIONS_TABLE),
                "Key": serialize_item(_guard_key(condition)),
                "ConditionExpression": "conditionId = :id",
                "ExpressionAttributeValues": serialize_item({":id": condition.id}),
            }
        }

    def _write_conditions(self, items: list[dict], condition: EscalationCondition) -> None:
        try:
            self._transact(items, f"Condition {condition.id} changed concurrently")
        except ConcurrencyConflictError:
            if condition.is_active:
                guard = _guard_key(condition)
                holder = self._get_item(CONDITIONS_TABLE, guard["PK"], guard["SK"])
                if holder is not None and holder.get("conditionId") != condition.id:
                    raise DuplicateConditionError(
                        int(condition.tier), condition.category.value
                    ) from None
            raise


# ---------------------------------------------------------------------------
# User directory
# ---------------------------------------------------------------------------

class DynamoDBUserDirectory(_DynamoDBTables):
    """Production IUserDirectory. Profiles live under ``SK=PROFILE``; accepted
    coach connections under ``SK=COACH#{coachId}``."""

    def get_profile(self, user_id: str) -> dict[str, Any] | None:
        item = self._get_item(PROFILES_TABLE, f"USER#{user_id}", "PROFILE")
        if item is None:
            return None
        return {k: v for k, v in item.items() if k not in ("PK", "SK")}

    def get_linked_coach(self, user_id: str) -> str | None:
        try:
            resp = self._client.query(
                TableName=self._table(PROFILES_TABLE),
                KeyConditionExpression="PK = :pk AND begins_with(SK, :prefix)",
                FilterExpression="#s = :accepted",
                ExpressionAttributeNames={"#s": "status"},
                ExpressionAttributeValues=serialize_item({
                    ":pk": f"USER#{user_id}",
                    ":prefix": "COACH#",
                    ":accepted": "accepted",
                }),
            )
        except ClientError as exc:
            raise PersistenceError(f"DynamoDB Query failed for coach link: {exc}") from exc
        for item in resp.get("Items", []):
            coach_id = deserialize_item(item).get("coachId")
            if coach_id:
                return coach_id
        return None
