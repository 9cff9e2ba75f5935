from __future__ import annotations

from decimal import Decimal
from types import SimpleNamespace
from typing import Any, Dict, List, Optional, Tuple
from unittest.mock import MagicMock, patch

import pytest
from boto3.dynamodb.types import TypeDeserializer
from botocore.exceptions import ClientError

from subledger.auth.deps import AllowAllAuthOracle
from subledger.core.errors import ConflictError, InvalidSplit, StoreError
from subledger.core.time import ManualClock
from subledger.ledger import SubscriptionLedger
from subledger.models import I128_MAX
from subledger.services import store as store_mod
from subledger.services.env import LedgerEnv
from subledger.services.store import (
    COUNTER_KEY,
    INDEX_SK_PREFIX,
    INITIALIZED_KEY,
    DynamoLedgerStore,
    LedgerKey,
    MemoryLedgerStore,
    owner_index_key,
    owner_index_pk,
    recipient_balance_key,
    subscription_key,
)

T0 = 1_700_000_000


def _as_ddb(value: Any) -> Any:
    # boto3 hands numbers back as Decimal.
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, dict):
        return {k: _as_ddb(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_as_ddb(v) for v in value]
    return value


def _client_error(code: str, op: str, message: str = "slow down") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": message}}, op)


class FakeClient:
    def __init__(self, table: "FakeTable") -> None:
        self.table = table
        self.calls: List[List[Dict[str, Any]]] = []
        self._deserializer = TypeDeserializer()

    def transact_write_items(self, *, TransactItems: List[Dict[str, Any]]) -> None:
        self.calls.append(TransactItems)
        staged = []
        for action in TransactItems:
            put = action["Put"]
            assert put["TableName"] == self.table.name
            item = {k: self._deserializer.deserialize(v) for k, v in put["Item"].items()}
            values = {k: self._deserializer.deserialize(v) for k, v in put.get("ExpressionAttributeValues", {}).items()}
            if not self.table.condition_holds(
                item, put.get("ConditionExpression"), put.get("ExpressionAttributeNames", {}), values
            ):
                raise _client_error("TransactionCanceledException", "TransactWriteItems", "ConditionalCheckFailed")
            staged.append(item)
        for item in staged:
            self.table.items[(item["pk"], item["sk"])] = item


class FakeTable:
    def __init__(self, name: str = "subscription_ledger", page_size: int = 1000) -> None:
        self.name = name
        self.page_size = page_size
        self.items: Dict[Tuple[str, str], Dict[str, Any]] = {}
        self.queries = 0
        self.meta = SimpleNamespace(client=FakeClient(self))

    def condition_holds(
        self,
        item: Dict[str, Any],
        condition: Optional[str],
        names: Dict[str, str],
        values: Dict[str, Any],
    ) -> bool:
        current = self.items.get((item["pk"], item["sk"]))
        if not condition:
            return True
        if condition == "attribute_not_exists(pk)":
            return current is None
        assert condition == "#v = :v"
        return current is not None and current.get(names["#v"]) == values[":v"]

    def get_item(self, *, Key: Dict[str, str], **_: Any) -> Dict[str, Any]:
        item = self.items.get((Key["pk"], Key["sk"]))
        return {"Item": item} if item else {}

    def put_item(
        self,
        *,
        Item: Dict[str, Any],
        ConditionExpression: Optional[str] = None,
        ExpressionAttributeNames: Optional[Dict[str, str]] = None,
        ExpressionAttributeValues: Optional[Dict[str, Any]] = None,
    ) -> None:
        if not self.condition_holds(Item, ConditionExpression, ExpressionAttributeNames or {}, ExpressionAttributeValues or {}):
            raise _client_error("ConditionalCheckFailedException", "PutItem", "The conditional request failed")
        self.items[(Item["pk"], Item["sk"])] = _as_ddb(Item)

    def query(
        self,
        *,
        ExpressionAttributeValues: Dict[str, str],
        ExclusiveStartKey: Optional[Dict[str, str]] = None,
        **_: Any,
    ) -> Dict[str, Any]:
        self.queries += 1
        pk, prefix = ExpressionAttributeValues[":pk"], ExpressionAttributeValues[":p"]
        matched = sorted(
            (item for (item_pk, sk), item in self.items.items() if item_pk == pk and sk.startswith(prefix)),
            key=lambda item: item["sk"],
        )
        if ExclusiveStartKey:
            matched = [item for item in matched if item["sk"] > ExclusiveStartKey["sk"]]
        page = matched[: self.page_size]
        resp: Dict[str, Any] = {"Items": page}
        if len(matched) > self.page_size:
            resp["LastEvaluatedKey"] = {"pk": pk, "sk": page[-1]["sk"]}
        return resp


def test_keys_follow_storage_layout():
    assert subscription_key(7) == LedgerKey("SUB#7", "SUBSCRIPTION")
    assert owner_index_key("alice", 7) == LedgerKey("OWNER#alice", "IDX#00000000000000000007")
    assert recipient_balance_key("bob") == LedgerKey("RECIPIENT#bob", "BALANCE")
    assert COUNTER_KEY == LedgerKey("LEDGER", "COUNTER")


def test_index_sort_keys_order_numerically():
    assert owner_index_key("a", 9).sk < owner_index_key("a", 10).sk < owner_index_key("a", 2**64 - 1).sk


def test_memory_store_isolates_values():
    store = MemoryLedgerStore()
    ids = [1, 2]
    store.set(COUNTER_KEY, ids)
    ids.append(3)
    got = store.get(COUNTER_KEY)
    got.append(4)

    assert store.get(COUNTER_KEY) == [1, 2]


def test_memory_store_query_is_sorted_by_sort_key():
    store = MemoryLedgerStore()
    for sub_id in (10, 2, 1):
        store.set(owner_index_key("alice", sub_id), sub_id)
    store.set(owner_index_key("bob", 3), 3)

    assert [v for _, v in store.query(owner_index_pk("alice"), INDEX_SK_PREFIX)] == [1, 2, 10]


def test_memory_store_rejects_stale_versions():
    store = MemoryLedgerStore()
    store.set(COUNTER_KEY, 1)
    _, version = store.read(COUNTER_KEY)
    store.commit({COUNTER_KEY: 2}, {COUNTER_KEY: version})

    with pytest.raises(ConflictError):
        store.commit({COUNTER_KEY: 3}, {COUNTER_KEY: version})
    with pytest.raises(ConflictError):
        store.commit({owner_index_key("alice", 1): 1, COUNTER_KEY: 3}, {owner_index_key("alice", 1): None})
    assert store.get(COUNTER_KEY) == 2
    assert not store.has(owner_index_key("alice", 1))


def test_dynamo_store_single_write_uses_put_item():
    table = FakeTable()
    store = DynamoLedgerStore(table)

    store.set(COUNTER_KEY, 5)

    assert table.items[("LEDGER", "COUNTER")]["value"] == Decimal(5)
    assert table.items[("LEDGER", "COUNTER")]["version"] == Decimal(1)
    assert store.get(COUNTER_KEY) == 5
    assert isinstance(store.get(COUNTER_KEY), int)
    assert store.read(COUNTER_KEY) == (5, 1)
    assert store.has(COUNTER_KEY)
    assert not store.has(subscription_key(1))
    assert table.meta.client.calls == []

    store.set(COUNTER_KEY, 6)
    assert store.read(COUNTER_KEY) == (6, 2)


def test_dynamo_store_multi_write_is_one_conditional_transaction():
    table = FakeTable()
    store = DynamoLedgerStore(table)

    store.commit({COUNTER_KEY: 1, INITIALIZED_KEY: True}, {COUNTER_KEY: None, INITIALIZED_KEY: None})

    assert len(table.meta.client.calls) == 1
    puts = [action["Put"] for action in table.meta.client.calls[0]]
    assert all(put["ConditionExpression"] == "attribute_not_exists(pk)" for put in puts)
    assert store.read(INITIALIZED_KEY) == (True, 1)


def test_dynamo_store_chunks_large_commits(monkeypatch):
    monkeypatch.setattr(store_mod, "TRANSACT_MAX_ITEMS", 2)
    table = FakeTable()
    store = DynamoLedgerStore(table)

    store.commit({recipient_balance_key(f"r{i}"): {"address": f"r{i}", "balance": "0"} for i in range(5)})

    assert [len(call) for call in table.meta.client.calls] == [2, 2, 1]


def test_dynamo_store_empty_commit_is_noop():
    table = FakeTable()
    table.put_item = MagicMock()
    DynamoLedgerStore(table).commit({})
    table.put_item.assert_not_called()


def test_dynamo_store_wraps_client_errors():
    table = MagicMock()
    table.get_item.side_effect = _client_error("ProvisionedThroughputExceededException", "GetItem")
    table.put_item.side_effect = _client_error("ProvisionedThroughputExceededException", "PutItem")
    store = DynamoLedgerStore(table)

    with pytest.raises(StoreError) as excinfo:
        store.get(COUNTER_KEY)
    assert "slow down" in str(excinfo.value)
    assert not excinfo.value.retryable
    assert isinstance(excinfo.value.__cause__, ClientError)

    with pytest.raises(StoreError):
        store.commit({COUNTER_KEY: 1})


def test_dynamo_store_maps_condition_failures_to_conflict():
    table = FakeTable()
    store = DynamoLedgerStore(table)
    store.set(COUNTER_KEY, 1)

    with pytest.raises(ConflictError) as excinfo:
        store.commit({COUNTER_KEY: 2}, {COUNTER_KEY: None})
    assert excinfo.value.retryable
    assert excinfo.value.status_code == 409

    with pytest.raises(ConflictError):
        store.commit({COUNTER_KEY: 2, INITIALIZED_KEY: True}, {COUNTER_KEY: 7, INITIALIZED_KEY: None})
    assert store.read(COUNTER_KEY) == (1, 1)
    assert not store.has(INITIALIZED_KEY)


def test_dynamo_store_query_follows_pagination():
    table = FakeTable(page_size=2)
    store = DynamoLedgerStore(table)
    for sub_id in range(1, 6):
        store.set(owner_index_key("alice", sub_id), sub_id)

    rows = store.query(owner_index_pk("alice"), INDEX_SK_PREFIX)

    assert [v for _, v in rows] == [1, 2, 3, 4, 5]
    assert table.queries == 3


def _shared_table_ledgers() -> Tuple[FakeTable, LedgerEnv, SubscriptionLedger]:
    table = FakeTable()
    clock = ManualClock(T0)
    first = LedgerEnv(DynamoLedgerStore(table), AllowAllAuthOracle(), clock)
    second = SubscriptionLedger(DynamoLedgerStore(table), AllowAllAuthOracle(), clock)
    second.initialize()
    return table, first, second


def test_stale_counter_commit_is_rejected():
    table, first, second = _shared_table_ledgers()

    with pytest.raises(ConflictError):
        with first.atomic() as txn:
            next_id = txn.counter() + 1
            # Another process creates a subscription between our read and commit.
            assert second.create_subscription("owner", "payer", 100, 30, "artist", 1000) == next_id
            txn.put_counter(next_id)

    assert second.get_subscription(1).owner == "owner"
    assert DynamoLedgerStore(table).get(COUNTER_KEY) == 1


def test_stale_multi_item_commit_writes_nothing():
    table, first, second = _shared_table_ledgers()

    with pytest.raises(ConflictError):
        with first.atomic() as txn:
            next_id = txn.counter() + 1
            second.create_subscription("owner", "payer", 100, 30, "artist", 1000)
            txn.put_counter(next_id)
            txn.append_owner_index("intruder", next_id)

    assert second.get_all_subscriptions("intruder") == []
    assert [s.id for s in second.get_all_subscriptions("owner")] == [1]
    assert second.create_subscription("owner", "payer", 100, 30, "artist", 1000) == 2


def test_concurrent_withdraw_cannot_double_spend():
    table, first, second = _shared_table_ledgers()
    sub_id = second.create_subscription("owner", "payer", 1000, 1, "artist", 10000)
    first.clock.advance(days=1)
    assert second.renew_subscription(sub_id)

    with pytest.raises(ConflictError):
        with first.atomic() as txn:
            balance = txn.balance("artist")
            assert second.withdraw_revenue("artist") == balance
            txn.put_balance("artist", 0)

    assert second.get_balance("artist") == 0


def test_owner_index_is_one_item_per_entry():
    table = FakeTable()
    ledger = SubscriptionLedger(DynamoLedgerStore(table), AllowAllAuthOracle(), ManualClock(T0))
    for _ in range(3):
        ledger.create_subscription("owner", "payer", 100, 30, "artist", 1000)

    index_items = sorted(sk for pk, sk in table.items if pk == "OWNER#owner")
    assert index_items == [owner_index_key("owner", i).sk for i in (1, 2, 3)]
    assert all(len(str(item["value"])) < 32 for (pk, _), item in table.items.items() if pk == "OWNER#owner")


def test_create_does_not_rewrite_existing_index_entries():
    table = FakeTable()
    ledger = SubscriptionLedger(DynamoLedgerStore(table), AllowAllAuthOracle(), ManualClock(T0))
    ledger.create_subscription("owner", "payer", 100, 30, "artist", 1000)

    with patch.object(table, "query", wraps=table.query) as query:
        ledger.create_subscription("owner", "payer", 100, 30, "artist", 1000)
    query.assert_not_called()

    written = [action["Put"]["Item"]["sk"]["S"] for action in table.meta.client.calls[-1]]
    assert owner_index_key("owner", 1).sk not in written
    assert owner_index_key("owner", 2).sk in written


def test_ledger_round_trips_through_dynamo_layout():
    table = FakeTable(page_size=2)
    clock = ManualClock(T0)
    ledger = SubscriptionLedger(DynamoLedgerStore(table), AllowAllAuthOracle(), clock)
    ledger.initialize()

    sub_id = ledger.create_subscription("owner", "payer", I128_MAX, 1, "artist", 10000)
    for _ in range(4):
        ledger.create_subscription("owner", "payer", 100, 1, "other", 0)
    clock.advance(days=1)
    assert ledger.renew_subscription(sub_id) is True

    stored = table.items[("SUB#1", "SUBSCRIPTION")]["value"]
    assert stored["amount"] == str(I128_MAX)
    assert table.items[("RECIPIENT#artist", "BALANCE")]["value"] == {"address": "artist", "balance": str(I128_MAX)}

    sub = ledger.get_subscription(sub_id)
    assert sub.amount == I128_MAX
    assert sub.last_payment_date == T0 + 86400
    assert ledger.get_balance("artist") == I128_MAX
    assert [s.id for s in ledger.list_subscriptions("owner", 2, 10)] == [3, 4, 5]
    assert ledger.process_due_subscriptions("owner", 10) == 4


def test_aborted_operation_writes_nothing_to_dynamo():
    table = FakeTable()
    ledger = SubscriptionLedger(DynamoLedgerStore(table), AllowAllAuthOracle(), ManualClock(T0))
    ledger.initialize()
    before = dict(table.items)

    with pytest.raises(InvalidSplit):
        ledger.create_subscription("owner", "payer", 100, 30, "artist", 10001)

    assert table.items == before


def test_from_settings_wires_the_ledger_table():
    from subledger.core import tables

    table = FakeTable()
    with patch.object(tables, "T", SimpleNamespace(ledger=table)):
        ledger = SubscriptionLedger.from_settings(AllowAllAuthOracle(), ManualClock(T0))

    assert isinstance(ledger.env.store, DynamoLedgerStore)
    assert ledger.env.store.table is table
    ledger.initialize()
    assert ("LEDGER", "INITIALIZED") in table.items
