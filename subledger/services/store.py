from __future__ import annotations

import copy
import logging
import threading
from decimal import Decimal
from typing import Any, Dict, List, NamedTuple, Optional, Protocol, Tuple

from boto3.dynamodb.types import TypeSerializer
from botocore.exceptions import ClientError

from subledger.core.errors import ConflictError, StoreError

logger = logging.getLogger(__name__)

# DynamoDB TransactWriteItems accepts at most 100 actions per call.
TRANSACT_MAX_ITEMS = 100

INDEX_SK_PREFIX = "IDX#"

CONFLICT_CODES = {"ConditionalCheckFailedException", "TransactionCanceledException"}


class LedgerKey(NamedTuple):
    pk: str
    sk: str


def subscription_key(subscription_id: int) -> LedgerKey:
    return LedgerKey(f"SUB#{int(subscription_id)}", "SUBSCRIPTION")


def owner_index_pk(owner: str) -> str:
    return f"OWNER#{owner}"


def owner_index_key(owner: str, subscription_id: int) -> LedgerKey:
    # Zero-padded so sk order is id order, which is insertion order.
    return LedgerKey(owner_index_pk(owner), f"{INDEX_SK_PREFIX}{int(subscription_id):020d}")


def recipient_balance_key(address: str) -> LedgerKey:
    return LedgerKey(f"RECIPIENT#{address}", "BALANCE")


COUNTER_KEY = LedgerKey("LEDGER", "COUNTER")
INITIALIZED_KEY = LedgerKey("LEDGER", "INITIALIZED")

# Expected version per written key; None means the key must not exist yet.
Expected = Dict[LedgerKey, Optional[int]]


class LedgerStore(Protocol):
    def read(self, key: LedgerKey) -> Tuple[Optional[Any], Optional[int]]: ...

    def query(self, pk: str, sk_prefix: str) -> List[Tuple[LedgerKey, Any]]: ...

    def commit(self, writes: Dict[LedgerKey, Any], expected: Optional[Expected] = None) -> None: ...


class MemoryLedgerStore:
    """Process-local store. Values are deep-copied on the way in and out."""

    def __init__(self) -> None:
        self._items: Dict[LedgerKey, Tuple[Any, int]] = {}
        self._lock = threading.Lock()

    def read(self, key: LedgerKey) -> Tuple[Optional[Any], Optional[int]]:
        with self._lock:
            entry = self._items.get(key)
        if entry is None:
            return None, None
        return copy.deepcopy(entry[0]), entry[1]

    def get(self, key: LedgerKey) -> Optional[Any]:
        return self.read(key)[0]

    def has(self, key: LedgerKey) -> bool:
        with self._lock:
            return key in self._items

    def query(self, pk: str, sk_prefix: str) -> List[Tuple[LedgerKey, Any]]:
        with self._lock:
            matched = sorted(
                (k, copy.deepcopy(v)) for k, (v, _) in self._items.items() if k.pk == pk and k.sk.startswith(sk_prefix)
            )
        return matched

    def set(self, key: LedgerKey, value: Any) -> None:
        self.commit({key: value})

    def delete(self, key: LedgerKey) -> None:
        with self._lock:
            self._items.pop(key, None)

    def commit(self, writes: Dict[LedgerKey, Any], expected: Optional[Expected] = None) -> None:
        staged = {k: copy.deepcopy(v) for k, v in writes.items()}
        with self._lock:
            if expected is not None:
                for key in staged:
                    entry = self._items.get(key)
                    current = entry[1] if entry else None
                    if current != expected.get(key):
                        raise ConflictError(f"{key.pk}/{key.sk} changed since it was read")
            for key, value in staged.items():
                entry = self._items.get(key)
                self._items[key] = (value, (entry[1] if entry else 0) + 1)


def _plain(value: Any) -> Any:
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    if isinstance(value, set):
        return sorted(_plain(v) for v in value)
    return value


def _ddb_error(exc: ClientError) -> StoreError:
    err = exc.response.get("Error", {})
    if err.get("Code") in CONFLICT_CODES:
        return ConflictError(f"Conflict: ledger items were updated by someone else ({err.get('Message')})")
    return StoreError(f"DDB error: {err.get('Message')}")


def _condition(expected_version: Optional[int]) -> Dict[str, Any]:
    if expected_version is None:
        return {"ConditionExpression": "attribute_not_exists(pk)"}
    return {
        "ConditionExpression": "#v = :v",
        "ExpressionAttributeNames": {"#v": "version"},
        "ExpressionAttributeValues": {":v": int(expected_version)},
    }


class DynamoLedgerStore:
    """
    One DynamoDB table, pk/sk string keys, payload under the `value` attribute.

    Every item carries a `version` number. Commits made with expected
    versions are conditional, so a transaction built on stale reads is
    rejected with ConflictError instead of overwriting another writer.
    """

    def __init__(self, table: Any, client: Any = None) -> None:
        self.table = table
        self._client = client
        self._serializer = TypeSerializer()

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = self.table.meta.client
        return self._client

    def _item(self, key: LedgerKey) -> Optional[Dict[str, Any]]:
        try:
            resp = self.table.get_item(Key={"pk": key.pk, "sk": key.sk}, ConsistentRead=True)
        except ClientError as exc:
            raise _ddb_error(exc) from exc
        return resp.get("Item")

    def read(self, key: LedgerKey) -> Tuple[Optional[Any], Optional[int]]:
        item = self._item(key)
        if not item:
            return None, None
        return _plain(item.get("value")), int(item.get("version") or 0)

    def get(self, key: LedgerKey) -> Optional[Any]:
        return self.read(key)[0]

    def has(self, key: LedgerKey) -> bool:
        return self._item(key) is not None

    def query(self, pk: str, sk_prefix: str) -> List[Tuple[LedgerKey, Any]]:
        kwargs: Dict[str, Any] = {
            "KeyConditionExpression": "pk = :pk AND begins_with(sk, :p)",
            "ExpressionAttributeValues": {":pk": pk, ":p": sk_prefix},
            "ConsistentRead": True,
        }
        out: List[Tuple[LedgerKey, Any]] = []
        while True:
            try:
                resp = self.table.query(**kwargs)
            except ClientError as exc:
                raise _ddb_error(exc) from exc
            for item in resp.get("Items", []):
                out.append((LedgerKey(item["pk"], item["sk"]), _plain(item.get("value"))))
            last = resp.get("LastEvaluatedKey")
            if not last:
                return out
            kwargs["ExclusiveStartKey"] = last

    def set(self, key: LedgerKey, value: Any) -> None:
        """Single write against the current version, for maintenance and fixtures."""
        _, version = self.read(key)
        self.commit({key: value}, {key: version})

    def commit(self, writes: Dict[LedgerKey, Any], expected: Optional[Expected] = None) -> None:
        if not writes:
            return
        puts = []
        for key, value in writes.items():
            version = expected.get(key) if expected is not None else None
            item = {"pk": key.pk, "sk": key.sk, "value": value, "version": (version or 0) + 1}
            puts.append((item, _condition(version) if expected is not None else {}))
        try:
            if len(puts) == 1:
                item, condition = puts[0]
                self.table.put_item(Item=item, **condition)
            else:
                self._transact_put(puts)
        except ClientError as exc:
            raise _ddb_error(exc) from exc
        logger.debug("committed %d ledger item(s) to %s", len(puts), self.table.name)

    def _transact_put(self, puts: List[Tuple[Dict[str, Any], Dict[str, Any]]]) -> None:
        if len(puts) > TRANSACT_MAX_ITEMS:
            logger.warning(
                "commit of %d items exceeds the %d-item transaction limit; writing in chunks",
                len(puts),
                TRANSACT_MAX_ITEMS,
            )
        for start in range(0, len(puts), TRANSACT_MAX_ITEMS):
            chunk = puts[start:start + TRANSACT_MAX_ITEMS]
            actions = []
            for item, condition in chunk:
                put: Dict[str, Any] = {
                    "TableName": self.table.name,
                    "Item": {k: self._serializer.serialize(v) for k, v in item.items()},
                }
                if "ConditionExpression" in condition:
                    put["ConditionExpression"] = condition["ConditionExpression"]
                if "ExpressionAttributeNames" in condition:
                    put["ExpressionAttributeNames"] = condition["ExpressionAttributeNames"]
                    put["ExpressionAttributeValues"] = {
                        k: self._serializer.serialize(v) for k, v in condition["ExpressionAttributeValues"].items()
                    }
                actions.append({"Put": put})
            self.client.transact_write_items(TransactItems=actions)
