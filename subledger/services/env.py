from __future__ import annotations

import copy
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from subledger.auth.deps import AuthOracle
from subledger.core.errors import LedgerError, NotFound
from subledger.core.time import Clock
from subledger.metrics import record_ledger_error
from subledger.models import RecipientBalance, Subscription
from subledger.services.store import (
    COUNTER_KEY,
    INDEX_SK_PREFIX,
    INITIALIZED_KEY,
    Expected,
    LedgerKey,
    LedgerStore,
    owner_index_key,
    owner_index_pk,
    recipient_balance_key,
    subscription_key,
)


class LedgerTxn:
    """
    One atomic unit of work. Reads see this unit's own staged writes first;
    nothing reaches the store until the unit finishes without raising, and
    then only if none of the written keys changed since they were read.
    """

    def __init__(self, store: LedgerStore, auth: AuthOracle, now: int) -> None:
        self.store = store
        self.auth = auth
        self.now = int(now)
        self.writes: Dict[LedgerKey, Any] = {}
        self.versions: Expected = {}
        self._reads: Dict[LedgerKey, Any] = {}
        self._appended: Dict[str, List[int]] = {}

    def _get(self, key: LedgerKey) -> Optional[Any]:
        if key in self.writes:
            return copy.deepcopy(self.writes[key])
        if key not in self._reads:
            value, version = self.store.read(key)
            self._reads[key] = value
            self.versions[key] = version
        return copy.deepcopy(self._reads[key])

    def _has(self, key: LedgerKey) -> bool:
        return self._get(key) is not None

    def _set(self, key: LedgerKey, value: Any) -> None:
        if key not in self.versions:
            self._get(key)
        self.writes[key] = value

    def expected_versions(self) -> Expected:
        return {key: self.versions.get(key) for key in self.writes}

    def require_auth(self, principal: str) -> None:
        self.auth.authorize(principal)

    # Subscription(id)
    def subscription(self, subscription_id: int) -> Optional[Subscription]:
        item = self._get(subscription_key(subscription_id))
        return Subscription.from_item(item) if item else None

    def require_subscription(self, subscription_id: int) -> Subscription:
        sub = self.subscription(subscription_id)
        if sub is None:
            raise NotFound(f"Subscription {subscription_id} not found")
        return sub

    def put_subscription(self, sub: Subscription) -> None:
        self._set(subscription_key(sub.id), sub.to_item())

    # OwnerSubscriptions(owner): one item per entry, ordered by id
    def owner_index(self, owner: str) -> List[int]:
        ids = [int(value) for _, value in self.store.query(owner_index_pk(owner), INDEX_SK_PREFIX)]
        return ids + self._appended.get(owner, [])

    def append_owner_index(self, owner: str, subscription_id: int) -> None:
        key = owner_index_key(owner, subscription_id)
        # Index entries are insert-only.
        self.versions[key] = None
        self.writes[key] = int(subscription_id)
        self._appended.setdefault(owner, []).append(int(subscription_id))

    # RecipientBalance(address)
    def balance_record(self, address: str) -> Optional[RecipientBalance]:
        item = self._get(recipient_balance_key(address))
        return RecipientBalance.from_item(item) if item else None

    def has_balance(self, address: str) -> bool:
        return self._has(recipient_balance_key(address))

    def balance(self, address: str) -> int:
        record = self.balance_record(address)
        return record.balance if record is not None else 0

    def put_balance(self, address: str, amount: int) -> None:
        record = RecipientBalance(address=address, balance=int(amount))
        self._set(recipient_balance_key(address), record.to_item())

    # SubscriptionCounter / Initialized
    def counter(self) -> int:
        value = self._get(COUNTER_KEY)
        return int(value) if value is not None else 0

    def put_counter(self, value: int) -> None:
        self._set(COUNTER_KEY, int(value))

    def is_initialized(self) -> bool:
        return self._has(INITIALIZED_KEY)

    def mark_initialized(self) -> None:
        self._set(INITIALIZED_KEY, True)


class LedgerEnv:
    """The store, auth oracle and clock every ledger operation runs against."""

    def __init__(self, store: LedgerStore, auth: AuthOracle, clock: Clock) -> None:
        self.store = store
        self.auth = auth
        self.clock = clock
        # Serializes operations within this process; across processes the
        # store's versioned commit rejects stale writers.
        self._lock = threading.RLock()

    @contextmanager
    def atomic(self) -> Iterator[LedgerTxn]:
        with self._lock:
            txn = LedgerTxn(self.store, self.auth, self.clock.now())
            try:
                yield txn
                self.store.commit(txn.writes, txn.expected_versions())
            except LedgerError as exc:
                record_ledger_error(exc.code)
                raise
