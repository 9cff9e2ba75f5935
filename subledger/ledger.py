from __future__ import annotations

from typing import List, Optional

from subledger.auth.deps import AuthOracle
from subledger.core.settings import S
from subledger.core.time import Clock, SystemClock
from subledger.metrics import set_app_info
from subledger.models import Subscription, SubscriptionPage
from subledger.services import billing, queries, revenue, subscriptions
from subledger.services.env import LedgerEnv
from subledger.services.store import DynamoLedgerStore, LedgerStore

__version__ = "0.1.0"


class SubscriptionLedger:
    """
    The ledger's public operations, bound to one store, auth oracle and clock.

    Every method is a single atomic unit against the store: it either commits
    all of its writes or raises a LedgerError and commits none.
    """

    def __init__(self, store: LedgerStore, auth: AuthOracle, clock: Optional[Clock] = None) -> None:
        self.env = LedgerEnv(store, auth, clock or SystemClock())

    @classmethod
    def from_settings(cls, auth: AuthOracle, clock: Optional[Clock] = None) -> "SubscriptionLedger":
        from subledger.core.tables import T

        set_app_info("subledger", __version__)
        return cls(DynamoLedgerStore(T.ledger), auth, clock)

    # Subscription registry
    def initialize(self) -> None:
        subscriptions.initialize(self.env)

    def create_subscription(
        self,
        owner: str,
        subscriber: str,
        amount: int,
        period_days: int,
        recipient: str,
        split_percentage: int,
    ) -> int:
        return subscriptions.create_subscription(
            self.env, owner, subscriber, amount, period_days, recipient, split_percentage
        )

    def cancel_subscription(self, subscription_id: int) -> None:
        subscriptions.cancel_subscription(self.env, subscription_id)

    def get_subscription(self, subscription_id: int) -> Subscription:
        return subscriptions.get_subscription(self.env, subscription_id)

    # Billing
    def renew_subscription(self, subscription_id: int) -> bool:
        return billing.renew_subscription(self.env, subscription_id)

    def process_due_subscriptions(self, owner: str, max_count: int) -> int:
        return billing.process_due_subscriptions(self.env, owner, max_count)

    # Revenue
    def get_balance(self, recipient: str) -> int:
        return revenue.get_balance(self.env, recipient)

    def withdraw_revenue(self, recipient: str) -> int:
        return revenue.withdraw_revenue(self.env, recipient)

    # Queries
    def list_subscriptions(
        self,
        owner: str,
        start_after: Optional[int] = None,
        limit: int = S.default_page_limit,
    ) -> List[Subscription]:
        return queries.list_subscriptions(self.env, owner, start_after, limit)

    def get_all_subscriptions(self, owner: str) -> List[Subscription]:
        return queries.get_all_subscriptions(self.env, owner)

    def page_subscriptions(
        self,
        owner: str,
        cursor: Optional[str] = None,
        limit: int = S.default_page_limit,
    ) -> SubscriptionPage:
        return queries.page_subscriptions(self.env, owner, cursor, limit)
