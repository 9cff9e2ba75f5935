from __future__ import annotations

from subledger.core.errors import (
    AlreadyCancelled,
    CounterOverflow,
    InvalidAmount,
    InvalidPeriod,
    InvalidSplit,
)
from subledger.metrics import record_subscription_cancelled, record_subscription_created
from subledger.models import I128_MAX, MAX_SPLIT_PERCENTAGE, U32_MAX, U64_MAX, Subscription
from subledger.services.billing import advance_due_date
from subledger.services.env import LedgerEnv, LedgerTxn
from subledger.services.revenue import ensure_balance


def initialize(env: LedgerEnv) -> None:
    """One-time setup. Later calls are no-ops."""
    with env.atomic() as txn:
        if txn.is_initialized():
            return
        txn.put_counter(0)
        txn.mark_initialized()


def _validate_terms(amount: int, period_days: int, split_percentage: int) -> None:
    # bool is an int subclass but never a valid amount, period or split.
    if isinstance(amount, bool) or amount <= 0 or amount > I128_MAX:
        raise InvalidAmount()
    if isinstance(period_days, bool) or period_days <= 0 or period_days > U32_MAX:
        raise InvalidPeriod()
    if isinstance(split_percentage, bool) or split_percentage < 0 or split_percentage > MAX_SPLIT_PERCENTAGE:
        raise InvalidSplit()


def _next_id(txn: LedgerTxn) -> int:
    counter = txn.counter()
    if counter >= U64_MAX:
        raise CounterOverflow()
    counter += 1
    txn.put_counter(counter)
    return counter


def create_subscription(
    env: LedgerEnv,
    owner: str,
    subscriber: str,
    amount: int,
    period_days: int,
    recipient: str,
    split_percentage: int,
) -> int:
    with env.atomic() as txn:
        txn.require_auth(owner)
        _validate_terms(amount, period_days, split_percentage)

        sub_id = _next_id(txn)
        sub = Subscription(
            id=sub_id,
            owner=owner,
            subscriber=subscriber,
            amount=amount,
            period_days=period_days,
            recipient=recipient,
            split_percentage=split_percentage,
            next_billing_date=advance_due_date(txn.now, period_days),
            last_payment_date=0,
            is_active=True,
            created_at=txn.now,
        )
        txn.put_subscription(sub)

        txn.append_owner_index(owner, sub_id)

        ensure_balance(txn, recipient)

    record_subscription_created()
    return sub_id


def cancel_subscription(env: LedgerEnv, subscription_id: int) -> None:
    with env.atomic() as txn:
        sub = txn.require_subscription(subscription_id)
        txn.require_auth(sub.owner)
        if not sub.is_active:
            raise AlreadyCancelled()
        txn.put_subscription(sub.model_copy(update={"is_active": False}))

    record_subscription_cancelled()


def get_subscription(env: LedgerEnv, subscription_id: int) -> Subscription:
    with env.atomic() as txn:
        return txn.require_subscription(subscription_id)
