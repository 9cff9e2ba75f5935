from __future__ import annotations

from typing import Tuple

from subledger.core.errors import ArithmeticOverflow, InactiveSubscription
from subledger.core.time import SECONDS_PER_DAY
from subledger.metrics import record_renewal
from subledger.models import I128_MAX, MAX_SPLIT_PERCENTAGE, U64_MAX, Subscription
from subledger.services.env import LedgerEnv, LedgerTxn
from subledger.services.revenue import credit_balance


def period_seconds(period_days: int) -> int:
    seconds = int(period_days) * SECONDS_PER_DAY
    if seconds > U64_MAX:
        raise ArithmeticOverflow("Billing period overflows u64 seconds")
    return seconds


def advance_due_date(now: int, period_days: int) -> int:
    due = int(now) + period_seconds(period_days)
    if due > U64_MAX:
        raise ArithmeticOverflow("Next billing date overflows u64 seconds")
    return due


def split_amount(amount: int, split_percentage: int) -> int:
    """
    floor(amount * split_percentage / 10000).

    The product is taken over unbounded non-negative integers, so it cannot
    overflow for any stored amount, and the quotient is never larger than
    `amount`.
    """
    if amount <= 0 or split_percentage <= 0:
        return 0
    share = (amount * split_percentage) // MAX_SPLIT_PERCENTAGE
    if share > I128_MAX:
        raise ArithmeticOverflow("Split amount overflows i128")
    return share


def is_due(sub: Subscription, now: int) -> bool:
    return now >= sub.next_billing_date


def _renew(txn: LedgerTxn, subscription_id: int) -> Tuple[bool, int]:
    sub = txn.require_subscription(subscription_id)
    if not sub.is_active:
        raise InactiveSubscription()
    if not is_due(sub, txn.now):
        return False, 0

    # No token transfer: only the recipient's accrued balance moves.
    share = split_amount(sub.amount, sub.split_percentage)
    credit_balance(txn, sub.recipient, share)

    # Anchored to now, not to the missed due date: a late renewal collects
    # one period and does not catch up on skipped ones.
    txn.put_subscription(
        sub.model_copy(
            update={
                "last_payment_date": txn.now,
                "next_billing_date": advance_due_date(txn.now, sub.period_days),
            },
        ),
    )
    return True, share


def renew_subscription(env: LedgerEnv, subscription_id: int) -> bool:
    """Renew if due. Anyone may call; returns False when not yet due."""
    with env.atomic() as txn:
        renewed, share = _renew(txn, subscription_id)

    record_renewal(renewed, share)
    return renewed


def process_due_subscriptions(env: LedgerEnv, owner: str, max_count: int) -> int:
    renewed_shares = []
    with env.atomic() as txn:
        for sub_id in txn.owner_index(owner):
            if len(renewed_shares) >= max_count:
                break
            sub = txn.subscription(sub_id)
            if sub is None:
                continue
            if sub.is_active and is_due(sub, txn.now):
                _, share = _renew(txn, sub_id)
                renewed_shares.append(share)

    for share in renewed_shares:
        record_renewal(True, share)
    return len(renewed_shares)
