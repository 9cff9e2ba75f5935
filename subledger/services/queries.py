from __future__ import annotations

from typing import List, Optional

from subledger.core.cursor import decode_cursor, encode_cursor
from subledger.core.settings import S
from subledger.models import Subscription, SubscriptionPage
from subledger.services.env import LedgerEnv, LedgerTxn


def _collect(txn: LedgerTxn, ids: List[int], start_after: Optional[int], limit: Optional[int]) -> List[Subscription]:
    result: List[Subscription] = []
    found_start = start_after is None
    for sub_id in ids:
        if not found_start:
            # Skip up to and including the cursor entry.
            if sub_id == start_after:
                found_start = True
            continue
        if limit is not None and len(result) >= limit:
            break
        sub = txn.subscription(sub_id)
        if sub is not None:
            result.append(sub)
    return result


def list_subscriptions(
    env: LedgerEnv,
    owner: str,
    start_after: Optional[int] = None,
    limit: int = S.default_page_limit,
) -> List[Subscription]:
    """
    Owner's subscriptions in index order, starting after `start_after`.

    Ids whose record is missing are skipped and do not count toward `limit`.
    A `start_after` that is not in the owner's index yields [].
    """
    with env.atomic() as txn:
        return _collect(txn, txn.owner_index(owner), start_after, max(int(limit), 0))


def get_all_subscriptions(env: LedgerEnv, owner: str) -> List[Subscription]:
    with env.atomic() as txn:
        return _collect(txn, txn.owner_index(owner), None, None)


def page_subscriptions(
    env: LedgerEnv,
    owner: str,
    cursor: Optional[str] = None,
    limit: int = S.default_page_limit,
) -> SubscriptionPage:
    start_after = decode_cursor(cursor)
    if cursor and start_after is None:
        return SubscriptionPage()
    # An empty page must mean end of data, so pages hold at least one slot.
    limit = min(max(int(limit), 1), S.max_page_limit)

    with env.atomic() as txn:
        index = txn.owner_index(owner)
        items = _collect(txn, index, start_after, limit)

    next_cursor = None
    if items:
        last_id = items[-1].id
        if index.index(last_id) < len(index) - 1:
            next_cursor = encode_cursor(last_id)
    return SubscriptionPage(items=items, next_cursor=next_cursor)
