from __future__ import annotations

from subledger.core.errors import ArithmeticOverflow
from subledger.metrics import record_withdrawal
from subledger.models import I128_MAX
from subledger.services.env import LedgerEnv, LedgerTxn


def ensure_balance(txn: LedgerTxn, recipient: str) -> None:
    # Never overwrite an existing balance.
    if not txn.has_balance(recipient):
        txn.put_balance(recipient, 0)


def credit_balance(txn: LedgerTxn, recipient: str, amount: int) -> int:
    new_balance = txn.balance(recipient) + amount
    if new_balance > I128_MAX:
        raise ArithmeticOverflow(f"Balance overflow for recipient {recipient}")
    txn.put_balance(recipient, new_balance)
    return new_balance


def get_balance(env: LedgerEnv, recipient: str) -> int:
    with env.atomic() as txn:
        return txn.balance(recipient)


def withdraw_revenue(env: LedgerEnv, recipient: str) -> int:
    """
    Clear the recipient's accrued balance and return what it held.

    No funds move here: the returned amount is what a settlement layer
    should pay out.
    """
    with env.atomic() as txn:
        txn.require_auth(recipient)
        balance = txn.balance(recipient)
        if balance <= 0:
            return 0
        txn.put_balance(recipient, 0)

    record_withdrawal(balance)
    return balance
