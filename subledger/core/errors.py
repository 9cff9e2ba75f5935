from __future__ import annotations

from typing import Optional


class LedgerError(Exception):
    """Aborts the enclosing ledger operation. Shaped like an HTTP exception."""

    status_code = 400
    default_detail = "Ledger operation failed"

    def __init__(self, detail: Optional[str] = None) -> None:
        self.detail = detail or self.default_detail
        super().__init__(self.detail)

    @property
    def code(self) -> str:
        return type(self).__name__


class InvalidAmount(LedgerError):
    default_detail = "Amount must be positive"


class InvalidPeriod(LedgerError):
    default_detail = "Period must be at least 1 day"


class InvalidSplit(LedgerError):
    default_detail = "Split percentage cannot exceed 100%"


class Unauthorized(LedgerError):
    status_code = 401
    default_detail = "Authorization required"


class NotFound(LedgerError):
    status_code = 404
    default_detail = "Subscription not found"


class AlreadyCancelled(LedgerError):
    status_code = 409
    default_detail = "Subscription already cancelled"


class InactiveSubscription(LedgerError):
    status_code = 409
    default_detail = "Subscription is not active"


class ArithmeticOverflow(LedgerError):
    status_code = 422
    default_detail = "Arithmetic overflow"


class CounterOverflow(ArithmeticOverflow):
    default_detail = "Subscription counter overflow"


class StoreError(LedgerError):
    status_code = 500
    default_detail = "Ledger store error"
    retryable = False


class ConflictError(StoreError):
    """Another writer committed first. Safe to retry the whole operation."""

    status_code = 409
    default_detail = "Ledger items were updated by someone else"
    retryable = True
