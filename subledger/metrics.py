from __future__ import annotations

from prometheus_client import Counter, Info

from subledger.core.settings import S

METRICS_ENABLED = S.metrics_enabled

SUBSCRIPTIONS_CREATED = Counter(
    "subscriptions_created_total",
    "Total subscriptions created",
)
SUBSCRIPTIONS_CANCELLED = Counter(
    "subscriptions_cancelled_total",
    "Total subscriptions cancelled",
)
RENEWALS = Counter(
    "subscription_renewals_total",
    "Renewal attempts by outcome",
    ["outcome"],
)
REVENUE_CREDITED = Counter(
    "revenue_credited_total",
    "Split revenue credited to recipient balances, in base units",
)
REVENUE_WITHDRAWN = Counter(
    "revenue_withdrawn_total",
    "Revenue cleared from recipient balances by withdrawals, in base units",
)
LEDGER_ERRORS = Counter(
    "ledger_errors_total",
    "Ledger operations aborted by error kind",
    ["error"],
)
APP_INFO = Info(
    "subledger",
    "Ledger metadata",
)


def record_subscription_created() -> None:
    if METRICS_ENABLED:
        SUBSCRIPTIONS_CREATED.inc()


def record_subscription_cancelled() -> None:
    if METRICS_ENABLED:
        SUBSCRIPTIONS_CANCELLED.inc()


def record_renewal(renewed: bool, credited: int = 0) -> None:
    if not METRICS_ENABLED:
        return
    RENEWALS.labels(outcome="renewed" if renewed else "not_due").inc()
    if renewed and credited > 0:
        REVENUE_CREDITED.inc(credited)


def record_withdrawal(amount: int) -> None:
    if METRICS_ENABLED and amount > 0:
        REVENUE_WITHDRAWN.inc(amount)


def record_ledger_error(error: str) -> None:
    if METRICS_ENABLED:
        LEDGER_ERRORS.labels(error=error).inc()


def set_app_info(name: str, version: str) -> None:
    APP_INFO.info({"name": name, "version": version})
