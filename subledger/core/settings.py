from __future__ import annotations

import os
from dataclasses import dataclass

@dataclass(frozen=True)
class Settings:
    # AWS
    aws_region: str = os.environ.get("AWS_REGION", "us-east-1")
    ddb_endpoint_url: str = os.environ.get("DDB_ENDPOINT_URL", "")

    # DynamoDB tables
    ledger_table_name: str = os.environ.get("LEDGER_TABLE_NAME", "subscription_ledger")

    # Query paging
    default_page_limit: int = int(os.environ.get("DEFAULT_PAGE_LIMIT", "50"))
    max_page_limit: int = int(os.environ.get("MAX_PAGE_LIMIT", "200"))

    # Observability
    metrics_enabled: bool = os.environ.get("METRICS_ENABLED", "1") not in ("0", "false", "False")
    log_level: str = os.environ.get("LOG_LEVEL", "INFO").upper()


S = Settings()
