"""Logging configuration for the subscription ledger."""
import logging
import sys
from typing import Optional

from .settings import S


def setup_logging(level: Optional[str] = None) -> None:
    """
    Configure logging for processes embedding the ledger.

    Args:
        level: Logging level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
               If None, falls back to LOG_LEVEL from the environment.
    """
    log_level = (level or S.log_level or "INFO").upper()

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    logging.getLogger("subledger").setLevel(log_level)
    logging.getLogger("boto3").setLevel(logging.WARNING)
    logging.getLogger("botocore").setLevel(logging.WARNING)
