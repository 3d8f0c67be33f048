"""Retry utilities for ledger writes.

Ledger writes get a short exponential backoff for transient backend
errors before the ledger gives up and logs the failure.
"""

from __future__ import annotations

import logging

from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from taskhook.exceptions import StorageError

logger = logging.getLogger(__name__)


def _log_retry(retry_state: RetryCallState) -> None:
    """Log retry attempts with context.

    Args:
        retry_state: Current retry state from tenacity.
    """
    logger.warning(
        "Retrying ledger write",
        extra={
            "attempt": retry_state.attempt_number,
            "fn_name": retry_state.fn.__name__ if retry_state.fn else "unknown",
            "exception": str(retry_state.outcome.exception()) if retry_state.outcome else None,
        },
    )


# Only StorageError is retried; anything else is a programming error
ledger_retry = retry(
    stop=stop_after_attempt(2),
    wait=wait_exponential(multiplier=0.05, min=0.05, max=0.5),
    retry=retry_if_exception_type(StorageError),
    before_sleep=_log_retry,
    reraise=True,
)
