"""Storage layer for Taskhook.

Repositories are injected; the core only depends on the interfaces in
``base``. The delivery ledger wraps a LedgerRepository with best-effort
writes and reporting queries.

Example:
    ```python
    from taskhook.storage import DeliveryLedger, InMemoryLedgerRepository

    ledger = DeliveryLedger(InMemoryLedgerRepository())
    recent = await ledger.list_recent("user_123", limit=20)
    ```
"""

from .base import LedgerRepository, SubscriptionRepository
from .ledger import DeliveryLedger
from .memory import (
    InMemoryLedgerRepository,
    InMemorySubscriptionRepository,
    NullLedgerRepository,
)

__all__ = [
    "DeliveryLedger",
    "InMemoryLedgerRepository",
    "InMemorySubscriptionRepository",
    "LedgerRepository",
    "NullLedgerRepository",
    "SubscriptionRepository",
]
