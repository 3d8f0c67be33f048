"""Repository interfaces for Taskhook persistence.

The core never talks to a database directly. Persistence is injected as one
of these repositories and selected at construction time, so callers never
look up a backend on each call.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from taskhook.models import DeliveryAttemptRecord, WebhookSubscription


class LedgerRepository(ABC):
    """Append-mostly store of delivery attempt records.

    Implementations raise StorageError when the backend is unavailable.
    """

    @abstractmethod
    async def insert(self, record: DeliveryAttemptRecord) -> None:
        """Persist a new pending record."""

    @abstractmethod
    async def update(self, record: DeliveryAttemptRecord) -> None:
        """Persist the terminal state of an existing record."""

    @abstractmethod
    async def get(self, record_id: str) -> DeliveryAttemptRecord | None:
        """Fetch one record by id."""

    @abstractmethod
    async def list_for_owner(
        self,
        owner_id: str,
        since: datetime | None = None,
        limit: int | None = None,
    ) -> list[DeliveryAttemptRecord]:
        """Records for an owner, newest first."""


class SubscriptionRepository(ABC):
    """Store of per-owner webhook subscriptions.

    Failure counter updates must be atomic: two deliveries completing at
    once for the same owner must not lose an increment or a reset.
    """

    @abstractmethod
    async def get(self, owner_id: str) -> WebhookSubscription | None:
        """Fetch the subscription for an owner."""

    @abstractmethod
    async def save(self, subscription: WebhookSubscription) -> None:
        """Create or replace a subscription."""

    @abstractmethod
    async def list_for_owners(self, owner_ids: list[str]) -> list[WebhookSubscription]:
        """Subscriptions for the given owners, in input order, skipping missing ones."""

    @abstractmethod
    async def increment_failures(self, owner_id: str) -> int:
        """Atomically add one to consecutive_failures and return the new value."""

    @abstractmethod
    async def reset_failures(self, owner_id: str, attempted_at: datetime | None = None) -> None:
        """Atomically set consecutive_failures to zero.

        When attempted_at is given it is stored as last_attempted_at.
        """
