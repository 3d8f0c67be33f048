"""In-process repository implementations.

InMemory* keep state in dictionaries guarded by an asyncio.Lock, which
makes the failure counter read-modify-write atomic within one event loop.
NullLedgerRepository keeps nothing and only logs, for deployments without
an audit table.
"""

from __future__ import annotations

import asyncio
from datetime import datetime

from taskhook.exceptions import NotFoundError
from taskhook.logging import get_logger
from taskhook.models import DeliveryAttemptRecord, WebhookSubscription

from .base import LedgerRepository, SubscriptionRepository

logger = get_logger(__name__)


class InMemoryLedgerRepository(LedgerRepository):
    """Ledger kept in a dict keyed by record id."""

    def __init__(self) -> None:
        self._records: dict[str, DeliveryAttemptRecord] = {}

    async def insert(self, record: DeliveryAttemptRecord) -> None:
        self._records[record.id] = record.model_copy()

    async def update(self, record: DeliveryAttemptRecord) -> None:
        stored = self._records.get(record.id)
        if stored is None:
            raise NotFoundError("delivery", record.id)
        if stored.is_terminal:
            raise ValueError(f"Delivery record {record.id} is already {stored.status}")
        self._records[record.id] = record.model_copy()

    async def get(self, record_id: str) -> DeliveryAttemptRecord | None:
        record = self._records.get(record_id)
        return record.model_copy() if record else None

    async def list_for_owner(
        self,
        owner_id: str,
        since: datetime | None = None,
        limit: int | None = None,
    ) -> list[DeliveryAttemptRecord]:
        # Reversed insertion order breaks created_at ties newest first
        records = [
            r.model_copy()
            for r in reversed(self._records.values())
            if r.owner_id == owner_id and (since is None or r.created_at >= since)
        ]
        records.sort(key=lambda r: r.created_at, reverse=True)
        return records[:limit] if limit is not None else records

    def __len__(self) -> int:
        return len(self._records)


class NullLedgerRepository(LedgerRepository):
    """Ledger that stores nothing; each write is logged instead."""

    async def insert(self, record: DeliveryAttemptRecord) -> None:
        logger.info(
            "delivery_record",
            delivery_id=record.id,
            status=record.status,
            event_type=record.event_type,
            target_url=record.target_url,
        )

    async def update(self, record: DeliveryAttemptRecord) -> None:
        logger.info(
            "delivery_record",
            delivery_id=record.id,
            status=record.status,
            attempts=record.attempts_made,
            response_code=record.last_response_code,
            error=record.last_error,
        )

    async def get(self, record_id: str) -> DeliveryAttemptRecord | None:
        return None

    async def list_for_owner(
        self,
        owner_id: str,
        since: datetime | None = None,
        limit: int | None = None,
    ) -> list[DeliveryAttemptRecord]:
        return []


class InMemorySubscriptionRepository(SubscriptionRepository):
    """Subscriptions kept in a dict keyed by owner id."""

    def __init__(self, subscriptions: list[WebhookSubscription] | None = None) -> None:
        self._subscriptions: dict[str, WebhookSubscription] = {}
        self._lock = asyncio.Lock()
        for subscription in subscriptions or []:
            self._subscriptions[subscription.owner_id] = subscription.model_copy(deep=True)

    async def get(self, owner_id: str) -> WebhookSubscription | None:
        subscription = self._subscriptions.get(owner_id)
        return subscription.model_copy(deep=True) if subscription else None

    async def save(self, subscription: WebhookSubscription) -> None:
        async with self._lock:
            self._subscriptions[subscription.owner_id] = subscription.model_copy(deep=True)

    async def list_for_owners(self, owner_ids: list[str]) -> list[WebhookSubscription]:
        return [
            self._subscriptions[owner_id].model_copy(deep=True)
            for owner_id in owner_ids
            if owner_id in self._subscriptions
        ]

    async def increment_failures(self, owner_id: str) -> int:
        async with self._lock:
            subscription = self._require(owner_id)
            subscription.consecutive_failures += 1
            return subscription.consecutive_failures

    async def reset_failures(self, owner_id: str, attempted_at: datetime | None = None) -> None:
        async with self._lock:
            subscription = self._require(owner_id)
            subscription.consecutive_failures = 0
            if attempted_at is not None:
                subscription.last_attempted_at = attempted_at

    def _require(self, owner_id: str) -> WebhookSubscription:
        subscription = self._subscriptions.get(owner_id)
        if subscription is None:
            raise NotFoundError("subscription", owner_id)
        return subscription
