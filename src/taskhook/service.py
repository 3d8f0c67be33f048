"""Taskhook service layer.

This module provides the TaskhookService that wires subscriptions, the
delivery ledger, the circuit breaker, the delivery engine and the callback
verifier behind one notify/accept interface.

Example:
    ```python
    from taskhook.service import TaskhookService

    async with TaskhookService.create() as taskhook:
        await taskhook.subscriptions.save(
            WebhookSubscription(
                owner_id="user_123",
                endpoint_url="https://worker.example.com/hooks",
                shared_secret="s3cr3t",
            )
        )
        results = await taskhook.notify(
            "task.assigned", "task_42", {"title": "Fix login"}, ["user_123"]
        )
        for result in results:
            print(f"{result.owner_id}: {result.status} after {result.attempts} attempts")
    ```
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

import httpx

from taskhook.config import Settings
from taskhook.exceptions import ConfigurationError, NotFoundError
from taskhook.logging import get_logger
from taskhook.models import (
    DeliveryAttemptRecord,
    DeliveryOptions,
    DeliveryResult,
    DeliveryStats,
    VerifiedCallback,
    WebhookEvent,
    generate_id,
)
from taskhook.storage import (
    DeliveryLedger,
    InMemoryLedgerRepository,
    InMemorySubscriptionRepository,
    LedgerRepository,
    NullLedgerRepository,
    SubscriptionRepository,
)
from taskhook.webhooks import (
    CallbackRouter,
    CircuitBreakerGate,
    DeliveryEngine,
    FanOutDispatcher,
    InboundCallbackVerifier,
    extract_headers,
)
from taskhook.webhooks.dispatch import Decryptor

logger = get_logger(__name__)

# Resolves the owner of a task so its callback can be checked with their secret
OwnerResolver = Callable[[str], Awaitable[str | None]]

# Result owner for deliveries to the platform endpoint
PLATFORM_OWNER_ID = "platform"

# Skip reasons that hand an owner's event to the platform endpoint
PLATFORM_FALLBACK_REASONS = frozenset({"disabled", "circuit_open"})


@dataclass
class TaskhookService:
    """High-level webhook service for task-lifecycle notifications.

    This service provides a simple interface for:
    - notify(): Fan an event out to the owners' webhook subscriptions
    - accept_callback(): Verify and route a callback from a remote worker
    - send_test_ping(): Check an owner's endpoint and reset its circuit
    - retry_delivery(): Re-send a recorded delivery with current configuration
    - recent_deliveries() / delivery_stats(): Ledger reporting

    Attributes:
        settings: Configuration settings.
        subscriptions: Per-owner webhook subscriptions.
        ledger: Audit log of delivery sequences.
        gate: Circuit breaker consulted before each delivery.
        engine: Single-recipient delivery engine.
        dispatcher: Concurrent fan-out over the engine.
        verifier: Inbound callback signature verifier.
        callbacks: Handlers for verified callback events.
        decrypt: Turns stored endpoint/secret values into plaintext.
        owner_resolver: Maps a task id to its owner, for callback secrets.
            Defaults to the owners registered with track_task().
    """

    settings: Settings
    subscriptions: SubscriptionRepository
    ledger: DeliveryLedger
    gate: CircuitBreakerGate
    engine: DeliveryEngine
    dispatcher: FanOutDispatcher
    verifier: InboundCallbackVerifier
    callbacks: CallbackRouter = field(default_factory=CallbackRouter)
    decrypt: Decryptor | None = None
    owner_resolver: OwnerResolver | None = None

    _task_owners: dict[str, str] = field(default_factory=dict, init=False, repr=False)
    _background: set[asyncio.Task[list[DeliveryResult]]] = field(
        default_factory=set, init=False, repr=False
    )

    @classmethod
    def create(
        cls,
        settings: Settings | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        subscriptions: SubscriptionRepository | None = None,
        ledger_repository: LedgerRepository | None = None,
        decrypt: Decryptor | None = None,
        owner_resolver: OwnerResolver | None = None,
    ) -> TaskhookService:
        """Create a TaskhookService with default dependencies.

        Args:
            settings: Optional settings. Uses defaults if None.
            client: Shared HTTP client. The engine creates and owns one if None.
            subscriptions: Subscription repository. In-memory if None.
            ledger_repository: Ledger repository. Chosen by
                settings.ledger_backend if None.
            decrypt: Decryptor for stored endpoint/secret values.
            owner_resolver: Task id to owner id lookup for callbacks.

        Returns:
            Configured TaskhookService instance.

        Example:
            ```python
            # Run without an audit trail
            settings = Settings(ledger_backend="null")
            async with TaskhookService.create(settings) as taskhook:
                ...
            ```
        """
        if settings is None:
            settings = Settings()

        if subscriptions is None:
            subscriptions = InMemorySubscriptionRepository()

        if ledger_repository is None:
            ledger_repository = (
                NullLedgerRepository()
                if settings.ledger_backend == "null"
                else InMemoryLedgerRepository()
            )

        ledger = DeliveryLedger(
            ledger_repository,
            stats_window=timedelta(hours=settings.stats_window_hours),
        )
        gate = CircuitBreakerGate(subscriptions)
        engine = DeliveryEngine(ledger, client=client, user_agent=settings.user_agent)

        return cls(
            settings=settings,
            subscriptions=subscriptions,
            ledger=ledger,
            gate=gate,
            engine=engine,
            dispatcher=FanOutDispatcher(
                engine,
                gate,
                max_concurrent=settings.max_concurrent_deliveries,
                decrypt=decrypt,
                max_attempts=settings.delivery_max_attempts,
                initial_backoff_ms=settings.delivery_initial_backoff_ms,
                per_attempt_timeout_ms=settings.delivery_timeout_ms,
            ),
            verifier=InboundCallbackVerifier(
                max_age_ms=settings.signature_max_age_ms,
                fallback_secret=settings.callback_fallback_secret,
            ),
            decrypt=decrypt,
            owner_resolver=owner_resolver,
        )

    # Outbound

    async def notify(
        self,
        event_type: str,
        correlation_id: str,
        data: dict[str, Any],
        owner_ids: list[str],
    ) -> list[DeliveryResult]:
        """Deliver an event to every listed owner that has a subscription.

        Owners without a subscription are skipped. Returns one result per
        subscription found, in owner_ids order. When a platform endpoint is
        configured and any owner has no subscription, or was skipped as
        disabled or circuit_open, the event is also sent there once and that
        result is appended last with owner_id "platform".
        """
        recipients = await self.subscriptions.list_for_owners(owner_ids)
        found = {r.owner_id for r in recipients}
        missing = [o for o in owner_ids if o not in found]
        if missing:
            logger.debug("webhook_owners_without_subscription", owner_ids=missing)

        results = await self.dispatcher.dispatch(event_type, correlation_id, data, recipients)

        uncovered = missing + [
            r.owner_id for r in results if r.skip_reason in PLATFORM_FALLBACK_REASONS
        ]
        if uncovered and self.settings.platform_webhook_url and self.settings.platform_webhook_secret:
            results.append(await self._notify_platform(event_type, correlation_id, data, uncovered))
        return results

    async def _notify_platform(
        self,
        event_type: str,
        correlation_id: str,
        data: dict[str, Any],
        uncovered: list[str],
    ) -> DeliveryResult:
        """Send an event to the platform endpoint on behalf of uncovered owners."""
        event = WebhookEvent(event=event_type, correlation_id=correlation_id, data=data)
        logger.info(
            "webhook_platform_fallback",
            event_type=event_type,
            correlation_id=correlation_id,
            owner_ids=uncovered,
        )
        try:
            return await self.engine.deliver(
                DeliveryOptions(
                    owner_id=PLATFORM_OWNER_ID,
                    correlation_id=correlation_id,
                    event_type=event_type,
                    target_url=self.settings.platform_webhook_url or "",
                    shared_secret=self.settings.platform_webhook_secret or "",
                    payload=event.to_payload(),
                    max_attempts=self.settings.delivery_max_attempts,
                    initial_backoff_ms=self.settings.delivery_initial_backoff_ms,
                    per_attempt_timeout_ms=self.settings.delivery_timeout_ms,
                )
            )
        except ConfigurationError as e:
            logger.warning("webhook_misconfigured", owner_id=PLATFORM_OWNER_ID, error=e.message)
            return DeliveryResult(owner_id=PLATFORM_OWNER_ID, status="failed", error=e.message)

    def notify_in_background(
        self,
        event_type: str,
        correlation_id: str,
        data: dict[str, Any],
        owner_ids: list[str],
    ) -> asyncio.Task[list[DeliveryResult]]:
        """Schedule notify() without waiting for it.

        The task is tracked so close() can wait for it to settle.
        """
        task = asyncio.create_task(self.notify(event_type, correlation_id, data, owner_ids))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def send_test_ping(self, owner_id: str) -> DeliveryResult:
        """Send a single signed test.ping to an owner's endpoint.

        Disabled or tripped subscriptions are pinged too. A successful ping
        resets the circuit breaker.

        Raises:
            NotFoundError: If the owner has no subscription.
            ConfigurationError: If the endpoint or secret is unusable.
        """
        subscription = await self.subscriptions.get(owner_id)
        if subscription is None:
            raise NotFoundError("subscription", owner_id)

        decrypt = self.decrypt or (lambda value: value)
        event = WebhookEvent(
            event="test.ping",
            correlation_id=generate_id("ping"),
            data={"message": "This is a test webhook from Taskhook"},
        )
        result = await self.engine.deliver(
            DeliveryOptions(
                owner_id=owner_id,
                correlation_id=event.correlation_id,
                event_type=event.event,
                target_url=decrypt(subscription.endpoint_url) or "",
                shared_secret=decrypt(subscription.shared_secret) or "",
                payload=event.to_payload(),
                max_attempts=1,
                per_attempt_timeout_ms=self.settings.delivery_timeout_ms,
            )
        )
        if result.success:
            await self.gate.reset(owner_id)
        return result

    async def retry_delivery(self, delivery_id: str, data: dict[str, Any]) -> DeliveryResult:
        """Re-send a recorded delivery using the owner's current configuration.

        Payloads are not stored, so the caller supplies the event data again.
        The retry is a new delivery sequence with its own ledger record.

        Raises:
            NotFoundError: If the delivery or the owner's subscription is unknown.
        """
        record = await self.ledger.get(delivery_id)
        if record is None:
            raise NotFoundError("delivery", delivery_id)
        subscription = await self.subscriptions.get(record.owner_id)
        if subscription is None:
            raise NotFoundError("subscription", record.owner_id)

        logger.info("webhook_delivery_retry", delivery_id=delivery_id, owner_id=record.owner_id)
        results = await self.dispatcher.dispatch(
            record.event_type, record.correlation_id, data, [subscription]
        )
        return results[0]

    async def recent_deliveries(
        self, owner_id: str, limit: int | None = None
    ) -> list[DeliveryAttemptRecord]:
        """Most recent delivery records for an owner, newest first."""
        return await self.ledger.list_recent(
            owner_id, limit=limit or self.settings.recent_deliveries_limit
        )

    async def delivery_stats(self, owner_id: str, since: datetime | None = None) -> DeliveryStats:
        """Delivery statistics for an owner over the stats window."""
        return await self.ledger.aggregate_stats(owner_id, since=since)

    # Inbound

    def track_task(self, task_id: str, owner_id: str) -> None:
        """Remember which owner's secret signs callbacks for a task."""
        self._task_owners[task_id] = owner_id

    async def accept_callback(
        self, raw_payload: bytes | str, headers: Mapping[str, str]
    ) -> tuple[VerifiedCallback, bool]:
        """Verify a worker callback and run its handlers.

        Args:
            raw_payload: Request body exactly as received.
            headers: Request headers (any case).

        Returns:
            The verified callback, and whether any handler ran.

        Raises:
            CallbackRejected: If verification or parsing fails.
        """
        extracted = extract_headers(headers)
        verified = await self.verifier.accept_callback(
            raw_payload,
            extracted.signature if extracted else None,
            extracted.timestamp if extracted else None,
            self._secret_for_task,
            header_event=extracted.event if extracted else "unknown",
        )
        handled = await self.callbacks.handle(verified)
        return verified, handled

    async def _secret_for_task(self, task_id: str) -> str | None:
        if self.owner_resolver is not None:
            owner_id = await self.owner_resolver(task_id)
        else:
            owner_id = self._task_owners.get(task_id)
        if owner_id is None:
            return None

        subscription = await self.subscriptions.get(owner_id)
        if subscription is None:
            return None
        if self.decrypt is None:
            return subscription.shared_secret
        return self.decrypt(subscription.shared_secret)

    # Lifecycle

    async def close(self) -> None:
        """Stop new attempts, let background dispatches settle, release the client."""
        self.engine.request_shutdown()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        await self.engine.aclose()

    async def __aenter__(self) -> TaskhookService:
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()
