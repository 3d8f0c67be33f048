"""Concurrent fan-out of one event to many subscriptions.

Each eligible recipient gets its own delivery sequence. Recipients never
block or fail each other: results are collected with a settle-all join and
one DeliveryResult is returned per recipient, in input order.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING, Any

from taskhook.exceptions import ConfigurationError
from taskhook.logging import get_logger
from taskhook.models import DeliveryOptions, DeliveryResult, WebhookEvent, WebhookSubscription

if TYPE_CHECKING:
    from .circuit import CircuitBreakerGate
    from .delivery import DeliveryEngine

logger = get_logger(__name__)

Decryptor = Callable[[str], str | None]


def _identity(value: str) -> str:
    return value


class FanOutDispatcher:
    """Dispatches an event to a set of subscriptions concurrently.

    Handles:
    - Skipping recipients the circuit breaker gate rejects (reported, not omitted)
    - Decrypting endpoint and secret at send time
    - Bounding concurrency with a semaphore
    - Feeding every terminal outcome back into the circuit breaker

    Example:
        ```python
        dispatcher = FanOutDispatcher(engine, gate)
        results = await dispatcher.dispatch(
            "task.assigned", "task_42", {"title": "Fix login"}, subscriptions
        )
        ```
    """

    def __init__(
        self,
        engine: DeliveryEngine,
        gate: CircuitBreakerGate,
        max_concurrent: int = 10,
        decrypt: Decryptor | None = None,
        max_attempts: int = 3,
        initial_backoff_ms: int = 1000,
        per_attempt_timeout_ms: int = 10_000,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            engine: Delivery engine used for each recipient.
            gate: Circuit breaker gate consulted before and after each delivery.
            max_concurrent: Maximum deliveries in flight at once.
            decrypt: Turns stored endpoint/secret values into plaintext.
                Returns None when a value cannot be decrypted.
            max_attempts: Attempts per recipient.
            initial_backoff_ms: First backoff delay.
            per_attempt_timeout_ms: Timeout for each HTTP attempt.
        """
        self._engine = engine
        self._gate = gate
        self._max_concurrent = max_concurrent
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._decrypt = decrypt or _identity
        self._max_attempts = max_attempts
        self._initial_backoff_ms = initial_backoff_ms
        self._per_attempt_timeout_ms = per_attempt_timeout_ms

    async def dispatch(
        self,
        event_type: str,
        correlation_id: str,
        data: dict[str, Any],
        recipients: Sequence[WebhookSubscription],
    ) -> list[DeliveryResult]:
        """Deliver one event to every recipient.

        Args:
            event_type: Event type, e.g. "task.assigned".
            correlation_id: Task (or other resource) id the event is about.
            data: Event-specific payload, sent under "data".
            recipients: Subscriptions to consider.

        Returns:
            One result per recipient, in the same order. Ineligible recipients
            have status "not_attempted"; a delivery that raised has status
            "failed" and attempts=0.
        """
        event = WebhookEvent(event=event_type, correlation_id=correlation_id, data=data)

        results = await asyncio.gather(
            *(self._deliver_one(subscription, event) for subscription in recipients),
            return_exceptions=True,
        )

        settled: list[DeliveryResult] = []
        for subscription, result in zip(recipients, results, strict=True):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.error(
                    "webhook_delivery_crashed",
                    owner_id=subscription.owner_id,
                    event_type=event_type,
                    error=repr(result),
                )
                settled.append(DeliveryResult.crashed(subscription.owner_id, f"Delivery raised: {result}"))
            else:
                settled.append(result)

        logger.info(
            "webhook_event_dispatched",
            event_id=event.id,
            event_type=event_type,
            correlation_id=correlation_id,
            recipients=len(recipients),
            delivered=sum(1 for r in settled if r.success),
        )
        return settled

    async def _deliver_one(
        self,
        subscription: WebhookSubscription,
        event: WebhookEvent,
    ) -> DeliveryResult:
        reason = self._gate.ineligibility_reason(subscription, event.event)
        if reason is not None:
            logger.debug("webhook_recipient_skipped", owner_id=subscription.owner_id, reason=reason)
            return DeliveryResult.not_attempted(subscription.owner_id, reason)

        try:
            target_url = self._decrypt(subscription.endpoint_url)
            secret = self._decrypt(subscription.shared_secret)
            if not target_url or not secret:
                raise ConfigurationError("Webhook endpoint or secret could not be decrypted")

            async with self._semaphore:
                result = await self._engine.deliver(
                    DeliveryOptions(
                        owner_id=subscription.owner_id,
                        correlation_id=event.correlation_id,
                        event_type=event.event,
                        target_url=target_url,
                        shared_secret=secret,
                        payload=event.to_payload(),
                        max_attempts=self._max_attempts,
                        initial_backoff_ms=self._initial_backoff_ms,
                        per_attempt_timeout_ms=self._per_attempt_timeout_ms,
                    )
                )
        except ConfigurationError as e:
            logger.warning("webhook_misconfigured", owner_id=subscription.owner_id, error=e.message)
            result = DeliveryResult(owner_id=subscription.owner_id, status="failed", error=e.message)

        try:
            await self._gate.on_outcome(subscription, result)
        except Exception as e:
            logger.error(
                "circuit_update_failed",
                owner_id=subscription.owner_id,
                error=str(e),
            )
        return result
