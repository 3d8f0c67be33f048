"""Per-recipient circuit breaker for outbound webhooks.

A subscription that fails max_consecutive_failures times in a row stops
receiving events until it is reset explicitly (a successful test ping or
reconfiguration). There is no time-based recovery.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from taskhook.logging import get_logger
from taskhook.models import DeliveryResult, SkipReason, WebhookSubscription, utc_now

if TYPE_CHECKING:
    from taskhook.storage import SubscriptionRepository

logger = get_logger(__name__)


class CircuitBreakerGate:
    """Decides whether a subscription may be sent an event, and tracks failures.

    Counter updates go through the repository's atomic increment/reset so
    concurrent completions for the same owner are never lost.
    """

    def __init__(self, repository: SubscriptionRepository) -> None:
        self._repository = repository

    @staticmethod
    def ineligibility_reason(
        subscription: WebhookSubscription, event_type: str
    ) -> SkipReason | None:
        """Why a subscription may not receive event_type, or None if it may."""
        if not subscription.enabled:
            return "disabled"
        if subscription.circuit_open:
            return "circuit_open"
        if event_type not in subscription.subscribed_events:
            return "not_subscribed"
        return None

    def is_eligible(self, subscription: WebhookSubscription, event_type: str) -> bool:
        return self.ineligibility_reason(subscription, event_type) is None

    async def on_outcome(self, subscription: WebhookSubscription, result: DeliveryResult) -> None:
        """Record a terminal delivery outcome against the subscription.

        Success resets the failure counter and stamps last_attempted_at; any
        terminal failure increments it. not_attempted results and deliveries
        aborted by shutdown are ignored.
        The passed subscription is updated in place to match storage.
        """
        if result.status == "not_attempted" or result.aborted:
            return

        if result.success:
            attempted_at = utc_now()
            await self._repository.reset_failures(subscription.owner_id, attempted_at)
            subscription.consecutive_failures = 0
            subscription.last_attempted_at = attempted_at
            return

        failures = await self._repository.increment_failures(subscription.owner_id)
        subscription.consecutive_failures = failures
        if failures == subscription.max_consecutive_failures:
            logger.warning(
                "circuit_opened",
                owner_id=subscription.owner_id,
                consecutive_failures=failures,
                last_error=result.error,
            )

    async def reset(self, owner_id: str) -> None:
        """Close the circuit for an owner after external reconfiguration."""
        await self._repository.reset_failures(owner_id)
        logger.info("circuit_reset", owner_id=owner_id)
