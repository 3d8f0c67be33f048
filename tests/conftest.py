"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import sys
from collections.abc import Callable
from pathlib import Path

import pytest

# Add tests directory to path so helpers can be imported
tests_dir = Path(__file__).parent
if str(tests_dir) not in sys.path:
    sys.path.insert(0, str(tests_dir))

from helpers import SleepRecorder  # noqa: E402

from taskhook.models import WebhookSubscription  # noqa: E402
from taskhook.storage import (  # noqa: E402
    DeliveryLedger,
    InMemoryLedgerRepository,
    InMemorySubscriptionRepository,
)


@pytest.fixture
def ledger_repository() -> InMemoryLedgerRepository:
    """In-memory ledger repository."""
    return InMemoryLedgerRepository()


@pytest.fixture
def ledger(ledger_repository: InMemoryLedgerRepository) -> DeliveryLedger:
    """Delivery ledger over the in-memory repository."""
    return DeliveryLedger(ledger_repository)


@pytest.fixture
def sleeps() -> SleepRecorder:
    """Recorded backoff sleeps."""
    return SleepRecorder()


@pytest.fixture
def make_subscription() -> Callable[..., WebhookSubscription]:
    """Factory for webhook subscriptions with sensible defaults."""

    def factory(owner_id: str = "user_1", **overrides: object) -> WebhookSubscription:
        fields: dict[str, object] = {
            "owner_id": owner_id,
            "endpoint_url": f"https://{owner_id.replace('_', '-')}.example.com/hooks",
            "shared_secret": "s3cr3t",
            "subscribed_events": {"task.assigned", "comment.created"},
        }
        fields.update(overrides)
        return WebhookSubscription.model_validate(fields)

    return factory


@pytest.fixture
def subscriptions() -> InMemorySubscriptionRepository:
    """Empty in-memory subscription repository."""
    return InMemorySubscriptionRepository()
