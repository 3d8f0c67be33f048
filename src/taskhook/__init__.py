"""Taskhook: signed webhooks for task-lifecycle events.

Pushes task events to each owner's HTTP endpoint with HMAC-SHA256
signatures, retries transient failures with exponential backoff, records
every delivery sequence, and stops sending to endpoints that keep failing.
Callbacks from remote workers are verified with the same signature scheme.

Quick Start:
    from taskhook.service import TaskhookService

    async with TaskhookService.create() as taskhook:
        # Fan an event out to subscribed owners
        results = await taskhook.notify(
            "task.assigned",
            "task_42",
            {"title": "Fix login"},
            owner_ids=["user_123"],
        )

        # Verify a worker's callback
        verified, handled = await taskhook.accept_callback(body, headers)

Delivery outcomes:
    - success: a 2xx response within max_attempts
    - failed: a 4xx (never retried), or retries exhausted on 5xx/429/timeout
    - not_attempted: disabled, circuit open, or not subscribed to the event
"""

__version__ = "0.1.0"

# Configuration
from .config import Settings, settings

# Exceptions
from .exceptions import (
    CallbackRejected,
    ConfigurationError,
    DeliveryError,
    MalformedCallback,
    NotFoundError,
    PermanentRejection,
    SignatureInvalid,
    StorageError,
    TaskhookError,
    TimestampExpired,
    TransientNetworkError,
)

# Logging
from .logging import (
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
)

# Models
from .models import (
    CallbackPayload,
    DeliveryAttemptRecord,
    DeliveryResult,
    DeliveryStats,
    VerifiedCallback,
    WebhookEvent,
    WebhookSubscription,
)

# Service
from .service import TaskhookService

__all__ = [
    "CallbackPayload",
    "CallbackRejected",
    "ConfigurationError",
    "DeliveryAttemptRecord",
    "DeliveryError",
    "DeliveryResult",
    "DeliveryStats",
    "MalformedCallback",
    "NotFoundError",
    "PermanentRejection",
    "Settings",
    "SignatureInvalid",
    "StorageError",
    "TaskhookError",
    "TaskhookService",
    "TimestampExpired",
    "TransientNetworkError",
    "VerifiedCallback",
    "WebhookEvent",
    "WebhookSubscription",
    "__version__",
    "bind_context",
    "clear_context",
    "configure_logging",
    "get_logger",
    "settings",
]
