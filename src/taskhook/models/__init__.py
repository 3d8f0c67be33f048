"""Data models for Taskhook.

Subscriptions, events, delivery records and results for the outbound leg;
callback payloads for the inbound leg; signed envelopes shared by both.
"""

from .base import epoch_ms, generate_id, utc_now
from .callback import (
    RECOGNIZED_CALLBACK_EVENTS,
    CallbackData,
    CallbackPayload,
    VerifiedCallback,
)
from .signature import RejectionReason, SignatureHeaders, SignedEnvelope, VerificationResult
from .webhook import (
    DEFAULT_SUBSCRIBED_EVENTS,
    DeliveryAttemptRecord,
    DeliveryOptions,
    DeliveryResult,
    DeliveryStats,
    DeliveryStatus,
    EventType,
    ResultStatus,
    SkipReason,
    WebhookEvent,
    WebhookSubscription,
)

__all__ = [
    "DEFAULT_SUBSCRIBED_EVENTS",
    "RECOGNIZED_CALLBACK_EVENTS",
    "CallbackData",
    "CallbackPayload",
    "DeliveryAttemptRecord",
    "DeliveryOptions",
    "DeliveryResult",
    "DeliveryStats",
    "DeliveryStatus",
    "EventType",
    "RejectionReason",
    "ResultStatus",
    "SignatureHeaders",
    "SignedEnvelope",
    "SkipReason",
    "VerificationResult",
    "VerifiedCallback",
    "WebhookEvent",
    "WebhookSubscription",
    "epoch_ms",
    "generate_id",
    "utc_now",
]
