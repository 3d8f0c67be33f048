"""Webhook delivery system for Taskhook.

Outbound: HMAC-signed delivery with exponential backoff retry, a delivery
ledger, a per-recipient circuit breaker and concurrent fan-out.
Inbound: signature and timestamp verification for worker callbacks.

Example:
    ```python
    from taskhook.webhooks import CircuitBreakerGate, DeliveryEngine, FanOutDispatcher

    engine = DeliveryEngine(ledger, client=httpx.AsyncClient())
    dispatcher = FanOutDispatcher(engine, CircuitBreakerGate(subscriptions))
    results = await dispatcher.dispatch("task.assigned", "task_42", data, recipients)
    ```
"""

from .circuit import CircuitBreakerGate
from .delivery import DeliveryEngine, serialize_payload, validate_target
from .dispatch import FanOutDispatcher
from .inbound import CallbackRouter, InboundCallbackVerifier
from .signature import (
    EVENT_HEADER,
    SIGNATURE_HEADER,
    TIMESTAMP_HEADER,
    build_headers,
    extract_headers,
    sign,
    sign_envelope,
    verify,
)

__all__ = [
    "EVENT_HEADER",
    "SIGNATURE_HEADER",
    "TIMESTAMP_HEADER",
    "CallbackRouter",
    "CircuitBreakerGate",
    "DeliveryEngine",
    "FanOutDispatcher",
    "InboundCallbackVerifier",
    "build_headers",
    "extract_headers",
    "serialize_payload",
    "sign",
    "sign_envelope",
    "validate_target",
    "verify",
]
