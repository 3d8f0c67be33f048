"""Inbound leg: verify and route callbacks pushed back by remote workers.

A remote worker signs its callback with the same construction used for
outbound deliveries. Nothing in the body is acted on until the signature
and timestamp check out. Every signature-related rejection looks the same
to the caller; the specific reason is only logged.
"""

from __future__ import annotations

import json
from collections.abc import Awaitable, Callable
from typing import Literal

from pydantic import ValidationError

from taskhook.exceptions import (
    CallbackRejected,
    MalformedCallback,
    SignatureInvalid,
    TimestampExpired,
)
from taskhook.logging import get_logger
from taskhook.models import (
    RECOGNIZED_CALLBACK_EVENTS,
    CallbackPayload,
    VerificationResult,
    VerifiedCallback,
)

from .signature import DEFAULT_MAX_AGE_MS, verify

logger = get_logger(__name__)

SecretLookup = Callable[[str], Awaitable[str | None]]
CallbackHandler = Callable[[CallbackPayload], Awaitable[None]]
SecretSource = Literal["owner", "fallback"]


def _correlation_id(document: object) -> str:
    if not isinstance(document, dict):
        raise MalformedCallback("body_not_object")
    correlation_id = document.get("taskId") or document.get("correlationId")
    if not isinstance(correlation_id, str) or not correlation_id:
        raise MalformedCallback("missing_correlation_id")
    return correlation_id


class InboundCallbackVerifier:
    """Validates signature and timestamp on callbacks from remote workers.

    The expected secret is resolved per correlation id (normally the task's
    owner). An optional platform-wide fallback secret is tried when the
    owner's secret does not verify, for workers configured by environment.
    """

    def __init__(
        self,
        max_age_ms: int = DEFAULT_MAX_AGE_MS,
        fallback_secret: str | None = None,
    ) -> None:
        self._max_age_ms = max_age_ms
        self._fallback_secret = fallback_secret

    async def accept_callback(
        self,
        raw_payload: bytes | str,
        presented_signature: str | None,
        presented_timestamp: str | None,
        lookup_secret_for: SecretLookup,
        header_event: str = "unknown",
    ) -> VerifiedCallback:
        """Verify a callback and parse its payload.

        Args:
            raw_payload: Body exactly as received.
            presented_signature: X-Signature header value.
            presented_timestamp: X-Timestamp header value.
            lookup_secret_for: Resolves the shared secret for a correlation id.
            header_event: X-Event header value, for logging.

        Returns:
            VerifiedCallback with the parsed payload.

        Raises:
            SignatureInvalid: Missing headers, no secret, or MAC mismatch.
            TimestampExpired: Timestamp outside the freshness window.
            MalformedCallback: Body is not JSON or fails schema validation.
        """
        body = raw_payload if isinstance(raw_payload, bytes) else raw_payload.encode("utf-8")

        if not presented_signature or not presented_timestamp:
            raise self._reject(SignatureInvalid("missing_headers"), None)

        try:
            document = json.loads(body)
        except ValueError as e:
            raise MalformedCallback("invalid_json") from e
        correlation_id = _correlation_id(document)

        candidates: list[tuple[SecretSource, str | None]] = [
            ("owner", await lookup_secret_for(correlation_id)),
            ("fallback", self._fallback_secret),
        ]
        candidates = [(source, secret) for source, secret in candidates if secret]
        if not candidates:
            raise self._reject(SignatureInvalid("no_secret"), correlation_id)

        first_failure: VerificationResult | None = None
        verified_source: SecretSource | None = None
        for source, secret in candidates:
            result = verify(
                body,
                presented_signature,
                secret,
                presented_timestamp,
                max_age_ms=self._max_age_ms,
            )
            if result.valid:
                verified_source = source
                break
            first_failure = first_failure or result

        if verified_source is None:
            reason = first_failure.reason if first_failure else "bad_signature"
            error: CallbackRejected = (
                TimestampExpired(reason)
                if reason == "timestamp_expired"
                else SignatureInvalid(reason or "bad_signature")
            )
            raise self._reject(error, correlation_id)

        try:
            payload = CallbackPayload.model_validate(document)
        except ValidationError as e:
            raise MalformedCallback("schema_mismatch") from e

        logger.info(
            "callback_verified",
            correlation_id=correlation_id,
            callback_event=payload.event,
            secret_source=verified_source,
        )
        return VerifiedCallback(
            payload=payload,
            secret_source=verified_source,
            header_event=header_event,
        )

    @staticmethod
    def _reject(error: CallbackRejected, correlation_id: str | None) -> CallbackRejected:
        logger.warning(
            "callback_rejected",
            reason=error.reason,
            correlation_id=correlation_id,
        )
        return error


class CallbackRouter:
    """Routes verified callbacks to handlers by event type.

    Example:
        ```python
        router = CallbackRouter()

        @router.on("session.completed")
        async def post_summary(payload: CallbackPayload) -> None:
            ...

        handled = await router.handle(verified)
        ```
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[CallbackHandler]] = {}

    def register(self, event: str, handler: CallbackHandler) -> None:
        """Register a handler for a recognized callback event.

        Raises:
            ValueError: If the event is not a recognized callback event.
        """
        if event not in RECOGNIZED_CALLBACK_EVENTS:
            raise ValueError(f"Unknown callback event: {event}")
        self._handlers.setdefault(event, []).append(handler)

    def on(self, event: str) -> Callable[[CallbackHandler], CallbackHandler]:
        """Decorator form of register()."""

        def decorator(handler: CallbackHandler) -> CallbackHandler:
            self.register(event, handler)
            return handler

        return decorator

    async def handle(self, callback: VerifiedCallback) -> bool:
        """Run the handlers for a verified callback.

        Returns:
            True if at least one handler ran. Unrecognized events are
            accepted and ignored.
        """
        payload = callback.payload
        if not callback.recognized:
            logger.info("callback_event_ignored", callback_event=payload.event, task_id=payload.task_id)
            return False

        handlers = self._handlers.get(payload.event, [])
        for handler in handlers:
            await handler(payload)
        return bool(handlers)
