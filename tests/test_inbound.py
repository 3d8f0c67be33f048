"""Tests for inbound callback verification and routing."""

from __future__ import annotations

import json
from typing import Any
from unittest.mock import AsyncMock

import pytest

from taskhook.exceptions import (
    CallbackRejected,
    MalformedCallback,
    SignatureInvalid,
    TimestampExpired,
)
from taskhook.logging import configure_logging
from taskhook.models import CallbackPayload, VerifiedCallback, epoch_ms
from taskhook.webhooks.inbound import CallbackRouter, InboundCallbackVerifier
from taskhook.webhooks.signature import sign


def callback_body(**overrides: Any) -> bytes:
    document: dict[str, Any] = {
        "event": "session.completed",
        "timestamp": "2026-01-01T00:00:00Z",
        "sessionId": "sess_1",
        "taskId": "task_42",
        "data": {"summary": "Done", "prUrl": "https://git.example.com/pr/1"},
    }
    document.update(overrides)
    return json.dumps(document).encode()


def signed(body: bytes, secret: str = "s3cr3t", timestamp: str | None = None) -> tuple[str, str]:
    ts = timestamp if timestamp is not None else str(epoch_ms())
    return f"sha256={sign(body, secret, ts)}", ts


def secrets(mapping: dict[str, str]) -> AsyncMock:
    async def lookup(correlation_id: str) -> str | None:
        return mapping.get(correlation_id)

    return AsyncMock(side_effect=lookup)


class TestAcceptCallback:
    """Tests for InboundCallbackVerifier.accept_callback()."""

    @pytest.mark.asyncio
    async def test_valid_callback(self) -> None:
        """A correctly signed callback should be parsed and returned."""
        body = callback_body()
        signature, ts = signed(body)
        lookup = secrets({"task_42": "s3cr3t"})

        verified = await InboundCallbackVerifier().accept_callback(
            body, signature, ts, lookup, header_event="session.completed"
        )

        assert verified.secret_source == "owner"
        assert verified.header_event == "session.completed"
        assert verified.payload.task_id == "task_42"
        assert verified.payload.session_id == "sess_1"
        assert verified.payload.data is not None
        assert verified.payload.data.pr_url == "https://git.example.com/pr/1"
        assert verified.recognized
        lookup.assert_awaited_once_with("task_42")

    @pytest.mark.asyncio
    async def test_str_body_is_accepted(self) -> None:
        """A str body should verify like its UTF-8 bytes."""
        body = callback_body()
        signature, ts = signed(body)

        verified = await InboundCallbackVerifier().accept_callback(
            body.decode(), signature, ts, secrets({"task_42": "s3cr3t"})
        )

        assert verified.payload.event == "session.completed"

    @pytest.mark.asyncio
    async def test_correlation_id_key_is_accepted(self) -> None:
        """correlationId should identify the task when taskId is absent."""
        document = json.loads(callback_body())
        document["correlationId"] = document.pop("taskId")
        body = json.dumps(document).encode()
        signature, ts = signed(body)

        verified = await InboundCallbackVerifier().accept_callback(
            body, signature, ts, secrets({"task_42": "s3cr3t"})
        )

        assert verified.payload.task_id == "task_42"

    @pytest.mark.asyncio
    async def test_bad_signature(self) -> None:
        """A signature made with the wrong secret should be rejected."""
        body = callback_body()
        signature, ts = signed(body, secret="wrong")

        with pytest.raises(SignatureInvalid) as exc_info:
            await InboundCallbackVerifier().accept_callback(
                body, signature, ts, secrets({"task_42": "s3cr3t"})
            )

        assert exc_info.value.reason == "bad_signature"

    @pytest.mark.asyncio
    async def test_tampered_body(self) -> None:
        """Changing the body after signing should be rejected."""
        body = callback_body()
        signature, ts = signed(body)
        tampered = callback_body(event="session.error")

        with pytest.raises(SignatureInvalid):
            await InboundCallbackVerifier().accept_callback(
                tampered, signature, ts, secrets({"task_42": "s3cr3t"})
            )

    @pytest.mark.asyncio
    async def test_expired_timestamp(self) -> None:
        """A correct MAC with a stale timestamp should be rejected as expired."""
        body = callback_body()
        signature, ts = signed(body, timestamp=str(epoch_ms() - 10 * 60 * 1000))

        with pytest.raises(TimestampExpired):
            await InboundCallbackVerifier().accept_callback(
                body, signature, ts, secrets({"task_42": "s3cr3t"})
            )

    @pytest.mark.asyncio
    async def test_custom_freshness_window(self) -> None:
        """A configured window should be honored."""
        body = callback_body()
        signature, ts = signed(body, timestamp=str(epoch_ms() - 5_000))

        with pytest.raises(TimestampExpired):
            await InboundCallbackVerifier(max_age_ms=1_000).accept_callback(
                body, signature, ts, secrets({"task_42": "s3cr3t"})
            )

    @pytest.mark.asyncio
    @pytest.mark.parametrize(("signature", "timestamp"), [(None, "1"), ("sha256=x", None), ("", "")])
    async def test_missing_headers(self, signature: str | None, timestamp: str | None) -> None:
        """Missing signature headers should be rejected before any lookup."""
        lookup = secrets({"task_42": "s3cr3t"})

        with pytest.raises(SignatureInvalid) as exc_info:
            await InboundCallbackVerifier().accept_callback(
                callback_body(), signature, timestamp, lookup
            )

        assert exc_info.value.reason == "missing_headers"
        lookup.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_oversized_timestamp(self) -> None:
        """An absurdly long timestamp should be a signature failure, not a crash."""
        body = callback_body()

        with pytest.raises(SignatureInvalid) as exc_info:
            await InboundCallbackVerifier().accept_callback(
                body, "sha256=00", "9" * 5000, secrets({"task_42": "s3cr3t"})
            )

        assert exc_info.value.reason == "malformed"
        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_unknown_task_without_fallback(self) -> None:
        """No resolvable secret should be rejected like a bad signature."""
        body = callback_body()
        signature, ts = signed(body)

        with pytest.raises(SignatureInvalid) as exc_info:
            await InboundCallbackVerifier().accept_callback(body, signature, ts, secrets({}))

        assert exc_info.value.reason == "no_secret"

    @pytest.mark.asyncio
    async def test_fallback_secret(self) -> None:
        """The platform fallback secret should verify when the owner's does not."""
        body = callback_body()
        signature, ts = signed(body, secret="platform-secret")
        verifier = InboundCallbackVerifier(fallback_secret="platform-secret")

        verified = await verifier.accept_callback(body, signature, ts, secrets({"task_42": "s3cr3t"}))

        assert verified.secret_source == "fallback"

    @pytest.mark.asyncio
    async def test_fallback_secret_without_owner(self) -> None:
        """The fallback secret alone should be enough for an unknown task."""
        body = callback_body()
        signature, ts = signed(body, secret="platform-secret")
        verifier = InboundCallbackVerifier(fallback_secret="platform-secret")

        verified = await verifier.accept_callback(body, signature, ts, secrets({}))

        assert verified.secret_source == "fallback"

    @pytest.mark.asyncio
    async def test_uniform_public_rejection(self) -> None:
        """Bad signature and expired timestamp should look identical to the caller."""
        body = callback_body()
        verifier = InboundCallbackVerifier()
        lookup = secrets({"task_42": "s3cr3t"})
        errors: list[CallbackRejected] = []

        bad_sig, ts = signed(body, secret="wrong")
        good_sig_stale, stale_ts = signed(body, timestamp=str(epoch_ms() - 3_600_000))
        for signature, timestamp in [(bad_sig, ts), (good_sig_stale, stale_ts)]:
            with pytest.raises(CallbackRejected) as exc_info:
                await verifier.accept_callback(body, signature, timestamp, lookup)
            errors.append(exc_info.value)

        assert errors[0].status_code == errors[1].status_code == 401
        assert errors[0].to_dict() == errors[1].to_dict()
        assert errors[0].to_dict()["error"] == {
            "code": "callback_rejected",
            "message": "Invalid signature",
        }

    @pytest.mark.asyncio
    async def test_invalid_json(self) -> None:
        """A body that is not JSON should be malformed."""
        with pytest.raises(MalformedCallback) as exc_info:
            await InboundCallbackVerifier().accept_callback(
                b"not json", "sha256=x", "1", secrets({})
            )

        assert exc_info.value.status_code == 400
        assert exc_info.value.reason == "invalid_json"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [b"[1, 2]", b'{"event": "session.started"}', b'{"taskId": ""}'])
    async def test_missing_correlation_id(self, body: bytes) -> None:
        """A body without a task id should be malformed."""
        with pytest.raises(MalformedCallback):
            await InboundCallbackVerifier().accept_callback(body, "sha256=x", "1", secrets({}))

    @pytest.mark.asyncio
    async def test_schema_checked_only_after_signature(self) -> None:
        """An unsigned body with a bad schema should fail on signature first."""
        body = json.dumps({"taskId": "task_42", "event": ""}).encode()
        signature, ts = signed(body, secret="wrong")

        with pytest.raises(SignatureInvalid):
            await InboundCallbackVerifier().accept_callback(
                body, signature, ts, secrets({"task_42": "s3cr3t"})
            )

    @pytest.mark.asyncio
    async def test_schema_mismatch_after_valid_signature(self) -> None:
        """A correctly signed body missing required fields should be malformed."""
        body = json.dumps({"taskId": "task_42", "event": "session.started"}).encode()
        signature, ts = signed(body)

        with pytest.raises(MalformedCallback) as exc_info:
            await InboundCallbackVerifier().accept_callback(
                body, signature, ts, secrets({"task_42": "s3cr3t"})
            )

        assert exc_info.value.reason == "schema_mismatch"

    @pytest.mark.asyncio
    async def test_unrecognized_event_is_accepted(self) -> None:
        """Unknown event types should verify but not be recognized."""
        body = callback_body(event="session.paused")
        signature, ts = signed(body)

        verified = await InboundCallbackVerifier().accept_callback(
            body, signature, ts, secrets({"task_42": "s3cr3t"})
        )

        assert not verified.recognized

    @pytest.mark.asyncio
    @pytest.mark.parametrize("log_format", ["json", "text"])
    @pytest.mark.parametrize("event", ["session.completed", "session.paused"])
    async def test_accept_and_route_with_logging_configured(
        self, log_format: str, event: str
    ) -> None:
        """Verification and routing should log without failing in either format."""
        configure_logging(level="DEBUG", format=log_format)
        body = callback_body(event=event)
        signature, ts = signed(body)

        verified = await InboundCallbackVerifier().accept_callback(
            body, signature, ts, secrets({"task_42": "s3cr3t"})
        )
        handled = await CallbackRouter().handle(verified)

        assert verified.payload.event == event
        assert handled is False


def verified_callback(event: str = "session.completed") -> VerifiedCallback:
    payload = CallbackPayload.model_validate(json.loads(callback_body(event=event)))
    return VerifiedCallback(payload=payload, secret_source="owner")


class TestCallbackRouter:
    """Tests for CallbackRouter."""

    @pytest.mark.asyncio
    async def test_handlers_run_in_registration_order(self) -> None:
        """All handlers for an event should run, in order."""
        router = CallbackRouter()
        calls: list[str] = []

        @router.on("session.completed")
        async def first(payload: CallbackPayload) -> None:
            calls.append(f"first:{payload.task_id}")

        @router.on("session.completed")
        async def second(payload: CallbackPayload) -> None:
            calls.append("second")

        handled = await router.handle(verified_callback())

        assert handled is True
        assert calls == ["first:task_42", "second"]

    @pytest.mark.asyncio
    async def test_unrecognized_event_is_ignored(self) -> None:
        """Unrecognized events should be accepted without running handlers."""
        router = CallbackRouter()
        handler = AsyncMock()
        router.register("session.completed", handler)

        handled = await router.handle(verified_callback(event="session.paused"))

        assert handled is False
        handler.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_recognized_event_without_handlers(self) -> None:
        """A recognized event with no handler should report nothing handled."""
        handled = await CallbackRouter().handle(verified_callback(event="session.progress"))

        assert handled is False

    def test_register_unknown_event(self) -> None:
        """Registering for an unknown event should raise ValueError."""
        with pytest.raises(ValueError, match="Unknown callback event"):
            CallbackRouter().register("session.paused", AsyncMock())

    def test_summary(self) -> None:
        """summary() should echo event, taskId and sessionId."""
        assert verified_callback().summary() == {
            "event": "session.completed",
            "taskId": "task_42",
            "sessionId": "sess_1",
        }
