"""Tests for HMAC signing and verification."""

from __future__ import annotations

import hashlib
import hmac

import pytest

from taskhook.webhooks.signature import (
    DEFAULT_MAX_AGE_MS,
    build_headers,
    extract_headers,
    sign,
    sign_envelope,
    verify,
)

NOW_MS = 1_700_000_000_000
BODY = b'{"event":"task.assigned","correlationId":"task_42"}'


class TestSign:
    """Tests for sign()."""

    def test_signs_timestamp_dot_payload(self) -> None:
        """Signature should be HMAC-SHA256 over "<timestamp>.<payload>"."""
        expected = hmac.new(b"s3cr3t", b"1700000000000." + BODY, hashlib.sha256).hexdigest()

        assert sign(BODY, "s3cr3t", "1700000000000") == expected

    def test_str_and_bytes_payloads_agree(self) -> None:
        """A str payload should sign the same as its UTF-8 bytes."""
        assert sign(BODY.decode(), "s3cr3t", "1") == sign(BODY, "s3cr3t", "1")

    def test_deterministic(self) -> None:
        """Same inputs should always produce the same signature."""
        assert sign(BODY, "k", "5") == sign(BODY, "k", "5")

    def test_timestamp_is_part_of_signed_material(self) -> None:
        """Changing only the timestamp should change the signature."""
        assert sign(BODY, "k", "1000") != sign(BODY, "k", "1001")


class TestVerify:
    """Tests for verify()."""

    def test_round_trip_is_valid(self) -> None:
        """A signature produced by sign() should verify."""
        ts = str(NOW_MS)
        signature = sign(BODY, "s3cr3t", ts)

        result = verify(BODY, signature, "s3cr3t", ts, now_ms=NOW_MS)

        assert result.valid is True
        assert result.reason is None

    def test_accepts_prefixed_signature(self) -> None:
        """The "sha256=" header prefix should be accepted."""
        ts = str(NOW_MS)
        signature = "sha256=" + sign(BODY, "s3cr3t", ts)

        assert verify(BODY, signature, "s3cr3t", ts, now_ms=NOW_MS).valid

    def test_single_byte_mutation_is_rejected(self) -> None:
        """Flipping one byte of the payload should invalidate the signature."""
        ts = str(NOW_MS)
        signature = sign(BODY, "s3cr3t", ts)
        tampered = bytearray(BODY)
        tampered[10] ^= 0x01

        result = verify(bytes(tampered), signature, "s3cr3t", ts, now_ms=NOW_MS)

        assert result.valid is False
        assert result.reason == "bad_signature"

    def test_wrong_secret_is_rejected(self) -> None:
        """A signature made with another secret should not verify."""
        ts = str(NOW_MS)
        signature = sign(BODY, "other", ts)

        result = verify(BODY, signature, "s3cr3t", ts, now_ms=NOW_MS)

        assert result.reason == "bad_signature"

    def test_replay_older_than_five_minutes_is_rejected(self) -> None:
        """A correct MAC over a stale timestamp should be rejected as expired."""
        ts = str(NOW_MS - DEFAULT_MAX_AGE_MS - 1)
        signature = sign(BODY, "s3cr3t", ts)

        result = verify(BODY, signature, "s3cr3t", ts, now_ms=NOW_MS)

        assert result.valid is False
        assert result.reason == "timestamp_expired"

    def test_timestamp_at_window_edge_is_accepted(self) -> None:
        """A timestamp exactly max_age old should still verify."""
        ts = str(NOW_MS - DEFAULT_MAX_AGE_MS)
        signature = sign(BODY, "s3cr3t", ts)

        assert verify(BODY, signature, "s3cr3t", ts, now_ms=NOW_MS).valid

    def test_future_timestamp_beyond_window_is_rejected(self) -> None:
        """The freshness window should apply to future timestamps too."""
        ts = str(NOW_MS + DEFAULT_MAX_AGE_MS + 1)
        signature = sign(BODY, "s3cr3t", ts)

        result = verify(BODY, signature, "s3cr3t", ts, now_ms=NOW_MS)

        assert result.reason == "timestamp_expired"

    def test_custom_max_age(self) -> None:
        """A tighter window should reject what the default accepts."""
        ts = str(NOW_MS - 2_000)
        signature = sign(BODY, "s3cr3t", ts)

        result = verify(BODY, signature, "s3cr3t", ts, max_age_ms=1_000, now_ms=NOW_MS)

        assert result.reason == "timestamp_expired"

    @pytest.mark.parametrize(
        ("payload", "signature", "secret", "timestamp"),
        [
            (b"", "abc", "s3cr3t", "1"),
            (BODY, "", "s3cr3t", "1"),
            (BODY, "abc", "", "1"),
            (BODY, "abc", "s3cr3t", ""),
            (BODY, "abc", "s3cr3t", "not-a-number"),
            (BODY, "abc", "s3cr3t", "-5"),
            (BODY, "abc", "s3cr3t", "١٢٣"),
            (BODY, "abc", "s3cr3t", "1" * 17),
            (BODY, "abc", "s3cr3t", "9" * 5000),
        ],
    )
    def test_malformed_inputs(
        self, payload: bytes, signature: str, secret: str, timestamp: str
    ) -> None:
        """Missing or non-numeric inputs should be rejected as malformed."""
        result = verify(payload, signature, secret, timestamp, now_ms=NOW_MS)

        assert result.valid is False
        assert result.reason == "malformed"


class TestEnvelopeAndHeaders:
    """Tests for sign_envelope(), build_headers() and extract_headers()."""

    def test_envelope_uses_given_timestamp(self) -> None:
        """sign_envelope should sign with the supplied timestamp."""
        envelope = sign_envelope(BODY, "s3cr3t", timestamp="123")

        assert envelope.timestamp == "123"
        assert envelope.payload_bytes == BODY
        assert envelope.signature == sign(BODY, "s3cr3t", "123")
        assert envelope.signature_header == f"sha256={envelope.signature}"

    def test_envelope_fresh_timestamp_verifies(self) -> None:
        """An envelope signed now should verify now."""
        envelope = sign_envelope(BODY, "s3cr3t")

        result = verify(envelope.payload_bytes, envelope.signature, "s3cr3t", envelope.timestamp)

        assert result.valid

    def test_build_headers(self) -> None:
        """Outbound headers should carry signature, timestamp, event and agent."""
        envelope = sign_envelope(BODY, "s3cr3t", timestamp="123")

        headers = build_headers(envelope, "task.assigned", "Agent/2.0")

        assert headers == {
            "Content-Type": "application/json",
            "X-Signature": envelope.signature_header,
            "X-Timestamp": "123",
            "X-Event": "task.assigned",
            "User-Agent": "Agent/2.0",
        }

    def test_extract_headers_is_case_insensitive(self) -> None:
        """Header lookup should ignore case."""
        extracted = extract_headers(
            {"x-signature": "sha256=abc", "X-TIMESTAMP": "123", "x-event": "session.started"}
        )

        assert extracted is not None
        assert extracted.signature == "sha256=abc"
        assert extracted.timestamp == "123"
        assert extracted.event == "session.started"

    def test_extract_headers_defaults_event(self) -> None:
        """A missing X-Event should become "unknown"."""
        extracted = extract_headers({"X-Signature": "abc", "X-Timestamp": "1"})

        assert extracted is not None
        assert extracted.event == "unknown"

    @pytest.mark.parametrize(
        "headers",
        [
            {"X-Timestamp": "1"},
            {"X-Signature": "abc"},
            {"X-Signature": "", "X-Timestamp": "1"},
            {},
        ],
    )
    def test_extract_headers_missing_required(self, headers: dict[str, str]) -> None:
        """Missing signature or timestamp should return None."""
        assert extract_headers(headers) is None
