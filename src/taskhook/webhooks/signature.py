"""HMAC-SHA256 signing and verification shared by both webhook legs.

The signed material is ``f"{timestamp}.{payload}"`` so a captured signature
cannot be replayed with a fresh timestamp, and verification rejects
timestamps outside the freshness window.

Wire headers:
    X-Signature: sha256=<hex digest>
    X-Timestamp: sender's epoch milliseconds
    X-Event: event type
"""

from __future__ import annotations

import hashlib
import hmac
from collections.abc import Mapping

from taskhook.models import (
    SignatureHeaders,
    SignedEnvelope,
    VerificationResult,
    epoch_ms,
)

SIGNATURE_HEADER = "X-Signature"
TIMESTAMP_HEADER = "X-Timestamp"
EVENT_HEADER = "X-Event"
SIGNATURE_PREFIX = "sha256="

DEFAULT_MAX_AGE_MS = 5 * 60 * 1000
DEFAULT_USER_AGENT = "Taskhook-Webhooks/1.0"

# Epoch milliseconds fit in 13 digits until the year 2286
MAX_TIMESTAMP_DIGITS = 16


def _as_bytes(value: bytes | str) -> bytes:
    return value if isinstance(value, bytes) else value.encode("utf-8")


def sign(payload: bytes | str, secret: str, timestamp: str) -> str:
    """Compute the hex HMAC-SHA256 signature of a payload.

    Args:
        payload: Serialized body exactly as sent on the wire.
        secret: Shared secret for HMAC.
        timestamp: Sender's epoch milliseconds as a decimal string.

    Returns:
        Hex digest without the "sha256=" prefix.
    """
    message = timestamp.encode("utf-8") + b"." + _as_bytes(payload)
    return hmac.new(
        key=secret.encode("utf-8"),
        msg=message,
        digestmod=hashlib.sha256,
    ).hexdigest()


def verify(
    payload: bytes | str,
    presented_signature: str,
    secret: str,
    timestamp: str,
    *,
    max_age_ms: int = DEFAULT_MAX_AGE_MS,
    now_ms: int | None = None,
) -> VerificationResult:
    """Verify a presented signature and timestamp against a payload.

    Checks run in order: inputs well-formed, timestamp fresh, MAC matches.
    The MAC comparison is constant-time.

    Args:
        payload: Raw body as received.
        presented_signature: Signature header value, with or without "sha256=".
        secret: Shared secret expected for this sender.
        timestamp: Timestamp header value (epoch milliseconds).
        max_age_ms: Allowed distance between timestamp and now, either direction.
        now_ms: Current time override, for tests.

    Returns:
        VerificationResult with reason "malformed", "timestamp_expired" or
        "bad_signature" when invalid.
    """
    if not payload or not presented_signature or not secret or not timestamp:
        return VerificationResult(valid=False, reason="malformed")

    if len(timestamp) > MAX_TIMESTAMP_DIGITS or not (timestamp.isascii() and timestamp.isdigit()):
        return VerificationResult(valid=False, reason="malformed")

    current = epoch_ms() if now_ms is None else now_ms
    if abs(current - int(timestamp)) > max_age_ms:
        return VerificationResult(valid=False, reason="timestamp_expired")

    presented = presented_signature.removeprefix(SIGNATURE_PREFIX)
    expected = sign(payload, secret, timestamp)
    if not hmac.compare_digest(expected.encode("utf-8"), presented.encode("utf-8")):
        return VerificationResult(valid=False, reason="bad_signature")

    return VerificationResult(valid=True)


def sign_envelope(
    payload: bytes | str,
    secret: str,
    timestamp: str | None = None,
) -> SignedEnvelope:
    """Sign a payload with a fresh (or given) timestamp."""
    ts = timestamp if timestamp is not None else str(epoch_ms())
    body = _as_bytes(payload)
    return SignedEnvelope(payload_bytes=body, timestamp=ts, signature=sign(body, secret, ts))


def build_headers(
    envelope: SignedEnvelope,
    event_type: str,
    user_agent: str = DEFAULT_USER_AGENT,
) -> dict[str, str]:
    """HTTP headers carrying an envelope's signature and timestamp."""
    return {
        "Content-Type": "application/json",
        SIGNATURE_HEADER: envelope.signature_header,
        TIMESTAMP_HEADER: envelope.timestamp,
        EVENT_HEADER: event_type,
        "User-Agent": user_agent,
    }


def extract_headers(headers: Mapping[str, str]) -> SignatureHeaders | None:
    """Read signature headers from a request.

    Lookup is case-insensitive. Returns None when the signature or the
    timestamp is missing; a missing event header becomes "unknown".
    """
    lowered = {key.lower(): value for key, value in headers.items()}
    signature = lowered.get(SIGNATURE_HEADER.lower())
    timestamp = lowered.get(TIMESTAMP_HEADER.lower())
    if not signature or not timestamp:
        return None
    return SignatureHeaders(
        signature=signature,
        timestamp=timestamp,
        event=lowered.get(EVENT_HEADER.lower()) or "unknown",
    )


__all__ = [
    "DEFAULT_MAX_AGE_MS",
    "EVENT_HEADER",
    "SIGNATURE_HEADER",
    "SIGNATURE_PREFIX",
    "TIMESTAMP_HEADER",
    "build_headers",
    "extract_headers",
    "sign",
    "sign_envelope",
    "verify",
]
