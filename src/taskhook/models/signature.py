"""Transient models produced and consumed by the signature codec."""

from typing import Literal

from pydantic import BaseModel, ConfigDict

RejectionReason = Literal["bad_signature", "timestamp_expired", "malformed"]


class SignedEnvelope(BaseModel):
    """A body plus the timestamp and signature computed over it. Never persisted."""

    model_config = ConfigDict(frozen=True)

    payload_bytes: bytes
    timestamp: str
    signature: str

    @property
    def signature_header(self) -> str:
        return f"sha256={self.signature}"


class SignatureHeaders(BaseModel):
    """Signature headers presented on a request."""

    model_config = ConfigDict(frozen=True)

    signature: str
    timestamp: str
    event: str = "unknown"


class VerificationResult(BaseModel):
    """Outcome of verifying a presented signature."""

    model_config = ConfigDict(frozen=True)

    valid: bool
    reason: RejectionReason | None = None
