"""Taskhook exception hierarchy.

Provides structured exceptions for error handling throughout the codebase.
All exceptions inherit from TaskhookError for easy catching.

Outbound delivery failures are classified by type:

- TransientNetworkError: timeout, connection failure, 5xx or 429. Retried.
- PermanentRejection: any other 4xx. Never retried.
- ConfigurationError: missing or invalid endpoint/secret. Raised to the caller.

Inbound callback failures derive from CallbackRejected. Signature and
timestamp failures share one public message so a remote party cannot tell
which check failed.
"""

from __future__ import annotations


class TaskhookError(Exception):
    """Base exception for all Taskhook errors.

    Attributes:
        message: Human-readable error description.
        code: Machine-readable error code for API responses.
    """

    code: str = "taskhook_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
            }
        }


class NotFoundError(TaskhookError):
    """Resource not found.

    Attributes:
        resource_type: Type of resource (e.g., "subscription", "delivery").
        resource_id: ID of the missing resource.
    """

    code: str = "not_found"

    def __init__(self, resource_type: str, resource_id: str) -> None:
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(f"{resource_type} not found: {resource_id}")

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "resource_type": self.resource_type,
                "resource_id": self.resource_id,
                "message": self.message,
            }
        }


class StorageError(TaskhookError):
    """Storage operation failed.

    Raised by repositories when the persistence backend is unavailable.
    """

    code: str = "storage_error"


class ConfigurationError(TaskhookError):
    """Configuration error.

    Raised when a webhook endpoint or secret is missing or invalid.
    Never retried.
    """

    code: str = "configuration_error"


class DeliveryError(TaskhookError):
    """Base class for outbound delivery attempt failures."""

    code: str = "delivery_error"

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class TransientNetworkError(DeliveryError):
    """Retryable delivery failure (timeout, connection error, 5xx, 429)."""

    code: str = "transient_network_error"

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        timed_out: bool = False,
    ) -> None:
        self.timed_out = timed_out
        super().__init__(message, status_code)


class PermanentRejection(DeliveryError):
    """Receiver rejected the delivery with a non-retryable 4xx status."""

    code: str = "permanent_rejection"

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message, status_code)


class DeliveryAborted(DeliveryError):
    """Delivery stopped before its next attempt because of shutdown."""

    code: str = "delivery_aborted"


class CallbackRejected(TaskhookError):
    """Inbound callback rejected before its contents were acted on.

    Attributes:
        reason: Internal reason, for logs only.
        public_message: Message safe to return to the remote party.
    """

    code: str = "callback_rejected"
    status_code: int = 401
    public_message: str = "Invalid signature"

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary without the reason."""
        return {
            "error": {
                "code": CallbackRejected.code,
                "message": self.public_message,
            }
        }


class SignatureInvalid(CallbackRejected):
    """Presented signature does not match, or no secret could verify it."""

    code: str = "signature_invalid"


class TimestampExpired(CallbackRejected):
    """Presented timestamp is outside the freshness window."""

    code: str = "timestamp_expired"


class MalformedCallback(CallbackRejected):
    """Callback body is not valid JSON or does not match the schema."""

    code: str = "malformed_callback"
    status_code: int = 400
    public_message: str = "Malformed callback payload"

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "message": self.public_message,
            }
        }
