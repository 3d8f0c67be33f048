"""Webhook models for outbound task-lifecycle notifications.

Provides subscription configuration, event payloads, delivery records
and delivery results for the outbound leg of the webhook protocol.
"""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from .base import generate_id, utc_now

# Event types that can be pushed to a subscriber
EventType = Literal[
    "task.created",
    "task.assigned",
    "task.updated",
    "task.completed",
    "task.commented",
    "comment.created",
    "test.ping",
]

# Events a new subscription receives unless configured otherwise
DEFAULT_SUBSCRIBED_EVENTS: frozenset[EventType] = frozenset({"task.assigned", "comment.created"})

# Ledger record status (one record per delivery sequence)
DeliveryStatus = Literal["pending", "success", "failed"]

# Result status reported to callers of the dispatcher
ResultStatus = Literal["success", "failed", "not_attempted"]

# Why an ineligible recipient was skipped
SkipReason = Literal["disabled", "circuit_open", "not_subscribed"]


class WebhookSubscription(BaseModel):
    """One owner's outbound webhook configuration.

    endpoint_url and shared_secret are opaque; they may be encrypted at rest
    and are only decrypted at send time.

    Attributes:
        owner_id: Owner of the subscription (one per owner).
        endpoint_url: Receiver URL (possibly encrypted).
        shared_secret: HMAC secret (possibly encrypted).
        enabled: Whether the owner has turned the webhook on.
        subscribed_events: Event types the owner wants to receive.
        consecutive_failures: Terminal failures since the last success.
        max_consecutive_failures: Failures that open the circuit.
        last_attempted_at: When a delivery last succeeded.
    """

    model_config = ConfigDict(extra="forbid")

    owner_id: str = Field(min_length=1, description="Owner of this subscription")
    endpoint_url: str = Field(description="Receiver URL, opaque until send time")
    shared_secret: str = Field(description="Shared secret, opaque until send time")
    enabled: bool = Field(default=True, description="Whether webhook is active")
    subscribed_events: set[EventType] = Field(
        default_factory=lambda: set(DEFAULT_SUBSCRIBED_EVENTS),
        description="Event types to deliver",
    )
    consecutive_failures: int = Field(default=0, ge=0)
    max_consecutive_failures: int = Field(default=3, gt=0)
    last_attempted_at: datetime | None = None

    @property
    def circuit_open(self) -> bool:
        """True once repeated failures have disabled this subscription."""
        return self.consecutive_failures >= self.max_consecutive_failures


class WebhookEvent(BaseModel):
    """Event body sent to webhook endpoints.

    The same event id is sent to every recipient of one logical event so
    receivers can deduplicate at-least-once deliveries.
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    id: str = Field(default_factory=lambda: generate_id("evt"))
    event: str = Field(description="Event type")
    timestamp: datetime = Field(default_factory=utc_now, description="When the event occurred")
    correlation_id: str = Field(alias="correlationId", description="Task or resource id")
    data: dict[str, Any] = Field(default_factory=dict, description="Event-specific payload")

    def to_payload(self) -> dict[str, Any]:
        """Serialize to the camelCase JSON object sent on the wire."""
        return self.model_dump(mode="json", by_alias=True)


class DeliveryOptions(BaseModel):
    """Inputs for one delivery sequence to one recipient."""

    model_config = ConfigDict(extra="forbid")

    owner_id: str
    correlation_id: str
    event_type: str
    target_url: str
    shared_secret: str
    payload: dict[str, Any]
    max_attempts: int = Field(default=3, ge=1)
    initial_backoff_ms: int = Field(default=1000, ge=0)
    per_attempt_timeout_ms: int = Field(default=10_000, gt=0)


class DeliveryAttemptRecord(BaseModel):
    """Ledger row for one delivery sequence (not one HTTP request).

    Created pending before the first network call and moved exactly once
    to success or failed.
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: generate_id("dlv"))
    owner_id: str
    correlation_id: str
    event_type: str
    target_url: str
    status: DeliveryStatus = "pending"
    attempts_made: int = Field(default=0, ge=0)
    last_response_code: int | None = None
    last_response_time_ms: int | None = None
    last_error: str | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def is_terminal(self) -> bool:
        return self.status != "pending"

    def finalize(
        self,
        status: Literal["success", "failed"],
        attempts_made: int,
        response_code: int | None = None,
        response_time_ms: int | None = None,
        error: str | None = None,
    ) -> "DeliveryAttemptRecord":
        """Move the record to its terminal state.

        Raises:
            ValueError: If the record is already terminal.
        """
        if self.is_terminal:
            raise ValueError(f"Delivery record {self.id} is already {self.status}")
        self.status = status
        self.attempts_made = attempts_made
        self.last_response_code = response_code
        self.last_response_time_ms = response_time_ms
        self.last_error = error[:1000] if error else None
        self.updated_at = utc_now()
        return self


class DeliveryResult(BaseModel):
    """Outcome of one delivery sequence, as reported to the caller."""

    model_config = ConfigDict(extra="forbid")

    owner_id: str
    status: ResultStatus
    attempts: int = Field(default=0, ge=0)
    status_code: int | None = None
    response_time_ms: int | None = None
    error: str | None = None
    delivery_id: str | None = None
    skip_reason: SkipReason | None = None
    aborted: bool = Field(default=False, description="Stopped by shutdown before retries ran out")

    @property
    def success(self) -> bool:
        return self.status == "success"

    @classmethod
    def not_attempted(cls, owner_id: str, reason: SkipReason) -> "DeliveryResult":
        """Result for a recipient the circuit breaker gate skipped."""
        return cls(owner_id=owner_id, status="not_attempted", skip_reason=reason)

    @classmethod
    def crashed(cls, owner_id: str, error: str) -> "DeliveryResult":
        """Result for a recipient whose delivery raised instead of returning."""
        return cls(owner_id=owner_id, status="failed", attempts=0, error=error)


class DeliveryStats(BaseModel):
    """Aggregate delivery statistics for one owner over a time window."""

    total: int = 0
    successful: int = 0
    failed: int = 0
    average_response_time_ms: int | None = None


__all__ = [
    "DEFAULT_SUBSCRIBED_EVENTS",
    "DeliveryAttemptRecord",
    "DeliveryOptions",
    "DeliveryResult",
    "DeliveryStats",
    "DeliveryStatus",
    "EventType",
    "ResultStatus",
    "SkipReason",
    "WebhookEvent",
    "WebhookSubscription",
]
