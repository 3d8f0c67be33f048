"""Pydantic schemas for API request/response models."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from taskhook.models import DeliveryAttemptRecord, DeliveryResult, WebhookSubscription


class HealthResponse(BaseModel):
    """Response model for health check.

    Attributes:
        status: Overall health status.
        version: Taskhook version.
        service_ready: Whether the webhook service is initialized.
    """

    status: Literal["healthy", "unhealthy"]
    version: str
    service_ready: bool


class CallbackResponse(BaseModel):
    """Acknowledgement returned to a worker after a verified callback."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    event: str
    task_id: str | None = Field(default=None, alias="taskId")
    session_id: str | None = Field(default=None, alias="sessionId")
    handled: bool = Field(description="Whether any handler ran for this event")


class DeliveryListResponse(BaseModel):
    """Recent delivery records for an owner, newest first."""

    owner_id: str
    deliveries: list[DeliveryAttemptRecord]
    count: int


class CircuitStateResponse(BaseModel):
    """Circuit breaker state of an owner's subscription.

    Attributes:
        enabled: Whether the owner has turned the webhook on.
        consecutive_failures: Terminal failures since the last success.
        max_consecutive_failures: Failures that open the circuit.
        circuit_open: Whether deliveries are currently suppressed.
        last_attempted_at: When a delivery last succeeded.
    """

    enabled: bool
    consecutive_failures: int
    max_consecutive_failures: int
    circuit_open: bool
    last_attempted_at: datetime | None = None

    @classmethod
    def from_subscription(cls, subscription: WebhookSubscription) -> CircuitStateResponse:
        return cls(
            enabled=subscription.enabled,
            consecutive_failures=subscription.consecutive_failures,
            max_consecutive_failures=subscription.max_consecutive_failures,
            circuit_open=subscription.circuit_open,
            last_attempted_at=subscription.last_attempted_at,
        )


class DeliveryStatsResponse(BaseModel):
    """Delivery statistics for an owner.

    Attributes:
        owner_id: Owner reported on.
        since: Window start, or None for the default window.
        total: Deliveries recorded in the window.
        successful: Deliveries that ended in success.
        failed: Deliveries that ended in failure.
        average_response_time_ms: Mean over successful deliveries.
        circuit: Breaker state, or None if the owner has no subscription.
    """

    owner_id: str
    since: datetime | None = None
    total: int
    successful: int
    failed: int
    average_response_time_ms: int | None = None
    circuit: CircuitStateResponse | None = None


class TestPingResponse(BaseModel):
    """Outcome of a test.ping delivery."""

    success: bool
    status_code: int | None = None
    response_time_ms: int | None = None
    error: str | None = None
    delivery_id: str | None = None

    @classmethod
    def from_result(cls, result: DeliveryResult) -> TestPingResponse:
        return cls(
            success=result.success,
            status_code=result.status_code,
            response_time_ms=result.response_time_ms,
            error=result.error,
            delivery_id=result.delivery_id,
        )
