"""FastAPI router for Taskhook API endpoints."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse

from taskhook import __version__
from taskhook.exceptions import CallbackRejected
from taskhook.service import TaskhookService

from .schemas import (
    CallbackResponse,
    CircuitStateResponse,
    DeliveryListResponse,
    DeliveryStatsResponse,
    HealthResponse,
    TestPingResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()

# Service instance (set by app lifespan)
_service: TaskhookService | None = None


def set_service(service: TaskhookService | None) -> None:
    """Set the global service instance."""
    global _service
    _service = service


async def get_service() -> TaskhookService:
    """Dependency to get the TaskhookService instance."""
    if _service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service not initialized",
        )
    return _service


ServiceDep = Annotated[TaskhookService, Depends(get_service)]


@router.get("/health", response_model=HealthResponse, tags=["system"])
async def health_check() -> HealthResponse:
    """Check service health."""
    ready = _service is not None
    return HealthResponse(
        status="healthy" if ready else "unhealthy",
        version=__version__,
        service_ready=ready,
    )


@router.post(
    "/webhooks/callback",
    response_model=CallbackResponse,
    responses={401: {"description": "Invalid signature"}, 400: {"description": "Malformed"}},
    tags=["webhooks"],
)
async def receive_callback(request: Request, service: ServiceDep) -> CallbackResponse | JSONResponse:
    """Receive a signed callback from a remote worker.

    The raw body is verified against X-Signature and X-Timestamp before
    anything in it is trusted. Signature and timestamp failures share one
    401 response; a malformed body gets 400.
    """
    raw = await request.body()
    try:
        verified, handled = await service.accept_callback(raw, request.headers)
    except CallbackRejected as e:
        return JSONResponse(status_code=e.status_code, content=e.to_dict())

    summary = verified.summary()
    return CallbackResponse(
        event=summary["event"],
        task_id=summary["taskId"],
        session_id=summary["sessionId"],
        handled=handled,
    )


@router.get(
    "/webhooks/{owner_id}/deliveries",
    response_model=DeliveryListResponse,
    tags=["webhooks"],
)
async def list_deliveries(
    owner_id: str,
    service: ServiceDep,
    limit: Annotated[int | None, Query(ge=1, le=500)] = None,
) -> DeliveryListResponse:
    """List an owner's most recent webhook deliveries, newest first."""
    deliveries = await service.recent_deliveries(owner_id, limit=limit)
    return DeliveryListResponse(owner_id=owner_id, deliveries=deliveries, count=len(deliveries))


@router.get(
    "/webhooks/{owner_id}/stats",
    response_model=DeliveryStatsResponse,
    tags=["webhooks"],
)
async def delivery_stats(
    owner_id: str,
    service: ServiceDep,
    since: datetime | None = None,
) -> DeliveryStatsResponse:
    """Delivery statistics and circuit breaker state for an owner."""
    stats = await service.delivery_stats(owner_id, since=since)
    subscription = await service.subscriptions.get(owner_id)
    return DeliveryStatsResponse(
        owner_id=owner_id,
        since=since,
        total=stats.total,
        successful=stats.successful,
        failed=stats.failed,
        average_response_time_ms=stats.average_response_time_ms,
        circuit=CircuitStateResponse.from_subscription(subscription) if subscription else None,
    )


@router.post(
    "/webhooks/{owner_id}/test",
    response_model=TestPingResponse,
    tags=["webhooks"],
)
async def send_test_ping(owner_id: str, service: ServiceDep) -> TestPingResponse:
    """Send a signed test.ping to the owner's endpoint.

    A successful ping re-enables a subscription whose circuit had opened.
    """
    result = await service.send_test_ping(owner_id)
    if not result.success:
        logger.info("Test ping failed for %s: %s", owner_id, result.error)
    return TestPingResponse.from_result(result)
