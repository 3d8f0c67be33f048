"""Outbound webhook delivery with HMAC signatures and exponential backoff retry.

One call to DeliveryEngine.deliver is one delivery sequence:

- validate the endpoint and secret (ConfigurationError, never retried)
- write a pending ledger record
- POST the signed payload, re-signing with a fresh timestamp each attempt
- 2xx succeeds; 4xx other than 429 stops immediately; 5xx, 429, timeouts
  and connection errors are retried after initial_backoff * 2**(attempt-1)
- finalize the ledger record exactly once

Attempts within a sequence are strictly sequential. The backoff sleep only
suspends this sequence.
"""

from __future__ import annotations

import asyncio
import json
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    stop_when_event_set,
    wait_exponential,
)

from taskhook.exceptions import (
    ConfigurationError,
    DeliveryAborted,
    PermanentRejection,
    TransientNetworkError,
)
from taskhook.logging import bound_context, get_logger
from taskhook.models import DeliveryOptions, DeliveryResult

from .signature import DEFAULT_USER_AGENT, build_headers, sign_envelope

if TYPE_CHECKING:
    from taskhook.storage import DeliveryLedger

logger = get_logger(__name__)

SleepFunc = Callable[[float], Awaitable[None]]


@dataclass
class _Progress:
    """What the attempt loop has observed so far."""

    attempts: int = 0
    status_code: int | None = None
    response_time_ms: int | None = None


def validate_target(target_url: str, shared_secret: str) -> None:
    """Reject endpoints and secrets that can never be delivered to.

    Raises:
        ConfigurationError: If the URL is empty, not absolute http(s), or the
            secret is empty.
    """
    if not target_url or not target_url.strip():
        raise ConfigurationError("Webhook endpoint URL is missing")
    try:
        url = httpx.URL(target_url.strip())
    except httpx.InvalidURL as e:
        raise ConfigurationError(f"Invalid webhook endpoint URL: {e}") from e
    if url.scheme not in ("http", "https") or not url.host:
        raise ConfigurationError(f"Webhook endpoint must be an absolute http(s) URL: {target_url}")
    if not shared_secret:
        raise ConfigurationError("Webhook secret is missing")


def serialize_payload(payload: dict[str, object]) -> bytes:
    """Encode a payload once; every attempt sends the same bytes."""
    try:
        return json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Webhook payload is not JSON serializable: {e}") from e


class DeliveryEngine:
    """Delivers one event to one endpoint with retry and ledger bookkeeping.

    Example:
        ```python
        engine = DeliveryEngine(ledger, client=httpx.AsyncClient())
        result = await engine.deliver(
            DeliveryOptions(
                owner_id="user_1",
                correlation_id="task_42",
                event_type="task.assigned",
                target_url="https://worker.example.com/hooks",
                shared_secret="s3cr3t",
                payload=event.to_payload(),
            )
        )
        ```
    """

    def __init__(
        self,
        ledger: DeliveryLedger,
        client: httpx.AsyncClient | None = None,
        user_agent: str = DEFAULT_USER_AGENT,
        shutdown: asyncio.Event | None = None,
        sleep: SleepFunc | None = None,
    ) -> None:
        """Initialize the delivery engine.

        Args:
            ledger: Ledger that records each delivery sequence.
            client: HTTP client. One is created (and owned) if omitted.
            user_agent: User-Agent header for outbound requests.
            shutdown: Event that, once set, stops new attempts and backoff sleeps.
            sleep: Backoff sleep override. Defaults to a sleep that wakes on shutdown.
        """
        self._ledger = ledger
        self._owns_client = client is None
        self._client = client if client is not None else httpx.AsyncClient()
        self._user_agent = user_agent
        self._shutdown = shutdown if shutdown is not None else asyncio.Event()
        self._sleep = sleep if sleep is not None else self._interruptible_sleep

    @property
    def shutting_down(self) -> bool:
        return self._shutdown.is_set()

    def request_shutdown(self) -> None:
        """Let in-flight attempts finish but start no new attempt or sleep."""
        self._shutdown.set()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def deliver(self, options: DeliveryOptions) -> DeliveryResult:
        """Run the attempt loop for one recipient.

        Args:
            options: Recipient, event and retry parameters.

        Returns:
            DeliveryResult with status "success" or "failed".

        Raises:
            ConfigurationError: If the endpoint, secret or payload is unusable.
                Raised before any ledger write or network call.
        """
        validate_target(options.target_url, options.shared_secret)
        body = serialize_payload(options.payload)

        delivery_id = await self._ledger.begin(
            owner_id=options.owner_id,
            correlation_id=options.correlation_id,
            event_type=options.event_type,
            target_url=options.target_url,
        )

        with bound_context(
            delivery_id=delivery_id,
            owner_id=options.owner_id,
            event_type=options.event_type,
        ):
            result = await self._run(options, body, delivery_id)

        await self._ledger.complete(delivery_id, result)
        return result

    async def _run(self, options: DeliveryOptions, body: bytes, delivery_id: str) -> DeliveryResult:
        progress = _Progress()

        retrying = AsyncRetrying(
            stop=stop_after_attempt(options.max_attempts) | stop_when_event_set(self._shutdown),
            wait=wait_exponential(multiplier=options.initial_backoff_ms / 1000),
            retry=retry_if_exception_type(TransientNetworkError),
            before_sleep=self._log_retry(options),
            sleep=self._sleep,
            reraise=True,
        )

        def failed(error: str, aborted: bool = False) -> DeliveryResult:
            return DeliveryResult(
                owner_id=options.owner_id,
                status="failed",
                attempts=progress.attempts,
                status_code=progress.status_code,
                response_time_ms=progress.response_time_ms,
                error=error,
                delivery_id=delivery_id,
                aborted=aborted,
            )

        try:
            async for attempt in retrying:
                with attempt:
                    if self.shutting_down:
                        raise DeliveryAborted("Delivery aborted: shutting down")
                    await self._attempt(options, body, progress)
        except PermanentRejection as e:
            logger.warning("webhook_rejected", url=options.target_url, status_code=e.status_code)
            return failed(e.message)
        except TransientNetworkError as e:
            if self.shutting_down and progress.attempts < options.max_attempts:
                logger.warning("webhook_aborted", url=options.target_url, attempts=progress.attempts)
                return failed(f"Delivery aborted: shutting down (last error: {e.message})", aborted=True)
            logger.error("webhook_failed", url=options.target_url, attempts=progress.attempts, error=e.message)
            return failed(e.message)
        except DeliveryAborted as e:
            logger.warning("webhook_aborted", url=options.target_url, attempts=progress.attempts)
            return failed(e.message, aborted=True)
        except Exception as e:
            logger.exception("webhook_delivery_error", url=options.target_url)
            return failed(f"Unexpected error: {e}")

        logger.info(
            "webhook_delivered",
            url=options.target_url,
            status_code=progress.status_code,
            attempts=progress.attempts,
            response_time_ms=progress.response_time_ms,
        )
        return DeliveryResult(
            owner_id=options.owner_id,
            status="success",
            attempts=progress.attempts,
            status_code=progress.status_code,
            response_time_ms=progress.response_time_ms,
            delivery_id=delivery_id,
        )

    async def _attempt(self, options: DeliveryOptions, body: bytes, progress: _Progress) -> None:
        """Send one signed request and classify the outcome.

        Raises:
            TransientNetworkError: timeout, connection error, 5xx or 429.
            PermanentRejection: any other non-2xx status.
        """
        envelope = sign_envelope(body, options.shared_secret)
        headers = build_headers(envelope, options.event_type, self._user_agent)
        timeout_s = options.per_attempt_timeout_ms / 1000

        progress.attempts += 1
        started = time.perf_counter()
        try:
            async with asyncio.timeout(timeout_s):
                response = await self._client.post(
                    options.target_url,
                    content=envelope.payload_bytes,
                    headers=headers,
                    timeout=timeout_s,
                )
        except (TimeoutError, httpx.TimeoutException) as e:
            raise TransientNetworkError(
                f"Request timed out after {options.per_attempt_timeout_ms}ms",
                timed_out=True,
            ) from e
        except httpx.RequestError as e:
            raise TransientNetworkError(str(e) or type(e).__name__) from e
        finally:
            progress.response_time_ms = round((time.perf_counter() - started) * 1000)

        status = response.status_code
        progress.status_code = status
        if response.is_success:
            return

        error = f"HTTP {status}: {response.text[:200]}"
        if 400 <= status < 500 and status != 429:
            raise PermanentRejection(status, error)
        raise TransientNetworkError(error, status_code=status)

    @staticmethod
    def _log_retry(options: DeliveryOptions) -> Callable[[RetryCallState], None]:
        def log(retry_state: RetryCallState) -> None:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            logger.warning(
                "webhook_retry_scheduled",
                url=options.target_url,
                attempt=retry_state.attempt_number,
                max_attempts=options.max_attempts,
                backoff_s=retry_state.upcoming_sleep,
                error=str(exc) if exc else None,
            )

        return log

    async def _interruptible_sleep(self, seconds: float) -> None:
        if seconds <= 0:
            return
        try:
            async with asyncio.timeout(seconds):
                await self._shutdown.wait()
        except TimeoutError:
            pass
