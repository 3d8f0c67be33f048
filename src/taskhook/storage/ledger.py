"""Delivery ledger: audit log and aggregate statistics for outbound webhooks.

One record is written per delivery sequence. The ledger is best-effort:
a failing repository is logged and counted but never changes the outcome
of the delivery that was being recorded.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta

from taskhook.logging import get_logger
from taskhook.models import DeliveryAttemptRecord, DeliveryResult, DeliveryStats, utc_now

from .base import LedgerRepository
from .retry import ledger_retry

logger = get_logger(__name__)


class DeliveryLedger:
    """Records delivery sequences and answers reporting queries.

    Example:
        ```python
        ledger = DeliveryLedger(InMemoryLedgerRepository())
        delivery_id = await ledger.begin("user_1", "task_9", "task.assigned", url)
        await ledger.complete(delivery_id, result)
        stats = await ledger.aggregate_stats("user_1")
        ```

    Attributes:
        write_failures: Number of writes dropped because the repository failed.
    """

    def __init__(
        self,
        repository: LedgerRepository,
        stats_window: timedelta = timedelta(hours=24),
    ) -> None:
        self._repository = repository
        self._stats_window = stats_window
        self._open: dict[str, DeliveryAttemptRecord] = {}
        self.write_failures = 0

    @property
    def repository(self) -> LedgerRepository:
        return self._repository

    async def begin(
        self,
        owner_id: str,
        correlation_id: str,
        event_type: str,
        target_url: str,
    ) -> str:
        """Write a pending record and return its id.

        The id is returned even if the write failed, so the caller can
        proceed with delivery.
        """
        record = DeliveryAttemptRecord(
            owner_id=owner_id,
            correlation_id=correlation_id,
            event_type=event_type,
            target_url=target_url,
        )
        self._open[record.id] = record
        await self._write(self._repository.insert, record)
        return record.id

    async def complete(self, delivery_id: str, outcome: DeliveryResult) -> None:
        """Move a pending record to success or failed."""
        record = self._open.pop(delivery_id, None)
        if record is None:
            logger.warning("ledger_unknown_delivery", delivery_id=delivery_id)
            return

        record.finalize(
            status="success" if outcome.success else "failed",
            attempts_made=outcome.attempts,
            response_code=outcome.status_code,
            response_time_ms=outcome.response_time_ms,
            error=outcome.error,
        )
        await self._write(self._repository.update, record)

    async def get(self, delivery_id: str) -> DeliveryAttemptRecord | None:
        """Fetch one record, or None if unknown or the repository is down."""
        try:
            return await self._repository.get(delivery_id)
        except Exception as e:
            logger.warning("ledger_read_failed", operation="get", error=str(e))
            return None

    async def list_recent(self, owner_id: str, limit: int = 20) -> list[DeliveryAttemptRecord]:
        """Most recent records for an owner, newest first."""
        try:
            return await self._repository.list_for_owner(owner_id, limit=limit)
        except Exception as e:
            logger.warning("ledger_read_failed", operation="list_recent", error=str(e))
            return []

    async def aggregate_stats(
        self,
        owner_id: str,
        since: datetime | None = None,
    ) -> DeliveryStats:
        """Counts and mean response time since a point in time.

        Args:
            owner_id: Owner to report on.
            since: Window start. Defaults to now minus the stats window (24h).

        Returns:
            DeliveryStats. average_response_time_ms covers successful
            deliveries only and is None when there are none.
        """
        window_start = since if since is not None else utc_now() - self._stats_window
        try:
            records = await self._repository.list_for_owner(owner_id, since=window_start)
        except Exception as e:
            logger.warning("ledger_read_failed", operation="aggregate_stats", error=str(e))
            return DeliveryStats()

        successful = [r for r in records if r.status == "success"]
        timings = [r.last_response_time_ms for r in successful if r.last_response_time_ms is not None]

        return DeliveryStats(
            total=len(records),
            successful=len(successful),
            failed=sum(1 for r in records if r.status == "failed"),
            average_response_time_ms=round(sum(timings) / len(timings)) if timings else None,
        )

    async def _write(
        self,
        operation: Callable[[DeliveryAttemptRecord], Awaitable[None]],
        record: DeliveryAttemptRecord,
    ) -> None:
        try:
            await ledger_retry(operation)(record)
        except Exception as e:
            self.write_failures += 1
            logger.error(
                "ledger_write_failed",
                delivery_id=record.id,
                status=record.status,
                error=str(e),
                write_failures=self.write_failures,
            )
