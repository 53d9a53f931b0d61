"""Periodic retry pass over pending webhook deliveries."""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from redis.asyncio import Redis
from redis.exceptions import LockError

from hlsforge.modules.callback.delivery import CallbackDelivery
from hlsforge.modules.upload.models import utcnow
from hlsforge.modules.upload.repository import UploadRecordRepository

logger = logging.getLogger(__name__)

SWEEP_LOCK_NAME = "hlsforge:callback-sweep"


@dataclass
class SweepResult:
    """Counts from one sweep."""
    attempted: int = 0
    delivered: int = 0
    failed: int = 0
    errors: int = 0
    skipped: bool = False


class CallbackSweeper:
    """Retries every pending delivery once, sequentially.

    The running flag only skips overlapping calls on the same instance.
    The Celery task builds a fresh container per run, so across task runs
    only the non-blocking Redis lock keeps a beat tick from overlapping a
    slow sweep.

    Records whose last attempt is newer than ``retry_backoff_seconds`` are
    left for a later pass. The worker stamps the attempt time before marking
    a job completed, so a sweep landing in that window does not race the
    immediate webhook.
    """

    def __init__(
        self,
        records: UploadRecordRepository,
        delivery: CallbackDelivery,
        redis_client: Optional[Redis] = None,
        lock_timeout: int = 300,
        retry_backoff_seconds: int = 0,
    ):
        self.records = records
        self.delivery = delivery
        self.redis_client = redis_client
        self.lock_timeout = lock_timeout
        self.retry_backoff_seconds = retry_backoff_seconds
        self._running = False

    async def sweep(self) -> SweepResult:
        if self._running:
            logger.info("Callback sweep already running, skipping")
            return SweepResult(skipped=True)

        self._running = True
        try:
            if self.redis_client is None:
                return await self._sweep_pending()

            lock = self.redis_client.lock(
                SWEEP_LOCK_NAME, timeout=self.lock_timeout, blocking=False
            )
            if not await lock.acquire():
                logger.info("Callback sweep held by another worker, skipping")
                return SweepResult(skipped=True)
            try:
                return await self._sweep_pending()
            finally:
                try:
                    await lock.release()
                except LockError:
                    logger.warning("Callback sweep lock expired before release")
        finally:
            self._running = False

    async def _sweep_pending(self) -> SweepResult:
        result = SweepResult()
        if self.retry_backoff_seconds > 0:
            candidates = await self.records.list_pending_callbacks(
                self.delivery.max_attempts,
                attempted_before=utcnow() - timedelta(seconds=self.retry_backoff_seconds),
            )
        else:
            candidates = await self.records.list_pending_callbacks(self.delivery.max_attempts)
        for record in candidates:
            result.attempted += 1
            try:
                if await self.delivery.deliver(record):
                    result.delivered += 1
                else:
                    result.failed += 1
            except Exception as e:
                # One bad record must not stop the rest of the pass
                result.errors += 1
                logger.error(
                    "Callback sweep error",
                    exc_info=e,
                    extra={"upload_id": record.id},
                )

        if result.attempted:
            logger.info(
                "Callback sweep finished",
                extra={
                    "attempted": result.attempted,
                    "delivered": result.delivered,
                    "failed": result.failed,
                    "errors": result.errors,
                },
            )
        return result
