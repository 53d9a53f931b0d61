"""Celery beat task retrying pending webhook deliveries."""

import asyncio
import uuid
from dataclasses import asdict

from hlsforge.container import ServiceContainer
from hlsforge.core.celery_app import celery_app
from hlsforge.core.config import settings
from hlsforge.core.logging import correlation_scope
from hlsforge.modules.callback.sweeper import SweepResult
from hlsforge.modules.job.schemas import CALLBACK_SWEEP_TASK


async def _sweep() -> SweepResult:
    async with ServiceContainer(settings, celery_app=celery_app, use_redis_lock=True) as container:
        return await container.sweeper.sweep()


@celery_app.task(name=CALLBACK_SWEEP_TASK, ignore_result=True)
def sweep_pending_callbacks() -> dict:
    """Retry every pending webhook delivery once."""
    with correlation_scope(f"callback-sweep-{uuid.uuid4().hex[:12]}"):
        result = asyncio.run(_sweep())
    return asdict(result)
