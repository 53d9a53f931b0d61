"""Celery consumer for the transcoding queue."""

import asyncio
import uuid
from typing import Any, Optional

from hlsforge.container import ServiceContainer
from hlsforge.core.celery_app import celery_app
from hlsforge.core.config import settings
from hlsforge.core.logging import correlation_scope
from hlsforge.modules.callback.schemas import JobOutcome
from hlsforge.modules.job.queue import JobQueue
from hlsforge.modules.job.schemas import TRANSCODE_TOPIC


async def _run_transcode_job(payload: Any) -> Optional[JobOutcome]:
    async with ServiceContainer(settings, celery_app=celery_app) as container:
        return await container.worker.handle(payload)


def process_transcode_job(payload: Any) -> Optional[str]:
    """Run one transcode job to completion.

    Job failures are recorded on the upload record by the worker, so this
    returns normally and the message is acknowledged.
    """
    upload_id = payload.get("upload_id") if isinstance(payload, dict) else None
    with correlation_scope(upload_id or str(uuid.uuid4())):
        outcome = asyncio.run(_run_transcode_job(payload))
    return outcome.status.value if outcome is not None else None


transcode_video_task = JobQueue(celery_app).consume(TRANSCODE_TOPIC, process_transcode_job)
