"""Explicit wiring of the lifecycle components.

The API builds one container in its lifespan; every Celery task run opens
its own. Tests build one against a temporary database and pass test doubles
for the transcoder, storage, HTTP transport and Celery app.
"""

import logging
from typing import Optional

import httpx
import redis.asyncio as redis
from celery import Celery

from hlsforge.core.config import Settings
from hlsforge.core.database import Database
from hlsforge.core.storage import StorageBackend, StorageConfig, create_storage
from hlsforge.modules.callback.delivery import CallbackDelivery
from hlsforge.modules.callback.sweeper import CallbackSweeper
from hlsforge.modules.job.queue import JobQueue
from hlsforge.modules.transcoding.ffmpeg import HLSTranscoder
from hlsforge.modules.transcoding.storage import OutputUploader
from hlsforge.modules.transcoding.worker import TranscodingWorker
from hlsforge.modules.upload.repository import UploadRecordRepository
from hlsforge.modules.upload.service import UploadSessionService

logger = logging.getLogger(__name__)


class ServiceContainer:
    """Owns every long-lived component and their startup/shutdown order."""

    def __init__(
        self,
        settings: Settings,
        celery_app: Optional[Celery] = None,
        storage: Optional[StorageBackend] = None,
        transcoder: Optional[HLSTranscoder] = None,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
        use_redis_lock: bool = False,
    ):
        self.settings = settings
        self.database = Database(settings.DATABASE_URL, echo=settings.DEBUG)
        self._celery_app = celery_app
        self._storage = storage
        self._transcoder = transcoder
        self._http_transport = http_transport
        self._use_redis_lock = use_redis_lock
        self.redis_client: Optional[redis.Redis] = None
        self._initialized = False

    async def initialize(self) -> "ServiceContainer":
        if self._initialized:
            return self

        settings = self.settings
        await self.database.initialize()

        if self._celery_app is None:
            from hlsforge.core.celery_app import celery_app

            self._celery_app = celery_app
        if self._use_redis_lock:
            self.redis_client = redis.from_url(settings.REDIS_URL)

        self.records = UploadRecordRepository(self.database.session_factory)
        self.job_queue = JobQueue(self._celery_app)
        self.storage = self._storage or create_storage(StorageConfig.from_settings(settings))
        self.transcoder = self._transcoder or HLSTranscoder(
            ffmpeg_path=settings.FFMPEG_PATH,
            segment_seconds=settings.HLS_SEGMENT_SECONDS,
            timeout_seconds=settings.TRANSCODE_TIMEOUT_SECONDS,
        )

        self.sessions = UploadSessionService(self.records, self.job_queue, settings)
        self.delivery = CallbackDelivery(
            self.records,
            timeout=settings.CALLBACK_TIMEOUT_SECONDS,
            max_attempts=settings.CALLBACK_MAX_ATTEMPTS,
            transport=self._http_transport,
            user_agent=f"{settings.PROJECT_NAME}/{settings.VERSION}",
        )
        self.sweeper = CallbackSweeper(
            self.records,
            self.delivery,
            redis_client=self.redis_client,
            lock_timeout=max(settings.CALLBACK_SWEEP_INTERVAL_SECONDS * 5, 60),
            retry_backoff_seconds=settings.CALLBACK_RETRY_BACKOFF_SECONDS,
        )
        self.worker = TranscodingWorker(
            self.records,
            self.transcoder,
            OutputUploader(self.storage),
            self.delivery,
            upload_dir=settings.UPLOAD_DIR,
            work_dir=settings.WORK_DIR,
        )

        self._initialized = True
        logger.debug("Service container initialized")
        return self

    async def shutdown(self) -> None:
        if self.redis_client is not None:
            await self.redis_client.aclose()
            self.redis_client = None
        await self.database.shutdown()
        self._initialized = False

    async def __aenter__(self) -> "ServiceContainer":
        return await self.initialize()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.shutdown()
