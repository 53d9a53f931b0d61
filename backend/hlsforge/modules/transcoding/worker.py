"""Transcoding worker.

Consumes one transcode job at a time: drives ffmpeg, publishes the outputs,
records the outcome on the upload record, cleans up local files and makes
the first webhook attempt. Transcode failures are terminal; only webhook
delivery is retried (by the sweep).
"""

import asyncio
import logging
import shutil
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError as PayloadValidationError

from hlsforge.core.errors import HlsForgeError, NotFoundError, TranscodeError
from hlsforge.core.logging import log_error, log_warning
from hlsforge.modules.callback.delivery import CallbackDelivery
from hlsforge.modules.callback.schemas import JobCompleted, JobFailed, JobOutcome
from hlsforge.modules.job.schemas import TranscodeJobPayload
from hlsforge.modules.transcoding.ffmpeg import SUPPORTED_PACKAGERS, HLSTranscoder
from hlsforge.modules.transcoding.storage import (
    OutputUploader,
    build_key_prefix,
    write_metadata_file,
)
from hlsforge.modules.upload.models import UploadStatus
from hlsforge.modules.upload.repository import UploadRecordRepository

logger = logging.getLogger(__name__)

PROGRESS_STARTED = 10
PROGRESS_TRANSCODED = 75
PROGRESS_UPLOADED = 95
PROGRESS_DONE = 100
PROGRESS_REPORT_STEP = 5


class TranscodingWorker:
    """Processes transcode jobs against the record store."""

    def __init__(
        self,
        records: UploadRecordRepository,
        transcoder: HLSTranscoder,
        uploader: OutputUploader,
        delivery: CallbackDelivery,
        upload_dir: str,
        work_dir: str,
    ):
        self.records = records
        self.transcoder = transcoder
        self.uploader = uploader
        self.delivery = delivery
        self.upload_dir = Path(upload_dir)
        self.work_dir = Path(work_dir)

    async def handle(self, message: Any) -> Optional[JobOutcome]:
        """Process one queue message.

        Never raises for job-level failures: those are recorded on the
        upload record so the message can be acknowledged.

        Returns:
            The job outcome, or None if the message was dropped or skipped
        """
        try:
            job = TranscodeJobPayload.model_validate(message)
        except PayloadValidationError as e:
            log_warning(logger, "Dropping malformed transcode job", error=str(e))
            return None

        record = await self.records.get_by_id(job.upload_id)
        if record is None:
            log_warning(logger, "Transcode job for unknown upload", upload_id=job.upload_id)
            await self.cleanup(job)
            return None
        if record.is_terminal:
            # Redelivery of a job whose first run already finished
            logger.info(
                "Upload already finished, skipping redelivered job",
                extra={"upload_id": job.upload_id, "status": record.status},
            )
            return None

        try:
            outcome = await self._process(job)
        finally:
            await self.cleanup(job)

        await self._notify(job, outcome)
        return outcome

    async def _process(self, job: TranscodeJobPayload) -> JobOutcome:
        upload_id = job.upload_id
        output_dir = self.work_dir / upload_id
        try:
            await self._set_progress(upload_id, PROGRESS_STARTED, status=UploadStatus.PROCESSING)

            if job.packager not in SUPPORTED_PACKAGERS:
                raise TranscodeError(f"Unsupported packager '{job.packager}'", upload_id)
            if not self._is_managed(Path(job.file_path)):
                raise TranscodeError("Source file is outside the upload directory", upload_id)

            output = await asyncio.to_thread(
                self.transcoder.transcode, job.file_path, str(output_dir)
            )
            write_metadata_file(
                output.output_dir,
                upload_id,
                job.filename,
                job.packager,
                has_thumbnail=output.thumbnail_path is not None,
            )
            await self._set_progress(upload_id, PROGRESS_TRANSCODED)

            key_prefix = build_key_prefix(upload_id, job.storage_path)
            await self.uploader.upload_directory(
                output.output_dir,
                key_prefix,
                on_progress=self._upload_progress_reporter(upload_id),
            )
            await self._set_progress(upload_id, PROGRESS_UPLOADED)

            stream_url = self.uploader.manifest_url(key_prefix)
            if job.callback_url:
                # Stamped before completion so the sweep leaves the immediate
                # attempt to _notify
                await self.records.touch_callback_attempt(upload_id)
            await self._set_progress(
                upload_id,
                PROGRESS_DONE,
                status=UploadStatus.COMPLETED,
                stream_url=stream_url,
            )
        except Exception as e:
            message = e.message if isinstance(e, HlsForgeError) else str(e) or type(e).__name__
            log_error(logger, "Transcode job failed", exception=e, upload_id=upload_id)
            await self._mark_failed(upload_id, message)
            return JobFailed(error=message)

        logger.info(
            "Transcode job completed",
            extra={"upload_id": upload_id, "stream_url": stream_url},
        )
        return JobCompleted(stream_url=stream_url)

    async def _set_progress(self, upload_id: str, progress: int, **fields: Any) -> None:
        if await self.records.update(upload_id, progress=progress, **fields) is None:
            raise NotFoundError(upload_id)

    def _upload_progress_reporter(self, upload_id: str):
        span = PROGRESS_UPLOADED - PROGRESS_TRANSCODED
        last_reported = PROGRESS_TRANSCODED

        async def report(done: int, total: int) -> None:
            nonlocal last_reported
            progress = PROGRESS_TRANSCODED + (span * done) // total
            if progress - last_reported >= PROGRESS_REPORT_STEP and progress < PROGRESS_UPLOADED:
                last_reported = progress
                await self._set_progress(upload_id, progress)

        return report

    async def _mark_failed(self, upload_id: str, message: str) -> None:
        try:
            await self.records.update(upload_id, status=UploadStatus.FAILED, error=message)
        except HlsForgeError as e:
            log_warning(
                logger,
                "Could not mark upload failed",
                upload_id=upload_id,
                error=e.message,
            )

    async def _notify(self, job: TranscodeJobPayload, outcome: JobOutcome) -> None:
        """Immediate webhook attempt; the sweep retries what this misses."""
        if not job.callback_url:
            return
        try:
            record = await self.records.get_by_id(job.upload_id)
            if record is not None:
                await self.delivery.deliver(record, outcome)
        except Exception as e:
            log_error(logger, "Immediate callback attempt failed", exception=e, upload_id=job.upload_id)

    async def cleanup(self, job: TranscodeJobPayload) -> None:
        """Remove the source file, tusd side files and the work directory.

        Best effort: every failure is logged and the rest still runs. Paths
        outside UPLOAD_DIR and WORK_DIR are never touched.
        """
        candidates = {
            Path(job.file_path),
            self.upload_dir / job.upload_id,
            self.upload_dir / f"{job.upload_id}.info",
            self.work_dir / job.upload_id,
        }
        targets = []
        for path in candidates:
            if self._is_managed(path):
                targets.append(path)
            else:
                log_warning(
                    logger, "Refusing to clean up path", upload_id=job.upload_id, path=str(path)
                )
        await asyncio.gather(*(asyncio.to_thread(self._remove, path) for path in targets))

    def _is_managed(self, path: Path) -> bool:
        """True if ``path`` resolves strictly inside the upload or work dir."""
        resolved = path.resolve()
        for root in (self.upload_dir.resolve(), self.work_dir.resolve()):
            if resolved != root and resolved.is_relative_to(root):
                return True
        return False

    @staticmethod
    def _remove(path: Path) -> None:
        try:
            if path.is_dir():
                shutil.rmtree(path)
            elif path.exists():
                path.unlink()
        except OSError as e:
            log_warning(logger, "Cleanup failed", path=str(path), error=str(e))
