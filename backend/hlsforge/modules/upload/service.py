"""Upload session manager.

Creates upload records before any bytes are transferred and gates the
resumable-upload server: an upload may only start for a record in
``uploading`` status, and finishing one enqueues exactly one transcode job.
"""

import logging
import uuid
from datetime import timedelta
from pathlib import Path, PurePosixPath
from typing import Any, Optional
from urllib.parse import urlparse

from hlsforge.core.config import Settings
from hlsforge.core.errors import InvalidStateError, NotFoundError, ValidationError
from hlsforge.modules.job.queue import JobQueue
from hlsforge.modules.job.schemas import TRANSCODE_TOPIC, TranscodeJobPayload
from hlsforge.modules.transcoding.ffmpeg import SUPPORTED_PACKAGERS
from hlsforge.modules.upload.models import (
    DEFAULT_PACKAGER,
    CallbackStatus,
    UploadRecord,
    UploadStatus,
    utcnow,
)
from hlsforge.modules.upload.repository import UploadRecordRepository
from hlsforge.modules.upload.schemas import UploadSession

logger = logging.getLogger(__name__)

MAX_FILENAME_LENGTH = 512


def validate_filename(filename: Optional[str], allowed_extensions: list[str]) -> str:
    """Validate an upload filename.

    Raises:
        ValidationError: If missing, too long, or not a video extension
    """
    if filename is None or not filename.strip():
        raise ValidationError("filename is required")
    filename = filename.strip()
    if len(filename) > MAX_FILENAME_LENGTH:
        raise ValidationError(f"filename exceeds {MAX_FILENAME_LENGTH} characters")
    if allowed_extensions:
        extension = PurePosixPath(filename).suffix.lower()
        if extension not in {ext.lower() for ext in allowed_extensions}:
            raise ValidationError(
                f"Unsupported file type '{extension or filename}'. "
                f"Allowed: {', '.join(allowed_extensions)}"
            )
    return filename


def validate_filesize(filesize: Optional[int], max_size: int) -> int:
    if filesize is None:
        raise ValidationError("filesize is required")
    if isinstance(filesize, bool) or not isinstance(filesize, int) or filesize <= 0:
        raise ValidationError("filesize must be a positive integer")
    if filesize > max_size:
        raise ValidationError(f"filesize exceeds maximum of {max_size} bytes")
    return filesize


def validate_callback_url(callback_url: Optional[str]) -> Optional[str]:
    if callback_url is None or not callback_url.strip():
        return None
    callback_url = callback_url.strip()
    parsed = urlparse(callback_url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValidationError("callbackUrl must be an absolute http(s) URL")
    return callback_url


def validate_packager(packager: Optional[str]) -> str:
    packager = (packager or DEFAULT_PACKAGER).strip() or DEFAULT_PACKAGER
    if packager not in SUPPORTED_PACKAGERS:
        raise ValidationError(
            f"Unsupported packager '{packager}'. Supported: {', '.join(sorted(SUPPORTED_PACKAGERS))}"
        )
    return packager


def normalize_storage_path(storage_path: Optional[str]) -> Optional[str]:
    """Trim slashes and empty segments from a custom storage prefix.

    Raises:
        ValidationError: If the path would escape its prefix
    """
    if storage_path is None:
        return None
    segments = [s for s in storage_path.replace("\\", "/").split("/") if s]
    if any(s in (".", "..") for s in segments):
        raise ValidationError("customPath must not contain '.' or '..' segments")
    return "/".join(segments) or None


class UploadSessionService:
    """Creates upload sessions and enforces the upload admission gate."""

    def __init__(
        self,
        records: UploadRecordRepository,
        job_queue: JobQueue,
        settings: Settings,
    ):
        self.records = records
        self.job_queue = job_queue
        self.settings = settings

    async def create_session(
        self,
        filename: Optional[str],
        filesize: Optional[int],
        callback_url: Optional[str] = None,
        storage_path: Optional[str] = None,
        packager: Optional[str] = None,
    ) -> UploadSession:
        """Create an upload record and the endpoint to upload to.

        Raises:
            ValidationError: If filename or filesize is missing or invalid
        """
        filename = validate_filename(filename, self.settings.ALLOWED_VIDEO_EXTENSIONS)
        filesize = validate_filesize(filesize, self.settings.MAX_UPLOAD_SIZE)
        callback_url = validate_callback_url(callback_url)
        storage_path = normalize_storage_path(storage_path)
        packager = validate_packager(packager)

        now = utcnow()
        record = await self.records.create(
            UploadRecord(
                id=str(uuid.uuid4()),
                filename=filename,
                filesize=filesize,
                status=UploadStatus.UPLOADING.value,
                progress=0,
                packager=packager,
                storage_path=storage_path,
                callback_url=callback_url,
                callback_status=CallbackStatus.PENDING.value,
                callback_retry_count=0,
                created_at=now,
                updated_at=now,
            )
        )

        ttl = self.settings.UPLOAD_SESSION_TTL_SECONDS
        logger.info(
            "Upload session created",
            extra={"upload_id": record.id, "upload_filename": filename, "filesize": filesize},
        )
        return UploadSession(
            upload_id=record.id,
            upload_url=f"{self.settings.TUS_PUBLIC_URL.rstrip('/')}/{record.id}",
            expires_at=now + timedelta(seconds=ttl),
            expires_in=ttl,
        )

    async def get_record(self, upload_id: str) -> UploadRecord:
        record = await self.records.get_by_id(upload_id)
        if record is None:
            raise NotFoundError(upload_id)
        return record

    async def list_records(self) -> list[UploadRecord]:
        return await self.records.list_all()

    async def delete_record(self, upload_id: str) -> None:
        if not await self.records.delete(upload_id):
            raise NotFoundError(upload_id)
        logger.info("Upload record deleted", extra={"upload_id": upload_id})

    async def open_upload(self, upload_id: str) -> UploadRecord:
        """Admit the first bytes of an upload.

        Raises:
            NotFoundError: If no session was created for this id
            InvalidStateError: If the upload already finished or failed
        """
        record = await self.get_record(upload_id)
        if record.status != UploadStatus.UPLOADING.value:
            raise InvalidStateError(upload_id, record.status, "accept bytes for")
        return record

    def resolve_upload_file(self, upload_id: str, file_path: str) -> str:
        """Resolve ``file_path`` and check it is ``UPLOAD_DIR/<upload_id>``.

        The worker deletes the source after the job, so a finish may only
        point at the file tusd stored for this upload.

        Raises:
            ValidationError: For any other path
        """
        expected = (Path(self.settings.UPLOAD_DIR) / upload_id).resolve()
        if not file_path or Path(file_path).resolve() != expected:
            raise ValidationError(
                f"Upload file is not the stored file of upload {upload_id}", upload_id
            )
        return str(expected)

    async def finish_upload(
        self,
        upload_id: str,
        file_path: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> UploadRecord:
        """Hand a completed upload to the transcoding queue.

        The status is swapped uploading -> processing before publishing, so
        a repeated finish for the same id loses the swap and enqueues
        nothing.

        Raises:
            NotFoundError: If the record is absent
            ValidationError: If the file is not tusd's file for this upload
            InvalidStateError: If the record is no longer uploading
        """
        record = await self.get_record(upload_id)
        file_path = self.resolve_upload_file(upload_id, file_path)
        if record.status != UploadStatus.UPLOADING.value:
            raise InvalidStateError(upload_id, record.status, "finish")

        swapped = await self.records.transition(
            upload_id, UploadStatus.UPLOADING, UploadStatus.PROCESSING, progress=0
        )
        if swapped is None:
            # Lost a race with a concurrent finish or a delete
            current = await self.get_record(upload_id)
            raise InvalidStateError(upload_id, current.status, "finish")

        payload = TranscodeJobPayload(
            upload_id=upload_id,
            file_path=file_path,
            filename=swapped.filename,
            packager=swapped.packager,
            callback_url=swapped.callback_url,
            storage_path=swapped.storage_path,
        )
        try:
            await self.job_queue.publish(TRANSCODE_TOPIC, payload.model_dump())
        except Exception as e:
            logger.error(
                "Failed to enqueue transcode job",
                exc_info=e,
                extra={"upload_id": upload_id},
            )
            await self.records.update(
                upload_id,
                status=UploadStatus.FAILED,
                error=f"Failed to enqueue transcode job: {e}",
            )
            raise

        logger.info(
            "Upload finished, transcode job queued",
            extra={
                "upload_id": upload_id,
                "file_path": file_path,
                "metadata_keys": sorted((metadata or {}).keys()),
            },
        )
        return swapped
