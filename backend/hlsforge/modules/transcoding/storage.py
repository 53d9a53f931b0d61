"""Publishing transcoded outputs to object storage."""

import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Optional

from hlsforge.core.errors import StorageError
from hlsforge.core.storage import StorageBackend, StorageResult
from hlsforge.modules.transcoding.ffmpeg import MANIFEST_NAME
from hlsforge.modules.upload.models import utcnow

logger = logging.getLogger(__name__)

METADATA_NAME = "metadata.json"
DEFAULT_CONTENT_TYPE = "application/octet-stream"

CONTENT_TYPES = {
    ".m3u8": "application/vnd.apple.mpegurl",
    ".ts": "video/MP2T",
    ".m4s": "video/iso.segment",
    ".mp4": "video/mp4",
    ".mpd": "application/dash+xml",
    ".vtt": "text/vtt",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".json": "application/json",
}

ProgressCallback = Callable[[int, int], Awaitable[None]]


def content_type_for(path: str) -> str:
    return CONTENT_TYPES.get(Path(path).suffix.lower(), DEFAULT_CONTENT_TYPE)


def build_key_prefix(upload_id: str, storage_path: Optional[str] = None) -> str:
    """Object key prefix for an upload: ``<storage_path>/<id>`` or ``<id>``."""
    if storage_path:
        trimmed = storage_path.strip("/")
        if trimmed:
            return f"{trimmed}/{upload_id}"
    return upload_id


def write_metadata_file(
    output_dir: str,
    upload_id: str,
    filename: str,
    packager: str,
    has_thumbnail: bool,
) -> str:
    """Write the ``metadata.json`` published alongside the stream."""
    path = Path(output_dir) / METADATA_NAME
    path.write_text(
        json.dumps(
            {
                "id": upload_id,
                "name": filename,
                "packager": packager,
                "createdAt": utcnow().isoformat() + "Z",
                "source": MANIFEST_NAME,
                "hasThumbnail": has_thumbnail,
            },
            indent=2,
        )
    )
    return str(path)


def collect_output_files(output_dir: str) -> list[Path]:
    """All files under ``output_dir``; playlists last.

    A player that sees the manifest must be able to fetch every segment it
    lists, so playlists are only published after the media.
    """
    root = Path(output_dir)
    files = [p for p in root.rglob("*") if p.is_file()]
    return sorted(files, key=lambda p: (p.suffix.lower() == ".m3u8", p.as_posix()))


class OutputUploader:
    """Uploads a transcode output directory under one key prefix."""

    def __init__(self, backend: StorageBackend):
        self.backend = backend

    def manifest_url(self, key_prefix: str) -> str:
        return self.backend.get_url(f"{key_prefix}/{MANIFEST_NAME}")

    async def upload_directory(
        self,
        output_dir: str,
        key_prefix: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> list[StorageResult]:
        """Upload every file in ``output_dir``, keeping subdirectories.

        Args:
            output_dir: Local transcode output directory
            key_prefix: Object key prefix (see ``build_key_prefix``)
            on_progress: Awaited with (files done, files total) after each file

        Returns:
            One result per uploaded file

        Raises:
            StorageError: If the directory is empty or any object fails
        """
        root = Path(output_dir)
        files = collect_output_files(output_dir)
        if not files:
            raise StorageError(f"No output files found in {output_dir}")

        results = []
        for index, path in enumerate(files, start=1):
            key = f"{key_prefix}/{path.relative_to(root).as_posix()}"
            result = await asyncio.to_thread(
                self.backend.put_file, str(path), key, content_type_for(path.name)
            )
            if not result.success:
                raise StorageError(f"Failed to upload {key}: {result.error_message}")
            results.append(result)
            if on_progress is not None:
                await on_progress(index, len(files))

        logger.info(
            "Outputs uploaded",
            extra={"key_prefix": key_prefix, "file_count": len(results)},
        )
        return results


@dataclass
class PublishedVideo:
    """A stream found in storage, with whatever its metadata.json says."""
    key_prefix: str
    url: str
    id: Optional[str] = None
    name: Optional[str] = None
    packager: Optional[str] = None
    created_at: Optional[str] = None
    has_thumbnail: bool = False


def _read_metadata(backend: StorageBackend, key_prefix: str) -> dict:
    key = f"{key_prefix}/{METADATA_NAME}"
    try:
        raw = backend.get(key)
    except StorageError as e:
        logger.warning("Could not read stream metadata", extra={"key": key, "error": e.message})
        return {}
    if raw is None:
        return {}
    try:
        metadata = json.loads(raw)
    except ValueError:
        logger.warning("Ignoring invalid stream metadata", extra={"key": key})
        return {}
    return metadata if isinstance(metadata, dict) else {}


def list_published(backend: StorageBackend) -> list[PublishedVideo]:
    """Every published stream in storage, newest first.

    A stream is any key prefix holding an ``index.m3u8``. Streams without
    readable metadata are still listed, with only their prefix and URL.

    Raises:
        StorageError: If the storage listing fails
    """
    suffix = f"/{MANIFEST_NAME}"
    videos = []
    for key in backend.list_keys():
        if not key.endswith(suffix):
            continue
        key_prefix = key[: -len(suffix)]
        metadata = _read_metadata(backend, key_prefix)
        videos.append(
            PublishedVideo(
                key_prefix=key_prefix,
                url=backend.get_url(key),
                id=metadata.get("id"),
                name=metadata.get("name"),
                packager=metadata.get("packager"),
                created_at=metadata.get("createdAt"),
                has_thumbnail=bool(metadata.get("hasThumbnail", False)),
            )
        )
    videos.sort(key=lambda v: (v.created_at or "", v.key_prefix), reverse=True)
    return videos
