"""tusd HTTP hook receiver.

tusd (started with ``-hooks-http=<api>/api/v1/hooks/tus
-hooks-enabled-events=pre-create,post-finish``) calls this endpoint around
each upload. ``pre-create`` is the admission gate: the upload is accepted
only for a known record still in ``uploading`` status, and tusd is told to
store it under the record's id. ``post-finish`` hands the finished file to
the transcoding queue.
"""

import logging
from pathlib import Path
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field

from hlsforge.container import ServiceContainer
from hlsforge.core.errors import InvalidStateError, NotFoundError, ValidationError
from hlsforge.core.security import require_hook_secret
from hlsforge.modules.upload.router import get_container

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/hooks",
    tags=["hooks"],
    dependencies=[Depends(require_hook_secret)],
)

UPLOAD_ID_METADATA_KEY = "uploadId"


class HookUpload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field("", alias="ID")
    size: Optional[int] = Field(None, alias="Size")
    metadata: dict[str, str] = Field(default_factory=dict, alias="MetaData")
    storage: dict[str, Any] = Field(default_factory=dict, alias="Storage")


class HookEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    upload: HookUpload = Field(alias="Upload")


class HookRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: str = Field(alias="Type")
    event: HookEvent = Field(alias="Event")


def _reject(status_code: int, message: str) -> dict[str, Any]:
    return {
        "RejectUpload": True,
        "HTTPResponse": {
            "StatusCode": status_code,
            "Body": message,
            "Header": {"Content-Type": "text/plain"},
        },
    }


def _resolve_upload_id(upload: HookUpload) -> Optional[str]:
    return upload.metadata.get(UPLOAD_ID_METADATA_KEY) or upload.id or None


async def _pre_create(container: ServiceContainer, upload: HookUpload) -> dict[str, Any]:
    upload_id = upload.metadata.get(UPLOAD_ID_METADATA_KEY)
    if not upload_id:
        return _reject(status.HTTP_400_BAD_REQUEST, "uploadId metadata is required")

    try:
        record = await container.sessions.open_upload(upload_id)
    except NotFoundError as e:
        return _reject(status.HTTP_404_NOT_FOUND, e.message)
    except InvalidStateError as e:
        return _reject(status.HTTP_409_CONFLICT, e.message)

    if record.filesize and upload.size and upload.size > record.filesize:
        return _reject(
            status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            f"Upload size {upload.size} exceeds declared filesize {record.filesize}",
        )

    # Store the upload under the record id so side files are findable later
    return {"ChangeFileInfo": {"ID": upload_id}}


async def _post_finish(container: ServiceContainer, upload: HookUpload) -> dict[str, Any]:
    upload_id = _resolve_upload_id(upload)
    if upload_id is None:
        logger.warning("post-finish hook without upload id")
        return {}

    file_path = upload.storage.get("Path") or str(
        Path(container.settings.UPLOAD_DIR) / (upload.id or upload_id)
    )
    try:
        await container.sessions.finish_upload(upload_id, file_path, upload.metadata)
    except (NotFoundError, InvalidStateError) as e:
        # Duplicate or stale finish; the job was already queued or never will be
        logger.info(
            "Ignoring finish for upload",
            extra={"upload_id": upload_id, "reason": e.message},
        )
    except ValidationError as e:
        logger.warning(
            "Rejected finish with unexpected file path",
            extra={"upload_id": upload_id, "file_path": file_path},
        )
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
    return {}


@router.post("/tus")
async def tus_hook(
    hook: HookRequest,
    container: ServiceContainer = Depends(get_container),
) -> dict[str, Any]:
    """Handle a tusd HTTP hook."""
    if hook.type == "pre-create":
        return await _pre_create(container, hook.event.upload)
    if hook.type == "post-finish":
        return await _post_finish(container, hook.event.upload)
    return {}
