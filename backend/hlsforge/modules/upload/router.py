"""Upload session and status API router."""

import asyncio

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from hlsforge.container import ServiceContainer
from hlsforge.core.errors import NotFoundError, RecordExistsError, StorageError, ValidationError
from hlsforge.core.security import require_api_key
from hlsforge.modules.transcoding.storage import list_published
from hlsforge.modules.upload.schemas import (
    CallbackStatusResponse,
    CreateSessionRequest,
    PublishedVideoListResponse,
    PublishedVideoResponse,
    UploadListResponse,
    UploadRecordResponse,
    UploadSession,
)

router = APIRouter(tags=["videos"], dependencies=[Depends(require_api_key)])


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


@router.post(
    "/video/create",
    response_model=UploadSession,
    status_code=status.HTTP_201_CREATED,
)
async def create_upload_session(
    body: CreateSessionRequest,
    container: ServiceContainer = Depends(get_container),
):
    """Create an upload session.

    Returns the id and the tus endpoint to upload the file to. The client
    must send the id back as ``uploadId`` in the tus Upload-Metadata.
    """
    try:
        return await container.sessions.create_session(
            filename=body.filename,
            filesize=body.filesize,
            callback_url=body.callback_url,
            storage_path=body.storage_path,
            packager=body.packager,
        )
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
    except RecordExistsError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message)


@router.get("/video/{upload_id}/status", response_model=UploadRecordResponse)
async def get_upload_status(
    upload_id: str,
    container: ServiceContainer = Depends(get_container),
):
    """Lifecycle status, progress and stream URL of an upload."""
    try:
        return await container.sessions.get_record(upload_id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)


@router.get("/video/{upload_id}/callback-status", response_model=CallbackStatusResponse)
async def get_callback_status(
    upload_id: str,
    container: ServiceContainer = Depends(get_container),
):
    """Webhook delivery state of an upload."""
    try:
        return await container.sessions.get_record(upload_id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)


@router.get("/videos", response_model=UploadListResponse)
async def list_uploads(container: ServiceContainer = Depends(get_container)):
    """All upload records, newest first."""
    records = await container.sessions.list_records()
    return UploadListResponse(
        items=[UploadRecordResponse.model_validate(r) for r in records],
        total=len(records),
    )


@router.get("/videos/published", response_model=PublishedVideoListResponse)
async def list_published_videos(container: ServiceContainer = Depends(get_container)):
    """Streams present in storage, read from each stream's metadata.json."""
    try:
        videos = await asyncio.to_thread(list_published, container.storage)
    except StorageError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.message)
    return PublishedVideoListResponse(
        items=[PublishedVideoResponse.model_validate(v) for v in videos],
        total=len(videos),
    )

@router.delete("/video/{upload_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_upload(
    upload_id: str,
    container: ServiceContainer = Depends(get_container),
):
    """Delete an upload record. Stored outputs are left in place."""
    try:
        await container.sessions.delete_record(upload_id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
