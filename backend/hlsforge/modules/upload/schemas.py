"""Pydantic schemas for upload sessions and status queries.

JSON bodies use camelCase (``uploadId``, ``streamUrl``); Python code uses the
snake_case field names.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from hlsforge.modules.upload.models import DEFAULT_PACKAGER, CallbackStatus, UploadStatus


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class CreateSessionRequest(CamelModel):
    """Request schema for creating an upload session.

    filename and filesize are optional here so that a missing value is
    reported by the session manager as a validation error with a clear
    message rather than a generic 422.
    """

    filename: Optional[str] = None
    filesize: Optional[int] = None
    callback_url: Optional[str] = None
    storage_path: Optional[str] = Field(
        None, validation_alias="customPath", serialization_alias="customPath"
    )
    packager: str = DEFAULT_PACKAGER


class UploadSession(CamelModel):
    """Result of creating an upload session."""

    upload_id: str
    upload_url: str
    expires_at: datetime
    expires_in: int


class UploadRecordResponse(CamelModel):
    """Public view of an upload record."""

    id: str
    filename: str
    filesize: Optional[int] = None
    status: UploadStatus
    progress: int
    stream_url: Optional[str] = None
    error: Optional[str] = None
    packager: str
    created_at: datetime
    completed_at: Optional[datetime] = None


class CallbackStatusResponse(CamelModel):
    """Webhook delivery state of an upload."""

    id: str
    callback_url: Optional[str] = None
    callback_status: CallbackStatus
    callback_retry_count: int
    callback_last_attempt: Optional[datetime] = None


class UploadListResponse(CamelModel):
    items: list[UploadRecordResponse]
    total: int


class PublishedVideoResponse(CamelModel):
    """A stream published to storage."""

    key_prefix: str
    url: str
    id: Optional[str] = None
    name: Optional[str] = None
    packager: Optional[str] = None
    created_at: Optional[str] = None
    has_thumbnail: bool = False


class PublishedVideoListResponse(CamelModel):
    items: list[PublishedVideoResponse]
    total: int
