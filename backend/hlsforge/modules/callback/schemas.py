"""Job outcomes and webhook payloads."""

from dataclasses import dataclass
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from hlsforge.modules.upload.models import UploadRecord, UploadStatus


@dataclass(frozen=True)
class JobCompleted:
    """Transcode succeeded; the stream is playable at ``stream_url``."""
    stream_url: str

    status = UploadStatus.COMPLETED


@dataclass(frozen=True)
class JobFailed:
    """Transcode or upload failed terminally."""
    error: str

    status = UploadStatus.FAILED


JobOutcome = Union[JobCompleted, JobFailed]


def outcome_from_record(record: UploadRecord) -> Optional[JobOutcome]:
    """Derive the outcome of a terminal record; None while still in flight."""
    if record.status == UploadStatus.COMPLETED.value:
        return JobCompleted(stream_url=record.stream_url or "")
    if record.status == UploadStatus.FAILED.value:
        return JobFailed(error=record.error or "Unknown error")
    return None


def build_callback_payload(record: UploadRecord, outcome: JobOutcome) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "videoId": record.id,
        "filename": record.filename,
        "status": outcome.status.value,
    }
    if isinstance(outcome, JobCompleted):
        payload["streamUrl"] = outcome.stream_url
    else:
        payload["error"] = outcome.error
    return payload


class CallbackPayload(BaseModel):
    """Webhook body as seen by a receiver."""

    model_config = ConfigDict(populate_by_name=True)

    video_id: str = Field(..., alias="videoId")
    filename: str
    status: UploadStatus
    stream_url: Optional[str] = Field(None, alias="streamUrl")
    error: Optional[str] = None
