"""Job payload schemas and queue names."""

from typing import Optional

from pydantic import BaseModel, Field

# Durable queue carrying one message per finished upload
TRANSCODE_TOPIC = "video_processing"

# Queue and task name for the periodic webhook retry pass
CALLBACK_QUEUE = "callbacks"
CALLBACK_SWEEP_TASK = "callbacks.sweep_pending"


class TranscodeJobPayload(BaseModel):
    """Message published when an upload finishes.

    Carries everything the worker needs so it never has to look at tusd's
    side files.
    """

    upload_id: str = Field(..., min_length=1)
    file_path: str = Field(..., min_length=1)
    filename: str
    packager: str = "ffmpeg"
    callback_url: Optional[str] = None
    storage_path: Optional[str] = None
