"""Upload lifecycle module."""

from hlsforge.modules.upload.models import CallbackStatus, UploadRecord, UploadStatus

__all__ = [
    "CallbackStatus",
    "UploadRecord",
    "UploadStatus",
]
