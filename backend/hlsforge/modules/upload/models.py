"""Upload record model.

One row per upload attempt; the single source of truth for an upload's
lifecycle status and its webhook delivery bookkeeping.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import BigInteger, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from hlsforge.core.database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp; SQLite drops tzinfo so all stored values are naive."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class UploadStatus(str, Enum):
    """Lifecycle status of an upload."""

    UPLOADING = "uploading"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (UploadStatus.COMPLETED, UploadStatus.FAILED)


class CallbackStatus(str, Enum):
    """Webhook delivery status."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


# Status each transition may start from. Terminal states have no successors.
ALLOWED_PREDECESSORS: dict[UploadStatus, frozenset[UploadStatus]] = {
    UploadStatus.UPLOADING: frozenset({UploadStatus.UPLOADING}),
    UploadStatus.PROCESSING: frozenset({UploadStatus.UPLOADING, UploadStatus.PROCESSING}),
    UploadStatus.COMPLETED: frozenset({UploadStatus.PROCESSING}),
    UploadStatus.FAILED: frozenset({UploadStatus.UPLOADING, UploadStatus.PROCESSING}),
}


def can_transition(current: UploadStatus, new: UploadStatus) -> bool:
    """Whether a record in ``current`` status may move to ``new``."""
    return UploadStatus(current) in ALLOWED_PREDECESSORS[UploadStatus(new)]


DEFAULT_PACKAGER = "ffmpeg"


class UploadRecord(Base):
    """Lifecycle record for a single upload."""

    __tablename__ = "upload_records"
    __table_args__ = (
        Index("ix_upload_records_callback_sweep", "callback_status", "status", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    filename: Mapped[str] = mapped_column(String(512), nullable=False)
    filesize: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=UploadStatus.UPLOADING.value, index=True
    )
    progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    stream_url: Mapped[Optional[str]] = mapped_column(String(2048), nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    packager: Mapped[str] = mapped_column(String(50), nullable=False, default=DEFAULT_PACKAGER)
    storage_path: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)

    # Webhook delivery
    callback_url: Mapped[Optional[str]] = mapped_column(String(2048), nullable=True)
    callback_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=CallbackStatus.PENDING.value
    )
    callback_retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    callback_last_attempt: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    @property
    def upload_status(self) -> UploadStatus:
        return UploadStatus(self.status)

    @property
    def is_terminal(self) -> bool:
        return self.upload_status.is_terminal

    def __repr__(self) -> str:
        return f"<UploadRecord {self.id} - {self.status} - {self.progress}%>"
