"""Error taxonomy shared by the lifecycle components.

Admission and validation errors are surfaced to API callers; job errors are
recorded on the upload record; delivery errors only drive retry bookkeeping.
"""

from typing import Optional


class HlsForgeError(Exception):
    """Base exception for lifecycle errors."""

    status_code = 500

    def __init__(self, message: str, upload_id: Optional[str] = None):
        self.message = message
        self.upload_id = upload_id
        super().__init__(message)


class ValidationError(HlsForgeError):
    """Request input is missing or malformed."""

    status_code = 400


class NotFoundError(HlsForgeError):
    """No upload record exists for the given id."""

    status_code = 404

    def __init__(self, upload_id: str):
        super().__init__(f"Upload {upload_id} not found", upload_id=upload_id)


class RecordExistsError(HlsForgeError):
    """An upload record with the same id already exists."""

    status_code = 409

    def __init__(self, upload_id: str):
        super().__init__(f"Upload {upload_id} already exists", upload_id=upload_id)


class InvalidStateError(HlsForgeError):
    """The record's status does not permit the requested operation."""

    status_code = 409

    def __init__(self, upload_id: str, status: Optional[str], operation: str):
        self.status = status
        self.operation = operation
        super().__init__(
            f"Cannot {operation} upload {upload_id} in status '{status}'",
            upload_id=upload_id,
        )


class TranscodeError(HlsForgeError):
    """The transcoder exited non-zero, timed out or produced no manifest."""


class StorageError(HlsForgeError):
    """Uploading outputs to object storage failed."""


class DeliveryError(HlsForgeError):
    """A webhook attempt did not get a 200 response."""

    def __init__(
        self,
        message: str,
        upload_id: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message, upload_id=upload_id)
        self.response_status = status_code
