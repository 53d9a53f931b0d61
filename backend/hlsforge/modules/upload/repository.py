"""Repository for upload record persistence.

Every mutation is a single conditional UPDATE touching one field group:
lifecycle fields (status, progress, stream_url, error) are written by the
session manager and the worker, callback fields by the delivery subsystem.
Neither side reads-modifies-writes a whole row, so a sweep running while a
job is in flight cannot overwrite the worker's progress or vice versa.
"""

import logging
from datetime import datetime
from typing import Any, Optional, Union

from sqlalchemy import case, delete, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hlsforge.core.errors import InvalidStateError, RecordExistsError
from hlsforge.modules.upload.models import (
    ALLOWED_PREDECESSORS,
    CallbackStatus,
    UploadRecord,
    UploadStatus,
    can_transition,
    utcnow,
)

logger = logging.getLogger(__name__)

LIFECYCLE_FIELDS = frozenset({"status", "progress", "stream_url", "error", "completed_at"})
DEFAULT_CALLBACK_MAX_ATTEMPTS = 4


def _normalize(fields: dict[str, Any]) -> dict[str, Any]:
    unknown = set(fields) - LIFECYCLE_FIELDS
    if unknown:
        raise ValueError(f"Cannot update fields: {', '.join(sorted(unknown))}")
    values = dict(fields)
    if "status" in values:
        values["status"] = UploadStatus(values["status"])
        if values["status"] is UploadStatus.COMPLETED:
            values.setdefault("completed_at", utcnow())
        values["status"] = values["status"].value
    if "progress" in values:
        values["progress"] = max(0, min(100, int(values["progress"])))
    values["updated_at"] = utcnow()
    return values


class UploadRecordRepository:
    """Async repository for UploadRecord rows.

    Takes a session factory rather than a session: each operation is its own
    short transaction, which is what the worker and the sweep need.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def create(self, record: UploadRecord) -> UploadRecord:
        """Insert a new record.

        Raises:
            RecordExistsError: If a record with the same id exists
        """
        async with self.session_factory() as session:
            session.add(record)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise RecordExistsError(record.id) from e
        return record

    async def get_by_id(self, upload_id: str) -> Optional[UploadRecord]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(UploadRecord).where(UploadRecord.id == upload_id)
            )
            return result.scalar_one_or_none()

    async def update(self, upload_id: str, **fields: Any) -> Optional[UploadRecord]:
        """Merge lifecycle fields into a record.

        A status change is only applied when the current status is an allowed
        predecessor of the new one; completed_at is stamped on completion.

        Returns:
            The updated record, or None if no record has this id

        Raises:
            InvalidStateError: If the status change is not a legal transition
        """
        values = _normalize(fields)
        stmt = update(UploadRecord).where(UploadRecord.id == upload_id)

        new_status: Optional[UploadStatus] = None
        if "status" in values:
            new_status = UploadStatus(values["status"])
            predecessors = [s.value for s in ALLOWED_PREDECESSORS[new_status]]
            stmt = stmt.where(UploadRecord.status.in_(predecessors))

        async with self.session_factory() as session:
            result = await session.execute(
                stmt.values(**values).execution_options(synchronize_session=False)
            )
            await session.commit()

        if result.rowcount == 0:
            current = await self.get_by_id(upload_id)
            if current is None:
                return None
            raise InvalidStateError(
                upload_id, current.status, f"move to '{new_status.value}'"
            )
        return await self.get_by_id(upload_id)

    async def transition(
        self,
        upload_id: str,
        expected: Union[UploadStatus, str],
        new: Union[UploadStatus, str],
        **fields: Any,
    ) -> Optional[UploadRecord]:
        """Compare-and-swap the status from ``expected`` to ``new``.

        Returns:
            The updated record, or None if the record is absent or its status
            was not ``expected`` at the time of the write
        """
        expected = UploadStatus(expected)
        new = UploadStatus(new)
        if not can_transition(expected, new):
            raise InvalidStateError(upload_id, expected.value, f"move to '{new.value}'")

        values = _normalize({**fields, "status": new})
        async with self.session_factory() as session:
            result = await session.execute(
                update(UploadRecord)
                .where(UploadRecord.id == upload_id, UploadRecord.status == expected.value)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            await session.commit()

        if result.rowcount == 0:
            return None
        return await self.get_by_id(upload_id)

    async def list_all(self) -> list[UploadRecord]:
        """All records, newest first."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(UploadRecord).order_by(UploadRecord.created_at.desc())
            )
            return list(result.scalars().all())

    async def delete(self, upload_id: str) -> bool:
        async with self.session_factory() as session:
            result = await session.execute(
                delete(UploadRecord).where(UploadRecord.id == upload_id)
            )
            await session.commit()
        return result.rowcount > 0

    async def list_pending_callbacks(
        self,
        max_attempts: int = DEFAULT_CALLBACK_MAX_ATTEMPTS,
        attempted_before: Optional[datetime] = None,
    ) -> list[UploadRecord]:
        """Completed records whose webhook still awaits delivery, oldest first.

        With ``attempted_before``, records whose last attempt is at or after
        that time are left out.
        """
        stmt = select(UploadRecord).where(
            UploadRecord.callback_url.is_not(None),
            UploadRecord.callback_url != "",
            UploadRecord.callback_status == CallbackStatus.PENDING.value,
            UploadRecord.callback_retry_count < max_attempts,
            UploadRecord.status == UploadStatus.COMPLETED.value,
        )
        if attempted_before is not None:
            stmt = stmt.where(
                or_(
                    UploadRecord.callback_last_attempt.is_(None),
                    UploadRecord.callback_last_attempt < attempted_before,
                )
            )
        async with self.session_factory() as session:
            result = await session.execute(stmt.order_by(UploadRecord.created_at.asc()))
            return list(result.scalars().all())

    async def touch_callback_attempt(self, upload_id: str) -> bool:
        """Stamp callback_last_attempt ahead of a delivery attempt.

        No-op unless delivery is pending.
        """
        async with self.session_factory() as session:
            result = await session.execute(
                update(UploadRecord)
                .where(
                    UploadRecord.id == upload_id,
                    UploadRecord.callback_status == CallbackStatus.PENDING.value,
                )
                .values(callback_last_attempt=utcnow())
                .execution_options(synchronize_session=False)
            )
            await session.commit()
        return result.rowcount > 0

    async def mark_callback_delivered(self, upload_id: str) -> bool:
        """Record a successful delivery. No-op unless delivery is pending."""
        async with self.session_factory() as session:
            result = await session.execute(
                update(UploadRecord)
                .where(
                    UploadRecord.id == upload_id,
                    UploadRecord.callback_status == CallbackStatus.PENDING.value,
                )
                .values(
                    callback_status=CallbackStatus.COMPLETED.value,
                    callback_last_attempt=utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()
        return result.rowcount > 0

    async def record_callback_failure(
        self,
        upload_id: str,
        max_attempts: int = DEFAULT_CALLBACK_MAX_ATTEMPTS,
    ) -> Optional[UploadRecord]:
        """Count one failed delivery attempt.

        The counter is incremented in SQL and callback_status flips to failed
        in the same statement once the bound is reached, so concurrent
        attempts can never push the count past ``max_attempts``.

        Returns:
            The updated record, or None if delivery was no longer pending
        """
        next_count = UploadRecord.callback_retry_count + 1
        async with self.session_factory() as session:
            result = await session.execute(
                update(UploadRecord)
                .where(
                    UploadRecord.id == upload_id,
                    UploadRecord.callback_status == CallbackStatus.PENDING.value,
                    UploadRecord.callback_retry_count < max_attempts,
                )
                .values(
                    callback_retry_count=next_count,
                    callback_last_attempt=utcnow(),
                    callback_status=case(
                        (next_count >= max_attempts, CallbackStatus.FAILED.value),
                        else_=CallbackStatus.PENDING.value,
                    ),
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()

        if result.rowcount == 0:
            return None
        record = await self.get_by_id(upload_id)
        if record is not None and record.callback_status == CallbackStatus.FAILED.value:
            logger.warning(
                "Callback delivery abandoned",
                extra={"upload_id": upload_id, "attempts": record.callback_retry_count},
            )
        return record
