"""Webhook delivery.

One function serves both call sites: the worker's immediate attempt right
after a job finishes and the periodic sweep. A delivery counts as successful
only on HTTP 200; anything else, including timeouts and connection errors,
is one failed attempt.
"""

import logging
from typing import Optional

import httpx

from hlsforge.core.errors import DeliveryError
from hlsforge.modules.callback.schemas import JobOutcome, build_callback_payload, outcome_from_record
from hlsforge.modules.upload.models import CallbackStatus, UploadRecord
from hlsforge.modules.upload.repository import DEFAULT_CALLBACK_MAX_ATTEMPTS, UploadRecordRepository

logger = logging.getLogger(__name__)

DEFAULT_CALLBACK_TIMEOUT = 10.0


class CallbackDelivery:
    """Posts job outcomes to callback URLs and records the result."""

    def __init__(
        self,
        records: UploadRecordRepository,
        timeout: float = DEFAULT_CALLBACK_TIMEOUT,
        max_attempts: int = DEFAULT_CALLBACK_MAX_ATTEMPTS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        user_agent: str = "hlsforge-webhook",
    ):
        """Initialize delivery.

        Args:
            records: Record store holding the callback bookkeeping
            timeout: Per-attempt request timeout in seconds
            max_attempts: Failed attempts after which delivery is abandoned
            transport: Optional httpx transport (tests pass a MockTransport)
            user_agent: User-Agent header sent to receivers
        """
        self.records = records
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.transport = transport
        self.user_agent = user_agent

    def is_deliverable(self, record: UploadRecord) -> bool:
        return (
            bool(record.callback_url)
            and record.callback_status == CallbackStatus.PENDING.value
            and record.callback_retry_count < self.max_attempts
        )

    async def deliver(self, record: UploadRecord, outcome: Optional[JobOutcome] = None) -> bool:
        """Make one delivery attempt for ``record``.

        Args:
            record: Terminal upload record with a callback URL
            outcome: Job outcome; derived from the record when omitted

        Returns:
            True if the receiver answered 200
        """
        if not self.is_deliverable(record):
            return False

        outcome = outcome or outcome_from_record(record)
        if outcome is None:
            logger.warning(
                "Callback skipped for non-terminal upload",
                extra={"upload_id": record.id, "status": record.status},
            )
            return False

        payload = build_callback_payload(record, outcome)
        try:
            await self._post(record.callback_url, payload, record.id)
        except DeliveryError as e:
            updated = await self.records.record_callback_failure(record.id, self.max_attempts)
            logger.warning(
                "Callback delivery failed",
                extra={
                    "upload_id": record.id,
                    "callback_url": record.callback_url,
                    "error": e.message,
                    "response_status": e.response_status,
                    "attempts": updated.callback_retry_count if updated else None,
                },
            )
            return False

        await self.records.mark_callback_delivered(record.id)
        logger.info(
            "Callback delivered",
            extra={"upload_id": record.id, "callback_url": record.callback_url},
        )
        return True

    async def _post(self, url: str, payload: dict, upload_id: str) -> None:
        """POST ``payload`` to ``url``.

        Raises:
            DeliveryError: On timeout, transport error, or a non-200 status
        """
        headers = {
            "Content-Type": "application/json",
            "User-Agent": self.user_agent,
            "X-Video-Id": upload_id,
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(url, json=payload, headers=headers)
        except httpx.TimeoutException as e:
            raise DeliveryError(f"Request timed out after {self.timeout}s", upload_id) from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise DeliveryError(f"Request error: {e}", upload_id) from e

        if response.status_code != 200:
            raise DeliveryError(
                f"HTTP {response.status_code}: {response.text[:500]}",
                upload_id,
                status_code=response.status_code,
            )
