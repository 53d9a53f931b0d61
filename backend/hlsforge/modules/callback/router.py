"""Sample webhook receiver.

Handy as a ``callbackUrl`` during development: it logs what it receives and
answers 200, which the delivery subsystem counts as delivered.
"""

import logging

from fastapi import APIRouter

from hlsforge.modules.callback.schemas import CallbackPayload

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhook"])


@router.post("/callback")
async def receive_callback(payload: CallbackPayload) -> dict[str, str]:
    logger.info(
        "Webhook callback received",
        extra={
            "video_id": payload.video_id,
            "status": payload.status.value,
            "stream_url": payload.stream_url,
            "error": payload.error,
        },
    )
    return {"status": "success", "message": "Webhook callback received"}
