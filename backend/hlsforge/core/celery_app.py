"""Celery application configuration.

Two workers are expected:

    celery -A hlsforge.core.celery_app worker -Q video_processing -c 1
    celery -A hlsforge.core.celery_app worker -Q callbacks -c 1

plus ``celery beat`` for the callback sweep schedule. Keeping the sweep on its
own queue means a long transcode never delays webhook retries.
"""

from celery import Celery, signals
from kombu import Queue

from hlsforge.core.config import settings
from hlsforge.core.logging import setup_logging
from hlsforge.modules.job.schemas import CALLBACK_QUEUE, CALLBACK_SWEEP_TASK, TRANSCODE_TOPIC

celery_app = Celery("hlsforge", broker=settings.broker_url)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_ignore_result=True,
    task_default_delivery_mode="persistent",
    task_queues=(
        Queue(TRANSCODE_TOPIC, routing_key=TRANSCODE_TOPIC, durable=True),
        Queue(CALLBACK_QUEUE, routing_key=CALLBACK_QUEUE, durable=True),
    ),
    task_default_queue=TRANSCODE_TOPIC,
    task_routes={
        CALLBACK_SWEEP_TASK: {"queue": CALLBACK_QUEUE, "routing_key": CALLBACK_QUEUE},
    },
    # One job in flight per worker, acknowledged only after it finishes
    worker_prefetch_multiplier=1,
    worker_concurrency=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    broker_transport_options={
        "visibility_timeout": settings.QUEUE_VISIBILITY_TIMEOUT_SECONDS,
    },
    broker_connection_retry_on_startup=True,
)

celery_app.conf.beat_schedule = {
    "sweep-pending-callbacks": {
        "task": CALLBACK_SWEEP_TASK,
        "schedule": float(settings.CALLBACK_SWEEP_INTERVAL_SECONDS),
        # A sweep still queued when the next one is due is dropped
        "options": {
            "queue": CALLBACK_QUEUE,
            "expires": settings.CALLBACK_SWEEP_INTERVAL_SECONDS,
        },
    },
}

celery_app.autodiscover_tasks(["hlsforge.modules.transcoding", "hlsforge.modules.callback"])


@signals.setup_logging.connect
def configure_worker_logging(**kwargs) -> None:
    """Replace Celery's logging setup with the structured one."""
    setup_logging(level=settings.LOG_LEVEL, json_format=settings.LOG_JSON)
