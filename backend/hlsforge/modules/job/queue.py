"""Durable job queue on top of Celery.

Delivery is at-least-once: workers acknowledge late, after the handler has
returned, and a message whose worker dies is handed to the next consumer
once the broker's visibility timeout elapses. Handlers must therefore be
safe to run twice for the same payload.
"""

import asyncio
import logging
from typing import Any, Callable

from celery import Celery

logger = logging.getLogger(__name__)


class JobQueue:
    """Publish/consume facade over a Celery app.

    Topics map one-to-one onto Celery queues and task names.
    """

    def __init__(self, celery_app: Celery):
        self.celery_app = celery_app

    async def publish(self, topic: str, payload: dict[str, Any]) -> str:
        """Enqueue a persistent message on ``topic``.

        Args:
            topic: Queue name
            payload: JSON-serializable message body

        Returns:
            Broker message id

        Raises:
            kombu.exceptions.OperationalError: If the broker is unreachable
        """
        result = await asyncio.to_thread(
            self.celery_app.send_task,
            topic,
            args=[payload],
            queue=topic,
            routing_key=topic,
        )
        logger.info("Job published", extra={"topic": topic, "message_id": result.id})
        return result.id

    def consume(
        self,
        topic: str,
        handler: Callable[[dict[str, Any]], Any],
        concurrency: int = 1,
    ):
        """Register ``handler`` as the consumer of ``topic``.

        The handler runs inside a Celery worker listening on the queue named
        ``topic``. Whatever it returns, and even if it raises, the message is
        acknowledged only after it finishes.

        Returns:
            The registered Celery task
        """
        if concurrency != 1:
            raise ValueError("Only one in-flight job per consumer is supported")

        self.celery_app.conf.task_routes = {
            **(self.celery_app.conf.task_routes or {}),
            topic: {"queue": topic, "routing_key": topic},
        }

        def run(payload: dict[str, Any]) -> Any:
            return handler(payload)

        run.__name__ = handler.__name__
        run.__doc__ = handler.__doc__
        return self.celery_app.task(
            name=topic,
            acks_late=True,
            reject_on_worker_lost=True,
            ignore_result=True,
        )(run)
