"""Tests for the Celery-backed job queue and the transcode payload."""

from unittest.mock import MagicMock

import pytest
from celery import Celery
from hypothesis import given, settings, strategies as st
from pydantic import ValidationError

from hlsforge.modules.job.queue import JobQueue
from hlsforge.modules.job.schemas import TRANSCODE_TOPIC, TranscodeJobPayload


class TestPublish:
    @pytest.mark.asyncio
    async def test_publish_sends_persistent_task_on_topic_queue(self) -> None:
        celery_app = MagicMock()
        celery_app.send_task.return_value = MagicMock(id="abc-123")
        queue = JobQueue(celery_app)

        message_id = await queue.publish("video_processing", {"upload_id": "u1"})

        assert message_id == "abc-123"
        celery_app.send_task.assert_called_once_with(
            "video_processing",
            args=[{"upload_id": "u1"}],
            queue="video_processing",
            routing_key="video_processing",
        )

    @pytest.mark.asyncio
    async def test_publish_propagates_broker_errors(self) -> None:
        celery_app = MagicMock()
        celery_app.send_task.side_effect = ConnectionError("no broker")

        with pytest.raises(ConnectionError):
            await JobQueue(celery_app).publish("video_processing", {})


class TestConsume:
    def test_consume_registers_late_ack_task(self) -> None:
        app = Celery("queue-test")
        handled = []

        def handler(payload):
            handled.append(payload)
            return "done"

        task = JobQueue(app).consume("jobs", handler)

        assert task.name == "jobs"
        assert task.acks_late is True
        assert task.reject_on_worker_lost is True
        assert app.conf.task_routes["jobs"] == {"queue": "jobs", "routing_key": "jobs"}
        assert task({"upload_id": "u1"}) == "done"
        assert handled == [{"upload_id": "u1"}]

    def test_consume_keeps_existing_routes(self) -> None:
        app = Celery("queue-test")
        app.conf.task_routes = {"other": {"queue": "other"}}

        JobQueue(app).consume("jobs", lambda payload: None)

        assert set(app.conf.task_routes) == {"other", "jobs"}

    @pytest.mark.parametrize("concurrency", [0, 2, 8])
    def test_only_single_in_flight_job_supported(self, concurrency: int) -> None:
        with pytest.raises(ValueError):
            JobQueue(Celery("queue-test")).consume("jobs", lambda p: None, concurrency=concurrency)


class TestTranscodeJobPayload:
    """Property tests for the transcode message schema."""

    @given(
        upload_id=st.uuids().map(str),
        file_path=st.text(min_size=1, max_size=80),
        storage_path=st.one_of(st.none(), st.text(max_size=30)),
    )
    @settings(max_examples=100)
    def test_payload_survives_json_mode_dump(
        self, upload_id: str, file_path: str, storage_path
    ) -> None:
        payload = TranscodeJobPayload(
            upload_id=upload_id,
            file_path=file_path,
            filename="a.mp4",
            storage_path=storage_path,
        )

        restored = TranscodeJobPayload.model_validate(payload.model_dump(mode="json"))
        assert restored == payload
        assert restored.packager == "ffmpeg"

    @pytest.mark.parametrize(
        "message",
        [
            None,
            "not a dict",
            {},
            {"upload_id": "", "file_path": "/x", "filename": "a.mp4"},
            {"upload_id": "u1", "filename": "a.mp4"},
        ],
    )
    def test_malformed_messages_rejected(self, message) -> None:
        with pytest.raises(ValidationError):
            TranscodeJobPayload.model_validate(message)

    def test_topic_name(self) -> None:
        assert TRANSCODE_TOPIC == "video_processing"
