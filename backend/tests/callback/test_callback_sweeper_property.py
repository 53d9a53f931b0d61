"""Tests for the periodic webhook retry sweep."""

import asyncio
from dataclasses import asdict
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from redis.exceptions import LockError

from hlsforge.modules.callback.sweeper import SWEEP_LOCK_NAME, CallbackSweeper, SweepResult
from hlsforge.modules.callback.tasks import sweep_pending_callbacks
from hlsforge.modules.upload.models import CallbackStatus, UploadStatus, utcnow

HOOK_URL = "https://hooks.example.com/done"


async def completed_record(container, callback_url=HOOK_URL):
    session = await container.sessions.create_session("clip.mp4", 100, callback_url=callback_url)
    await container.records.update(session.upload_id, status=UploadStatus.PROCESSING)
    return await container.records.update(
        session.upload_id,
        status=UploadStatus.COMPLETED,
        progress=100,
        stream_url="https://cdn.example.com/x/index.m3u8",
    )


def stub_delivery(deliver) -> MagicMock:
    delivery = MagicMock()
    delivery.max_attempts = 4
    delivery.deliver = AsyncMock(side_effect=deliver)
    return delivery


def stub_records(candidates=()) -> MagicMock:
    records = MagicMock()
    records.list_pending_callbacks = AsyncMock(return_value=list(candidates))
    return records


class TestCallbackSweep:
    @pytest.mark.asyncio
    async def test_delivers_every_pending_callback(self, container, webhook) -> None:
        first = await completed_record(container)
        second = await completed_record(container)
        await completed_record(container, callback_url=None)

        result = await container.sweeper.sweep()

        assert (result.attempted, result.delivered, result.failed) == (2, 2, 0)
        assert {p["videoId"] for p in webhook.payloads} == {first.id, second.id}
        assert (await container.sweeper.sweep()).attempted == 0

    @pytest.mark.asyncio
    async def test_repeated_failures_stop_after_max_attempts(self, container, webhook) -> None:
        webhook.default_status = 500
        record = await completed_record(container)

        for _ in range(6):
            await container.sweeper.sweep()

        assert len(webhook.requests) == 4
        final = await container.records.get_by_id(record.id)
        assert final.callback_status == CallbackStatus.FAILED.value
        assert final.callback_retry_count == 4

    @pytest.mark.asyncio
    async def test_recovers_once_receiver_comes_back(self, container, webhook) -> None:
        webhook.responses = [500, 500]
        record = await completed_record(container)

        results = [await container.sweeper.sweep() for _ in range(3)]

        assert [r.delivered for r in results] == [0, 0, 1]
        final = await container.records.get_by_id(record.id)
        assert final.callback_status == CallbackStatus.COMPLETED.value
        assert final.callback_retry_count == 2

    @pytest.mark.asyncio
    async def test_one_bad_record_does_not_stop_the_pass(self) -> None:
        candidates = [MagicMock(id="a"), MagicMock(id="b"), MagicMock(id="c")]
        delivery = stub_delivery([RuntimeError("database locked"), True, False])

        result = await CallbackSweeper(stub_records(candidates), delivery).sweep()

        assert (result.attempted, result.delivered, result.failed, result.errors) == (3, 1, 1, 1)
        assert [c.args[0].id for c in delivery.deliver.call_args_list] == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_deliveries_run_one_at_a_time(self) -> None:
        in_flight = 0
        peak = 0

        async def deliver(record):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0)
            in_flight -= 1
            return True

        candidates = [MagicMock(id=str(i)) for i in range(5)]
        result = await CallbackSweeper(stub_records(candidates), stub_delivery(deliver)).sweep()

        assert result.delivered == 5
        assert peak == 1

    @pytest.mark.asyncio
    async def test_overlapping_sweep_skipped(self) -> None:
        release = asyncio.Event()

        async def deliver(record):
            await release.wait()
            return True

        sweeper = CallbackSweeper(stub_records([MagicMock(id="a")]), stub_delivery(deliver))
        running = asyncio.create_task(sweeper.sweep())
        await asyncio.sleep(0)

        overlapping = await sweeper.sweep()
        release.set()
        finished = await running

        assert overlapping.skipped is True
        assert finished.delivered == 1
        assert (await sweeper.sweep()).skipped is False


class TestRetryBackoff:
    @pytest.mark.asyncio
    async def test_backoff_holds_back_recent_attempts(self) -> None:
        records = stub_records()
        before = utcnow()

        await CallbackSweeper(records, stub_delivery([]), retry_backoff_seconds=30).sweep()

        call = records.list_pending_callbacks.await_args
        assert call.args == (4,)
        cutoff = call.kwargs["attempted_before"]
        assert before - timedelta(seconds=30) <= cutoff <= utcnow() - timedelta(seconds=30)

    @pytest.mark.asyncio
    async def test_no_backoff_sweeps_everything_pending(self) -> None:
        records = stub_records()

        await CallbackSweeper(records, stub_delivery([])).sweep()

        records.list_pending_callbacks.assert_awaited_once_with(4)

    @pytest.mark.asyncio
    async def test_recently_failed_record_waits_for_next_pass(self, container, webhook) -> None:
        webhook.responses = [500]
        await completed_record(container)
        sweeper = CallbackSweeper(container.records, container.delivery, retry_backoff_seconds=60)

        first = await sweeper.sweep()
        second = await sweeper.sweep()

        assert (first.attempted, first.failed) == (1, 1)
        assert second.attempted == 0
        assert len(webhook.requests) == 1


class TestSweepLock:
    @staticmethod
    def redis_with_lock(acquired: bool, release_error=None):
        lock = MagicMock()
        lock.acquire = AsyncMock(return_value=acquired)
        lock.release = AsyncMock(side_effect=release_error)
        client = MagicMock()
        client.lock.return_value = lock
        return client, lock

    @pytest.mark.asyncio
    async def test_lock_held_elsewhere_skips_sweep(self) -> None:
        client, lock = self.redis_with_lock(acquired=False)
        records = stub_records()

        result = await CallbackSweeper(records, stub_delivery([]), redis_client=client).sweep()

        assert result.skipped is True
        records.list_pending_callbacks.assert_not_awaited()
        lock.release.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_lock_acquired_and_released(self) -> None:
        client, lock = self.redis_with_lock(acquired=True)
        records = stub_records()

        sweeper = CallbackSweeper(records, stub_delivery([]), redis_client=client, lock_timeout=120)
        result = await sweeper.sweep()

        assert result.skipped is False
        client.lock.assert_called_once_with(SWEEP_LOCK_NAME, timeout=120, blocking=False)
        records.list_pending_callbacks.assert_awaited_once_with(4)
        lock.release.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_expired_lock_does_not_fail_sweep(self) -> None:
        client, _ = self.redis_with_lock(acquired=True, release_error=LockError("expired"))

        result = await CallbackSweeper(stub_records(), stub_delivery([]), redis_client=client).sweep()

        assert result.skipped is False
        assert result.attempted == 0


class TestSweepTask:
    @staticmethod
    def container_factory(result: SweepResult) -> MagicMock:
        container = MagicMock()
        container.sweeper.sweep = AsyncMock(return_value=result)
        factory = MagicMock()
        factory.return_value.__aenter__ = AsyncMock(return_value=container)
        factory.return_value.__aexit__ = AsyncMock(return_value=None)
        return factory

    def test_each_run_builds_a_locked_container(self) -> None:
        result = SweepResult(attempted=2, delivered=1, failed=1)
        factory = self.container_factory(result)

        with patch("hlsforge.modules.callback.tasks.ServiceContainer", factory):
            outcomes = [sweep_pending_callbacks() for _ in range(2)]

        assert outcomes == [asdict(result), asdict(result)]
        assert factory.call_count == 2
        for call in factory.call_args_list:
            assert call.kwargs["use_redis_lock"] is True
