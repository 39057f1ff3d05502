"""
Tests for src/services/event_queue.py - enqueue, atomic claim, progress,
completion and the retry/backoff state machine.
"""
import asyncio
import uuid
from unittest.mock import AsyncMock, patch

import pytest

from src.services.event_queue import EventQueue, MAX_BACKOFF_SECONDS


async def _claim_one(queue: EventQueue, **enqueue_kwargs):
    event = await queue.enqueue_event(enqueue_kwargs.pop("event_type", "thing.happened"), **enqueue_kwargs)
    claimed = await queue.claim_batch(1)
    assert [e.id for e in claimed] == [event.id]
    return claimed[0]


# ---------------------------------------------------------------------------
# Enqueue
# ---------------------------------------------------------------------------


class TestEnqueue:
    async def test_defaults(self, queue):
        event = await queue.enqueue_event("image.generated")
        stored = await queue.get_event(event.id)

        assert stored.status == "pending"
        assert stored.payload == {}
        assert stored.priority == 0
        assert stored.retry_count == 0
        assert stored.max_retries == 3
        assert stored.progress == 0
        assert stored.result is None

    async def test_job_prefix(self, queue):
        job = await queue.enqueue_job("generate-report", {"reportType": "sales"})
        stored = await queue.get_event(job.id)

        assert stored.event_type == "job:generate-report"
        assert stored.is_job is True
        assert stored.job_type == "generate-report"
        assert stored.payload == {"reportType": "sales"}

    async def test_user_id_accepts_string(self, queue):
        user_id = uuid.uuid4()
        event = await queue.enqueue_event("x", user_id=str(user_id))
        assert (await queue.get_event(event.id)).user_id == user_id

    async def test_notifies_dispatcher_when_due_now(self, session_factory):
        redis_mock = AsyncMock()
        with patch("src.utils.redis_client.get_redis", AsyncMock(return_value=redis_mock)):
            queue = EventQueue(session_factory, notify=True)
            event = await queue.enqueue_event("x")

        redis_mock.lpush.assert_awaited_once()
        assert redis_mock.lpush.await_args.args[1] == str(event.id)

    async def test_delayed_event_does_not_notify(self, session_factory):
        redis_mock = AsyncMock()
        with patch("src.utils.redis_client.get_redis", AsyncMock(return_value=redis_mock)):
            queue = EventQueue(session_factory, notify=True)
            await queue.enqueue_event("x", delay_seconds=60)

        redis_mock.lpush.assert_not_awaited()

    async def test_redis_outage_does_not_fail_enqueue(self, session_factory):
        with patch("src.utils.redis_client.get_redis", AsyncMock(side_effect=ConnectionError("down"))):
            queue = EventQueue(session_factory, notify=True)
            event = await queue.enqueue_event("x")

        assert (await queue.get_event(event.id)).status == "pending"


# ---------------------------------------------------------------------------
# Claim
# ---------------------------------------------------------------------------


class TestClaimBatch:
    async def test_priority_then_age_order(self, queue):
        low = await queue.enqueue_event("a", priority=0)
        high = await queue.enqueue_event("b", priority=10)
        mid_old = await queue.enqueue_event("c", priority=5)
        mid_new = await queue.enqueue_event("d", priority=5)

        claimed = await queue.claim_batch(10)

        assert [e.id for e in claimed] == [high.id, mid_old.id, mid_new.id, low.id]
        assert all(e.status == "processing" for e in claimed)
        assert all(e.processing_started_at is not None for e in claimed)

    async def test_respects_limit(self, queue):
        for _ in range(5):
            await queue.enqueue_event("x")

        assert len(await queue.claim_batch(3)) == 3
        assert len(await queue.claim_batch(3)) == 2
        assert await queue.claim_batch(3) == []

    async def test_skips_future_events(self, queue):
        await queue.enqueue_event("later", delay_seconds=3600)
        assert await queue.claim_batch(10) == []

    async def test_zero_limit(self, queue):
        await queue.enqueue_event("x")
        assert await queue.claim_batch(0) == []

    async def test_claimed_rows_are_persisted(self, queue):
        event = await queue.enqueue_event("x")
        await queue.claim_batch(1)
        assert (await queue.get_event(event.id)).status == "processing"

    async def test_concurrent_claims_never_overlap(self, queue):
        ids = {(await queue.enqueue_event("x")).id for _ in range(20)}

        batches = await asyncio.gather(*(queue.claim_batch(10) for _ in range(4)))
        claimed = [e.id for batch in batches for e in batch]

        assert len(claimed) == len(set(claimed))
        assert set(claimed) == ids


# ---------------------------------------------------------------------------
# Progress
# ---------------------------------------------------------------------------


class TestUpdateProgress:
    async def test_records_progress(self, queue):
        event = await _claim_one(queue)
        assert await queue.update_progress(event.id, 40) is True
        assert (await queue.get_event(event.id)).progress == 40

    async def test_clamps_to_range(self, queue):
        event = await _claim_one(queue)
        await queue.update_progress(event.id, 150)
        assert (await queue.get_event(event.id)).progress == 100

    async def test_negative_is_noop(self, queue):
        event = await _claim_one(queue)
        await queue.update_progress(event.id, 30)
        await queue.update_progress(event.id, -5)
        assert (await queue.get_event(event.id)).progress == 30

    async def test_never_decreases(self, queue):
        event = await _claim_one(queue)
        await queue.update_progress(event.id, 60)

        assert await queue.update_progress(event.id, 30) is False
        assert (await queue.get_event(event.id)).progress == 60

    async def test_ignored_unless_processing(self, queue):
        event = await queue.enqueue_event("x")
        assert await queue.update_progress(event.id, 50) is False
        assert (await queue.get_event(event.id)).progress == 0


# ---------------------------------------------------------------------------
# Complete
# ---------------------------------------------------------------------------


class TestComplete:
    async def test_job_completion_sets_progress_and_result(self, queue):
        await queue.enqueue_job("generate-report")
        job = (await queue.claim_batch(1))[0]

        assert await queue.complete(job.id, {"records": 3}) is True

        stored = await queue.get_event(job.id)
        assert stored.status == "completed"
        assert stored.progress == 100
        assert stored.result == {"records": 3}
        assert stored.processed_at is not None

    async def test_plain_event_keeps_progress(self, queue):
        event = await _claim_one(queue)
        await queue.complete(event.id)
        stored = await queue.get_event(event.id)
        assert stored.status == "completed"
        assert stored.progress == 0

    async def test_second_call_is_noop(self, queue):
        event = await _claim_one(queue)
        assert await queue.complete(event.id, {"n": 1}) is True
        assert await queue.complete(event.id, {"n": 2}) is False
        assert (await queue.get_event(event.id)).result == {"n": 1}

    async def test_pending_event_cannot_complete(self, queue):
        event = await queue.enqueue_event("x")
        assert await queue.complete(event.id) is False
        assert (await queue.get_event(event.id)).status == "pending"


# ---------------------------------------------------------------------------
# Fail / retry
# ---------------------------------------------------------------------------


class TestFail:
    async def test_retry_returns_to_pending(self, queue):
        event = await _claim_one(queue, max_retries=3)

        assert await queue.fail(event.id, "boom") == "pending"

        stored = await queue.get_event(event.id)
        assert stored.status == "pending"
        assert stored.retry_count == 1
        assert stored.error_message == "boom"
        assert stored.processed_at is None

    async def test_final_attempt_fails_terminally(self, queue):
        event = await _claim_one(queue, max_retries=1)

        assert await queue.fail(event.id, "boom") == "failed"

        stored = await queue.get_event(event.id)
        assert stored.status == "failed"
        assert stored.retry_count == 1
        assert stored.processed_at is not None

    async def test_retry_cycle_until_exhausted(self, queue):
        event = await queue.enqueue_event("x", max_retries=2)

        await queue.claim_batch(1)
        assert await queue.fail(event.id, "first") == "pending"
        assert [e.id for e in await queue.claim_batch(1)] == [event.id]
        assert await queue.fail(event.id, "second") == "failed"
        assert await queue.claim_batch(1) == []

        stored = await queue.get_event(event.id)
        assert stored.retry_count == 2
        assert stored.error_message == "second"

    async def test_backoff_delays_next_claim(self, session_factory):
        queue = EventQueue(session_factory, retry_backoff_seconds=30, notify=False)
        event = await _claim_one(queue)

        await queue.fail(event.id, "boom")

        stored = await queue.get_event(event.id)
        assert stored.status == "pending"
        assert await queue.claim_batch(10) == []

    async def test_max_retries_override(self, queue):
        event = await _claim_one(queue, max_retries=5)

        assert await queue.fail(event.id, "boom", max_retries=1) == "failed"
        assert (await queue.get_event(event.id)).max_retries == 1

    async def test_ignored_unless_processing(self, queue):
        event = await queue.enqueue_event("x")
        assert await queue.fail(event.id, "boom") is None
        assert (await queue.get_event(event.id)).retry_count == 0

    async def test_completed_event_cannot_fail(self, queue):
        event = await _claim_one(queue)
        await queue.complete(event.id)
        assert await queue.fail(event.id, "late") is None
        assert (await queue.get_event(event.id)).status == "completed"


class TestBackoff:
    @pytest.mark.parametrize("retry_count,expected", [(0, 2), (1, 4), (3, 16)])
    def test_exponential(self, session_factory, retry_count, expected):
        queue = EventQueue(session_factory, retry_backoff_seconds=2)
        assert queue.backoff_seconds(retry_count) == expected

    def test_capped(self, session_factory):
        queue = EventQueue(session_factory, retry_backoff_seconds=2)
        assert queue.backoff_seconds(30) == MAX_BACKOFF_SECONDS


async def test_get_event_unknown(queue):
    assert await queue.get_event(uuid.uuid4()) is None
