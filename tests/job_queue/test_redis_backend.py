"""
Tests for the Redis queue backend on an in-process fake Redis server.

Tests cover:
- Key layout and list moves
- Retry, backoff and dead letter through DurableQueue and QueueWorker
- Connection errors in the middle of a promotion or a claim
- Stalled job recovery when the active list and the record disagree
"""

import json
import pytest
from datetime import timedelta
from unittest.mock import AsyncMock

import fakeredis
from fakeredis import aioredis as fake_aioredis
from redis.exceptions import ConnectionError as RedisConnectionError

from core.exceptions import InvalidJobTransitionError, QueueUnavailableError
from job_queue import DurableQueue, JobState, RedisQueueBackend, RetryPolicy
from worker import HandlerRegistry, QueueWorker

from tests.conftest import make_withdraw


PREFIX = "pipeline:tx-queue"


@pytest.fixture
def server():
    return fakeredis.FakeServer()


@pytest.fixture
def client(server):
    return fake_aioredis.FakeRedis(server=server, decode_responses=True)


@pytest.fixture
def backend(client):
    return RedisQueueBackend(client, "tx-queue", key_prefix="pipeline")


@pytest.fixture
def redis_queue(backend, clock):
    return DurableQueue(
        backend,
        name="tx-queue",
        default_policy=RetryPolicy(attempts=5, base_delay_ms=1000),
        clock=clock,
        poll_interval=0.01,
    )


@pytest.fixture
def redis_worker(redis_queue, writer, normalizer):
    registry = HandlerRegistry()
    writer.register_default_handlers(registry)
    return QueueWorker(redis_queue, registry, normalizer, dequeue_timeout=0.05)


def fail_next_transaction(monkeypatch, client):
    """Make the next MULTI/EXEC on ``client`` fail with a connection error."""
    real_pipeline = client.pipeline

    def pipeline(*args, **kwargs):
        pipe = real_pipeline(*args, **kwargs)

        async def execute(*exec_args, **exec_kwargs):
            monkeypatch.setattr(client, "pipeline", real_pipeline)
            raise RedisConnectionError("connection reset by peer")

        pipe.execute = execute
        return pipe

    monkeypatch.setattr(client, "pipeline", pipeline)


# =============================================================
# TEST: key layout
# =============================================================

class TestKeyLayout:
    """Test where jobs live in Redis."""

    @pytest.mark.asyncio
    async def test_enqueue_writes_record_and_wait_list(self, redis_queue, client):
        job_id = await redis_queue.enqueue(make_withdraw())

        record = json.loads(await client.get(f"{PREFIX}:job:{job_id}"))
        assert record["state"] == "waiting"
        assert await client.lrange(f"{PREFIX}:wait", 0, -1) == [job_id]

    @pytest.mark.asyncio
    async def test_dequeue_moves_id_to_active(self, redis_queue, client):
        job_id = await redis_queue.enqueue(make_withdraw())

        job = await redis_queue.dequeue(timeout=0)

        assert job.state == JobState.ACTIVE
        assert job.attempt == 1
        assert await client.lrange(f"{PREFIX}:wait", 0, -1) == []
        assert await client.lrange(f"{PREFIX}:active", 0, -1) == [job_id]
        assert json.loads(await client.get(f"{PREFIX}:job:{job_id}"))["state"] == "active"

    @pytest.mark.asyncio
    async def test_nack_uses_delayed_sorted_set(self, redis_queue, client, clock):
        job_id = await redis_queue.enqueue(make_withdraw())
        job = await redis_queue.dequeue(timeout=0)

        await redis_queue.nack(job, "boom")

        due = clock.now() + timedelta(milliseconds=1000)
        assert await client.zscore(f"{PREFIX}:delayed", job_id) == due.timestamp()
        assert await client.llen(f"{PREFIX}:active") == 0

    @pytest.mark.asyncio
    async def test_completed_record_expires(self, redis_queue, client):
        job_id = await redis_queue.enqueue(make_withdraw())
        await redis_queue.ack(await redis_queue.dequeue(timeout=0))

        assert await client.lrange(f"{PREFIX}:completed", 0, -1) == [job_id]
        assert 0 < await client.ttl(f"{PREFIX}:job:{job_id}") <= 3600

    @pytest.mark.asyncio
    async def test_redis_error_becomes_queue_unavailable(self, backend, client, monkeypatch):
        monkeypatch.setattr(client, "get", AsyncMock(side_effect=RedisConnectionError("connection refused")))

        with pytest.raises(QueueUnavailableError) as exc_info:
            await backend.get("abc")

        assert exc_info.value.queue_name == "tx-queue"
        assert exc_info.value.operation == "get"


# =============================================================
# TEST: retries end to end
# =============================================================

class TestRetries:
    """Test backoff and dead-lettering on Redis."""

    @pytest.mark.asyncio
    async def test_backoff_is_honored(self, redis_queue, clock):
        await redis_queue.enqueue(make_withdraw())

        job = await redis_queue.dequeue(timeout=0)
        await redis_queue.nack(job, "boom")
        clock.advance(milliseconds=999)
        assert await redis_queue.dequeue(timeout=0) is None

        clock.advance(milliseconds=1)
        job = await redis_queue.dequeue(timeout=0)
        assert job.attempt == 2
        await redis_queue.nack(job, "boom")
        assert job.available_at == clock.now() + timedelta(milliseconds=2000)

    @pytest.mark.asyncio
    async def test_fails_twice_then_succeeds(self, redis_worker, redis_queue, memory_store, clock):
        memory_store.fail_next_creates = 2
        job_id = await redis_queue.enqueue(make_withdraw())

        receipts = []
        for _ in range(3):
            job = await redis_queue.dequeue(timeout=0)
            assert job is not None
            receipt = await redis_worker.process(job)
            if receipt is not None:
                receipts.append(receipt)
            clock.advance(seconds=10)

        job = await redis_queue.get_job(job_id)
        assert job.state == JobState.COMPLETED
        assert job.attempt == 3
        assert len(receipts) == 1
        assert len(memory_store) == 1
        assert await redis_queue.dequeue(timeout=0) is None

    @pytest.mark.asyncio
    async def test_five_failures_dead_letter(self, redis_worker, redis_queue, memory_store, clock):
        memory_store.fail_next_creates = 100
        job_id = await redis_queue.enqueue(make_withdraw())

        deliveries = 0
        while True:
            job = await redis_queue.dequeue(timeout=0)
            if job is None:
                break
            deliveries += 1
            await redis_worker.process(job)
            clock.advance(seconds=60)

        assert deliveries == 5
        job = await redis_queue.get_job(job_id)
        assert job.state == JobState.FAILED
        assert job.attempt == 5
        assert [j.id for j in await redis_queue.failed_jobs()] == [job_id]
        assert (await redis_queue.counts())["failed"] == 1

    @pytest.mark.asyncio
    async def test_requeue_failed(self, redis_queue):
        job_id = await redis_queue.enqueue(make_withdraw())
        await redis_queue.discard(await redis_queue.dequeue(timeout=0), "boom")

        await redis_queue.requeue_failed(job_id)

        job = await redis_queue.dequeue(timeout=0)
        assert job.id == job_id
        assert job.attempt == 1


# =============================================================
# TEST: connection errors mid-move
# =============================================================

class TestInterruptedMoves:
    """Test that an interrupted move leaves the job deliverable."""

    @pytest.mark.asyncio
    async def test_failed_promotion_keeps_delayed_job(self, redis_queue, client, clock, monkeypatch):
        job_id = await redis_queue.enqueue(make_withdraw())
        await redis_queue.nack(await redis_queue.dequeue(timeout=0), "boom")
        clock.advance(seconds=2)

        fail_next_transaction(monkeypatch, client)
        with pytest.raises(QueueUnavailableError):
            await redis_queue.dequeue(timeout=0)

        assert (await redis_queue.counts())["delayed"] == 1
        clock.advance(seconds=60)
        job = await redis_queue.dequeue(timeout=0)
        assert job.id == job_id
        assert job.attempt == 2

    @pytest.mark.asyncio
    async def test_failed_claim_keeps_waiting_job(self, redis_queue, client, monkeypatch):
        job_id = await redis_queue.enqueue(make_withdraw())

        fail_next_transaction(monkeypatch, client)
        with pytest.raises(QueueUnavailableError):
            await redis_queue.dequeue(timeout=0)

        counts = await redis_queue.counts()
        assert counts["waiting"] == 1
        assert counts["active"] == 0
        assert (await redis_queue.get_job(job_id)).state == JobState.WAITING
        job = await redis_queue.dequeue(timeout=0)
        assert job.id == job_id
        assert job.attempt == 1


# =============================================================
# TEST: stalled job recovery
# =============================================================

class TestRecovery:
    """Test recover_stalled on Redis."""

    @pytest.mark.asyncio
    async def test_recover_stalled(self, redis_queue):
        job_id = await redis_queue.enqueue(make_withdraw())
        await redis_queue.dequeue(timeout=0)

        assert await redis_queue.recover_stalled() == 1

        job = await redis_queue.dequeue(timeout=0)
        assert job.id == job_id
        assert job.attempt == 2

    @pytest.mark.asyncio
    async def test_active_id_with_waiting_record_is_recovered(self, redis_queue, client):
        job_id = await redis_queue.enqueue(make_withdraw())
        await client.lmove(f"{PREFIX}:wait", f"{PREFIX}:active", "LEFT", "RIGHT")

        assert await redis_queue.recover_stalled() == 1

        assert (await redis_queue.counts())["active"] == 0
        job = await redis_queue.dequeue(timeout=0)
        assert job.id == job_id
        assert job.attempt == 1

    @pytest.mark.asyncio
    async def test_active_id_with_finished_record_is_released(self, redis_queue, client):
        job_id = await redis_queue.enqueue(make_withdraw())
        await redis_queue.ack(await redis_queue.dequeue(timeout=0))
        await client.rpush(f"{PREFIX}:active", job_id)

        assert await redis_queue.recover_stalled() == 0

        counts = await redis_queue.counts()
        assert counts["active"] == 0
        assert counts["completed"] == 1
        assert await redis_queue.dequeue(timeout=0) is None

    @pytest.mark.asyncio
    async def test_stale_ack_after_recovery_is_rejected(self, redis_queue):
        await redis_queue.enqueue(make_withdraw())
        stale = await redis_queue.dequeue(timeout=0)
        await redis_queue.recover_stalled()

        with pytest.raises(InvalidJobTransitionError):
            await redis_queue.ack(stale)

        assert (await redis_queue.counts())["waiting"] == 1

    @pytest.mark.asyncio
    async def test_jobs_survive_new_client(self, server, redis_queue, clock):
        job_id = await redis_queue.enqueue(make_withdraw())
        await redis_queue.close()

        client = fake_aioredis.FakeRedis(server=server, decode_responses=True)
        consumer = DurableQueue(RedisQueueBackend(client, "tx-queue", key_prefix="pipeline"), clock=clock)

        assert (await consumer.dequeue(timeout=0)).id == job_id
        await consumer.close()
