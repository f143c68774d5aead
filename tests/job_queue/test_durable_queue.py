"""
Tests for the Durable Queue (SQL backend on in-memory SQLite).

Tests cover:
- Enqueue / dequeue / ack
- Exponential backoff on nack
- Dead letter after the attempt budget
- Operator requeue and stalled job recovery
- Persistence across queue instances
"""

import pytest
from datetime import timedelta

from core.exceptions import InvalidJobTransitionError
from data_ingestion.types import EventKind
from job_queue import DurableQueue, JobState, RetryPolicy, SqlQueueBackend
from storage.database import create_all_tables, create_database_engine, create_session_factory

from tests.conftest import make_supply, make_withdraw


class TestEnqueueDequeue:
    """Test the basic job flow."""

    @pytest.mark.asyncio
    async def test_enqueue_event(self, sql_queue):
        job_id = await sql_queue.enqueue(make_withdraw())

        job = await sql_queue.get_job(job_id)
        assert job.state == JobState.WAITING
        assert job.kind == "Withdraw"
        assert job.payload["amount"] == "1000000000000000000"
        assert job.attempt == 0

    @pytest.mark.asyncio
    async def test_enqueue_by_kind_and_payload(self, sql_queue):
        payload = make_supply().to_payload()

        job_id = await sql_queue.enqueue("supply", payload)

        job = await sql_queue.get_job(job_id)
        assert job.kind == EventKind.SUPPLY.value
        assert job.payload == payload

    @pytest.mark.asyncio
    async def test_enqueue_by_kind_requires_payload(self, sql_queue):
        with pytest.raises(ValueError):
            await sql_queue.enqueue(EventKind.SUPPLY)

    @pytest.mark.asyncio
    async def test_dequeue_empty_returns_none(self, sql_queue):
        assert await sql_queue.dequeue(timeout=0) is None

    @pytest.mark.asyncio
    async def test_dequeue_marks_active(self, sql_queue):
        job_id = await sql_queue.enqueue(make_withdraw())

        job = await sql_queue.dequeue(timeout=0)

        assert job.id == job_id
        assert job.state == JobState.ACTIVE
        assert job.attempt == 1
        assert await sql_queue.dequeue(timeout=0) is None

    @pytest.mark.asyncio
    async def test_dequeue_in_arrival_order(self, sql_queue, clock):
        first = await sql_queue.enqueue(make_withdraw(n=1))
        clock.advance(milliseconds=1)
        second = await sql_queue.enqueue(make_withdraw(n=2))

        assert (await sql_queue.dequeue(timeout=0)).id == first
        assert (await sql_queue.dequeue(timeout=0)).id == second

    @pytest.mark.asyncio
    async def test_ack_completes(self, sql_queue):
        await sql_queue.enqueue(make_withdraw())
        job = await sql_queue.dequeue(timeout=0)

        await sql_queue.ack(job, {"entityKey": "0xabc"})

        stored = await sql_queue.get_job(job.id)
        assert stored.state == JobState.COMPLETED
        assert stored.receipt == {"entityKey": "0xabc"}
        assert await sql_queue.dequeue(timeout=0) is None


class TestRetries:
    """Test backoff and dead-lettering."""

    @pytest.mark.asyncio
    async def test_nack_delays_exponentially(self, sql_queue, clock):
        await sql_queue.enqueue(make_withdraw())
        start = clock.now()

        job = await sql_queue.dequeue(timeout=0)
        await sql_queue.nack(job, "boom")
        assert job.state == JobState.DELAYED
        assert job.available_at == start + timedelta(milliseconds=1000)

        # not due yet
        assert await sql_queue.dequeue(timeout=0) is None

        clock.advance(seconds=1)
        job = await sql_queue.dequeue(timeout=0)
        assert job.attempt == 2
        await sql_queue.nack(job, "boom")
        assert job.available_at == clock.now() + timedelta(milliseconds=2000)

    @pytest.mark.asyncio
    async def test_dead_letter_after_budget(self, sql_queue, clock):
        job_id = await sql_queue.enqueue(make_withdraw())

        deliveries = 0
        while True:
            job = await sql_queue.dequeue(timeout=0)
            if job is None:
                break
            deliveries += 1
            await sql_queue.nack(job, f"failure {deliveries}")
            clock.advance(seconds=60)

        assert deliveries == 5
        job = await sql_queue.get_job(job_id)
        assert job.state == JobState.FAILED
        assert job.attempt == 5
        assert len(job.errors) == 5
        assert [j.id for j in await sql_queue.failed_jobs()] == [job_id]

    @pytest.mark.asyncio
    async def test_custom_policy(self, sql_queue):
        await sql_queue.enqueue(make_withdraw(), policy=RetryPolicy(attempts=1))

        job = await sql_queue.dequeue(timeout=0)
        await sql_queue.nack(job, "boom")

        assert job.state == JobState.FAILED

    @pytest.mark.asyncio
    async def test_discard_fails_immediately(self, sql_queue):
        await sql_queue.enqueue(make_withdraw())
        job = await sql_queue.dequeue(timeout=0)

        await sql_queue.discard(job, "no handler")

        assert (await sql_queue.get_job(job.id)).state == JobState.FAILED
        assert job.attempt == 1


class TestOperatorActions:
    """Test requeue, recovery and counts."""

    @pytest.mark.asyncio
    async def test_requeue_failed(self, sql_queue):
        await sql_queue.enqueue(make_withdraw())
        job = await sql_queue.dequeue(timeout=0)
        await sql_queue.discard(job, "boom")

        requeued = await sql_queue.requeue_failed(job.id)

        assert requeued.state == JobState.WAITING
        assert requeued.attempt == 0
        redelivered = await sql_queue.dequeue(timeout=0)
        assert redelivered.id == job.id
        assert redelivered.attempt == 1

    @pytest.mark.asyncio
    async def test_requeue_unknown_job(self, sql_queue):
        with pytest.raises(KeyError):
            await sql_queue.requeue_failed("missing")

    @pytest.mark.asyncio
    async def test_requeue_requires_failed_state(self, sql_queue):
        job_id = await sql_queue.enqueue(make_withdraw())

        with pytest.raises(InvalidJobTransitionError):
            await sql_queue.requeue_failed(job_id)

    @pytest.mark.asyncio
    async def test_recover_stalled(self, sql_queue):
        await sql_queue.enqueue(make_withdraw())
        job = await sql_queue.dequeue(timeout=0)

        recovered = await sql_queue.recover_stalled()

        assert recovered == 1
        again = await sql_queue.dequeue(timeout=0)
        assert again.id == job.id
        assert again.attempt == 2

    @pytest.mark.asyncio
    async def test_stale_ack_after_recovery_is_rejected(self, sql_queue):
        await sql_queue.enqueue(make_withdraw())
        stale = await sql_queue.dequeue(timeout=0)
        await sql_queue.recover_stalled()

        with pytest.raises(InvalidJobTransitionError):
            await sql_queue.ack(stale)

        assert (await sql_queue.get_job(stale.id)).state == JobState.WAITING

    @pytest.mark.asyncio
    async def test_counts(self, sql_queue):
        await sql_queue.enqueue(make_withdraw(n=1))
        await sql_queue.enqueue(make_withdraw(n=2))
        job = await sql_queue.dequeue(timeout=0)
        await sql_queue.ack(job)

        counts = await sql_queue.counts()

        assert counts == {
            "waiting": 1,
            "delayed": 0,
            "active": 0,
            "completed": 1,
            "failed": 0,
        }


class TestPersistence:
    """Test that jobs survive a queue restart."""

    @pytest.mark.asyncio
    async def test_jobs_survive_new_queue_instance(self, tmp_path, clock):
        url = f"sqlite:///{tmp_path / 'queue.db'}"

        producer = DurableQueue(SqlQueueBackend.from_url(url, "tx-queue"), clock=clock)
        job_id = await producer.enqueue(make_withdraw())
        await producer.close()

        engine = create_database_engine(url)
        create_all_tables(engine)
        consumer = DurableQueue(SqlQueueBackend(create_session_factory(engine), "tx-queue"), clock=clock)
        job = await consumer.dequeue(timeout=0)

        assert job.id == job_id
        await consumer.close()

    @pytest.mark.asyncio
    async def test_queues_are_isolated_by_name(self, tmp_path, clock):
        url = f"sqlite:///{tmp_path / 'queue.db'}"
        engine = create_database_engine(url)
        create_all_tables(engine)
        factory = create_session_factory(engine)

        tx_queue = DurableQueue(SqlQueueBackend(factory, "tx-queue"), name="tx-queue", clock=clock)
        other = DurableQueue(SqlQueueBackend(factory, "other"), name="other", clock=clock)
        await tx_queue.enqueue(make_withdraw())

        assert await other.dequeue(timeout=0) is None
        assert await tx_queue.dequeue(timeout=0) is not None
