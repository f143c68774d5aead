"""
Tests for the Chain Event Listener.

Tests cover:
- Enqueue of normalized events
- Malformed logs dropped without stopping the loop
- Queue failures counted without stopping the loop
"""

import pytest
from unittest.mock import AsyncMock, MagicMock

from core.exceptions import QueueUnavailableError
from data_ingestion.listener import ChainEventListener, QueueLogSource
from data_ingestion.types import EventKind, RawChainLog
from job_queue import JobState

from tests.conftest import ALICE, BOB, USDC, WETH, tx


def withdraw_log(n: int = 1, amount=10 ** 18) -> RawChainLog:
    return RawChainLog("Withdraw", [WETH, ALICE, ALICE, amount], tx(n))


class TestQueueLogSource:
    """Test the push-based log source."""

    @pytest.mark.asyncio
    async def test_iterates_until_closed(self):
        source = QueueLogSource()
        await source.push(withdraw_log(1))
        await source.push(withdraw_log(2))
        await source.close()

        received = [log async for log in source]

        assert [log.tx_hash for log in received] == [tx(1), tx(2)]
        assert source.closed

    @pytest.mark.asyncio
    async def test_push_after_close_fails(self):
        source = QueueLogSource()
        await source.close()

        with pytest.raises(RuntimeError):
            await source.push(withdraw_log())


class TestChainEventListener:
    """Test listener normalization and enqueue."""

    @pytest.mark.asyncio
    async def test_handle_log_enqueues_event(self, normalizer):
        queue = MagicMock()
        queue.enqueue = AsyncMock(return_value="job-1")
        listener = ChainEventListener(QueueLogSource(), normalizer, queue)

        job_id = await listener.handle_log(withdraw_log())

        assert job_id == "job-1"
        event = queue.enqueue.call_args[0][0]
        assert event.kind == EventKind.WITHDRAW
        assert event.amount == "1000000000000000000"

    @pytest.mark.asyncio
    async def test_malformed_log_dropped(self, normalizer):
        queue = MagicMock()
        queue.enqueue = AsyncMock(return_value="job-1")
        listener = ChainEventListener(QueueLogSource(), normalizer, queue)

        job_id = await listener.handle_log(withdraw_log(amount=-5))

        assert job_id is None
        queue.enqueue.assert_not_called()
        assert listener.get_stats()["dropped"] == 1

    @pytest.mark.asyncio
    async def test_enqueue_failure_counted(self, normalizer):
        queue = MagicMock()
        queue.enqueue = AsyncMock(side_effect=QueueUnavailableError("down", queue_name="tx-queue"))
        listener = ChainEventListener(QueueLogSource(), normalizer, queue)

        job_id = await listener.handle_log(withdraw_log())

        assert job_id is None
        assert listener.get_stats()["enqueue_failures"] == 1

    @pytest.mark.asyncio
    async def test_run_continues_past_bad_logs(self, normalizer, sql_queue):
        source = QueueLogSource()
        listener = ChainEventListener(source, normalizer, sql_queue)

        await source.push(withdraw_log(1))
        await source.push(RawChainLog("Borrow", [], tx(2)))
        await source.push(RawChainLog("Supply", [USDC, BOB, BOB, 5_000_000, 0], tx(3)))
        await source.close()

        await listener.run()

        stats = listener.get_stats()
        assert stats["received"] == 3
        assert stats["enqueued"] == 2
        assert stats["dropped"] == 1
        assert not stats["running"]

        counts = await sql_queue.counts()
        assert counts[JobState.WAITING.value] == 2
