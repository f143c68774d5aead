"""
End-to-end tests of the wired pipeline.

Chain log -> listener -> durable queue (SQLite) -> worker ->
in-memory entity store -> query engine.
"""

import asyncio
import pytest

from data_ingestion.types import RawChainLog
from entity_store import StoreConfig
from job_queue import QueueConfig
from orchestrator import PipelineConfig, build_pipeline
from orchestrator.cli import build_config, create_parser, validate_args

from tests.conftest import ALICE, BOB, USDC, WETH, tx


@pytest.fixture
def config():
    return PipelineConfig(
        queue=QueueConfig(backend="sql", database_url="sqlite://", poll_interval_seconds=0.01),
        store=StoreConfig(backend="memory"),
    )


class TestPipeline:
    """Test the full event path."""

    @pytest.mark.asyncio
    async def test_log_to_query(self, config, clock):
        pipeline = build_pipeline(config, clock=clock)
        completed = []
        done = asyncio.Event()

        def on_completed(job_id, receipt):
            completed.append(job_id)
            if len(completed) == 2:
                done.set()

        pipeline.worker.on("completed", on_completed)
        await pipeline.start()

        await pipeline.source.push(RawChainLog("Withdraw", [WETH, ALICE, ALICE, 10 ** 18], tx(1)))
        await pipeline.source.push(RawChainLog("Borrow", [], tx(2)))
        await pipeline.source.push(RawChainLog("Supply", [USDC, BOB, BOB, 5_000_000, 0], tx(3)))
        await asyncio.wait_for(done.wait(), timeout=5)

        events = await pipeline.query_engine.query_all()
        stats = await pipeline.query_engine.compute_stats()
        status = await pipeline.get_status()

        await pipeline.stop()

        assert sorted(e.event_type for e in events) == ["Supply", "Withdraw"]
        assert stats.total_volume_wei[WETH] == "1000000000000000000"
        assert status["listener"]["dropped"] == 1
        assert status["queue"]["completed"] == 2
        assert status["writer"]["writes"] == 2
        assert not pipeline.is_running

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, config, clock):
        pipeline = build_pipeline(config, clock=clock)

        await pipeline.start(run_listener=False)
        await pipeline.stop()
        await pipeline.stop()

        assert not pipeline.worker.is_running


class TestCli:
    """Test argument handling."""

    def test_defaults(self):
        args = create_parser().parse_args([])

        assert args.mode == "worker"
        assert validate_args(args) == []

    def test_requeue_requires_job_id(self):
        args = create_parser().parse_args(["--mode", "requeue"])

        assert validate_args(args) == ["--job-id is required for --mode requeue"]

    def test_log_overrides(self, monkeypatch):
        monkeypatch.setenv("ENTITY_STORE_BACKEND", "memory")
        monkeypatch.setenv("LOG_LEVEL", "INFO")
        args = create_parser().parse_args(["--log-level", "DEBUG", "--log-format", "json"])

        config = build_config(args)

        assert config.log_level == "DEBUG"
        assert config.log_format == "json"
