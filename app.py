#!/usr/bin/env python3
"""
Lending Event Pipeline - Main Application Entry Point.

============================================================
SINGLE ENTRYPOINT
============================================================
- Compatible with PM2 / systemd process management
- Can be started, stopped, and restarted safely: jobs live
  in the durable queue, and jobs left active by a crash are
  recovered at start-up
- SIGINT / SIGTERM stop the worker after its in-flight job

============================================================
USAGE
============================================================
    python app.py --mode worker
    python app.py --mode stats
    python app.py --mode failed --limit 20
    python app.py --mode requeue --job-id <id>

With PM2:
    pm2 start app.py --interpreter python --name tx-worker -- --mode worker

============================================================
"""

import asyncio
import logging
import signal
import sys
from pathlib import Path

from dotenv import load_dotenv

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.absolute()
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from core.exceptions import ConfigurationError, PipelineException
from core.logging_utils import setup_logging
from orchestrator.cli import build_config, create_parser, print_json, validate_args
from orchestrator.pipeline import PipelineConfig, build_pipeline


logger = logging.getLogger(__name__)


async def run_worker(config: PipelineConfig) -> int:
    """Run the queue worker until a shutdown signal arrives."""
    pipeline = build_pipeline(config)
    stop_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    if sys.platform != "win32":
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, stop_event.set)

    await pipeline.start(run_listener=False, run_worker=True)
    logger.info("Worker running (press Ctrl+C to stop)...")
    try:
        await stop_event.wait()
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    finally:
        logger.info(f"Final status: {await pipeline.get_status()}")
        await pipeline.stop()
        if sys.platform != "win32":
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.remove_signal_handler(sig)
    return 0


async def run_stats(config: PipelineConfig) -> int:
    pipeline = build_pipeline(config)
    try:
        stats = await pipeline.query_engine.compute_stats()
        print_json(stats.to_dict())
    finally:
        await pipeline.queue.close()
        await pipeline.store_client.close()
    return 0


async def run_failed(config: PipelineConfig, limit: int) -> int:
    pipeline = build_pipeline(config)
    try:
        jobs = await pipeline.queue.failed_jobs(limit)
        print_json({
            "counts": await pipeline.queue.counts(),
            "failed": [job.to_dict() for job in jobs],
        })
    finally:
        await pipeline.queue.close()
        await pipeline.store_client.close()
    return 0


async def run_requeue(config: PipelineConfig, job_id: str) -> int:
    pipeline = build_pipeline(config)
    try:
        job = await pipeline.queue.requeue_failed(job_id)
        print_json(job.to_dict())
    except KeyError:
        print(f"Error: job {job_id} not found", file=sys.stderr)
        return 1
    finally:
        await pipeline.queue.close()
        await pipeline.store_client.close()
    return 0


async def run_application(args, config: PipelineConfig) -> int:
    try:
        if args.mode == "stats":
            return await run_stats(config)
        if args.mode == "failed":
            return await run_failed(config, args.limit)
        if args.mode == "requeue":
            return await run_requeue(config, args.job_id)
        return await run_worker(config)
    except PipelineException as e:
        logger.error(f"Fatal error: {e.to_log_format()}")
        return 1
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        return 1


def main() -> int:
    """Main entry point."""
    load_dotenv()

    parser = create_parser()
    args = parser.parse_args()

    errors = validate_args(args)
    if errors:
        for error in errors:
            print(f"Error: {error}", file=sys.stderr)
        return 1

    try:
        config = build_config(args)
    except ConfigurationError as e:
        print(f"Configuration error: {e.message}", file=sys.stderr)
        return 1

    setup_logging(level=config.log_level, log_format=config.log_format, component="pipeline")

    if args.show_config:
        print_json(config.to_safe_dict())
        return 0

    return asyncio.run(run_application(args, config))


# ============================================================
# ENTRY POINT
# ============================================================

if __name__ == "__main__":
    sys.exit(main())
