"""
Orchestrator - CLI.

============================================================
RESPONSIBILITY
============================================================
Command-line interface of the pipeline process.

Modes:
  worker    consume the queue and write events to the store
  stats     print EventStats computed from the store
  failed    list dead-lettered jobs
  requeue   move a dead-lettered job back to the queue

============================================================
USAGE
============================================================
python app.py --mode worker
python app.py --mode stats --log-level WARNING
python app.py --mode requeue --job-id 3f2c...

============================================================
"""

import argparse
import json
import logging
from typing import Any, Dict, List

from .pipeline import PipelineConfig


logger = logging.getLogger(__name__)


MODES = ("worker", "stats", "failed", "requeue")


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="lending-event-pipeline",
        description="Lending protocol event pipeline: durable queue worker and query tools",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Modes:
  worker    - Consume the queue and store events (default)
  stats     - Print aggregate statistics of stored events
  failed    - List dead-lettered jobs
  requeue   - Requeue one dead-lettered job (--job-id)

Configuration is read from the environment and from a .env file.
        """,
    )

    parser.add_argument(
        "--mode", "-m",
        type=str,
        choices=MODES,
        default="worker",
        help="Process mode (default: worker)",
    )

    parser.add_argument(
        "--job-id",
        type=str,
        help="Job id for --mode requeue",
    )

    parser.add_argument(
        "--limit",
        type=int,
        default=50,
        help="Maximum rows printed by --mode failed (default: 50)",
    )

    logging_group = parser.add_argument_group("Logging Options")

    logging_group.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override LOG_LEVEL",
    )

    logging_group.add_argument(
        "--log-format",
        type=str,
        choices=["text", "json"],
        default=None,
        help="Override LOG_FORMAT",
    )

    parser.add_argument(
        "--show-config",
        action="store_true",
        help="Print the effective configuration (secrets masked) and exit",
    )

    return parser


def validate_args(args: argparse.Namespace) -> List[str]:
    """Validate parsed arguments; returns error messages."""
    errors = []
    if args.mode == "requeue" and not args.job_id:
        errors.append("--job-id is required for --mode requeue")
    if args.limit < 1:
        errors.append("--limit must be positive")
    return errors


def build_config(args: argparse.Namespace) -> PipelineConfig:
    """Environment configuration with CLI overrides applied."""
    config = PipelineConfig.from_env()
    if args.log_level:
        config.log_level = args.log_level
    if args.log_format:
        config.log_format = args.log_format
    return config


def print_json(data: Dict[str, Any]) -> None:
    print(json.dumps(data, indent=2, default=str))
