"""Run a configured loyalty job once, outside the in-process scheduler.

Intended usage: external cron, or a manual sweep after changing loyalty
settings.

Example:
    python tooling/scripts/run_loyalty_jobs.py --job loyalty_expiration
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from loguru import logger


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Execute a scheduled loyalty job once")
    parser.add_argument(
        "--job",
        default="loyalty_expiration",
        help="Job id from the schedule file (loyalty_expiration, loyalty_reconciliation).",
    )
    parser.add_argument(
        "--schedule",
        default=None,
        help="Override the schedule file path.",
    )
    return parser.parse_args()


async def _run(job_id: str, schedule: str | None) -> object:
    from backoffice_api.app import resolve_schedule_path  # type: ignore import-position
    from backoffice_api.core.settings import settings  # type: ignore import-position
    from backoffice_api.db.session import async_session  # type: ignore import-position
    from backoffice_api.scheduling import LoyaltyJobScheduler  # type: ignore import-position

    schedule_path = Path(schedule) if schedule else resolve_schedule_path(settings.loyalty_job_schedule_path)
    scheduler = LoyaltyJobScheduler(session_factory=async_session, config_path=schedule_path)
    return await scheduler.run_job(job_id)


def main() -> int:
    args = parse_args()
    try:
        summary = asyncio.run(_run(args.job, args.schedule))
    except KeyError as exc:
        logger.error("Unknown loyalty job", job=args.job, error=str(exc))
        return 2
    if summary is None:
        logger.error("Loyalty job failed", job=args.job)
        return 1
    logger.success("Loyalty job completed", job=args.job, summary=summary)
    return 0


if __name__ == "__main__":
    sys.exit(main())
