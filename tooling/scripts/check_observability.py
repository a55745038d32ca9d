#!/usr/bin/env python3
"""Quick health check for the loyalty observability endpoints.

Usage:
    python tooling/scripts/check_observability.py \
        --base-url https://staging-api.example.com \
        --api-key "$ADMIN_API_KEY"

The script validates:
  * Readiness: the database probe is ready.
  * Loyalty ledger: failed loyalty steps inside order workflows stay under a threshold.
  * Scheduler: no loyalty job is currently failing.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Any, Dict, Optional

import httpx


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Back-office observability checker")
    parser.add_argument(
        "--base-url",
        default="http://localhost:8000",
        help="Base URL of the back-office API service.",
    )
    parser.add_argument(
        "--api-key",
        default=None,
        help="Admin API key for the observability endpoints.",
    )
    parser.add_argument(
        "--max-loyalty-failures",
        type=int,
        default=0,
        help="Maximum allowed failed loyalty steps before failing (default: 0).",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=10.0,
        help="HTTP request timeout in seconds.",
    )
    return parser.parse_args()


async def _get_json(
    client: httpx.AsyncClient,
    path: str,
    *,
    headers: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    response = await client.get(path, headers=headers)
    response.raise_for_status()
    return response.json()


def _fail(message: str) -> None:
    print(f"[check-observability] FAIL {message}")
    sys.exit(1)


def _log_ok(message: str) -> None:
    print(f"[check-observability] OK {message}")


async def validate_readiness(client: httpx.AsyncClient) -> None:
    payload = await _get_json(client, "/api/v1/readyz")
    database = payload.get("components", {}).get("database", {})
    if database.get("status") != "ready":
        _fail(f"Database component is {database.get('status')}: {database.get('detail')}")
    _log_ok(f"Readiness OK (status={payload.get('status')})")


async def validate_loyalty(
    client: httpx.AsyncClient,
    headers: Dict[str, str],
    max_failures: int,
) -> None:
    payload = await _get_json(client, "/api/v1/observability/loyalty", headers=headers)
    failures = sum(int(value) for value in (payload.get("failures") or {}).values())
    if failures > max_failures:
        _fail(f"Loyalty step failures {failures} exceed threshold {max_failures}")

    operations = payload.get("operations") or {}
    _log_ok(
        "Loyalty observability OK "
        f"(operations={sum(int(value) for value in operations.values())}, failures={failures})"
    )


async def validate_scheduler(client: httpx.AsyncClient, headers: Dict[str, str]) -> None:
    payload = await _get_json(client, "/api/v1/observability/scheduler", headers=headers)
    jobs = payload.get("jobs") or {}
    failing = sorted(job_id for job_id, job in jobs.items() if int(job.get("totals", {}).get("consecutive_failures", 0)) > 0)
    if failing:
        _fail(f"Loyalty jobs failing: {', '.join(failing)}")
    _log_ok(f"Scheduler observability OK (jobs={len(jobs)})")


async def main() -> None:
    args = parse_args()
    headers = {"X-API-Key": args.api_key} if args.api_key else {}

    async with httpx.AsyncClient(base_url=args.base_url, timeout=args.timeout) as client:
        await validate_readiness(client)
        await validate_loyalty(client, headers, max_failures=args.max_loyalty_failures)
        await validate_scheduler(client, headers)

    _log_ok("Observability checks completed successfully")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except httpx.HTTPStatusError as exc:
        _fail(f"HTTP {exc.response.status_code} while calling {exc.request.url}")
