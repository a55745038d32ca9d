from pathlib import Path
from uuid import uuid4
from decimal import Decimal

import pytest

from backoffice_api.observability.scheduler import get_scheduler_store
from backoffice_api.scheduling import LoyaltyJobScheduler
from backoffice_api.scheduling.config import (
    JobDefinition,
    RetryPolicy,
    load_job_definitions,
    parse_schedule,
)
from backoffice_api.scheduling.runner import resolve_task
from backoffice_api.services.loyalty import LoyaltyLedgerService

from loyalty_helpers import configure_loyalty, create_user

REPO_SCHEDULE = Path(__file__).resolve().parents[1] / "config" / "schedules.toml"


def _no_retry_delay(max_attempts: int) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=max_attempts,
        base_backoff_seconds=0.0,
        backoff_multiplier=1.0,
        max_backoff_seconds=0.0,
        jitter_seconds=0.0,
    )


@pytest.mark.asyncio
async def test_scheduler_retries_and_records_metrics(tmp_path: Path) -> None:
    store = get_scheduler_store()
    scheduler = LoyaltyJobScheduler(session_factory=lambda: None, config_path=tmp_path / "noop.toml")

    attempts = 0

    async def flaky_job(*, session_factory) -> dict:
        nonlocal attempts
        attempts += 1
        if attempts < 2:
            raise RuntimeError("boom")
        return {"rows_expired": 4}

    job = JobDefinition(id="job-alpha", task="tests.flaky", cron="* * * * *", retry=_no_retry_delay(3))

    summary = await scheduler._wrap_callable(flaky_job, job)()

    assert summary == {"rows_expired": 4}
    snapshot = store.snapshot()
    assert snapshot.totals["runs"] == 1
    assert snapshot.totals["success"] == 1
    assert snapshot.totals["retries"] == 1
    job_snapshot = snapshot.jobs[job.id]
    assert job_snapshot.attempt_failures == 1
    assert job_snapshot.last_summary == {"rows_expired": 4}
    assert job_snapshot.last_error is None
    assert attempts == 2


@pytest.mark.asyncio
async def test_scheduler_records_final_failure_and_sleeps_between_attempts(tmp_path: Path) -> None:
    delays: list[float] = []

    async def fake_sleep(seconds: float) -> None:
        delays.append(seconds)

    scheduler = LoyaltyJobScheduler(
        session_factory=lambda: None,
        config_path=tmp_path / "noop.toml",
        sleep=fake_sleep,
    )

    async def failing_job(*, session_factory) -> None:
        raise RuntimeError("boom")

    policy = RetryPolicy(
        max_attempts=3,
        base_backoff_seconds=2.0,
        backoff_multiplier=3.0,
        max_backoff_seconds=5.0,
        jitter_seconds=0.0,
    )
    job = JobDefinition(id="job-failure", task="tests.failing", cron="* * * * *", retry=policy)

    assert await scheduler._wrap_callable(failing_job, job)() is None

    assert delays == [2.0, 5.0]
    job_snapshot = get_scheduler_store().snapshot().jobs[job.id]
    assert job_snapshot.run_failures == 1
    assert job_snapshot.consecutive_failures == 1
    assert job_snapshot.attempt_failures == 3
    assert job_snapshot.last_error == "boom"
    assert job_snapshot.last_error_at is not None


def test_parse_schedule_skips_malformed_entries() -> None:
    config = parse_schedule(
        {
            "timezone": "Europe/Berlin",
            "jobs": {
                "good": {"task": "pkg.mod.fn", "cron": "0 * * * *", "max_attempts": 0, "kwargs": {"x": 1}},
                "no_cron": {"task": "pkg.mod.fn"},
                "disabled": {"task": "pkg.mod.fn", "cron": "0 0 * * *", "enabled": False},
                "junk": "not a table",
            },
        }
    )

    assert config.timezone == "Europe/Berlin"
    assert [job.id for job in config.jobs] == ["good", "disabled"]
    assert config.jobs[0].retry.max_attempts == 1
    assert config.jobs[0].kwargs == {"x": 1}
    assert config.jobs[1].enabled is False


def test_repository_schedule_resolves_loyalty_tasks() -> None:
    config = load_job_definitions(REPO_SCHEDULE)

    ids = {job.id: job for job in config.jobs}
    assert set(ids) == {"loyalty_expiration", "loyalty_reconciliation"}
    assert ids["loyalty_expiration"].kwargs == {"batch_size": 500}
    assert ids["loyalty_expiration"].retry.max_attempts == 3
    for job in config.jobs:
        assert callable(resolve_task(job.task))


def test_load_job_definitions_missing_file(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_job_definitions(tmp_path / "absent.toml")


def test_resolve_task_rejects_sync_functions() -> None:
    with pytest.raises(TypeError):
        resolve_task("backoffice_api.services.loyalty.calculate_points_discount")
    with pytest.raises(ValueError):
        resolve_task("not_a_path")


@pytest.mark.asyncio
async def test_run_job_executes_expiration_with_session_factory(session_factory, tmp_path: Path) -> None:
    schedule = tmp_path / "schedules.toml"
    schedule.write_text(
        """
timezone = "UTC"

[jobs.loyalty_expiration]
task = "backoffice_api.jobs.loyalty.expire_loyalty_points"
cron = "15 2 * * *"
max_attempts = 1
kwargs = { batch_size = 10 }

[jobs.loyalty_reconciliation]
task = "backoffice_api.jobs.loyalty.reconcile_loyalty_balances"
cron = "45 3 * * 0"
enabled = false
"""
    )
    async with session_factory() as session:
        user = await create_user(session)
        await configure_loyalty(session)
        await LoyaltyLedgerService(session).award_points(
            user.id, uuid4(), Decimal("10"), Decimal("10"), "completed"
        )
        await session.commit()

    scheduler = LoyaltyJobScheduler(session_factory=session_factory, config_path=schedule)

    summary = await scheduler.run_job("loyalty_expiration")

    assert summary == {"rows_expired": 0, "points_expired": 0, "users_affected": 0}
    with pytest.raises(KeyError):
        await scheduler.run_job("loyalty_reconciliation")

    health = scheduler.health()
    assert health["running"] is False
    assert health["configured_jobs"] == 2
    expiration = next(job for job in health["jobs"] if job["id"] == "loyalty_expiration")
    assert expiration["metrics"]["totals"]["success"] == 1


@pytest.mark.asyncio
async def test_start_and_stop_register_jobs(session_factory, tmp_path: Path) -> None:
    schedule = tmp_path / "schedules.toml"
    schedule.write_text(
        """
[jobs.loyalty_expiration]
task = "backoffice_api.jobs.loyalty.expire_loyalty_points"
cron = "15 2 * * *"
"""
    )
    scheduler = LoyaltyJobScheduler(session_factory=session_factory, config_path=schedule)

    scheduler.start()
    try:
        assert scheduler.is_running is True
        assert [job.id for job in scheduler._scheduler.get_jobs()] == ["loyalty_expiration"]
    finally:
        await scheduler.stop()

    assert scheduler.is_running is False
