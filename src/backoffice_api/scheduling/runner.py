"""APScheduler runtime for the recurring loyalty jobs."""

from __future__ import annotations

import asyncio
import inspect
import time
from importlib import import_module
from pathlib import Path
from typing import Any, Awaitable, Callable
from zoneinfo import ZoneInfo

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from loguru import logger

from backoffice_api.observability.scheduler import get_scheduler_store
from .config import JobDefinition, ScheduleConfig, load_job_definitions

SessionFactory = Callable[[], Awaitable[Any]] | Callable[[], Any]
JobCallable = Callable[..., Awaitable[Any]]


def resolve_task(task: str) -> JobCallable:
    """Import `package.module.function` and check it is a coroutine function."""

    module_name, _, attr = task.rpartition(".")
    if not module_name:
        raise ValueError(f"Invalid task path: {task}")
    func = getattr(import_module(module_name), attr, None)
    if func is None:
        raise AttributeError(f"Task {task} not found")
    if not inspect.iscoroutinefunction(func):
        raise TypeError(f"Task {task} must be an async function")
    return func


class LoyaltyJobScheduler:
    """Register loyalty jobs from a schedule file and run them with retries."""

    def __init__(
        self,
        *,
        session_factory: SessionFactory,
        config_path: Path,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._session_factory = session_factory
        self._config_path = config_path
        self._sleep = sleep
        self._config: ScheduleConfig | None = None
        self._scheduler: AsyncIOScheduler | None = None
        self._runners: dict[str, Callable[[], Awaitable[Any]]] = {}
        self._observability = get_scheduler_store()

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None

    def load(self) -> ScheduleConfig:
        """Read the schedule file and prepare a runner per enabled job."""

        config = load_job_definitions(self._config_path)
        self._runners = {
            job.id: self._wrap_callable(resolve_task(job.task), job)
            for job in config.jobs
            if job.enabled
        }
        self._config = config
        return config

    def start(self) -> None:
        config = self.load()
        timezone = ZoneInfo(config.timezone)
        scheduler = AsyncIOScheduler(timezone=timezone)
        for job in config.jobs:
            runner = self._runners.get(job.id)
            if runner is None:
                logger.info("Skipping disabled loyalty job", job_id=job.id, task=job.task)
                continue
            trigger = CronTrigger.from_crontab(job.cron, timezone=timezone)
            scheduler.add_job(runner, trigger=trigger, id=job.id, replace_existing=True)
            logger.info("Registered loyalty job", job_id=job.id, task=job.task, cron=job.cron)

        scheduler.start()
        self._scheduler = scheduler
        logger.info("Loyalty job scheduler started", jobs=len(self._runners))

    async def stop(self) -> None:
        if not self._scheduler:
            return
        result = self._scheduler.shutdown(wait=False)
        if inspect.isawaitable(result):
            await result
        self._scheduler = None
        logger.info("Loyalty job scheduler stopped")

    async def run_job(self, job_id: str) -> Any:
        """Run one configured job immediately, outside its cron trigger."""

        if self._config is None:
            self.load()
        runner = self._runners.get(job_id)
        if runner is None:
            raise KeyError(f"Unknown or disabled job: {job_id}")
        return await runner()

    def _wrap_callable(self, func: JobCallable, job: JobDefinition) -> Callable[[], Awaitable[Any]]:
        async def _runner() -> Any:
            policy = job.retry
            self._observability.record_dispatch(job.id, job.task)
            started_at = time.perf_counter()

            for attempt in range(1, policy.max_attempts + 1):
                try:
                    summary = await func(session_factory=self._session_factory, **job.kwargs)
                except Exception as exc:
                    error_message = str(exc)
                    self._observability.record_attempt_failure(
                        job.id, job.task, attempts=attempt, error=error_message
                    )
                    if attempt >= policy.max_attempts:
                        self._observability.record_run_failure(
                            job.id,
                            job.task,
                            runtime_seconds=time.perf_counter() - started_at,
                            attempts=attempt,
                            error=error_message,
                        )
                        logger.exception(
                            "Scheduled loyalty job failed after retries",
                            job_id=job.id,
                            attempts=attempt,
                            error=error_message,
                        )
                        return None

                    delay = policy.delay_for(attempt)
                    self._observability.record_retry(job.id, job.task, attempts=attempt + 1)
                    logger.warning(
                        "Scheduled loyalty job retrying",
                        job_id=job.id,
                        attempt=attempt + 1,
                        delay_seconds=delay,
                    )
                    if delay:
                        await self._sleep(delay)
                    continue

                runtime_seconds = time.perf_counter() - started_at
                self._observability.record_success(
                    job.id,
                    job.task,
                    runtime_seconds=runtime_seconds,
                    attempts=attempt,
                    summary=summary if isinstance(summary, dict) else None,
                )
                logger.info(
                    "Scheduled loyalty job completed",
                    job_id=job.id,
                    attempts=attempt,
                    runtime_seconds=runtime_seconds,
                )
                return summary
            return None

        return _runner

    def health(self) -> dict[str, object]:
        """Return scheduler health metadata suitable for diagnostics."""

        snapshot = self._observability.snapshot()
        jobs: list[dict[str, object]] = []
        for job in self._config.jobs if self._config else []:
            metrics = snapshot.jobs.get(job.id)
            jobs.append(
                {
                    "id": job.id,
                    "task": job.task,
                    "cron": job.cron,
                    "enabled": job.enabled,
                    "retry": job.retry.as_dict(),
                    "metrics": metrics.as_dict() if metrics else None,
                }
            )
        return {
            "running": self.is_running,
            "configured_jobs": len(jobs),
            "totals": snapshot.totals,
            "jobs": jobs,
        }


__all__ = ["LoyaltyJobScheduler", "resolve_task"]
