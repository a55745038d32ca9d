from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, Literal

from fastapi import APIRouter, Depends, Request
from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice_api.core.settings import settings
from backoffice_api.db.session import get_session
from backoffice_api.observability.scheduler import get_scheduler_store


router = APIRouter()


class ComponentStatus(BaseModel):
    status: Literal["ready", "starting", "disabled", "error", "degraded"]
    detail: str | None = Field(default=None, description="Human readable status detail")
    last_error_at: str | None = Field(default=None, description="ISO timestamp of most recent error")
    last_success_at: str | None = Field(default=None, description="ISO timestamp of most recent success")


class ReadinessPayload(BaseModel):
    status: Literal["ready", "degraded", "error"]
    components: Dict[str, ComponentStatus]


@router.get("/healthz", summary="Service health check")
async def service_health() -> dict[str, str]:
    return {"status": "ok"}


async def _database_component(session: AsyncSession) -> ComponentStatus:
    try:
        await session.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.warning("Readiness database probe failed", error=str(exc))
        return ComponentStatus(
            status="error",
            detail="Database unreachable",
            last_error_at=datetime.now(timezone.utc).isoformat(),
        )
    return ComponentStatus(status="ready")


def _scheduler_component(request: Request) -> ComponentStatus:
    scheduler = getattr(request.app.state, "loyalty_job_scheduler", None)
    if not settings.loyalty_job_scheduler_enabled or scheduler is None:
        return ComponentStatus(status="disabled", detail="Loyalty job scheduler disabled via settings")

    snapshot = get_scheduler_store().snapshot()
    failing = [job_id for job_id, job in snapshot.jobs.items() if job.consecutive_failures > 0]
    last_success = max(
        (job.last_success_at for job in snapshot.jobs.values() if job.last_success_at),
        default=None,
    )
    last_error = max(
        (job.last_error_at for job in snapshot.jobs.values() if job.last_error_at),
        default=None,
    )
    common = {
        "last_success_at": last_success.isoformat() if last_success else None,
        "last_error_at": last_error.isoformat() if last_error else None,
    }
    if failing:
        return ComponentStatus(status="error", detail=f"Jobs failing: {', '.join(sorted(failing))}", **common)
    if not scheduler.is_running:
        return ComponentStatus(status="starting", detail="Loyalty job scheduler not running", **common)
    return ComponentStatus(status="ready", **common)


@router.get("/readyz", summary="Service readiness", response_model=ReadinessPayload)
async def service_readiness(
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> ReadinessPayload:
    components = {
        "database": await _database_component(session),
        "loyalty_scheduler": _scheduler_component(request),
    }

    status: Literal["ready", "degraded", "error"] = "ready"
    if components["database"].status == "error":
        status = "error"
    elif components["loyalty_scheduler"].status in {"error", "starting"}:
        status = "degraded"

    return ReadinessPayload(status=status, components=components)
