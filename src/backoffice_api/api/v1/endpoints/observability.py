"""Observability endpoints for ledger counters, scheduler runs and Prometheus."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse

from backoffice_api.api.dependencies.security import require_admin_api_key
from backoffice_api.observability.loyalty import get_loyalty_store
from backoffice_api.observability.scheduler import get_scheduler_store


router = APIRouter(
    prefix="/observability",
    tags=["Observability"],
    dependencies=[Depends(require_admin_api_key)],
)


@router.get("/loyalty", summary="Loyalty ledger observability snapshot")
async def get_loyalty_snapshot() -> dict[str, object]:
    return get_loyalty_store().snapshot().as_dict()


@router.get("/scheduler", summary="Loyalty job scheduler snapshot")
async def get_scheduler_snapshot() -> dict[str, object]:
    return get_scheduler_store().snapshot().as_dict()


def _format_metric(name: str, description: str, value: int | float, labels: dict[str, str] | None = None) -> list[str]:
    label_fragment = ""
    if labels:
        formatted = ",".join(f'{key}="{val}"' for key, val in sorted(labels.items()))
        label_fragment = f"{{{formatted}}}"
    return [
        f"# HELP {name} {description}",
        f"# TYPE {name} counter",
        f"{name}{label_fragment} {value}",
    ]


@router.get(
    "/prometheus",
    summary="Prometheus-formatted observability metrics",
    response_class=PlainTextResponse,
)
async def get_prometheus_metrics() -> PlainTextResponse:
    ledger = get_loyalty_store().snapshot()
    scheduler = get_scheduler_store().snapshot()

    lines: list[str] = []
    for operation, count in sorted(ledger.operations.items()):
        lines.extend(
            _format_metric(
                "backoffice_loyalty_operations_total",
                "Ledger operations applied",
                count,
                {"operation": operation},
            )
        )
    for operation, points in sorted(ledger.points.items()):
        lines.extend(
            _format_metric(
                "backoffice_loyalty_points_total",
                "Points moved by ledger operations",
                points,
                {"operation": operation},
            )
        )
    for key, count in sorted(ledger.skipped.items()):
        operation, _, reason = key.partition(":")
        lines.extend(
            _format_metric(
                "backoffice_loyalty_skipped_total",
                "Ledger operations skipped as no-ops",
                count,
                {"operation": operation, "reason": reason},
            )
        )
    for step, count in sorted(ledger.failures.items()):
        lines.extend(
            _format_metric(
                "backoffice_loyalty_failures_total",
                "Loyalty steps that failed inside an order workflow",
                count,
                {"step": step},
            )
        )
    for key, value in sorted(scheduler.totals.items()):
        lines.extend(
            _format_metric(
                f"backoffice_scheduler_{key}_total",
                f"Loyalty scheduler {key.replace('_', ' ')}",
                value,
            )
        )

    return PlainTextResponse("\n".join(lines) + "\n")
