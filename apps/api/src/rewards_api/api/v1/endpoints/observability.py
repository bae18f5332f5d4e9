"""Observability endpoints for the loyalty award engine."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse

from rewards_api.api.dependencies.security import require_internal_api_key
from rewards_api.observability.loyalty import get_loyalty_store


router = APIRouter(prefix="/observability", tags=["Observability"])


def _format_metric(name: str, description: str, value: int | float, labels: dict[str, str] | None = None) -> list[str]:
    label_fragment = ""
    if labels:
        formatted = ",".join(f'{key}="{val}"' for key, val in sorted(labels.items()))
        label_fragment = f"{{{formatted}}}"
    return [
        f"# HELP {name} {description}",
        f"# TYPE {name} gauge",
        f"{name}{label_fragment} {value}",
    ]


@router.get(
    "/loyalty",
    dependencies=[Depends(require_internal_api_key)],
    summary="Loyalty award engine observability snapshot",
)
async def get_loyalty_snapshot() -> dict[str, object]:
    return get_loyalty_store().snapshot().as_dict()


@router.get(
    "/prometheus",
    dependencies=[Depends(require_internal_api_key)],
    summary="Prometheus-formatted loyalty metrics",
    response_class=PlainTextResponse,
)
async def get_prometheus_metrics() -> PlainTextResponse:
    snapshot = get_loyalty_store().snapshot()
    lines: list[str] = []

    for award, value in sorted(snapshot.awards.items()):
        lines.extend(
            _format_metric(
                "rewards_loyalty_awards_total",
                "Loyalty ledger writes grouped by operation",
                value,
                labels={"award": award},
            )
        )
    for direction, value in sorted(snapshot.points.items()):
        lines.extend(
            _format_metric(
                "rewards_loyalty_points_total",
                "Loyalty points moved through the ledger",
                value,
                labels={"direction": direction},
            )
        )
    for event, value in sorted(snapshot.quests.items()):
        lines.extend(
            _format_metric(
                "rewards_quest_events_total",
                "Quest lifecycle events",
                value,
                labels={"event": event},
            )
        )
    for reason, value in sorted(snapshot.failures.items()):
        lines.extend(
            _format_metric(
                "rewards_loyalty_failures_total",
                "Rejected or retried loyalty writes",
                value,
                labels={"reason": reason},
            )
        )

    return PlainTextResponse("\n".join(lines) + "\n")
