"""Observability endpoints for redemption telemetry and Prometheus scraping."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse

from zvest_api.api.dependencies.security import require_pos_api_key
from zvest_api.observability.redemptions import get_redemption_store

router = APIRouter(
    prefix="/observability",
    tags=["Observability"],
    dependencies=[Depends(require_pos_api_key)],
)


@router.get("/redemptions", summary="Redemption lifecycle counters")
async def get_redemption_snapshot() -> dict[str, object]:
    return get_redemption_store().snapshot().as_dict()


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
    "/prometheus",
    summary="Prometheus-formatted redemption metrics",
    response_class=PlainTextResponse,
)
async def get_prometheus_metrics() -> PlainTextResponse:
    snapshot = get_redemption_store().snapshot()
    codes = snapshot.codes
    lines: list[str] = []
    lines += _format_metric("zvest_redemption_code_attempts_total", "Redemption code draws", codes.total_attempts)
    lines += _format_metric(
        "zvest_redemption_code_collisions_total", "Draws that hit an active code", codes.collisions
    )
    lines += _format_metric(
        "zvest_redemption_code_collision_rate", "Share of draws that collided", round(codes.collision_rate, 6)
    )
    lines += _format_metric(
        "zvest_redemption_code_exhausted_total", "Activations that ran out of code draws", codes.exhausted
    )
    for outcome, count in sorted(snapshot.activations.items()):
        lines += _format_metric(
            "zvest_redemption_activations_total", "Coupon activations by outcome", count, {"outcome": outcome}
        )
    for outcome, count in sorted(snapshot.validations.items()):
        lines += _format_metric(
            "zvest_redemption_validations_total", "POS code validations by outcome", count, {"outcome": outcome}
        )
    lines += _format_metric("zvest_redemption_reversals_total", "Reversed redemptions", snapshot.reversals)
    lines += _format_metric("zvest_redemption_swept_total", "Redemptions expired by the sweep", snapshot.swept)
    return PlainTextResponse("\n".join(lines) + "\n")
