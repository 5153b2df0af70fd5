from __future__ import annotations

from fastapi import APIRouter

from kitchen_orders.core.metrics import request_metrics

router = APIRouter(prefix="/internal/metrics", tags=["internal-metrics"])


@router.get("")
def metrics_snapshot():
    return {
        "requests": request_metrics.snapshot(),
        "stock_conflicts": request_metrics.stock_conflicts(),
    }
