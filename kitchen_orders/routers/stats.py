from __future__ import annotations

from datetime import date, datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query

from kitchen_orders.core.config import STATS_TIMEZONE
from kitchen_orders.deps import get_order_service
from kitchen_orders.services.orders import OrderService
from kitchen_orders.services.stats import compute_stats, resolve_date_range, resolve_timezone

router = APIRouter(prefix="/api/stats", tags=["stats"])


def _parse_date(value: str | None) -> date | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value).date()
    except ValueError:
        try:
            return date.fromisoformat(value)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail="Data inválida") from exc


@router.get("")
def order_stats(
    range_kind: str = Query("today", alias="range"),
    start: str | None = Query(None),
    end: str | None = Query(None),
    service: OrderService = Depends(get_order_service),
):
    tz = resolve_timezone(STATS_TIMEZONE)
    range_start, range_end = resolve_date_range(
        range_kind,
        now=datetime.now(timezone.utc),
        tz=tz,
        start=_parse_date(start),
        end=_parse_date(end),
    )
    return compute_stats(service.list_orders(), range_start, range_end, tz)
