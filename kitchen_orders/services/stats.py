from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Iterable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from kitchen_orders.core.errors import ValidationError
from kitchen_orders.schemas.order import Order

RANGE_TYPES = {"today", "week", "month", "custom"}
ORDER_TYPES = ("dine-in", "takeaway", "delivery")
ORDER_STATUSES = ("pending", "preparing", "ready", "completed")


def resolve_timezone(name: str) -> tzinfo:
    if name.strip().upper() in {"UTC", "Z"}:
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise RuntimeError(f"Invalid STATS_TIMEZONE: {name}") from exc


def _start_of_day(day: date, tz: tzinfo) -> datetime:
    return datetime.combine(day, time.min, tzinfo=tz)


def _end_of_day(day: date, tz: tzinfo) -> datetime:
    return datetime.combine(day, time.max, tzinfo=tz)


def resolve_date_range(
    kind: str,
    *,
    now: datetime,
    tz: tzinfo,
    start: date | None = None,
    end: date | None = None,
) -> tuple[datetime, datetime]:
    kind = (kind or "today").strip().lower()
    if kind not in RANGE_TYPES:
        raise ValidationError("Intervalo inválido")

    today = now.astimezone(tz).date()
    if kind == "today":
        return _start_of_day(today, tz), _end_of_day(today, tz)
    if kind == "week":
        # semana começa no domingo
        week_start = today - timedelta(days=(today.weekday() + 1) % 7)
        return _start_of_day(week_start, tz), _end_of_day(week_start + timedelta(days=6), tz)
    if kind == "month":
        month_start = today.replace(day=1)
        next_month = (month_start + timedelta(days=32)).replace(day=1)
        return _start_of_day(month_start, tz), _end_of_day(next_month - timedelta(days=1), tz)

    if not start or not end:
        return _start_of_day(today, tz), _end_of_day(today, tz)
    if start > end:
        raise ValidationError("Intervalo inválido")
    return _start_of_day(start, tz), _end_of_day(end, tz)


def compute_stats(
    orders: Iterable[Order],
    start: datetime,
    end: datetime,
    tz: tzinfo,
) -> dict:
    filtered = [o for o in orders if start <= o.created_at <= end]
    completed = [o for o in filtered if o.status == "completed"]

    total_revenue = sum(o.total_price for o in completed)
    total_pieces = sum(o.total_pieces for o in completed)

    timed = [o for o in completed if o.started_at and o.completed_at]
    avg_prep_time = (
        sum((o.completed_at - o.started_at).total_seconds() / 60 for o in timed) / len(timed)
        if timed
        else 0.0
    )
    avg_order_value = total_revenue / len(completed) if completed else 0.0

    menu_stats: dict[str, dict] = {}
    additional_stats: dict[str, dict] = {}
    hourly = {hour: {"orders": 0, "revenue": 0} for hour in range(24)}
    daily: dict[str, dict] = {}
    for order in completed:
        for item in order.items:
            entry = menu_stats.setdefault(item.menu_name, {"count": 0, "revenue": 0, "percentage": 0.0})
            entry["count"] += item.quantity
            entry["revenue"] += item.subtotal
        for additional in order.additionals or []:
            entry = additional_stats.setdefault(additional.name, {"count": 0, "revenue": 0})
            entry["count"] += additional.quantity
            entry["revenue"] += additional.subtotal

        local_created = order.created_at.astimezone(tz)
        hourly[local_created.hour]["orders"] += 1
        hourly[local_created.hour]["revenue"] += order.total_price
        day_entry = daily.setdefault(local_created.date().isoformat(), {"orders": 0, "revenue": 0})
        day_entry["orders"] += 1
        day_entry["revenue"] += order.total_price

    for entry in menu_stats.values():
        entry["percentage"] = round(entry["revenue"] / total_revenue * 100, 2) if total_revenue else 0.0

    return {
        "range": {"start": start.isoformat(), "end": end.isoformat()},
        "total_orders": len(filtered),
        "completed_orders": len(completed),
        "total_revenue": total_revenue,
        "total_pieces": total_pieces,
        "avg_prep_time": round(avg_prep_time, 2),
        "avg_order_value": round(avg_order_value, 2),
        "menu_stats": menu_stats,
        "additional_stats": additional_stats,
        "orders_by_type": {kind: sum(1 for o in filtered if o.order_type == kind) for kind in ORDER_TYPES},
        "orders_by_status": {status: sum(1 for o in filtered if o.status == status) for status in ORDER_STATUSES},
        "hourly_stats": [{"hour": hour, **values} for hour, values in hourly.items()],
        "daily_stats": [{"date": day, **values} for day, values in sorted(daily.items())],
    }
