from __future__ import annotations

from kitchen_orders.schemas.order import Order
from kitchen_orders.services.event_bus import EventBus, event_bus


def _normalize_status(status: str | None) -> str:
    return (status or "").strip().lower()


def build_order_payload(order: Order, previous_status: str | None = None) -> dict:
    return {
        "order_id": order.id,
        "order_number": order.order_number,
        "status": _normalize_status(order.status),
        "previous_status": _normalize_status(previous_status) if previous_status else None,
        "customer_name": order.customer_name,
        "order_type": order.order_type,
        "table_number": order.table_number,
        "total_price": int(order.total_price or 0),
        "total_pieces": int(order.total_pieces or 0),
    }


def emit_order_created(order: Order, bus: EventBus = event_bus) -> None:
    bus.emit("order.created", build_order_payload(order))


def emit_order_updated(order: Order, bus: EventBus = event_bus) -> None:
    bus.emit("order.updated", build_order_payload(order))


def emit_order_deleted(order: Order, bus: EventBus = event_bus) -> None:
    bus.emit("order.deleted", build_order_payload(order))


def emit_order_status_changed(order: Order, previous_status: str | None, bus: EventBus = event_bus) -> None:
    if previous_status and _normalize_status(previous_status) == _normalize_status(order.status):
        return
    payload = build_order_payload(order, previous_status=previous_status)
    bus.emit("order.status.changed", payload)
    status = payload["status"]
    if status == "ready":
        bus.emit("order.ready", payload)
    if status == "completed":
        bus.emit("order.completed", payload)
