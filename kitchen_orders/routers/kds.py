from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Query

from kitchen_orders.deps import get_order_service
from kitchen_orders.schemas.order import Order
from kitchen_orders.services.orders import OrderService

router = APIRouter(tags=["kds"])

BOARD_STATUSES = ("pending", "preparing", "ready")
DISPLAY_READY_LIMIT = 4


def timer_level(elapsed_minutes: float) -> str:
    if elapsed_minutes < 5:
        return "ok"
    if elapsed_minutes < 10:
        return "warning"
    return "late"


def _board_card(order: Order, now: datetime) -> Dict[str, Any]:
    # o cronômetro conta a partir do início do preparo, ou da criação enquanto pendente
    reference = order.started_at or order.created_at
    elapsed = max(0.0, (now - reference).total_seconds() / 60)
    return {
        "id": order.id,
        "order_number": order.order_number,
        "status": order.status,
        "priority": order.priority,
        "order_type": order.order_type,
        "table_number": order.table_number,
        "customer_name": order.customer_name,
        "items": [
            {
                "menu_name": item.menu_name,
                "quantity": item.quantity,
                "pack_size": item.pack_size,
                "notes": item.notes,
            }
            for item in order.items
        ],
        "additionals": [
            {"name": a.name, "quantity": a.quantity} for a in order.additionals or []
        ],
        "total_pieces": order.total_pieces,
        "elapsed_minutes": round(elapsed, 1),
        "timer": timer_level(elapsed),
    }


def build_kitchen_board(orders: List[Order], now: datetime) -> Dict[str, List[Dict[str, Any]]]:
    board: Dict[str, List[Dict[str, Any]]] = {status: [] for status in BOARD_STATUSES}
    # mais antigos primeiro; urgentes na frente da fila
    ordered = sorted(orders, key=lambda o: (o.priority != "urgent", o.created_at))
    for order in ordered:
        if order.status in board:
            board[order.status].append(_board_card(order, now))
    return board


def build_customer_display(orders: List[Order], limit: int = DISPLAY_READY_LIMIT) -> Dict[str, List[Dict[str, Any]]]:
    epoch = datetime.min.replace(tzinfo=timezone.utc)
    ready = sorted(
        (o for o in orders if o.status == "ready"),
        key=lambda o: o.ready_at or epoch,
        reverse=True,
    )[:limit]
    preparing = sorted((o for o in orders if o.status == "preparing"), key=lambda o: o.created_at)
    return {
        "ready": [
            {"order_number": o.order_number, "customer_name": o.customer_name, "ready_at": o.ready_at.isoformat() if o.ready_at else None}
            for o in ready
        ],
        "preparing": [{"order_number": o.order_number, "customer_name": o.customer_name} for o in preparing],
    }


@router.get("/api/kds/orders")
def list_kds_orders(service: OrderService = Depends(get_order_service)):
    orders = service.list_orders(BOARD_STATUSES)
    return build_kitchen_board(orders, datetime.now(timezone.utc))


@router.get("/api/display/orders")
def list_display_orders(
    limit: int = Query(DISPLAY_READY_LIMIT, ge=1, le=20),
    service: OrderService = Depends(get_order_service),
):
    orders = service.list_orders(("preparing", "ready"))
    return build_customer_display(orders, limit=limit)
