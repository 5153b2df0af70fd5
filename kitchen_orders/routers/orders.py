from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends

from kitchen_orders.deps import get_order_service
from kitchen_orders.schemas.order import Order, OrderDraft, StatusUpdate
from kitchen_orders.services.orders import OrderService

router = APIRouter(prefix="/api", tags=["orders"])


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def order_to_dict(o: Order) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "id": o.id,
        "order_number": o.order_number,
        "status": o.status,
        "priority": o.priority,
        "payment_method": o.payment_method,
        "order_type": o.order_type,
        "customer_name": o.customer_name,
        "customer_phone": o.customer_phone,
        "items": [item.model_dump(exclude_none=True) for item in o.items],
        "total_items": o.total_items,
        "total_pieces": o.total_pieces,
        "total_price": o.total_price,
        "created_at": _iso(o.created_at),
        "started_at": _iso(o.started_at),
        "ready_at": _iso(o.ready_at),
        "completed_at": _iso(o.completed_at),
        "version": o.version,
    }
    # campos opcionais só aparecem quando preenchidos
    if o.table_number:
        payload["table_number"] = o.table_number
    if o.additionals:
        payload["additionals"] = [a.model_dump() for a in o.additionals]
    return payload


def _parse_statuses(status: Optional[str]) -> list[str]:
    if not status:
        return []
    return [s.strip().lower() for s in status.split(",") if s.strip()]


@router.get("/orders")
def list_orders(
    status: Optional[str] = None,
    service: OrderService = Depends(get_order_service),
):
    return [order_to_dict(o) for o in service.list_orders(_parse_statuses(status))]


@router.get("/orders/{order_id}")
def get_order(order_id: str, service: OrderService = Depends(get_order_service)):
    return order_to_dict(service.get_order(order_id))


@router.post("/orders", status_code=201)
def create_order(payload: OrderDraft, service: OrderService = Depends(get_order_service)):
    order_id = service.create_order(payload)
    return order_to_dict(service.get_order(order_id))


@router.put("/orders/{order_id}")
def update_order(
    order_id: str,
    payload: OrderDraft,
    service: OrderService = Depends(get_order_service),
):
    return order_to_dict(service.update_order(order_id, payload))


@router.delete("/orders/{order_id}")
def delete_order(order_id: str, service: OrderService = Depends(get_order_service)):
    previous = service.delete_order(order_id)
    return {"ok": True, "deleted": previous is not None}


@router.patch("/orders/{order_id}/status")
def update_status(
    order_id: str,
    body: StatusUpdate,
    service: OrderService = Depends(get_order_service),
):
    order = service.update_order_status(order_id, body.status)
    return {"ok": True, "status": order.status, "order": order_to_dict(order)}
