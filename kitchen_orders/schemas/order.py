from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

OrderStatus = Literal["pending", "preparing", "ready", "completed"]
OrderType = Literal["dine-in", "takeaway", "delivery"]
Priority = Literal["normal", "urgent"]
PaymentMethod = Literal["cash", "qris"]


class OrderLineItem(BaseModel):
    id: Optional[str] = None
    menu_id: str = Field(..., min_length=1)
    menu_name: str = ""
    pack_size: Optional[int] = Field(None, ge=0)
    variant: Optional[str] = None
    quantity: int = Field(..., ge=1)
    price: Optional[int] = Field(None, ge=0)
    subtotal: int = 0
    notes: Optional[str] = None


class AdditionalLineItem(BaseModel):
    id: str = Field(..., min_length=1)
    name: str = ""
    quantity: int = Field(..., ge=1)
    price: Optional[int] = Field(None, ge=0)
    subtotal: int = 0


class OrderDraft(BaseModel):
    """Corpo completo de um pedido (criação ou substituição integral)."""

    order_number: Optional[str] = None
    status: Optional[OrderStatus] = None
    priority: Priority = "normal"
    payment_method: PaymentMethod = "cash"
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    ready_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    order_type: OrderType = "takeaway"
    table_number: Optional[str] = None
    customer_name: str = ""
    customer_phone: Optional[str] = None
    items: List[OrderLineItem] = Field(default_factory=list)
    additionals: Optional[List[AdditionalLineItem]] = None


class Order(BaseModel):
    id: str = ""
    order_number: str
    status: OrderStatus = "pending"
    priority: Priority = "normal"
    payment_method: PaymentMethod = "cash"
    created_at: datetime
    started_at: Optional[datetime] = None
    ready_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    order_type: OrderType = "takeaway"
    table_number: Optional[str] = None
    customer_name: str
    customer_phone: Optional[str] = None
    items: List[OrderLineItem]
    additionals: Optional[List[AdditionalLineItem]] = None
    total_items: int = 0
    total_pieces: int = 0
    total_price: int = 0
    version: int = 0


class StatusUpdate(BaseModel):
    status: OrderStatus
