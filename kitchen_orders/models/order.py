import sqlalchemy as sa
from sqlalchemy import Column, DateTime, Integer, String, func
from sqlalchemy.dialects.postgresql import JSONB

from kitchen_orders.core.database import Base


class Order(Base):
    __tablename__ = "orders"

    # id gerado pelo store (uuid hex); order_number é só rótulo de exibição
    id = Column(String(32), primary_key=True)
    order_number = Column(String(16), index=True, nullable=False)

    # Kanban: pending / preparing / ready / completed
    status = Column(String(16), default="pending", index=True, nullable=False)
    priority = Column(String(16), default="normal", nullable=False)
    payment_method = Column(String(16), default="cash", nullable=False)
    order_type = Column(String(16), default="takeaway", nullable=False)
    table_number = Column(String(16), nullable=True)

    customer_name = Column(String(120), nullable=False)
    customer_phone = Column(String(30), nullable=True)

    items = Column(JSONB().with_variant(sa.JSON(), "sqlite"), nullable=False)
    additionals = Column(JSONB().with_variant(sa.JSON(), "sqlite"), nullable=True)

    # valores derivados, gravados junto com o pedido
    total_items = Column(Integer, default=0, nullable=False)
    total_pieces = Column(Integer, default=0, nullable=False)
    total_price = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), index=True, nullable=False)
    started_at = Column(DateTime(timezone=True), nullable=True)
    ready_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    version = Column(Integer, default=1, nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
