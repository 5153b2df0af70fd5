import sqlalchemy as sa
from sqlalchemy import Column, DateTime, Integer, String, func
from sqlalchemy.dialects.postgresql import JSONB

from kitchen_orders.core.database import Base

LEDGER_ID = 1


class StockLedger(Base):
    """Registro único com todas as contagens; a versão serve de compare-and-set."""

    __tablename__ = "stock_ledger"

    id = Column(Integer, primary_key=True)
    counts = Column(JSONB().with_variant(sa.JSON(), "sqlite"), nullable=False)
    version = Column(Integer, default=0, nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class StockMovement(Base):
    __tablename__ = "stock_movements"

    id = Column(Integer, primary_key=True)
    ingredient = Column(String(32), index=True, nullable=False)
    type = Column(String(8), nullable=False)  # IN / OUT / ADJUST
    quantity = Column(Integer, nullable=False)
    reason = Column(String(16), nullable=False)  # sale / edit / restore / manual
    # sem FK: o pedido pode ser removido e o movimento continua no histórico
    order_id = Column(String(32), index=True, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
