# kitchen_orders/deps.py
from __future__ import annotations

from fastapi import Depends

from kitchen_orders.core.config import INITIAL_STOCK
from kitchen_orders.core.database import SessionLocal
from kitchen_orders.services.order_store import OrderStore, SqlOrderStore
from kitchen_orders.services.orders import OrderService
from kitchen_orders.services.stock_ledger import SqlStockLedger, StockLedger


def get_order_store() -> OrderStore:
    return SqlOrderStore(SessionLocal)


def get_stock_ledger() -> StockLedger:
    return SqlStockLedger(SessionLocal, initial_stock=INITIAL_STOCK)


def get_order_service(
    store: OrderStore = Depends(get_order_store),
    ledger: StockLedger = Depends(get_stock_ledger),
) -> OrderService:
    """Monta o serviço de pedidos; nos testes as dependências são trocadas por versões em memória."""
    return OrderService(store, ledger)
