from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from kitchen_orders.core.config import LOW_STOCK_THRESHOLD
from kitchen_orders.core.menu import MENU_CATALOG
from kitchen_orders.deps import get_stock_ledger
from kitchen_orders.services.stock_ledger import StockLedger, StockLevels

router = APIRouter(prefix="/api/stock", tags=["stock"])


class StockLevelUpdate(BaseModel):
    # valores negativos são aceitos e gravados como zero
    value: int


class StockMovementRead(BaseModel):
    id: Optional[int] = None
    ingredient: str
    type: str
    quantity: int
    reason: str
    order_id: Optional[str] = None
    created_at: Optional[str] = None


def _with_known_ingredients(levels: StockLevels) -> StockLevels:
    result = {ingredient: 0 for ingredient in MENU_CATALOG.ingredients()}
    result.update(levels)
    return result


def low_stock_ingredients(levels: StockLevels, threshold: int = LOW_STOCK_THRESHOLD) -> list[str]:
    return sorted(ingredient for ingredient, count in levels.items() if count < threshold)


def _stock_response(levels: StockLevels) -> dict:
    levels = _with_known_ingredients(levels)
    return {
        "stock": levels,
        "low_stock": low_stock_ingredients(levels),
        "low_stock_threshold": LOW_STOCK_THRESHOLD,
    }


@router.get("")
def read_stock(ledger: StockLedger = Depends(get_stock_ledger)):
    return _stock_response(ledger.read())


@router.patch("/{ingredient}")
def set_stock_level(
    ingredient: str,
    payload: StockLevelUpdate,
    ledger: StockLedger = Depends(get_stock_ledger),
):
    return _stock_response(ledger.set_level(ingredient, payload.value))


@router.get("/movements", response_model=list[StockMovementRead])
def list_stock_movements(
    ingredient: Optional[str] = Query(None),
    order_id: Optional[str] = Query(None),
    limit: int = Query(200, ge=1, le=1000),
    ledger: StockLedger = Depends(get_stock_ledger),
):
    return ledger.list_movements(ingredient=ingredient, order_id=order_id, limit=limit)
