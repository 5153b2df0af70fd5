from __future__ import annotations

import logging
from typing import Iterable, Mapping

from kitchen_orders.core.menu import MENU_CATALOG, MenuCatalog
from kitchen_orders.schemas.order import OrderLineItem

logger = logging.getLogger(__name__)

Usage = dict[str, int]


def compute_usage(items: Iterable[OrderLineItem], catalog: MenuCatalog = MENU_CATALOG) -> Usage:
    """Soma o consumo de ingredientes dos itens do pedido.

    Item com menu_id fora do catálogo conta como zero (o pedido segue normalmente).
    Adicionais nunca entram aqui.
    """
    usage: Usage = {}
    for item in items:
        menu_item = catalog.get_menu_item(item.menu_id)
        if menu_item is None:
            logger.warning(
                "catalog miss: menu_id=%s contributes no ingredient usage",
                item.menu_id,
            )
            continue
        for ingredient, per_item in menu_item.composition.items():
            amount = int(per_item) * int(item.quantity)
            if amount:
                usage[ingredient] = usage.get(ingredient, 0) + amount
    return usage


def usage_delta(old: Mapping[str, int], new: Mapping[str, int]) -> Usage:
    delta: Usage = {}
    for ingredient in set(old) | set(new):
        diff = int(new.get(ingredient, 0)) - int(old.get(ingredient, 0))
        if diff:
            delta[ingredient] = diff
    return delta


def negate(usage: Mapping[str, int]) -> Usage:
    return {ingredient: -amount for ingredient, amount in usage.items() if amount}
