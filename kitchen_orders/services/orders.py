from __future__ import annotations

import logging
import random
import uuid
from datetime import datetime, timezone
from typing import Callable, Iterable, Mapping, Optional

from kitchen_orders.core.config import (
    ORDER_NUMBER_PREFIX,
    ORDER_WRITE_MAX_RETRIES,
    STRICT_STATUS_TRANSITIONS,
)
from kitchen_orders.core.errors import (
    ConcurrentUpdateError,
    InvalidStatusTransition,
    NotFoundError,
    ValidationError,
)
from kitchen_orders.core.menu import MENU_CATALOG, MenuCatalog
from kitchen_orders.schemas.order import (
    AdditionalLineItem,
    Order,
    OrderDraft,
    OrderLineItem,
)
from kitchen_orders.services.event_bus import EventBus, event_bus
from kitchen_orders.services.order_events import (
    emit_order_created,
    emit_order_deleted,
    emit_order_status_changed,
    emit_order_updated,
)
from kitchen_orders.services.order_store import OrderStore, StaleRecordError, as_utc
from kitchen_orders.services.stock_ledger import StockLedger
from kitchen_orders.services.usage import compute_usage, negate, usage_delta


logger = logging.getLogger(__name__)

STATUS_FLOW = ("pending", "preparing", "ready", "completed")
STATUS_TIMESTAMP_FIELDS = {
    "preparing": "started_at",
    "ready": "ready_at",
    "completed": "completed_at",
}
TIMESTAMP_FIELDS = ("created_at", "started_at", "ready_at", "completed_at")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_order_number(prefix: str = ORDER_NUMBER_PREFIX) -> str:
    # rótulo de exibição, não é único
    return f"{prefix}{random.randint(0, 999):03d}"


def _clean_text(value: str | None) -> Optional[str]:
    text = (value or "").strip()
    return text or None


def validate_order_draft(draft: OrderDraft) -> None:
    if not (draft.customer_name or "").strip():
        raise ValidationError("Nome do cliente é obrigatório")
    if not draft.items:
        raise ValidationError("Pedido precisa de pelo menos um item")
    if draft.order_type == "dine-in" and not (draft.table_number or "").strip():
        raise ValidationError("Número da mesa é obrigatório para dine-in")


def _normalize_line_items(items: Iterable[OrderLineItem], catalog: MenuCatalog) -> list[OrderLineItem]:
    normalized: list[OrderLineItem] = []
    for item in items:
        menu_item = catalog.get_menu_item(item.menu_id)
        price = item.price if item.price is not None else (menu_item.price if menu_item else 0)
        pack_size = item.pack_size if item.pack_size is not None else (menu_item.pack_size if menu_item else 0)
        menu_name = (item.menu_name or "").strip() or (menu_item.name if menu_item else item.menu_id)
        variant = _clean_text(item.variant) or (menu_item.variant if menu_item else None)
        normalized.append(
            OrderLineItem(
                id=_clean_text(item.id) or f"item_{uuid.uuid4().hex[:12]}",
                menu_id=item.menu_id,
                menu_name=menu_name,
                pack_size=pack_size,
                variant=variant,
                quantity=item.quantity,
                price=price,
                subtotal=price * item.quantity,
                notes=_clean_text(item.notes),
            )
        )
    return normalized


def _normalize_additionals(
    additionals: Iterable[AdditionalLineItem] | None,
    catalog: MenuCatalog,
) -> Optional[list[AdditionalLineItem]]:
    normalized: list[AdditionalLineItem] = []
    for entry in additionals or []:
        known = catalog.get_additional_item(entry.id)
        price = entry.price if entry.price is not None else (known.price if known else 0)
        name = (entry.name or "").strip() or (known.name if known else entry.id)
        normalized.append(
            AdditionalLineItem(
                id=entry.id,
                name=name,
                quantity=entry.quantity,
                price=price,
                subtotal=price * entry.quantity,
            )
        )
    return normalized or None


def build_order(
    draft: OrderDraft,
    catalog: MenuCatalog,
    *,
    now: datetime,
    previous: Order | None = None,
) -> Order:
    """Normaliza o rascunho e calcula os totais gravados junto com o pedido.

    Em edição, número, status e timestamps ausentes no rascunho herdam os
    valores do pedido atual.
    """
    items = _normalize_line_items(draft.items, catalog)
    additionals = _normalize_additionals(draft.additionals, catalog)

    total_items = sum(item.quantity for item in items)
    total_pieces = sum(item.quantity * (item.pack_size or 0) for item in items)
    total_price = sum(item.subtotal for item in items) + sum(a.subtotal for a in additionals or [])

    inherited = {field: getattr(previous, field, None) for field in TIMESTAMP_FIELDS}
    # sempre em UTC: o SQLite descarta o offset ao gravar
    timestamps = {field: as_utc(getattr(draft, field) or inherited[field]) for field in TIMESTAMP_FIELDS}
    if timestamps["created_at"] is None:
        timestamps["created_at"] = as_utc(now)

    order_number = _clean_text(draft.order_number) or (previous.order_number if previous else None)
    status = draft.status or (previous.status if previous else "pending")

    return Order(
        order_number=order_number or generate_order_number(),
        status=status,
        priority=draft.priority,
        payment_method=draft.payment_method,
        order_type=draft.order_type,
        table_number=_clean_text(draft.table_number) if draft.order_type == "dine-in" else None,
        customer_name=draft.customer_name.strip(),
        customer_phone=_clean_text(draft.customer_phone),
        items=items,
        additionals=additionals,
        total_items=total_items,
        total_pieces=total_pieces,
        total_price=total_price,
        **timestamps,
    )


def check_status_transition(current: str, new: str) -> None:
    if current == "completed":
        raise InvalidStatusTransition("Pedido já concluído não pode mudar de status")
    if STATUS_FLOW.index(new) < STATUS_FLOW.index(current):
        raise InvalidStatusTransition(f"Transição inválida: {current} -> {new}")


class OrderService:
    """Cria, edita e remove pedidos mantendo o estoque consistente.

    Invariante: para cada ingrediente, ledger = estoque inicial - consumo dos
    pedidos existentes (com piso em zero). A escrita do pedido acontece antes
    do ajuste do estoque; se o ajuste falhar, o pedido fica gravado e o erro é
    repassado para quem chamou.
    """

    def __init__(
        self,
        store: OrderStore,
        ledger: StockLedger,
        catalog: MenuCatalog = MENU_CATALOG,
        *,
        bus: EventBus = event_bus,
        clock: Callable[[], datetime] = _utcnow,
        strict_transitions: bool = STRICT_STATUS_TRANSITIONS,
        max_write_retries: int = ORDER_WRITE_MAX_RETRIES,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._catalog = catalog
        self._bus = bus
        self._clock = clock
        self._strict_transitions = strict_transitions
        self._max_write_retries = max(1, max_write_retries)

    @property
    def store(self) -> OrderStore:
        return self._store

    @property
    def ledger(self) -> StockLedger:
        return self._ledger

    def get_order(self, order_id: str) -> Order:
        order = self._store.get(order_id)
        if order is None:
            raise NotFoundError("Pedido não encontrado")
        return order

    def list_orders(self, statuses: Iterable[str] | None = None) -> list[Order]:
        return self._store.list(statuses)

    def _adjust_stock(self, deltas: Mapping[str, int], *, reason: str, order_id: str) -> None:
        if not deltas:
            return
        try:
            self._ledger.apply_delta(deltas, reason=reason, order_id=order_id)
        except Exception:
            # o pedido já foi gravado; o estoque fica defasado até nova ação
            logger.exception(
                "stock adjustment failed after order write reason=%s deltas=%s",
                reason,
                dict(deltas),
                extra={"order_id": order_id},
            )
            raise

    def create_order(self, draft: OrderDraft) -> str:
        validate_order_draft(draft)
        order = build_order(draft, self._catalog, now=self._clock())

        order_id = self._store.create(order)
        order.id = order_id
        logger.info(
            "order created number=%s items=%s",
            order.order_number,
            order.total_items,
            extra={"order_id": order_id},
        )

        usage = compute_usage(order.items, self._catalog)
        self._adjust_stock(negate(usage), reason="sale", order_id=order_id)

        emit_order_created(order, bus=self._bus)
        return order_id

    def update_order(self, order_id: str, draft: OrderDraft) -> Order:
        validate_order_draft(draft)

        for attempt in range(1, self._max_write_retries + 1):
            current = self.get_order(order_id)
            replacement = build_order(draft, self._catalog, now=self._clock(), previous=current)
            delta = usage_delta(
                compute_usage(current.items, self._catalog),
                compute_usage(replacement.items, self._catalog),
            )
            try:
                stored = self._store.put(order_id, replacement, expected_version=current.version)
            except StaleRecordError:
                logger.info(
                    "order changed during update, retrying",
                    extra={"order_id": order_id, "attempt": attempt},
                )
                continue

            logger.info("order updated usage_delta=%s", delta, extra={"order_id": order_id})
            self._adjust_stock(negate(delta), reason="edit", order_id=order_id)
            emit_order_updated(stored, bus=self._bus)
            return stored

        raise ConcurrentUpdateError("Pedido alterado por outra operação, tente novamente")

    def delete_order(self, order_id: str) -> Optional[Order]:
        previous = self._store.take(order_id)
        if previous is None:
            logger.info("order already deleted", extra={"order_id": order_id})
            return None

        usage = compute_usage(previous.items, self._catalog)
        logger.info("order deleted restoring=%s", usage, extra={"order_id": order_id})
        self._adjust_stock(usage, reason="restore", order_id=order_id)

        emit_order_deleted(previous, bus=self._bus)
        return previous

    def update_order_status(self, order_id: str, new_status: str) -> Order:
        new_status = (new_status or "").strip().lower()
        if new_status not in STATUS_FLOW:
            raise ValidationError("Status inválido")

        current = self.get_order(order_id)
        if current.status == new_status:
            return current
        if self._strict_transitions:
            check_status_transition(current.status, new_status)

        fields: dict = {"status": new_status}
        timestamp_field = STATUS_TIMESTAMP_FIELDS.get(new_status)
        if timestamp_field and getattr(current, timestamp_field) is None:
            fields[timestamp_field] = as_utc(self._clock())

        updated = self._store.patch(order_id, fields)
        logger.info(
            "order status %s -> %s",
            current.status,
            new_status,
            extra={"order_id": order_id},
        )
        emit_order_status_changed(updated, current.status, bus=self._bus)
        return updated
