from __future__ import annotations

import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Callable, Iterable, Optional

from sqlalchemy import desc
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from kitchen_orders.core.errors import KitchenError, NotFoundError, TransientStoreError
from kitchen_orders.models.order import Order as OrderRecord
from kitchen_orders.schemas.order import AdditionalLineItem, Order, OrderLineItem
from kitchen_orders.services.event_bus import EventBus, event_bus

logger = logging.getLogger(__name__)

PATCHABLE_FIELDS = {"status", "started_at", "ready_at", "completed_at"}
TAKE_MAX_ATTEMPTS = 5


class StaleRecordError(KitchenError):
    """A versão gravada não é mais a que foi lida."""

    status_code = 409


def new_order_id() -> str:
    return uuid.uuid4().hex


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        # SQLite devolve datetime sem fuso
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _dump_items(order: Order) -> list[dict]:
    return [item.model_dump(exclude_none=True) for item in order.items]


def _dump_additionals(order: Order) -> list[dict] | None:
    if not order.additionals:
        return None
    return [item.model_dump(exclude_none=True) for item in order.additionals]


class OrderStore(ABC):
    def __init__(self, *, bus: EventBus = event_bus) -> None:
        self._bus = bus

    @abstractmethod
    def create(self, order: Order) -> str:
        ...

    @abstractmethod
    def get(self, order_id: str) -> Optional[Order]:
        ...

    @abstractmethod
    def put(self, order_id: str, order: Order, expected_version: int | None = None) -> Order:
        """Sobrescreve o pedido inteiro.

        Levanta ``NotFoundError`` se o pedido não existe e ``StaleRecordError`` se
        ``expected_version`` não confere.
        """

    @abstractmethod
    def patch(self, order_id: str, fields: dict[str, Any]) -> Order:
        ...

    @abstractmethod
    def take(self, order_id: str) -> Optional[Order]:
        """Remove e devolve o valor anterior; só um chamador recebe o pedido."""

    @abstractmethod
    def list(self, statuses: Iterable[str] | None = None) -> list[Order]:
        """Pedidos do mais novo para o mais antigo."""

    def delete(self, order_id: str) -> bool:
        return self.take(order_id) is not None

    def subscribe_all(self, callback: Callable[[list[Order]], None]) -> Callable[[], None]:
        def _handler(_payload: dict) -> None:
            callback(self.list())

        return self._bus.subscribe("orders.changed", _handler)

    def _notify(self, order_id: str, action: str) -> None:
        self._bus.emit("orders.changed", {"order_id": order_id, "action": action})


def _check_patch_fields(fields: dict[str, Any]) -> None:
    unknown = set(fields) - PATCHABLE_FIELDS
    if unknown:
        raise ValueError(f"Fields not patchable: {sorted(unknown)}")


class InMemoryOrderStore(OrderStore):
    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self._orders: dict[str, Order] = {}
        self._lock = Lock()

    def create(self, order: Order) -> str:
        order_id = new_order_id()
        record = order.model_copy(deep=True, update={"id": order_id, "version": 1})
        with self._lock:
            self._orders[order_id] = record
        self._notify(order_id, "created")
        return order_id

    def get(self, order_id: str) -> Optional[Order]:
        with self._lock:
            record = self._orders.get(order_id)
            return record.model_copy(deep=True) if record else None

    def put(self, order_id: str, order: Order, expected_version: int | None = None) -> Order:
        with self._lock:
            current = self._orders.get(order_id)
            if current is None:
                raise NotFoundError("Pedido não encontrado")
            if expected_version is not None and current.version != expected_version:
                raise StaleRecordError("Pedido alterado por outra operação")
            record = order.model_copy(deep=True, update={"id": order_id, "version": current.version + 1})
            self._orders[order_id] = record
            stored = record.model_copy(deep=True)
        self._notify(order_id, "updated")
        return stored

    def patch(self, order_id: str, fields: dict[str, Any]) -> Order:
        _check_patch_fields(fields)
        with self._lock:
            current = self._orders.get(order_id)
            if current is None:
                raise NotFoundError("Pedido não encontrado")
            record = current.model_copy(deep=True, update={**fields, "version": current.version + 1})
            self._orders[order_id] = record
            stored = record.model_copy(deep=True)
        self._notify(order_id, "patched")
        return stored

    def take(self, order_id: str) -> Optional[Order]:
        with self._lock:
            record = self._orders.pop(order_id, None)
        if record is None:
            return None
        self._notify(order_id, "deleted")
        return record

    def list(self, statuses: Iterable[str] | None = None) -> list[Order]:
        wanted = set(statuses) if statuses else None
        with self._lock:
            records = [r.model_copy(deep=True) for r in self._orders.values()]
        if wanted is not None:
            records = [r for r in records if r.status in wanted]
        records.sort(key=lambda r: r.created_at, reverse=True)
        return records


def _record_to_order(row: OrderRecord) -> Order:
    return Order(
        id=row.id,
        order_number=row.order_number,
        status=row.status,
        priority=row.priority,
        payment_method=row.payment_method,
        created_at=as_utc(row.created_at),
        started_at=as_utc(row.started_at),
        ready_at=as_utc(row.ready_at),
        completed_at=as_utc(row.completed_at),
        order_type=row.order_type,
        table_number=row.table_number,
        customer_name=row.customer_name,
        customer_phone=row.customer_phone,
        items=[OrderLineItem(**item) for item in (row.items or [])],
        additionals=[AdditionalLineItem(**item) for item in row.additionals] if row.additionals else None,
        total_items=row.total_items,
        total_pieces=row.total_pieces,
        total_price=row.total_price,
        version=row.version,
    )


def _order_columns(order: Order) -> dict[str, Any]:
    return {
        "order_number": order.order_number,
        "status": order.status,
        "priority": order.priority,
        "payment_method": order.payment_method,
        "order_type": order.order_type,
        "table_number": order.table_number,
        "customer_name": order.customer_name,
        "customer_phone": order.customer_phone,
        "items": _dump_items(order),
        "additionals": _dump_additionals(order),
        "total_items": order.total_items,
        "total_pieces": order.total_pieces,
        "total_price": order.total_price,
        "created_at": order.created_at,
        "started_at": order.started_at,
        "ready_at": order.ready_at,
        "completed_at": order.completed_at,
    }


class SqlOrderStore(OrderStore):
    """Pedidos em SQLAlchemy; cada operação abre e confirma sua própria sessão."""

    def __init__(self, session_factory: sessionmaker, **kwargs) -> None:
        super().__init__(**kwargs)
        self._session_factory = session_factory

    def create(self, order: Order) -> str:
        order_id = new_order_id()
        db = self._session_factory()
        try:
            db.add(OrderRecord(id=order_id, version=1, **_order_columns(order)))
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            raise TransientStoreError("Erro ao criar pedido") from exc
        finally:
            db.close()
        self._notify(order_id, "created")
        return order_id

    def get(self, order_id: str) -> Optional[Order]:
        db = self._session_factory()
        try:
            row = db.get(OrderRecord, order_id)
            return _record_to_order(row) if row else None
        except SQLAlchemyError as exc:
            raise TransientStoreError("Erro ao carregar pedido") from exc
        finally:
            db.close()

    def put(self, order_id: str, order: Order, expected_version: int | None = None) -> Order:
        db = self._session_factory()
        try:
            query = db.query(OrderRecord).filter(OrderRecord.id == order_id)
            if expected_version is not None:
                query = query.filter(OrderRecord.version == expected_version)
            values = _order_columns(order)
            values["version"] = OrderRecord.version + 1
            updated = query.update(values, synchronize_session=False)
            if updated != 1:
                db.rollback()
                exists = db.query(OrderRecord.id).filter(OrderRecord.id == order_id).first()
                if not exists:
                    raise NotFoundError("Pedido não encontrado")
                raise StaleRecordError("Pedido alterado por outra operação")
            db.commit()
            stored = _record_to_order(db.get(OrderRecord, order_id))
        except SQLAlchemyError as exc:
            db.rollback()
            raise TransientStoreError("Erro ao atualizar pedido") from exc
        finally:
            db.close()
        self._notify(order_id, "updated")
        return stored

    def patch(self, order_id: str, fields: dict[str, Any]) -> Order:
        _check_patch_fields(fields)
        db = self._session_factory()
        try:
            values: dict[str, Any] = dict(fields)
            values["version"] = OrderRecord.version + 1
            updated = (
                db.query(OrderRecord)
                .filter(OrderRecord.id == order_id)
                .update(values, synchronize_session=False)
            )
            if updated != 1:
                db.rollback()
                raise NotFoundError("Pedido não encontrado")
            db.commit()
            stored = _record_to_order(db.get(OrderRecord, order_id))
        except SQLAlchemyError as exc:
            db.rollback()
            raise TransientStoreError("Erro ao atualizar status do pedido") from exc
        finally:
            db.close()
        self._notify(order_id, "patched")
        return stored

    def take(self, order_id: str) -> Optional[Order]:
        db = self._session_factory()
        try:
            for _ in range(TAKE_MAX_ATTEMPTS):
                row = db.get(OrderRecord, order_id)
                if row is None:
                    return None
                previous = _record_to_order(row)
                # delete condicionado à versão lida: só quem apagou a linha devolve o pedido
                deleted = (
                    db.query(OrderRecord)
                    .filter(OrderRecord.id == order_id, OrderRecord.version == previous.version)
                    .delete(synchronize_session=False)
                )
                if deleted == 1:
                    db.commit()
                    self._notify(order_id, "deleted")
                    return previous
                db.rollback()
                db.expire_all()
            raise StaleRecordError("Pedido alterado por outra operação")
        except SQLAlchemyError as exc:
            db.rollback()
            raise TransientStoreError("Erro ao remover pedido") from exc
        finally:
            db.close()

    def list(self, statuses: Iterable[str] | None = None) -> list[Order]:
        db = self._session_factory()
        try:
            query = db.query(OrderRecord)
            wanted = list(statuses or [])
            if wanted:
                query = query.filter(OrderRecord.status.in_(wanted))
            rows = query.order_by(desc(OrderRecord.created_at)).all()
            return [_record_to_order(row) for row in rows]
        except SQLAlchemyError as exc:
            raise TransientStoreError("Erro ao listar pedidos") from exc
        finally:
            db.close()
