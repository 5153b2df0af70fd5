from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Lock
from typing import Callable, Mapping, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from kitchen_orders.core.config import STOCK_TRANSACTION_MAX_RETRIES
from kitchen_orders.core.errors import TransientStoreError, ValidationError
from kitchen_orders.core.metrics import request_metrics
from kitchen_orders.models.stock import LEDGER_ID, StockLedger as StockLedgerRecord, StockMovement
from kitchen_orders.services.event_bus import EventBus, event_bus

logger = logging.getLogger(__name__)

StockLevels = dict[str, int]
UpdateFn = Callable[[StockLevels], Mapping[str, int]]

MOVEMENT_REASONS = {"sale", "edit", "restore", "manual"}


@dataclass(frozen=True)
class StockAdjustment:
    ingredient: str
    movement_type: str
    quantity: int
    reason: str
    order_id: Optional[str] = None
    created_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "ingredient": self.ingredient,
            "type": self.movement_type,
            "quantity": self.quantity,
            "reason": self.reason,
            "order_id": self.order_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


def clamp_levels(levels: Mapping[str, object]) -> StockLevels:
    normalized: StockLevels = {}
    for ingredient, value in (levels or {}).items():
        try:
            count = int(value or 0)
        except (TypeError, ValueError):
            count = 0
        normalized[str(ingredient)] = max(0, count)
    return normalized


def _diff_movements(
    before: Mapping[str, int],
    after: Mapping[str, int],
    reason: str,
    order_id: Optional[str],
) -> list[StockAdjustment]:
    movements: list[StockAdjustment] = []
    for ingredient in sorted(set(before) | set(after)):
        previous = int(before.get(ingredient, 0))
        current = int(after.get(ingredient, 0))
        if previous == current:
            continue
        if reason == "manual":
            movement_type, quantity = "ADJUST", current
        elif current > previous:
            movement_type, quantity = "IN", current - previous
        else:
            movement_type, quantity = "OUT", previous - current
        movements.append(
            StockAdjustment(
                ingredient=ingredient,
                movement_type=movement_type,
                quantity=quantity,
                reason=reason,
                order_id=order_id,
            )
        )
    return movements


class StockLedger(ABC):
    """Contagem global de ingredientes com read-modify-write otimista.

    Cada chamada de ``transact`` lê um snapshot (contagens + versão), aplica a
    função de atualização e tenta gravar com compare-and-set na versão. Em
    conflito, relê e tenta de novo. O ledger inteiro é gravado de uma vez, junto
    com os movimentos, então nunca há aplicação parcial entre ingredientes.
    """

    def __init__(
        self,
        *,
        max_retries: int = STOCK_TRANSACTION_MAX_RETRIES,
        bus: EventBus = event_bus,
    ) -> None:
        self._max_retries = max(1, max_retries)
        self._bus = bus

    @abstractmethod
    def _load(self) -> tuple[StockLevels, int]:
        """Snapshot atual e sua versão."""

    @abstractmethod
    def _compare_and_set(
        self,
        expected_version: int,
        levels: StockLevels,
        movements: list[StockAdjustment],
    ) -> bool:
        """Grava se a versão ainda for ``expected_version``; False em conflito."""

    @abstractmethod
    def list_movements(
        self,
        ingredient: str | None = None,
        order_id: str | None = None,
        limit: int = 200,
    ) -> list[dict]:
        ...

    def read(self) -> StockLevels:
        levels, _version = self._load()
        return levels

    def transact(
        self,
        update_fn: UpdateFn,
        *,
        reason: str,
        order_id: str | None = None,
    ) -> StockLevels:
        if reason not in MOVEMENT_REASONS:
            raise ValueError(f"Unknown stock movement reason: {reason}")

        for attempt in range(1, self._max_retries + 1):
            current, version = self._load()
            next_levels = clamp_levels(update_fn(dict(current)))
            movements = _diff_movements(current, next_levels, reason, order_id)
            if not movements:
                return current

            if self._compare_and_set(version, next_levels, movements):
                logger.info(
                    "stock ledger committed reason=%s version=%s levels=%s",
                    reason,
                    version + 1,
                    next_levels,
                    extra={"order_id": order_id, "attempt": attempt},
                )
                self._bus.emit(
                    "stock.changed",
                    {"stock": dict(next_levels), "reason": reason, "order_id": order_id},
                )
                return next_levels

            request_metrics.record_stock_conflict()
            logger.info(
                "stock ledger conflict at version=%s, retrying",
                version,
                extra={"order_id": order_id, "attempt": attempt},
            )

        logger.error(
            "stock ledger transaction gave up after %s attempts",
            self._max_retries,
            extra={"order_id": order_id},
        )
        raise TransientStoreError("Estoque em uso por outra operação, tente novamente")

    def apply_delta(
        self,
        deltas: Mapping[str, int],
        *,
        reason: str,
        order_id: str | None = None,
    ) -> StockLevels:
        """Soma ``deltas`` ao ledger; decrementos param em zero."""
        changes = {ingredient: int(delta) for ingredient, delta in deltas.items() if int(delta)}
        if not changes:
            return self.read()

        def _apply(current: StockLevels) -> StockLevels:
            for ingredient, delta in changes.items():
                current[ingredient] = max(0, current.get(ingredient, 0) + delta)
            return current

        return self.transact(_apply, reason=reason, order_id=order_id)

    def set_level(self, ingredient: str, value: int) -> StockLevels:
        ingredient = (ingredient or "").strip().lower()
        if not ingredient:
            raise ValidationError("Ingrediente inválido")

        def _set(current: StockLevels) -> StockLevels:
            current[ingredient] = max(0, int(value))
            return current

        return self.transact(_set, reason="manual")

    def subscribe(self, callback: Callable[[StockLevels], None]) -> Callable[[], None]:
        def _handler(payload: dict) -> None:
            callback(dict(payload.get("stock") or {}))

        return self._bus.subscribe("stock.changed", _handler)


class InMemoryStockLedger(StockLedger):
    """Ledger em memória; ``before_commit`` permite forçar intercalações nos testes."""

    def __init__(
        self,
        initial: Mapping[str, int] | None = None,
        *,
        before_commit: Callable[["InMemoryStockLedger", int], None] | None = None,
        **kwargs,
    ) -> None:
        super().__init__(**kwargs)
        self._levels = clamp_levels(initial or {})
        self._version = 0
        self._movements: list[StockAdjustment] = []
        self._lock = Lock()
        self.before_commit = before_commit

    @property
    def version(self) -> int:
        with self._lock:
            return self._version

    def _load(self) -> tuple[StockLevels, int]:
        with self._lock:
            return dict(self._levels), self._version

    def _compare_and_set(
        self,
        expected_version: int,
        levels: StockLevels,
        movements: list[StockAdjustment],
    ) -> bool:
        if self.before_commit is not None:
            self.before_commit(self, expected_version)
        now = datetime.now(timezone.utc)
        with self._lock:
            if self._version != expected_version:
                return False
            self._levels = dict(levels)
            self._version += 1
            self._movements.extend(
                StockAdjustment(
                    ingredient=m.ingredient,
                    movement_type=m.movement_type,
                    quantity=m.quantity,
                    reason=m.reason,
                    order_id=m.order_id,
                    created_at=now,
                )
                for m in movements
            )
            return True

    def list_movements(
        self,
        ingredient: str | None = None,
        order_id: str | None = None,
        limit: int = 200,
    ) -> list[dict]:
        with self._lock:
            movements = list(self._movements)
        if ingredient:
            movements = [m for m in movements if m.ingredient == ingredient]
        if order_id:
            movements = [m for m in movements if m.order_id == order_id]
        return [m.to_dict() for m in reversed(movements)][:limit]


class SqlStockLedger(StockLedger):
    """Ledger persistido numa linha única de ``stock_ledger``.

    Usa sessões próprias (fora da sessão do request) para que cada transação do
    estoque seja confirmada de forma independente da escrita do pedido.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        *,
        initial_stock: Mapping[str, int] | None = None,
        **kwargs,
    ) -> None:
        super().__init__(**kwargs)
        self._session_factory = session_factory
        self._initial_stock = clamp_levels(initial_stock or {})

    def _ensure_record(self, db: Session) -> StockLedgerRecord:
        record = db.get(StockLedgerRecord, LEDGER_ID)
        if record is not None:
            return record
        record = StockLedgerRecord(id=LEDGER_ID, counts=dict(self._initial_stock), version=0)
        db.add(record)
        try:
            db.commit()
        except IntegrityError:
            # outro processo criou a linha primeiro
            db.rollback()
            record = db.get(StockLedgerRecord, LEDGER_ID)
        else:
            logger.info("stock ledger initialized levels=%s", self._initial_stock)
        return record

    def _load(self) -> tuple[StockLevels, int]:
        db = self._session_factory()
        try:
            record = self._ensure_record(db)
            return clamp_levels(record.counts or {}), int(record.version or 0)
        except SQLAlchemyError as exc:
            raise TransientStoreError("Falha ao ler o estoque") from exc
        finally:
            db.close()

    def _compare_and_set(
        self,
        expected_version: int,
        levels: StockLevels,
        movements: list[StockAdjustment],
    ) -> bool:
        db = self._session_factory()
        try:
            updated = (
                db.query(StockLedgerRecord)
                .filter(
                    StockLedgerRecord.id == LEDGER_ID,
                    StockLedgerRecord.version == expected_version,
                )
                .update(
                    {
                        StockLedgerRecord.counts: dict(levels),
                        StockLedgerRecord.version: expected_version + 1,
                    },
                    synchronize_session=False,
                )
            )
            if updated != 1:
                db.rollback()
                return False
            for movement in movements:
                db.add(
                    StockMovement(
                        ingredient=movement.ingredient,
                        type=movement.movement_type,
                        quantity=movement.quantity,
                        reason=movement.reason,
                        order_id=movement.order_id,
                    )
                )
            db.commit()
            return True
        except SQLAlchemyError as exc:
            db.rollback()
            raise TransientStoreError("Falha ao gravar o estoque") from exc
        finally:
            db.close()

    def list_movements(
        self,
        ingredient: str | None = None,
        order_id: str | None = None,
        limit: int = 200,
    ) -> list[dict]:
        db = self._session_factory()
        try:
            query = db.query(StockMovement)
            if ingredient:
                query = query.filter(StockMovement.ingredient == ingredient)
            if order_id:
                query = query.filter(StockMovement.order_id == order_id)
            rows = query.order_by(StockMovement.id.desc()).limit(limit).all()
            return [
                {
                    "id": row.id,
                    "ingredient": row.ingredient,
                    "type": row.type,
                    "quantity": row.quantity,
                    "reason": row.reason,
                    "order_id": row.order_id,
                    "created_at": row.created_at.isoformat() if row.created_at else None,
                }
                for row in rows
            ]
        except SQLAlchemyError as exc:
            raise TransientStoreError("Falha ao listar movimentos de estoque") from exc
        finally:
            db.close()
