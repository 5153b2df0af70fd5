import threading
from datetime import datetime, timedelta, timezone

import pytest

from kitchen_orders.core.errors import (
    ConcurrentUpdateError,
    InvalidStatusTransition,
    NotFoundError,
    TransientStoreError,
    ValidationError,
)
from kitchen_orders.services.event_bus import EventBus
from kitchen_orders.services.order_store import InMemoryOrderStore, StaleRecordError
from kitchen_orders.services.orders import OrderService
from kitchen_orders.services.stock_ledger import InMemoryStockLedger
from tests.fixtures_data import INITIAL_STOCK, draft


class FakeClock:
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class AlwaysStaleStore(InMemoryOrderStore):
    def put(self, order_id, order, expected_version=None):
        raise StaleRecordError("Pedido alterado por outra operação")


class BrokenLedger(InMemoryStockLedger):
    def _compare_and_set(self, expected_version, levels, movements):
        raise TransientStoreError("Falha ao gravar o estoque")


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc))


def _service(bus, clock=None, stock=None, **kwargs):
    store = kwargs.pop("store", None) or InMemoryOrderStore(bus=bus)
    ledger = kwargs.pop("ledger", None) or InMemoryStockLedger(dict(stock or INITIAL_STOCK), bus=bus)
    extra = {"clock": clock} if clock else {}
    return OrderService(store, ledger, bus=bus, **extra, **kwargs)


def test_create_update_delete_reconcile_stock(bus):
    service = _service(bus)

    order_id = service.create_order(draft("pack_4_ayam", 1))
    assert service.ledger.read() == {"ayam": 16, "jamur": 20}

    service.update_order(order_id, draft("pack_6_ayam", 1))
    assert service.ledger.read() == {"ayam": 14, "jamur": 20}

    service.delete_order(order_id)
    assert service.ledger.read() == {"ayam": 20, "jamur": 20}


def test_create_clamps_stock_at_zero(bus):
    service = _service(bus, stock={"ayam": 2, "jamur": 0})

    service.create_order(draft("pack_4_ayam", 1))

    assert service.ledger.read() == {"ayam": 0, "jamur": 0}


def test_concurrent_creates_do_not_lose_updates(bus):
    barrier = threading.Barrier(2)

    def both_read_first(_ledger, expected_version):
        # força as duas transações a lerem a mesma versão antes de gravar
        if expected_version == 0:
            barrier.wait(timeout=5)

    ledger = InMemoryStockLedger({"ayam": 20, "jamur": 10}, before_commit=both_read_first, bus=bus)
    service = _service(bus, ledger=ledger)
    errors = []

    def worker():
        try:
            service.create_order(draft("pack_6_mix", 1))
        except Exception as exc:  # pragma: no cover - falha aparece no assert
            errors.append(exc)

    threads = [threading.Thread(target=worker) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    assert errors == []
    assert ledger.read() == {"ayam": 14, "jamur": 4}
    assert ledger.version == 2


def test_conservation_over_creates_and_deletes(bus):
    service = _service(bus, stock={"ayam": 100, "jamur": 100})

    ids = [
        service.create_order(draft("pack_4_ayam", 2)),
        service.create_order(draft("pack_6_mix", 1)),
        service.create_order(draft("bouquet_14", 1)),
    ]
    service.delete_order(ids[1])

    remaining = service.list_orders()
    used_ayam = sum(
        {"pack_4_ayam": 4, "pack_6_mix": 3, "bouquet_14": 7}[i.menu_id] * i.quantity
        for o in remaining
        for i in o.items
    )
    assert service.ledger.read()["ayam"] == 100 - used_ayam
    assert service.ledger.read()["jamur"] == 100 - 7


def test_update_with_same_items_leaves_stock_unchanged(bus):
    service = _service(bus)
    order_id = service.create_order(draft("pack_6_mix", 2))
    before = service.ledger.read()

    service.update_order(order_id, draft("pack_6_mix", 2, customer_name="Budi S."))

    assert service.ledger.read() == before
    assert service.get_order(order_id).customer_name == "Budi S."


def test_update_quantity_changes_stock_by_delta(bus):
    service = _service(bus)
    order_id = service.create_order(draft("pack_4_jamur", 1))

    service.update_order(order_id, draft("pack_4_jamur", 3))
    assert service.ledger.read() == {"ayam": 20, "jamur": 8}

    service.update_order(order_id, draft("pack_4_jamur", 2))
    assert service.ledger.read() == {"ayam": 20, "jamur": 12}


def test_delete_twice_restores_once(bus):
    service = _service(bus)
    order_id = service.create_order(draft("pack_4_ayam", 1))

    assert service.delete_order(order_id) is not None
    assert service.delete_order(order_id) is None

    assert service.ledger.read() == INITIAL_STOCK


def test_concurrent_deletes_restore_exactly_once(bus):
    service = _service(bus)
    order_id = service.create_order(draft("party_16_jamur", 1))
    results = []

    threads = [
        threading.Thread(target=lambda: results.append(service.delete_order(order_id)))
        for _ in range(4)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    assert sum(1 for r in results if r is not None) == 1
    assert service.ledger.read() == INITIAL_STOCK


def test_unknown_menu_item_order_is_still_created(bus):
    service = _service(bus)

    order_id = service.create_order(
        draft(items=[{"menu_id": "ghost_item", "quantity": 2, "price": 1000}, {"menu_id": "pack_4_ayam", "quantity": 1}])
    )

    order = service.get_order(order_id)
    assert [i.menu_id for i in order.items] == ["ghost_item", "pack_4_ayam"]
    assert order.items[0].menu_name == "ghost_item"
    assert order.total_price == 2000 + 14000
    assert service.ledger.read() == {"ayam": 16, "jamur": 20}


def test_validation_errors_happen_before_any_write(bus):
    service = _service(bus)

    with pytest.raises(ValidationError, match="Nome do cliente"):
        service.create_order(draft(customer_name="   "))
    with pytest.raises(ValidationError, match="pelo menos um item"):
        service.create_order(draft(items=[]))
    with pytest.raises(ValidationError, match="mesa"):
        service.create_order(draft(order_type="dine-in"))

    assert service.list_orders() == []
    assert service.ledger.read() == INITIAL_STOCK


def test_build_fills_catalog_defaults_and_totals(bus, clock):
    service = _service(bus, clock=clock)

    order_id = service.create_order(
        draft(
            items=[{"menu_id": "pack_6_ayam", "quantity": 2, "notes": "  "}],
            additionals=[{"id": "potato_crunch", "quantity": 1}],
            order_type="dine-in",
            table_number=" 4 ",
        )
    )

    order = service.get_order(order_id)
    item = order.items[0]
    assert item.menu_name == "Pack 6 - Demen Ayam"
    assert item.price == 22000
    assert item.subtotal == 44000
    assert item.notes is None
    assert item.id.startswith("item_")
    assert order.additionals[0].name == "Potato Crunch"
    assert order.total_items == 2
    assert order.total_pieces == 12
    assert order.total_price == 44000 + 2500
    assert order.table_number == "4"
    assert order.status == "pending"
    assert order.created_at == clock.now
    assert order.order_number.startswith("D")


def test_update_beyond_available_stock_clamps_at_zero(bus):
    service = _service(bus)
    order_id = service.create_order(draft("pack_4_ayam", 1))

    service.update_order(order_id, draft("party_16_ayam", 2))

    assert service.ledger.read() == {"ayam": 0, "jamur": 20}
    assert all(count >= 0 for count in service.ledger.read().values())


def test_update_missing_order_raises_not_found(bus):
    service = _service(bus)

    with pytest.raises(NotFoundError):
        service.update_order("missing", draft())
    assert service.ledger.read() == INITIAL_STOCK


def test_update_keeps_number_status_and_timestamps(bus, clock):
    service = _service(bus, clock=clock)
    order_id = service.create_order(draft())
    clock.advance(minutes=2)
    service.update_order_status(order_id, "preparing")
    original = service.get_order(order_id)

    updated = service.update_order(order_id, draft("pack_4_mix", 1))

    assert updated.order_number == original.order_number
    assert updated.status == "preparing"
    assert updated.created_at == original.created_at
    assert updated.started_at == original.started_at
    assert updated.version == original.version + 1


def test_update_gives_up_after_repeated_conflicts(bus):
    store = AlwaysStaleStore(bus=bus)
    service = _service(bus, store=store, max_write_retries=3)
    order_id = service.create_order(draft())

    with pytest.raises(ConcurrentUpdateError):
        service.update_order(order_id, draft("pack_6_ayam", 1))

    assert service.ledger.read() == {"ayam": 16, "jamur": 20}


def test_update_retries_after_version_conflict(bus):
    service = _service(bus)
    order_id = service.create_order(draft("pack_4_ayam", 1))
    original_put = service.store.put
    calls = []

    def racing_put(oid, order, expected_version=None):
        if not calls:
            calls.append(expected_version)
            # outra edição chega primeiro
            service.update_order(oid, draft("pack_6_ayam", 1))
        return original_put(oid, order, expected_version=expected_version)

    service.store.put = racing_put

    service.update_order(order_id, draft("party_16_ayam", 1))

    assert service.get_order(order_id).items[0].menu_id == "party_16_ayam"
    assert service.ledger.read() == {"ayam": 4, "jamur": 20}


def test_stock_failure_after_write_propagates(bus):
    ledger = BrokenLedger(dict(INITIAL_STOCK), bus=bus)
    service = _service(bus, ledger=ledger)

    with pytest.raises(TransientStoreError):
        service.create_order(draft())

    # o pedido continua gravado
    assert len(service.list_orders()) == 1


def test_status_timestamps_are_set_once(bus, clock):
    service = _service(bus, clock=clock, strict_transitions=False)
    order_id = service.create_order(draft())

    clock.advance(minutes=1)
    preparing = service.update_order_status(order_id, "preparing")
    clock.advance(minutes=5)
    service.update_order_status(order_id, "pending")
    clock.advance(minutes=5)
    again = service.update_order_status(order_id, "preparing")
    clock.advance(minutes=3)
    ready = service.update_order_status(order_id, "ready")
    done = service.update_order_status(order_id, "completed")

    assert again.started_at == preparing.started_at
    assert ready.ready_at == clock.now
    assert done.completed_at == clock.now
    assert service.ledger.read() == {"ayam": 16, "jamur": 20}


def test_status_update_validation(bus):
    service = _service(bus)
    order_id = service.create_order(draft())

    with pytest.raises(ValidationError):
        service.update_order_status(order_id, "cooking")
    with pytest.raises(NotFoundError):
        service.update_order_status("missing", "ready")

    same = service.update_order_status(order_id, "pending")
    assert same.version == 1


def test_strict_transitions_reject_backward_moves(bus):
    service = _service(bus, strict_transitions=True)
    order_id = service.create_order(draft())

    service.update_order_status(order_id, "ready")
    with pytest.raises(InvalidStatusTransition):
        service.update_order_status(order_id, "preparing")

    service.update_order_status(order_id, "completed")
    with pytest.raises(InvalidStatusTransition):
        service.update_order_status(order_id, "ready")


def test_lifecycle_events_are_emitted(bus):
    service = _service(bus)
    seen = []
    for name in ("order.created", "order.updated", "order.deleted", "order.status.changed", "order.ready", "orders.changed"):
        bus.subscribe(name, lambda payload, name=name: seen.append(name))

    order_id = service.create_order(draft())
    service.update_order(order_id, draft(quantity=2))
    service.update_order_status(order_id, "ready")
    service.delete_order(order_id)

    assert [n for n in seen if n != "orders.changed"] == [
        "order.created",
        "order.updated",
        "order.status.changed",
        "order.ready",
        "order.deleted",
    ]
    assert seen.count("orders.changed") == 4


def test_subscribe_all_receives_full_list(bus):
    service = _service(bus)
    snapshots = []
    unsubscribe = service.store.subscribe_all(snapshots.append)

    service.create_order(draft())
    unsubscribe()
    service.create_order(draft())

    assert len(snapshots) == 1
    assert len(snapshots[0]) == 1
