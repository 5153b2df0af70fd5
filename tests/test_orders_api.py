import logging
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from kitchen_orders.deps import get_order_service, get_stock_ledger
from kitchen_orders.routers.kds import build_customer_display, build_kitchen_board, timer_level
from kitchen_orders.core.menu import MENU_CATALOG
from kitchen_orders.services.event_bus import EventBus
from kitchen_orders.services.order_store import InMemoryOrderStore
from kitchen_orders.services.orders import OrderService, build_order
from kitchen_orders.services.stock_ledger import InMemoryStockLedger
from tests.fixtures_data import DINE_IN_ORDER_PAYLOAD, HAPPY_PATH_ORDER_PAYLOAD, INITIAL_STOCK, draft


@pytest.fixture
def service():
    bus = EventBus()
    return OrderService(
        InMemoryOrderStore(bus=bus),
        InMemoryStockLedger(dict(INITIAL_STOCK), bus=bus),
        bus=bus,
        strict_transitions=False,
    )


@pytest.fixture
def client(service, monkeypatch):
    from kitchen_orders import main

    monkeypatch.setattr(main, "_startup_tasks", lambda: None)
    main.app.dependency_overrides[get_order_service] = lambda: service
    main.app.dependency_overrides[get_stock_ledger] = lambda: service.ledger
    with TestClient(main.app) as test_client:
        yield test_client
    main.app.dependency_overrides.clear()


def test_create_order_returns_normalized_order(client):
    response = client.post("/api/orders", json=HAPPY_PATH_ORDER_PAYLOAD)

    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "pending"
    assert body["items"][0]["menu_name"] == "Pack 4 - Demen Ayam"
    assert body["additionals"][0]["subtotal"] == 1000
    assert body["total_price"] == 15000
    assert "table_number" not in body
    assert response.headers["X-Request-ID"]

    stock = client.get("/api/stock").json()
    assert stock["stock"] == {"ayam": 16, "jamur": 20}


def test_create_order_validation_error_is_400(client):
    payload = dict(DINE_IN_ORDER_PAYLOAD, table_number="")

    response = client.post("/api/orders", json=payload)

    assert response.status_code == 400
    assert response.json() == {"detail": "Número da mesa é obrigatório para dine-in"}


def test_create_order_rejects_bad_quantity(client):
    payload = dict(HAPPY_PATH_ORDER_PAYLOAD, items=[{"menu_id": "pack_4_ayam", "quantity": 0}])

    assert client.post("/api/orders", json=payload).status_code == 422


def test_update_and_delete_order_flow(client):
    order_id = client.post("/api/orders", json=HAPPY_PATH_ORDER_PAYLOAD).json()["id"]

    payload = dict(HAPPY_PATH_ORDER_PAYLOAD, items=[{"menu_id": "pack_6_ayam", "quantity": 1}])
    updated = client.put(f"/api/orders/{order_id}", json=payload)
    assert updated.status_code == 200
    assert updated.json()["items"][0]["menu_id"] == "pack_6_ayam"
    assert client.get("/api/stock").json()["stock"]["ayam"] == 14

    first = client.delete(f"/api/orders/{order_id}")
    second = client.delete(f"/api/orders/{order_id}")
    assert first.json() == {"ok": True, "deleted": True}
    assert second.json() == {"ok": True, "deleted": False}
    assert client.get("/api/stock").json()["stock"] == INITIAL_STOCK
    assert client.get(f"/api/orders/{order_id}").status_code == 404


def test_update_missing_order_is_404(client):
    response = client.put("/api/orders/missing", json=HAPPY_PATH_ORDER_PAYLOAD)

    assert response.status_code == 404
    assert response.json() == {"detail": "Pedido não encontrado"}


def test_status_patch_and_filtered_list(client):
    first = client.post("/api/orders", json=HAPPY_PATH_ORDER_PAYLOAD).json()["id"]
    client.post("/api/orders", json=DINE_IN_ORDER_PAYLOAD)

    response = client.patch(f"/api/orders/{first}/status", json={"status": "preparing"})
    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is True
    assert body["status"] == "preparing"
    assert body["order"]["started_at"] is not None

    preparing = client.get("/api/orders", params={"status": "preparing"}).json()
    assert [o["id"] for o in preparing] == [first]
    assert len(client.get("/api/orders").json()) == 2
    assert client.patch(f"/api/orders/{first}/status", json={"status": "cooking"}).status_code == 422


def test_stock_manual_adjust_and_movements(client):
    response = client.patch("/api/stock/jamur", json={"value": 5})

    assert response.status_code == 200
    body = response.json()
    assert body["stock"]["jamur"] == 5
    assert body["low_stock"] == ["jamur"]

    movements = client.get("/api/stock/movements").json()
    assert movements[0]["type"] == "ADJUST"
    assert movements[0]["reason"] == "manual"


def test_menu_lists_catalog(client):
    body = client.get("/api/menu").json()

    assert {item["id"] for item in body["items"]} >= {"pack_4_ayam", "bouquet_14"}
    assert {a["id"] for a in body["additionals"]} == {"potato_crunch", "chili_oil_25ml", "chili_oil_5ml"}


def test_kds_and_display_endpoints(client):
    first = client.post("/api/orders", json=HAPPY_PATH_ORDER_PAYLOAD).json()
    second = client.post("/api/orders", json=DINE_IN_ORDER_PAYLOAD).json()
    client.patch(f"/api/orders/{second['id']}/status", json={"status": "ready"})

    board = client.get("/api/kds/orders").json()
    assert [card["id"] for card in board["pending"]] == [first["id"]]
    assert [card["id"] for card in board["ready"]] == [second["id"]]

    display = client.get("/api/display/orders").json()
    assert [o["order_number"] for o in display["ready"]] == [second["order_number"]]
    assert display["preparing"] == []


def test_stats_endpoint(client):
    order_id = client.post("/api/orders", json=HAPPY_PATH_ORDER_PAYLOAD).json()["id"]
    client.patch(f"/api/orders/{order_id}/status", json={"status": "completed"})

    body = client.get("/api/stats", params={"range": "today"}).json()
    assert body["total_orders"] == 1
    assert body["completed_orders"] == 1
    assert body["total_revenue"] == 15000

    assert client.get("/api/stats", params={"range": "decade"}).status_code == 400


def test_internal_metrics_snapshot(client):
    client.get("/api/menu")

    body = client.get("/internal/metrics").json()

    assert "GET /api/menu" in body["requests"]
    assert "stock_conflicts" in body


def test_kitchen_board_orders_urgent_then_oldest():
    now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    old = build_order(draft(), MENU_CATALOG, now=now - timedelta(minutes=12))
    fresh = build_order(draft(), MENU_CATALOG, now=now - timedelta(minutes=2))
    urgent = build_order(draft(priority="urgent"), MENU_CATALOG, now=now - timedelta(minutes=1))
    old.id, fresh.id, urgent.id = "old", "fresh", "urgent"

    board = build_kitchen_board([fresh, old, urgent], now)

    assert [c["id"] for c in board["pending"]] == ["urgent", "old", "fresh"]
    assert board["pending"][1]["timer"] == "late"
    assert board["pending"][2]["timer"] == "ok"
    assert timer_level(7) == "warning"


def test_customer_display_keeps_latest_ready_orders():
    now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    orders = []
    for minute in range(6):
        order = build_order(draft(order_number=f"D{minute:03d}"), MENU_CATALOG, now=now)
        order.status = "ready"
        order.ready_at = now + timedelta(minutes=minute)
        orders.append(order)

    display = build_customer_display(orders)

    assert [o["order_number"] for o in display["ready"]] == ["D005", "D004", "D003", "D002"]


def test_request_log_carries_order_id(client, caplog):
    caplog.set_level(logging.INFO, logger="kitchen_orders.middleware.observability")
    order_id = client.post("/api/orders", json=HAPPY_PATH_ORDER_PAYLOAD).json()["id"]

    response = client.get(f"/api/orders/{order_id}", headers={"X-Request-ID": "req-42"})

    assert response.headers["X-Request-ID"] == "req-42"
    records = [r for r in caplog.records if r.getMessage() == "request completed" and getattr(r, "request_id", None) == "req-42"]
    assert len(records) == 1
    assert records[0].order_id == order_id
    assert records[0].status_code == 200
