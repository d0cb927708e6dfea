import uuid
from datetime import timedelta
from decimal import Decimal

from sqlalchemy import select

from inventory_service.core.config import settings
from inventory_service.core.security import create_access_token, create_token
from inventory_service.models.alert import InventoryAlert
from inventory_service.models.product import Product
from inventory_service.models.stock import StockMovement

STORE_ID = "store-main"


def _auth_headers(*, role: str = "manager", store_id: str = STORE_ID, user_id: str = "user-1") -> dict[str, str]:
    token = create_access_token(user_id, store_id=store_id, role=role)
    return {"Authorization": f"Bearer {token}"}


def _create_product(
    session_local,
    *,
    name: str = "Espresso Beans",
    store_id: str = STORE_ID,
    min_stock_level: int = 10,
    reorder_point: int = 5,
) -> str:
    product_id = str(uuid.uuid4())
    db = session_local()
    try:
        db.add(
            Product(
                id=product_id,
                store_id=store_id,
                name=name,
                sku=f"SKU-{uuid.uuid4().hex[:8]}",
                unit_price=Decimal("9.00"),
                cost_price=Decimal("4.50"),
                min_stock_level=min_stock_level,
                reorder_point=reorder_point,
            )
        )
        db.commit()
    finally:
        db.close()
    return product_id


def _adjust(client, product_id: str, adjustment_type: str, quantity: int, **extra):
    payload = {
        "product_id": product_id,
        "type": adjustment_type,
        "quantity": quantity,
        "reason": extra.pop("reason", "Supplier delivery"),
        **extra,
    }
    return client.post("/inventory/adjust", json=payload, headers=_auth_headers())


def test_root_health_and_ready(test_context):
    client, _ = test_context

    root_res = client.get("/")
    assert root_res.status_code == 200, root_res.text
    assert root_res.json()["app"] == settings.app_name

    assert client.get("/health").json() == {"ok": True}
    assert client.get("/ready").status_code == 200


def test_inventory_requires_bearer_token(test_context):
    client, _ = test_context

    res = client.get("/inventory/stock", headers={"X-Request-ID": "req-123"})
    assert res.status_code == 401, res.text
    assert res.headers["X-Request-ID"] == "req-123"
    body = res.json()["error"]
    assert body["code"] == "unauthorized"
    assert body["message"] == "Access token required"
    assert body["request_id"] == "req-123"
    assert body["path"] == "/inventory/stock"

    bad_res = client.get("/inventory/stock", headers={"Authorization": "Bearer not-a-token"})
    assert bad_res.status_code == 401, bad_res.text
    assert bad_res.json()["error"]["message"] == "Invalid token"


def test_token_without_store_scope_is_rejected(test_context):
    client, _ = test_context
    token = create_token(
        "user-1",
        store_id="",
        role="manager",
        expires_delta=timedelta(minutes=5),
    )

    res = client.get("/inventory/stock", headers={"Authorization": f"Bearer {token}"})
    assert res.status_code == 401, res.text
    assert res.json()["error"]["message"] == "Token is not scoped to a store"


def test_staff_cannot_adjust_or_manage_alerts(test_context):
    client, session_local = test_context
    product_id = _create_product(session_local)
    staff_headers = _auth_headers(role="staff", user_id="staff-1")

    adjust_res = client.post(
        "/inventory/adjust",
        json={"product_id": product_id, "type": "in", "quantity": 1, "reason": "Delivery"},
        headers=staff_headers,
    )
    assert adjust_res.status_code == 403, adjust_res.text
    assert adjust_res.json()["error"]["code"] == "forbidden"

    dispatch_res = client.post("/inventory/alerts/dispatch", headers=staff_headers)
    assert dispatch_res.status_code == 403, dispatch_res.text

    view_res = client.get("/inventory/stock", headers=staff_headers)
    assert view_res.status_code == 200, view_res.text


def test_adjust_and_read_stock(test_context):
    client, session_local = test_context
    product_id = _create_product(session_local)

    adjust_res = _adjust(client, product_id, "in", 20, unit_cost=4.5, notes="PO-1042")
    assert adjust_res.status_code == 201, adjust_res.text
    movement = adjust_res.json()
    assert movement["type"] == "in"
    assert movement["quantity"] == 20
    assert movement["previous_quantity"] == 0
    assert movement["new_quantity"] == 20
    assert movement["unit_cost"] == 4.5
    assert movement["total_cost"] == 90.0
    assert movement["performed_by"] == "user-1"
    assert movement["store_id"] == STORE_ID

    out_res = _adjust(client, product_id, "out", 3, reason="Counter sale")
    assert out_res.status_code == 201, out_res.text
    assert out_res.json()["quantity"] == -3

    stock_res = client.get(f"/inventory/stock/{product_id}", headers=_auth_headers())
    assert stock_res.status_code == 200, stock_res.text
    stock = stock_res.json()
    assert stock["quantity"] == 17
    assert stock["reserved_quantity"] == 0
    assert stock["available_quantity"] == 17
    assert stock["unit_cost"] == 4.5
    assert stock["total_value"] == 76.5
    assert stock["product_name"] == "Espresso Beans"

    list_res = client.get("/inventory/stock", headers=_auth_headers())
    assert list_res.status_code == 200, list_res.text
    assert [item["product_id"] for item in list_res.json()["items"]] == [product_id]

    reconcile_res = client.get(f"/inventory/stock/{product_id}/reconcile", headers=_auth_headers())
    assert reconcile_res.status_code == 200, reconcile_res.text
    assert reconcile_res.json() == {
        "product_id": product_id,
        "location_id": None,
        "stock_quantity": 17,
        "movement_balance": 17,
        "in_sync": True,
    }

    value_res = client.get("/inventory/value", headers=_auth_headers())
    assert value_res.status_code == 200, value_res.text
    assert value_res.json() == {"total_value": 76.5, "product_count": 1}

    db = session_local()
    try:
        assert db.get(Product, product_id).stock_quantity == 17
    finally:
        db.close()


def test_insufficient_stock_returns_conflict_envelope(test_context):
    client, session_local = test_context
    product_id = _create_product(session_local)
    assert _adjust(client, product_id, "in", 5).status_code == 201

    res = _adjust(client, product_id, "out", 10, reason="Counter sale")
    assert res.status_code == 409, res.text
    error = res.json()["error"]
    assert error["code"] == "insufficient_stock"
    assert error["message"] == "Insufficient stock. Current: 5, Requested: 10"
    assert error["details"][0]["field"] == "quantity"
    assert error["path"] == "/inventory/adjust"

    stock_res = client.get(f"/inventory/stock/{product_id}", headers=_auth_headers())
    assert stock_res.json()["quantity"] == 5

    db = session_local()
    try:
        movements = db.execute(select(StockMovement).where(StockMovement.product_id == product_id)).scalars().all()
        assert len(movements) == 1
    finally:
        db.close()


def test_adjust_validation_errors(test_context):
    client, session_local = test_context
    product_id = _create_product(session_local)

    blank_reason = _adjust(client, product_id, "in", 3, reason="   ")
    assert blank_reason.status_code == 422, blank_reason.text
    error = blank_reason.json()["error"]
    assert error["code"] == "validation_error"
    assert error["details"][0]["field"] == "reason"

    zero_in = _adjust(client, product_id, "in", 0)
    assert zero_in.status_code == 422, zero_in.text

    unknown_type = _adjust(client, product_id, "transfer", 3)
    assert unknown_type.status_code == 422, unknown_type.text

    negative_cost = _adjust(client, product_id, "in", 3, unit_cost=-1)
    assert negative_cost.status_code == 422, negative_cost.text

    absolute_zero = _adjust(client, product_id, "adjustment", 0, reason="Stock count")
    assert absolute_zero.status_code == 201, absolute_zero.text


def test_store_scope_is_enforced(test_context):
    client, session_local = test_context
    other_store_product = _create_product(session_local, store_id="store-other")

    res = _adjust(client, other_store_product, "in", 1)
    assert res.status_code == 404, res.text
    assert res.json()["error"]["code"] == "not_found"

    missing_res = client.get(f"/inventory/stock/{other_store_product}", headers=_auth_headers())
    assert missing_res.status_code == 404, missing_res.text
    assert missing_res.json()["error"]["message"] == "Stock level not found"


def test_reserve_and_release_endpoints(test_context):
    client, session_local = test_context
    product_id = _create_product(session_local)
    assert _adjust(client, product_id, "in", 5).status_code == 201
    staff_headers = _auth_headers(role="staff", user_id="staff-1")

    first = client.post("/inventory/reserve", json={"product_id": product_id, "quantity": 3}, headers=staff_headers)
    assert first.status_code == 200, first.text
    assert first.json()["reserved"] is True
    assert first.json()["stock"]["available_quantity"] == 2

    second = client.post("/inventory/reserve", json={"product_id": product_id, "quantity": 3}, headers=staff_headers)
    assert second.status_code == 200, second.text
    assert second.json()["reserved"] is False
    assert second.json()["stock"]["available_quantity"] == 2

    release = client.post("/inventory/release", json={"product_id": product_id, "quantity": 3}, headers=staff_headers)
    assert release.status_code == 200, release.text
    assert release.json()["ok"] is True
    assert release.json()["stock"]["reserved_quantity"] == 0

    invalid = client.post("/inventory/reserve", json={"product_id": product_id, "quantity": 0}, headers=staff_headers)
    assert invalid.status_code == 422, invalid.text

    no_level = client.post(
        "/inventory/reserve",
        json={"product_id": product_id, "quantity": 1, "location_id": "loc-empty"},
        headers=staff_headers,
    )
    assert no_level.status_code == 200, no_level.text
    assert no_level.json() == {"reserved": False, "stock": None}


def test_low_stock_and_movement_listing(test_context):
    client, session_local = test_context
    low_product = _create_product(session_local, name="Almond Milk")
    healthy_product = _create_product(session_local, name="Cocoa Powder")

    assert _adjust(client, low_product, "in", 10).status_code == 201
    assert _adjust(client, low_product, "out", 7, reason="Counter sale").status_code == 201
    assert _adjust(client, healthy_product, "in", 40).status_code == 201

    low_res = client.get("/inventory/low-stock", headers=_auth_headers())
    assert low_res.status_code == 200, low_res.text
    items = low_res.json()["items"]
    assert [item["product_id"] for item in items] == [low_product]
    assert items[0]["quantity"] == 3
    assert items[0]["min_stock_level"] == 10

    page_res = client.get("/inventory/movements", params={"limit": 2, "offset": 0}, headers=_auth_headers())
    assert page_res.status_code == 200, page_res.text
    page = page_res.json()
    assert page["pagination"] == {"total": 3, "limit": 2, "offset": 0, "count": 2, "has_next": True}
    assert page["items"][0]["product_id"] == healthy_product

    out_res = client.get("/inventory/movements", params={"type": "out"}, headers=_auth_headers())
    assert out_res.status_code == 200, out_res.text
    assert [item["quantity"] for item in out_res.json()["items"]] == [-7]

    bad_type = client.get("/inventory/movements", params={"type": "gift"}, headers=_auth_headers())
    assert bad_type.status_code == 422, bad_type.text

    too_large = client.get(
        "/inventory/movements",
        params={"limit": settings.stock_movements_max_page_size + 1},
        headers=_auth_headers(),
    )
    assert too_large.status_code == 422, too_large.text


def test_alert_endpoints(test_context):
    client, session_local = test_context
    product_id = _create_product(session_local)
    assert _adjust(client, product_id, "in", 20).status_code == 201
    assert _adjust(client, product_id, "out", 12, reason="Counter sale").status_code == 201

    alerts_res = client.get("/inventory/alerts", headers=_auth_headers(role="staff"))
    assert alerts_res.status_code == 200, alerts_res.text
    alerts = alerts_res.json()["items"]
    assert len(alerts) == 1
    assert alerts[0]["type"] == "low_stock"
    assert alerts[0]["severity"] == "medium"
    assert alerts[0]["current_quantity"] == 8
    alert_id = alerts[0]["id"]

    ack_res = client.post(f"/inventory/alerts/{alert_id}/acknowledge", headers=_auth_headers(user_id="manager-1"))
    assert ack_res.status_code == 200, ack_res.text
    assert ack_res.json() == {"ok": True, "alert_id": alert_id}

    again_res = client.post(f"/inventory/alerts/{alert_id}/acknowledge", headers=_auth_headers())
    assert again_res.status_code == 404, again_res.text
    assert again_res.json()["error"]["code"] == "not_found"

    acknowledged = client.get("/inventory/alerts", params={"status": "acknowledged"}, headers=_auth_headers())
    assert acknowledged.status_code == 200, acknowledged.text
    assert acknowledged.json()["items"][0]["acknowledged_by"] == "manager-1"

    assert client.get("/inventory/alerts", headers=_auth_headers()).json()["items"] == []


def test_dispatch_endpoint_drains_pending_events(test_context, monkeypatch):
    client, session_local = test_context
    product_id = _create_product(session_local)
    monkeypatch.setattr(settings, "stock_alerts_inline_dispatch", False)

    assert _adjust(client, product_id, "in", 2).status_code == 201
    assert client.get("/inventory/alerts", headers=_auth_headers()).json()["items"] == []

    dispatch_res = client.post("/inventory/alerts/dispatch", headers=_auth_headers())
    assert dispatch_res.status_code == 200, dispatch_res.text
    assert dispatch_res.json() == {"processed": 1, "succeeded": 1, "failed": 0, "dead_lettered": 0}

    db = session_local()
    try:
        alert = db.execute(select(InventoryAlert).where(InventoryAlert.product_id == product_id)).scalar_one()
        assert alert.type == "reorder_point"
        assert alert.status == "active"
    finally:
        db.close()

    repeat_res = client.post("/inventory/alerts/dispatch", headers=_auth_headers())
    assert repeat_res.json()["processed"] == 0
