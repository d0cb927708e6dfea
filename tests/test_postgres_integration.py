import os
import uuid
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from pathlib import Path

import pytest
from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, delete, func, inspect, select, text
from sqlalchemy.orm import sessionmaker

from inventory_service.core.config import settings
from inventory_service.models.alert import OPEN_ALERT_STATUSES, InventoryAlert
from inventory_service.models.product import Product
from inventory_service.models.stock import StockMovement
from inventory_service.services.alert_service import evaluate_stock_alert
from inventory_service.services.stock_ledger import (
    adjust_stock,
    get_movement_balance,
    get_stock_level,
    reserve_stock,
)

WORKERS = 8


def _test_pg_url() -> str | None:
    return os.getenv("TEST_POSTGRES_DATABASE_URL")


def _alembic_config(url: str) -> Config:
    project_root = Path(__file__).resolve().parents[1]
    alembic_cfg = Config(str(project_root / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(project_root / "alembic"))
    alembic_cfg.set_main_option("sqlalchemy.url", url)
    return alembic_cfg


def _session_factory(url: str):
    command.upgrade(_alembic_config(url), "head")
    engine = create_engine(url, pool_pre_ping=True, pool_size=WORKERS + 2)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def _seed_product(session_local, store_id: str, opening_stock: int = 0) -> str:
    product_id = str(uuid.uuid4())
    db = session_local()
    try:
        db.add(
            Product(
                id=product_id,
                store_id=store_id,
                name="Concurrency Beans",
                sku=f"SKU-{uuid.uuid4().hex[:8]}",
                unit_price=Decimal("9.00"),
                cost_price=Decimal("4.50"),
                min_stock_level=10,
                reorder_point=5,
            )
        )
        db.commit()
        if opening_stock:
            adjust_stock(
                db,
                store_id=store_id,
                product_id=product_id,
                adjustment_type="in",
                quantity=opening_stock,
                reason="Opening stock",
                actor_id="integration",
            )
    finally:
        db.close()
    return product_id


def _delete_product(session_local, product_id: str) -> None:
    db = session_local()
    try:
        db.execute(delete(Product).where(Product.id == product_id))
        db.commit()
    finally:
        db.close()


@pytest.mark.integration
def test_postgres_connection_and_ledger_tables():
    url = _test_pg_url()
    if not url:
        pytest.skip("Set TEST_POSTGRES_DATABASE_URL to run Postgres integration tests.")

    command.upgrade(_alembic_config(url), "head")

    engine = create_engine(url, pool_pre_ping=True)
    with engine.connect() as conn:
        assert conn.execute(text("SELECT 1")).scalar_one() == 1

    table_names = set(inspect(engine).get_table_names())
    assert {"products", "stock_levels", "stock_movements", "inventory_alerts", "stock_events"} <= table_names
    alert_indexes = {index["name"] for index in inspect(engine).get_indexes("inventory_alerts")}
    assert "ux_inventory_alerts_store_product_open" in alert_indexes


@pytest.mark.integration
def test_concurrent_reservations_never_oversell():
    url = _test_pg_url()
    if not url:
        pytest.skip("Set TEST_POSTGRES_DATABASE_URL to run Postgres integration tests.")

    session_local = _session_factory(url)
    store_id = f"store-{uuid.uuid4().hex[:8]}"
    product_id = _seed_product(session_local, store_id, opening_stock=5)

    def _reserve_one() -> bool:
        session = session_local()
        try:
            return reserve_stock(session, product_id=product_id, store_id=store_id, quantity=1)
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=WORKERS) as pool:
        results = list(pool.map(lambda _: _reserve_one(), range(WORKERS)))

    db = session_local()
    try:
        level = get_stock_level(db, product_id=product_id, store_id=store_id)
        assert results.count(True) == 5
        assert level.reserved_quantity == 5
        assert level.available_quantity == 0
    finally:
        db.close()
        _delete_product(session_local, product_id)


@pytest.mark.integration
def test_concurrent_adjustments_do_not_lose_updates():
    url = _test_pg_url()
    if not url:
        pytest.skip("Set TEST_POSTGRES_DATABASE_URL to run Postgres integration tests.")

    session_local = _session_factory(url)
    store_id = f"store-{uuid.uuid4().hex[:8]}"
    product_id = _seed_product(session_local, store_id)

    def _receive_one() -> int:
        session = session_local()
        try:
            movement = adjust_stock(
                session,
                store_id=store_id,
                product_id=product_id,
                adjustment_type="in",
                quantity=1,
                reason="Supplier delivery",
                actor_id="integration",
            )
            return movement.new_quantity
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=WORKERS) as pool:
        new_quantities = list(pool.map(lambda _: _receive_one(), range(WORKERS)))

    db = session_local()
    try:
        level = get_stock_level(db, product_id=product_id, store_id=store_id)
        movement_count = db.execute(
            select(func.count(StockMovement.id)).where(StockMovement.product_id == product_id)
        ).scalar_one()

        assert sorted(new_quantities) == list(range(1, WORKERS + 1))
        assert level.quantity == WORKERS
        assert movement_count == WORKERS
        assert get_movement_balance(db, store_id=store_id, product_id=product_id) == level.quantity
        assert db.get(Product, product_id).stock_quantity == WORKERS
    finally:
        db.close()
        _delete_product(session_local, product_id)


@pytest.mark.integration
def test_concurrent_alert_evaluations_keep_one_open_alert(monkeypatch):
    url = _test_pg_url()
    if not url:
        pytest.skip("Set TEST_POSTGRES_DATABASE_URL to run Postgres integration tests.")

    monkeypatch.setattr(settings, "stock_alerts_inline_dispatch", False)
    session_local = _session_factory(url)
    store_id = f"store-{uuid.uuid4().hex[:8]}"
    product_id = _seed_product(session_local, store_id, opening_stock=8)

    def _evaluate() -> str:
        session = session_local()
        try:
            alert = evaluate_stock_alert(session, store_id=store_id, product_id=product_id)
            session.commit()
            return alert.id
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=WORKERS) as pool:
        alert_ids = list(pool.map(lambda _: _evaluate(), range(WORKERS)))

    db = session_local()
    try:
        open_alerts = db.execute(
            select(InventoryAlert).where(
                InventoryAlert.product_id == product_id,
                InventoryAlert.status.in_(OPEN_ALERT_STATUSES),
            )
        ).scalars().all()
        assert len(open_alerts) == 1
        assert set(alert_ids) == {open_alerts[0].id}
        assert open_alerts[0].type == "low_stock"
    finally:
        db.close()
        _delete_product(session_local, product_id)


@pytest.mark.integration
def test_alembic_upgrade_downgrade_smoke():
    url = _test_pg_url()
    if not url:
        pytest.skip("Set TEST_POSTGRES_DATABASE_URL to run migration smoke tests.")
    if os.getenv("ALLOW_DESTRUCTIVE_MIGRATION_TESTS") != "1":
        pytest.skip("Set ALLOW_DESTRUCTIVE_MIGRATION_TESTS=1 for downgrade smoke test.")

    alembic_cfg = _alembic_config(url)
    command.upgrade(alembic_cfg, "head")
    command.downgrade(alembic_cfg, "base")
    command.upgrade(alembic_cfg, "head")
