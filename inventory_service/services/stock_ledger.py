import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from inventory_service.core.config import settings
from inventory_service.core.errors import (
    InsufficientStockError,
    PersistenceError,
    StockLedgerError,
    StockNotFoundError,
    StockValidationError,
)
from inventory_service.core.money import ZERO_MONEY, money_or_none, to_money
from inventory_service.core.observability import log_event
from inventory_service.models.product import Product
from inventory_service.models.stock import AdjustmentType, MovementType, StockLevel, StockMovement
from inventory_service.services.stock_events import dispatch_stock_events, enqueue_stock_event

MAX_REASON_LENGTH = 255
MAX_NOTES_LENGTH = 1000


@dataclass(frozen=True)
class StockLevelRow:
    level: StockLevel
    product_name: str
    product_sku: str
    min_stock_level: int


@dataclass(frozen=True)
class InventoryValue:
    total_value: Decimal
    product_count: int


def _location_clause(location_id: str | None):
    if location_id:
        return StockLevel.location_id == location_id
    return StockLevel.location_id.is_(None)


def compute_stock_change(adjustment_type: AdjustmentType, current_quantity: int, quantity: int) -> tuple[int, int]:
    """Returns (new_quantity, signed movement delta) for one adjustment."""
    if adjustment_type is AdjustmentType.IN:
        return current_quantity + quantity, quantity
    if adjustment_type is AdjustmentType.OUT:
        return current_quantity - quantity, -quantity
    if adjustment_type is AdjustmentType.ADJUSTMENT:
        # Absolute target, not a delta.
        return quantity, quantity - current_quantity
    raise StockValidationError(f"Unsupported adjustment type: {adjustment_type}")


def _normalize_adjustment(
    *,
    adjustment_type: AdjustmentType | str,
    quantity: int,
    reason: str,
    unit_cost: Decimal | float | int | None,
    notes: str | None,
) -> tuple[AdjustmentType, str, Decimal | None, str | None]:
    try:
        normalized_type = AdjustmentType(adjustment_type)
    except ValueError as exc:
        raise StockValidationError(
            "type must be one of: in, out, adjustment",
            details=[{"field": "type", "message": "Unsupported adjustment type", "type": "enum"}],
        ) from exc

    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise StockValidationError("quantity must be an integer")
    if normalized_type is AdjustmentType.ADJUSTMENT:
        if quantity < 0:
            raise StockValidationError("quantity must be zero or greater for an absolute adjustment")
    elif quantity <= 0:
        raise StockValidationError(f"quantity must be greater than zero for '{normalized_type.value}'")

    cleaned_reason = (reason or "").strip()
    if not cleaned_reason:
        raise StockValidationError("reason is required")
    if len(cleaned_reason) > MAX_REASON_LENGTH:
        raise StockValidationError(f"reason must be at most {MAX_REASON_LENGTH} characters")

    cleaned_notes = notes.strip() if notes else None
    if cleaned_notes and len(cleaned_notes) > MAX_NOTES_LENGTH:
        raise StockValidationError(f"notes must be at most {MAX_NOTES_LENGTH} characters")

    normalized_cost = money_or_none(unit_cost)
    if normalized_cost is not None and normalized_cost <= 0:
        raise StockValidationError("unit_cost must be greater than zero")

    return normalized_type, cleaned_reason, normalized_cost, cleaned_notes or None


def _get_product_for_update(db: Session, *, store_id: str, product_id: str) -> Product:
    product = db.execute(
        select(Product)
        .where(Product.id == product_id, Product.store_id == store_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if not product:
        raise StockNotFoundError("Product not found")
    return product


def adjust_stock(
    db: Session,
    *,
    store_id: str,
    product_id: str,
    adjustment_type: AdjustmentType | str,
    quantity: int,
    reason: str,
    actor_id: str,
    unit_cost: Decimal | float | int | None = None,
    notes: str | None = None,
    location_id: str | None = None,
) -> StockMovement:
    """
    Apply one in/out/adjustment to a product's stock level and record the movement.

    Runs as a single transaction: the stock level, movement, denormalized product
    quantity and outbox event are committed together or not at all. Alert
    evaluation happens after the commit and never affects the adjustment.
    Alerts follow the product total across all of its stock levels in the
    store, not any single location row.
    """
    normalized_type, cleaned_reason, normalized_cost, cleaned_notes = _normalize_adjustment(
        adjustment_type=adjustment_type,
        quantity=quantity,
        reason=reason,
        unit_cost=unit_cost,
        notes=notes,
    )

    try:
        product = _get_product_for_update(db, store_id=store_id, product_id=product_id)
        level = db.execute(
            select(StockLevel)
            .where(
                StockLevel.product_id == product_id,
                StockLevel.store_id == store_id,
                _location_clause(location_id),
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

        current_quantity = level.quantity if level else 0
        new_quantity, movement_delta = compute_stock_change(normalized_type, current_quantity, quantity)
        if new_quantity < 0:
            raise InsufficientStockError(current_quantity=current_quantity, requested_quantity=quantity)

        if level is None:
            level = StockLevel(
                product_id=product_id,
                store_id=store_id,
                location_id=location_id,
                quantity=0,
                reserved_quantity=0,
                unit_cost=normalized_cost or ZERO_MONEY,
            )
            db.add(level)

        level.quantity = new_quantity
        if normalized_cost is not None:
            level.unit_cost = normalized_cost
        if level.reserved_quantity > new_quantity:
            log_event(
                "stock.reservation_clamped",
                level=logging.WARNING,
                product_id=product_id,
                store_id=store_id,
                reserved_quantity=level.reserved_quantity,
                new_quantity=new_quantity,
            )
            level.reserved_quantity = new_quantity

        movement = StockMovement(
            product_id=product_id,
            store_id=store_id,
            location_id=location_id,
            type=normalized_type.value,
            reason=cleaned_reason,
            quantity=movement_delta,
            previous_quantity=current_quantity,
            new_quantity=new_quantity,
            unit_cost=normalized_cost,
            total_cost=to_money(normalized_cost * abs(movement_delta)) if normalized_cost is not None else None,
            notes=cleaned_notes,
            performed_by=actor_id,
            created_at=datetime.now(timezone.utc),
        )
        db.add(movement)
        db.flush()

        product.stock_quantity = int(
            db.execute(
                select(func.coalesce(func.sum(StockLevel.quantity), 0)).where(
                    StockLevel.product_id == product_id,
                    StockLevel.store_id == store_id,
                )
            ).scalar_one()
        )

        enqueue_stock_event(
            db,
            store_id=store_id,
            product_id=product_id,
            movement_id=movement.id,
            payload_json={
                "quantity": product.stock_quantity,
                "previous_quantity": current_quantity,
                "movement_type": movement.type,
            },
        )
        db.commit()
    except StockLedgerError as exc:
        db.rollback()
        log_event(
            "stock.adjust_rejected",
            level=logging.WARNING,
            product_id=product_id,
            store_id=store_id,
            type=normalized_type.value,
            quantity=quantity,
            code=exc.code,
            error=exc.message,
        )
        raise
    except SQLAlchemyError as exc:
        db.rollback()
        log_event(
            "stock.adjust_failed",
            level=logging.ERROR,
            product_id=product_id,
            store_id=store_id,
            type=normalized_type.value,
            error=str(exc),
        )
        raise PersistenceError("Failed to adjust stock") from exc

    db.refresh(movement)
    log_event(
        "stock.adjusted",
        product_id=product_id,
        store_id=store_id,
        type=movement.type,
        quantity=movement.quantity,
        new_quantity=movement.new_quantity,
        movement_id=movement.id,
    )

    if settings.stock_alerts_inline_dispatch:
        try:
            dispatch_stock_events(db, store_id=store_id, product_id=product_id)
            db.commit()
        except SQLAlchemyError as exc:
            # The event stays pending and is picked up by the next dispatch run.
            db.rollback()
            log_event(
                "stock_event.dispatch_deferred",
                level=logging.WARNING,
                product_id=product_id,
                store_id=store_id,
                error=str(exc),
            )

    return movement


def reserve_stock(
    db: Session,
    *,
    product_id: str,
    store_id: str,
    quantity: int,
    location_id: str | None = None,
) -> bool:
    """
    Hold `quantity` units for a pending order. Succeeds only while enough stock
    is available at write time; False means insufficient available stock.
    """
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise StockValidationError("quantity must be a positive integer")

    try:
        result = db.execute(
            update(StockLevel)
            .where(
                StockLevel.product_id == product_id,
                StockLevel.store_id == store_id,
                _location_clause(location_id),
                (StockLevel.quantity - StockLevel.reserved_quantity) >= quantity,
            )
            .values(reserved_quantity=StockLevel.reserved_quantity + quantity)
            .execution_options(synchronize_session=False)
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        log_event("stock.reserve_failed", level=logging.ERROR, product_id=product_id, store_id=store_id, error=str(exc))
        raise PersistenceError("Failed to reserve stock") from exc

    success = result.rowcount > 0
    log_event(
        "stock.reservation_attempt",
        product_id=product_id,
        store_id=store_id,
        quantity=quantity,
        success=success,
    )
    return success


def release_reserved_stock(
    db: Session,
    *,
    product_id: str,
    store_id: str,
    quantity: int,
    location_id: str | None = None,
) -> None:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise StockValidationError("quantity must be a positive integer")

    try:
        db.execute(
            update(StockLevel)
            .where(
                StockLevel.product_id == product_id,
                StockLevel.store_id == store_id,
                _location_clause(location_id),
            )
            .values(
                reserved_quantity=case(
                    (StockLevel.reserved_quantity > quantity, StockLevel.reserved_quantity - quantity),
                    else_=0,
                )
            )
            .execution_options(synchronize_session=False)
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        log_event("stock.release_failed", level=logging.ERROR, product_id=product_id, store_id=store_id, error=str(exc))
        raise PersistenceError("Failed to release reserved stock") from exc

    log_event("stock.released", product_id=product_id, store_id=store_id, quantity=quantity)


def get_stock_level(
    db: Session,
    *,
    product_id: str,
    store_id: str,
    location_id: str | None = None,
) -> StockLevel | None:
    return db.execute(
        select(StockLevel).where(
            StockLevel.product_id == product_id,
            StockLevel.store_id == store_id,
            _location_clause(location_id),
        )
    ).scalar_one_or_none()


def _stock_level_rows(rows) -> list[StockLevelRow]:
    return [
        StockLevelRow(
            level=level,
            product_name=name,
            product_sku=sku,
            min_stock_level=min_stock_level,
        )
        for level, name, sku, min_stock_level in rows
    ]


def get_stock_levels(db: Session, *, store_id: str, location_id: str | None = None) -> list[StockLevelRow]:
    stmt = (
        select(StockLevel, Product.name, Product.sku, Product.min_stock_level)
        .join(Product, Product.id == StockLevel.product_id)
        .where(StockLevel.store_id == store_id)
    )
    if location_id:
        stmt = stmt.where(StockLevel.location_id == location_id)
    rows = db.execute(stmt.order_by(Product.name.asc(), StockLevel.id.asc())).all()
    return _stock_level_rows(rows)


def get_low_stock_products(db: Session, *, store_id: str) -> list[StockLevelRow]:
    rows = db.execute(
        select(StockLevel, Product.name, Product.sku, Product.min_stock_level)
        .join(Product, Product.id == StockLevel.product_id)
        .where(
            StockLevel.store_id == store_id,
            Product.track_stock.is_(True),
            StockLevel.quantity <= Product.min_stock_level,
        )
        .order_by((StockLevel.quantity - Product.min_stock_level).asc(), Product.name.asc())
    ).all()
    return _stock_level_rows(rows)


def get_stock_movements(
    db: Session,
    *,
    store_id: str,
    product_id: str | None = None,
    movement_type: MovementType | str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[StockMovement], int]:
    count_stmt = select(func.count(StockMovement.id)).where(StockMovement.store_id == store_id)
    stmt = select(StockMovement).where(StockMovement.store_id == store_id)
    if product_id:
        count_stmt = count_stmt.where(StockMovement.product_id == product_id)
        stmt = stmt.where(StockMovement.product_id == product_id)
    if movement_type:
        try:
            type_value = MovementType(movement_type).value
        except ValueError as exc:
            raise StockValidationError(
                f"Unsupported movement type: {movement_type}",
                details=[{"field": "type", "message": "Unsupported movement type", "type": "enum"}],
            ) from exc
        count_stmt = count_stmt.where(StockMovement.type == type_value)
        stmt = stmt.where(StockMovement.type == type_value)

    total = int(db.execute(count_stmt).scalar_one())
    stmt = stmt.order_by(StockMovement.created_at.desc(), StockMovement.id.desc()).offset(offset).limit(limit)
    movements = list(db.execute(stmt).scalars().all())
    return movements, total


def get_movement_balance(
    db: Session,
    *,
    store_id: str,
    product_id: str,
    location_id: str | None = None,
) -> int:
    """Replays the movement log from zero: the sum of every signed delta."""
    location_filter = (
        StockMovement.location_id == location_id if location_id else StockMovement.location_id.is_(None)
    )
    q = select(func.coalesce(func.sum(StockMovement.quantity), 0)).where(
        StockMovement.store_id == store_id,
        StockMovement.product_id == product_id,
        location_filter,
    )
    return int(db.execute(q).scalar_one())


def get_inventory_value(db: Session, *, store_id: str) -> InventoryValue:
    row = db.execute(
        select(
            func.coalesce(func.sum(StockLevel.quantity * StockLevel.unit_cost), 0),
            func.count(func.distinct(StockLevel.product_id)),
        )
        .join(Product, Product.id == StockLevel.product_id)
        .where(StockLevel.store_id == store_id, Product.status == "active")
    ).one()
    total_value, product_count = row
    return InventoryValue(total_value=to_money(total_value or 0), product_count=int(product_count or 0))
