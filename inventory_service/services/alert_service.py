import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import case, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from inventory_service.core.errors import PersistenceError
from inventory_service.core.observability import log_event
from inventory_service.models.alert import (
    OPEN_ALERT_STATUSES,
    AlertSeverity,
    AlertStatus,
    AlertType,
    InventoryAlert,
)
from inventory_service.models.product import Product

SEVERITY_RANK = {
    AlertSeverity.CRITICAL.value: 0,
    AlertSeverity.HIGH.value: 1,
    AlertSeverity.MEDIUM.value: 2,
    AlertSeverity.LOW.value: 3,
}


@dataclass(frozen=True)
class AlertCondition:
    type: AlertType
    severity: AlertSeverity
    threshold: int


def classify_stock_condition(quantity: int, *, min_stock_level: int, reorder_point: int) -> AlertCondition | None:
    """First matching rule wins: out of stock, then reorder point, then low stock."""
    if quantity <= 0:
        return AlertCondition(AlertType.OUT_OF_STOCK, AlertSeverity.CRITICAL, min_stock_level)
    if quantity <= reorder_point:
        return AlertCondition(AlertType.REORDER_POINT, AlertSeverity.HIGH, reorder_point)
    if quantity <= min_stock_level:
        return AlertCondition(AlertType.LOW_STOCK, AlertSeverity.MEDIUM, min_stock_level)
    return None


def alert_message(condition: AlertCondition, *, product_name: str, quantity: int) -> str:
    if condition.type is AlertType.OUT_OF_STOCK:
        return f'Product "{product_name}" is out of stock'
    if condition.type is AlertType.REORDER_POINT:
        return f'Product "{product_name}" has reached reorder point ({quantity} remaining)'
    return f'Product "{product_name}" is running low ({quantity} remaining)'


def evaluate_stock_alert(db: Session, *, store_id: str, product_id: str) -> InventoryAlert | None:
    """
    Bring the product's open alert in line with its current quantity.

    Creates an alert when a condition starts, updates the open one in place while
    it persists and resolves it once the condition clears. Returns the alert that
    was touched, or None. Safe to run repeatedly for the same product.
    """
    # The product row lock serializes evaluations of the same product.
    product = db.execute(
        select(Product)
        .where(Product.id == product_id, Product.store_id == store_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if not product or not product.track_stock:
        return None

    quantity = product.stock_quantity
    condition = classify_stock_condition(
        quantity,
        min_stock_level=product.min_stock_level,
        reorder_point=product.reorder_point,
    )
    open_alert = db.execute(
        select(InventoryAlert)
        .where(
            InventoryAlert.store_id == store_id,
            InventoryAlert.product_id == product_id,
            InventoryAlert.status.in_(OPEN_ALERT_STATUSES),
        )
        .order_by(InventoryAlert.created_at.desc())
        .limit(1)
        .with_for_update()
    ).scalar_one_or_none()
    now = datetime.now(timezone.utc)

    if condition is None:
        if open_alert is None:
            return None
        open_alert.status = AlertStatus.RESOLVED.value
        open_alert.resolved_at = now
        open_alert.current_quantity = quantity
        open_alert.updated_at = now
        db.flush()
        log_event("alert.resolved", alert_id=open_alert.id, product_id=product_id, store_id=store_id)
        return open_alert

    message = alert_message(condition, product_name=product.name, quantity=quantity)
    if open_alert is not None:
        open_alert.type = condition.type.value
        open_alert.severity = condition.severity.value
        open_alert.current_quantity = quantity
        open_alert.threshold = condition.threshold
        open_alert.message = message
        open_alert.product_name = product.name
        open_alert.updated_at = now
        db.flush()
        return open_alert

    alert = InventoryAlert(
        store_id=store_id,
        product_id=product_id,
        product_name=product.name,
        type=condition.type.value,
        severity=condition.severity.value,
        current_quantity=quantity,
        threshold=condition.threshold,
        message=message,
        status=AlertStatus.ACTIVE.value,
        created_at=now,
        updated_at=now,
    )
    db.add(alert)
    db.flush()
    log_event(
        "alert.raised",
        alert_id=alert.id,
        product_id=product_id,
        store_id=store_id,
        type=alert.type,
        severity=alert.severity,
    )
    return alert


def get_inventory_alerts(
    db: Session,
    *,
    store_id: str,
    status: AlertStatus | str | None = AlertStatus.ACTIVE,
) -> list[InventoryAlert]:
    severity_rank = case(SEVERITY_RANK, value=InventoryAlert.severity, else_=len(SEVERITY_RANK))
    stmt = select(InventoryAlert).where(InventoryAlert.store_id == store_id)
    if status:
        stmt = stmt.where(InventoryAlert.status == AlertStatus(status).value)
    stmt = stmt.order_by(severity_rank.asc(), InventoryAlert.created_at.desc(), InventoryAlert.id.asc())
    return list(db.execute(stmt).scalars().all())


def acknowledge_alert(db: Session, *, alert_id: str, store_id: str, user_id: str) -> bool:
    """Moves an active alert to acknowledged. False when no active alert matched."""
    now = datetime.now(timezone.utc)
    try:
        result = db.execute(
            update(InventoryAlert)
            .where(
                InventoryAlert.id == alert_id,
                InventoryAlert.store_id == store_id,
                InventoryAlert.status == AlertStatus.ACTIVE.value,
            )
            .values(
                status=AlertStatus.ACKNOWLEDGED.value,
                acknowledged_by=user_id,
                acknowledged_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        log_event("alert.acknowledge_failed", level=logging.ERROR, alert_id=alert_id, store_id=store_id, error=str(exc))
        raise PersistenceError("Failed to acknowledge alert") from exc

    acknowledged = result.rowcount > 0
    if acknowledged:
        log_event("alert.acknowledged", alert_id=alert_id, store_id=store_id, user_id=user_id)
    return acknowledged
