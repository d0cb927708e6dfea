from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from inventory_service.core.api_docs import error_responses
from inventory_service.core.deps import get_db
from inventory_service.core.permissions import require_permission
from inventory_service.core.security import ActorClaims
from inventory_service.models.alert import AlertStatus
from inventory_service.schemas.alert import (
    AlertAcknowledgeOut,
    InventoryAlertListOut,
    InventoryAlertOut,
    StockEventDispatchOut,
)
from inventory_service.services.alert_service import acknowledge_alert, get_inventory_alerts
from inventory_service.services.stock_events import dispatch_stock_events

router = APIRouter(prefix="/inventory/alerts", tags=["alerts"])


@router.get(
    "",
    response_model=InventoryAlertListOut,
    summary="List inventory alerts",
    responses=error_responses(401, 403, 422, 500),
)
def list_alerts(
    status: AlertStatus | None = Query(default=AlertStatus.ACTIVE, description="Alert status filter"),
    db: Session = Depends(get_db),
    actor: ActorClaims = Depends(require_permission("inventory.view")),
):
    alerts = get_inventory_alerts(db, store_id=actor.store_id, status=status)
    return InventoryAlertListOut(
        items=[
            InventoryAlertOut(
                id=alert.id,
                store_id=alert.store_id,
                product_id=alert.product_id,
                product_name=alert.product_name,
                type=alert.type,
                severity=alert.severity,
                current_quantity=alert.current_quantity,
                threshold=alert.threshold,
                message=alert.message,
                status=alert.status,
                acknowledged_by=alert.acknowledged_by,
                acknowledged_at=alert.acknowledged_at,
                resolved_at=alert.resolved_at,
                created_at=alert.created_at,
                updated_at=alert.updated_at,
            )
            for alert in alerts
        ]
    )


@router.post(
    "/dispatch",
    response_model=StockEventDispatchOut,
    summary="Evaluate alerts for pending stock events",
    responses=error_responses(401, 403, 422, 500),
)
def dispatch_alert_events(
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
    actor: ActorClaims = Depends(require_permission("inventory.alerts.manage")),
):
    summary = dispatch_stock_events(db, store_id=actor.store_id, limit=limit)
    db.commit()
    return StockEventDispatchOut(
        processed=summary.processed,
        succeeded=summary.succeeded,
        failed=summary.failed,
        dead_lettered=summary.dead_lettered,
    )


@router.post(
    "/{alert_id}/acknowledge",
    response_model=AlertAcknowledgeOut,
    summary="Acknowledge an active alert",
    responses=error_responses(401, 403, 404, 500, 503),
)
def acknowledge(
    alert_id: str,
    db: Session = Depends(get_db),
    actor: ActorClaims = Depends(require_permission("inventory.alerts.manage")),
):
    if not acknowledge_alert(db, alert_id=alert_id, store_id=actor.store_id, user_id=actor.user_id):
        raise HTTPException(status_code=404, detail="Active alert not found")
    return AlertAcknowledgeOut(alert_id=alert_id)
