from datetime import datetime

from pydantic import BaseModel

from inventory_service.models.alert import AlertSeverity, AlertStatus, AlertType


class InventoryAlertOut(BaseModel):
    id: str
    store_id: str
    product_id: str
    product_name: str
    type: AlertType
    severity: AlertSeverity
    current_quantity: int
    threshold: int | None = None
    message: str
    status: AlertStatus
    acknowledged_by: str | None = None
    acknowledged_at: datetime | None = None
    resolved_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class InventoryAlertListOut(BaseModel):
    items: list[InventoryAlertOut]


class AlertAcknowledgeOut(BaseModel):
    ok: bool = True
    alert_id: str


class StockEventDispatchOut(BaseModel):
    processed: int
    succeeded: int
    failed: int
    dead_lettered: int
