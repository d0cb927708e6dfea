from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from inventory_service.models.stock import AdjustmentType, MovementType
from inventory_service.schemas.common import PaginationMeta


class StockAdjustIn(BaseModel):
    product_id: str = Field(..., min_length=1, max_length=36)
    quantity: int = Field(
        ...,
        ge=0,
        description="Units moved for in/out; the absolute target level for adjustment.",
    )
    type: AdjustmentType
    reason: str = Field(..., max_length=255)
    unit_cost: Decimal | None = Field(default=None, gt=0)
    notes: str | None = Field(default=None, max_length=1000)
    location_id: str | None = Field(default=None, max_length=36)

    @field_validator("reason")
    @classmethod
    def validate_reason(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("reason cannot be blank")
        return cleaned

    @model_validator(mode="after")
    def validate_quantity_for_type(self):
        if self.type is not AdjustmentType.ADJUSTMENT and self.quantity == 0:
            raise ValueError(f"quantity must be greater than zero for '{self.type.value}'")
        return self

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "product_id": "product-id-here",
                "quantity": 20,
                "type": "in",
                "reason": "Supplier delivery",
                "unit_cost": 4.5,
                "notes": "PO-1042",
            }
        }
    )


class StockReserveIn(BaseModel):
    product_id: str = Field(..., min_length=1, max_length=36)
    quantity: int = Field(gt=0)
    location_id: str | None = Field(default=None, max_length=36)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "product_id": "product-id-here",
                "quantity": 2,
            }
        }
    )


class StockReleaseIn(StockReserveIn):
    pass


class StockLevelOut(BaseModel):
    id: str
    product_id: str
    store_id: str
    location_id: str | None = None
    product_name: str | None = None
    product_sku: str | None = None
    min_stock_level: int | None = None
    quantity: int
    reserved_quantity: int
    available_quantity: int
    unit_cost: float
    total_value: float
    updated_at: datetime | None = None


class StockLevelListOut(BaseModel):
    items: list[StockLevelOut]


class StockMovementOut(BaseModel):
    id: str
    product_id: str
    store_id: str
    location_id: str | None = None
    type: MovementType
    reason: str
    quantity: int
    previous_quantity: int
    new_quantity: int
    unit_cost: float | None = None
    total_cost: float | None = None
    notes: str | None = None
    performed_by: str
    created_at: datetime


class StockMovementListOut(BaseModel):
    items: list[StockMovementOut]
    pagination: PaginationMeta


class StockReserveOut(BaseModel):
    reserved: bool
    stock: StockLevelOut | None = None


class StockReleaseOut(BaseModel):
    ok: bool = True
    stock: StockLevelOut | None = None


class InventoryValueOut(BaseModel):
    total_value: float
    product_count: int


class StockReconcileOut(BaseModel):
    product_id: str
    location_id: str | None = None
    stock_quantity: int
    movement_balance: int
    in_sync: bool
