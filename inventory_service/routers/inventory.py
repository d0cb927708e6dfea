from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from inventory_service.core.api_docs import error_responses
from inventory_service.core.config import settings
from inventory_service.core.deps import get_db
from inventory_service.core.permissions import require_permission
from inventory_service.core.security import ActorClaims
from inventory_service.models.product import Product
from inventory_service.models.stock import MovementType, StockLevel, StockMovement
from inventory_service.schemas.common import PaginationMeta
from inventory_service.schemas.stock import (
    InventoryValueOut,
    StockAdjustIn,
    StockLevelListOut,
    StockLevelOut,
    StockMovementListOut,
    StockMovementOut,
    StockReconcileOut,
    StockReleaseIn,
    StockReleaseOut,
    StockReserveIn,
    StockReserveOut,
)
from inventory_service.services.stock_ledger import (
    StockLevelRow,
    adjust_stock,
    get_inventory_value,
    get_low_stock_products,
    get_movement_balance,
    get_stock_level,
    get_stock_levels,
    get_stock_movements,
    release_reserved_stock,
    reserve_stock,
)

router = APIRouter(prefix="/inventory", tags=["inventory"])


def _stock_level_out(
    level: StockLevel,
    *,
    product_name: str | None = None,
    product_sku: str | None = None,
    min_stock_level: int | None = None,
) -> StockLevelOut:
    return StockLevelOut(
        id=level.id,
        product_id=level.product_id,
        store_id=level.store_id,
        location_id=level.location_id,
        product_name=product_name,
        product_sku=product_sku,
        min_stock_level=min_stock_level,
        quantity=level.quantity,
        reserved_quantity=level.reserved_quantity,
        available_quantity=level.available_quantity,
        unit_cost=float(level.unit_cost),
        total_value=float(level.total_value),
        updated_at=level.updated_at,
    )


def _row_out(row: StockLevelRow) -> StockLevelOut:
    return _stock_level_out(
        row.level,
        product_name=row.product_name,
        product_sku=row.product_sku,
        min_stock_level=row.min_stock_level,
    )


def _movement_out(movement: StockMovement) -> StockMovementOut:
    return StockMovementOut(
        id=movement.id,
        product_id=movement.product_id,
        store_id=movement.store_id,
        location_id=movement.location_id,
        type=movement.type,
        reason=movement.reason,
        quantity=movement.quantity,
        previous_quantity=movement.previous_quantity,
        new_quantity=movement.new_quantity,
        unit_cost=float(movement.unit_cost) if movement.unit_cost is not None else None,
        total_cost=float(movement.total_cost) if movement.total_cost is not None else None,
        notes=movement.notes,
        performed_by=movement.performed_by,
        created_at=movement.created_at,
    )


def _current_stock_out(
    db: Session,
    *,
    store_id: str,
    product_id: str,
    location_id: str | None,
) -> StockLevelOut | None:
    level = get_stock_level(db, product_id=product_id, store_id=store_id, location_id=location_id)
    if level is None:
        return None
    product = db.execute(select(Product).where(Product.id == product_id)).scalar_one_or_none()
    return _stock_level_out(
        level,
        product_name=product.name if product else None,
        product_sku=product.sku if product else None,
        min_stock_level=product.min_stock_level if product else None,
    )


@router.post(
    "/adjust",
    response_model=StockMovementOut,
    status_code=status.HTTP_201_CREATED,
    summary="Apply a stock adjustment",
    responses=error_responses(401, 403, 404, 409, 422, 500, 503),
)
def adjust(
    payload: StockAdjustIn,
    db: Session = Depends(get_db),
    actor: ActorClaims = Depends(require_permission("inventory.adjust")),
):
    movement = adjust_stock(
        db,
        store_id=actor.store_id,
        product_id=payload.product_id,
        adjustment_type=payload.type,
        quantity=payload.quantity,
        reason=payload.reason,
        actor_id=actor.user_id,
        unit_cost=payload.unit_cost,
        notes=payload.notes,
        location_id=payload.location_id,
    )
    return _movement_out(movement)


@router.post(
    "/reserve",
    response_model=StockReserveOut,
    summary="Reserve available stock for a pending order",
    responses=error_responses(401, 403, 422, 500, 503),
)
def reserve(
    payload: StockReserveIn,
    db: Session = Depends(get_db),
    actor: ActorClaims = Depends(require_permission("inventory.reserve")),
):
    reserved = reserve_stock(
        db,
        product_id=payload.product_id,
        store_id=actor.store_id,
        quantity=payload.quantity,
        location_id=payload.location_id,
    )
    return StockReserveOut(
        reserved=reserved,
        stock=_current_stock_out(
            db,
            store_id=actor.store_id,
            product_id=payload.product_id,
            location_id=payload.location_id,
        ),
    )


@router.post(
    "/release",
    response_model=StockReleaseOut,
    summary="Release previously reserved stock",
    responses=error_responses(401, 403, 422, 500, 503),
)
def release(
    payload: StockReleaseIn,
    db: Session = Depends(get_db),
    actor: ActorClaims = Depends(require_permission("inventory.reserve")),
):
    release_reserved_stock(
        db,
        product_id=payload.product_id,
        store_id=actor.store_id,
        quantity=payload.quantity,
        location_id=payload.location_id,
    )
    return StockReleaseOut(
        stock=_current_stock_out(
            db,
            store_id=actor.store_id,
            product_id=payload.product_id,
            location_id=payload.location_id,
        ),
    )


@router.get(
    "/stock",
    response_model=StockLevelListOut,
    summary="List stock levels for the store",
    responses=error_responses(401, 403, 422, 500),
)
def list_stock_levels(
    location_id: str | None = Query(default=None, description="Optional location filter"),
    db: Session = Depends(get_db),
    actor: ActorClaims = Depends(require_permission("inventory.view")),
):
    rows = get_stock_levels(db, store_id=actor.store_id, location_id=location_id)
    return StockLevelListOut(items=[_row_out(row) for row in rows])


@router.get(
    "/stock/{product_id}",
    response_model=StockLevelOut,
    summary="Get the stock level for a product",
    responses=error_responses(401, 403, 404, 422, 500),
)
def get_product_stock(
    product_id: str,
    location_id: str | None = Query(default=None, description="Location; omit for the store-level row"),
    db: Session = Depends(get_db),
    actor: ActorClaims = Depends(require_permission("inventory.view")),
):
    stock = _current_stock_out(db, store_id=actor.store_id, product_id=product_id, location_id=location_id)
    if stock is None:
        raise HTTPException(status_code=404, detail="Stock level not found")
    return stock


@router.get(
    "/stock/{product_id}/reconcile",
    response_model=StockReconcileOut,
    summary="Compare a stock level with its replayed movement history",
    responses=error_responses(401, 403, 404, 422, 500),
)
def reconcile_product_stock(
    product_id: str,
    location_id: str | None = Query(default=None, description="Location; omit for the store-level row"),
    db: Session = Depends(get_db),
    actor: ActorClaims = Depends(require_permission("inventory.view")),
):
    level = get_stock_level(db, product_id=product_id, store_id=actor.store_id, location_id=location_id)
    if level is None:
        raise HTTPException(status_code=404, detail="Stock level not found")
    balance = get_movement_balance(
        db,
        store_id=actor.store_id,
        product_id=product_id,
        location_id=location_id,
    )
    return StockReconcileOut(
        product_id=product_id,
        location_id=location_id,
        stock_quantity=level.quantity,
        movement_balance=balance,
        in_sync=balance == level.quantity,
    )


@router.get(
    "/low-stock",
    response_model=StockLevelListOut,
    summary="List products at or below their minimum stock level",
    responses=error_responses(401, 403, 422, 500),
)
def list_low_stock(
    db: Session = Depends(get_db),
    actor: ActorClaims = Depends(require_permission("inventory.view")),
):
    rows = get_low_stock_products(db, store_id=actor.store_id)
    return StockLevelListOut(items=[_row_out(row) for row in rows])


@router.get(
    "/movements",
    response_model=StockMovementListOut,
    summary="List stock movements",
    responses={
        200: {
            "description": "Paginated stock movement history",
            "content": {
                "application/json": {
                    "example": {
                        "items": [
                            {
                                "id": "movement-id",
                                "product_id": "product-id",
                                "store_id": "store-id",
                                "location_id": None,
                                "type": "out",
                                "reason": "Sale",
                                "quantity": -2,
                                "previous_quantity": 10,
                                "new_quantity": 8,
                                "unit_cost": None,
                                "total_cost": None,
                                "notes": None,
                                "performed_by": "user-id",
                                "created_at": "2026-10-19T10:00:00Z",
                            }
                        ],
                        "pagination": {
                            "total": 12,
                            "limit": 50,
                            "offset": 0,
                            "count": 1,
                            "has_next": True,
                        },
                    }
                }
            },
        },
        **error_responses(401, 403, 422, 500),
    },
)
def list_stock_movements(
    product_id: str | None = Query(default=None, description="Optional product filter"),
    movement_type: MovementType | None = Query(default=None, alias="type", description="Optional movement type filter"),
    limit: int = Query(default=50, ge=1, le=settings.stock_movements_max_page_size, description="Page size"),
    offset: int = Query(default=0, ge=0, description="Pagination offset"),
    db: Session = Depends(get_db),
    actor: ActorClaims = Depends(require_permission("inventory.view")),
):
    movements, total = get_stock_movements(
        db,
        store_id=actor.store_id,
        product_id=product_id,
        movement_type=movement_type,
        limit=limit,
        offset=offset,
    )
    items = [_movement_out(movement) for movement in movements]
    count = len(items)
    return StockMovementListOut(
        items=items,
        pagination=PaginationMeta(
            total=total,
            limit=limit,
            offset=offset,
            count=count,
            has_next=(offset + count) < total,
        ),
    )


@router.get(
    "/value",
    response_model=InventoryValueOut,
    summary="Total inventory value at cost",
    responses=error_responses(401, 403, 500),
)
def inventory_value(
    db: Session = Depends(get_db),
    actor: ActorClaims = Depends(require_permission("inventory.view")),
):
    value = get_inventory_value(db, store_id=actor.store_id)
    return InventoryValueOut(total_value=float(value.total_value), product_count=value.product_count)
