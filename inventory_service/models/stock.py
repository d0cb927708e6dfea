import enum
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    event,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from inventory_service.core.id_utils import generate_shortuuid
from inventory_service.core.money import ZERO_MONEY, to_money
from inventory_service.db.base import Base


class MovementType(str, enum.Enum):
    IN = "in"
    OUT = "out"
    ADJUSTMENT = "adjustment"
    TRANSFER = "transfer"
    RETURN = "return"
    DAMAGED = "damaged"
    EXPIRED = "expired"


class AdjustmentType(str, enum.Enum):
    """Movement types a caller may apply through the ledger."""

    IN = "in"
    OUT = "out"
    ADJUSTMENT = "adjustment"


class StockLevel(Base):
    __tablename__ = "stock_levels"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_shortuuid)
    product_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    store_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    location_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)

    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    reserved_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    unit_cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=ZERO_MONEY)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_stock_levels_quantity_non_negative"),
        CheckConstraint("reserved_quantity >= 0", name="ck_stock_levels_reserved_non_negative"),
        CheckConstraint("reserved_quantity <= quantity", name="ck_stock_levels_reserved_within_quantity"),
        Index(
            "ux_stock_levels_product_store_location",
            "product_id",
            "store_id",
            "location_id",
            unique=True,
        ),
        # NULL locations are distinct in unique indexes, so the store-level row needs its own.
        Index(
            "ux_stock_levels_product_store_default_location",
            "product_id",
            "store_id",
            unique=True,
            postgresql_where=text("location_id IS NULL"),
            sqlite_where=text("location_id IS NULL"),
        ),
    )

    @property
    def available_quantity(self) -> int:
        return self.quantity - self.reserved_quantity

    @property
    def total_value(self) -> Decimal:
        return to_money((self.unit_cost or ZERO_MONEY) * self.quantity)


class StockMovement(Base):
    """
    Append-only record of one ledger adjustment. `quantity` is the signed delta;
    new_quantity - previous_quantity always equals it.
    """
    __tablename__ = "stock_movements"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_shortuuid)
    product_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    store_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    location_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)

    type: Mapped[str] = mapped_column(String(20), nullable=False)
    reason: Mapped[str] = mapped_column(String(255), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    previous_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    new_quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    unit_cost: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    total_cost: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    performed_by: Mapped[str] = mapped_column(String(36), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint(
            "type IN ('in', 'out', 'adjustment', 'transfer', 'return', 'damaged', 'expired')",
            name="ck_stock_movements_type",
        ),
        CheckConstraint(
            "new_quantity - previous_quantity = quantity",
            name="ck_stock_movements_delta_matches",
        ),
        Index("ix_stock_movements_store_created_at", "store_id", "created_at"),
        Index("ix_stock_movements_store_product_created_at", "store_id", "product_id", "created_at"),
        Index("ix_stock_movements_store_type_created_at", "store_id", "type", "created_at"),
    )


class AppendOnlyViolation(RuntimeError):
    pass


@event.listens_for(StockMovement, "before_update")
def _reject_movement_update(_mapper, _connection, target: StockMovement) -> None:
    raise AppendOnlyViolation(f"Stock movement {target.id} is immutable")


@event.listens_for(StockMovement, "before_delete")
def _reject_movement_delete(_mapper, _connection, target: StockMovement) -> None:
    raise AppendOnlyViolation(f"Stock movement {target.id} cannot be deleted")
