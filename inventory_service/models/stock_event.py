from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from inventory_service.core.id_utils import generate_shortuuid
from inventory_service.db.base import Base

STOCK_LEVEL_CHANGED = "stock.level_changed"


class StockEvent(Base):
    """
    Outbox row written in the same transaction as a stock adjustment and
    consumed afterwards by the alert evaluator.
    """
    __tablename__ = "stock_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_shortuuid)
    store_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    product_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    movement_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("stock_movements.id"), nullable=True)
    event_type: Mapped[str] = mapped_column(String(60), nullable=False, default=STOCK_LEVEL_CHANGED)
    payload_json: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending", server_default="pending")
    attempt_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=5, server_default="5")
    next_attempt_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    last_error: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        Index("ix_stock_events_store_status_next_attempt", "store_id", "status", "next_attempt_at"),
        Index("ix_stock_events_product_status", "product_id", "status"),
    )
