import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import and_, select
from sqlalchemy.orm import Session

from inventory_service.core.config import settings
from inventory_service.core.observability import log_event
from inventory_service.models.stock_event import STOCK_LEVEL_CHANGED, StockEvent
from inventory_service.services.alert_service import evaluate_stock_alert

DUE_EVENT_STATUSES = ("pending", "failed")


def enqueue_stock_event(
    db: Session,
    *,
    store_id: str,
    product_id: str,
    movement_id: str | None = None,
    payload_json: dict[str, Any] | None = None,
    max_attempts: int | None = None,
) -> StockEvent:
    now = datetime.now(timezone.utc)
    event = StockEvent(
        store_id=store_id,
        product_id=product_id,
        movement_id=movement_id,
        event_type=STOCK_LEVEL_CHANGED,
        payload_json=payload_json,
        status="pending",
        attempt_count=0,
        max_attempts=max_attempts or settings.stock_event_max_attempts,
        next_attempt_at=now,
        last_error=None,
        created_at=now,
    )
    db.add(event)
    return event


@dataclass(frozen=True)
class DispatchSummary:
    processed: int
    succeeded: int
    failed: int
    dead_lettered: int


def dispatch_stock_events(
    db: Session,
    *,
    store_id: str | None = None,
    product_id: str | None = None,
    limit: int = 100,
) -> DispatchSummary:
    """
    Run alert evaluation for due stock events. Each event is evaluated inside
    its own savepoint so one failing product cannot undo another's alert. The
    caller commits.
    """
    now = datetime.now(timezone.utc)
    stmt = select(StockEvent).where(
        and_(
            StockEvent.status.in_(DUE_EVENT_STATUSES),
            StockEvent.next_attempt_at <= now,
        )
    )
    if store_id:
        stmt = stmt.where(StockEvent.store_id == store_id)
    if product_id:
        stmt = stmt.where(StockEvent.product_id == product_id)

    events = db.execute(
        stmt.order_by(StockEvent.created_at.asc(), StockEvent.id.asc())
        .limit(limit)
        .with_for_update(skip_locked=True)
    ).scalars().all()
    processed = 0
    succeeded = 0
    failed = 0
    dead_lettered = 0

    for event in events:
        processed += 1
        event.attempt_count += 1

        savepoint = db.begin_nested()
        try:
            evaluate_stock_alert(db, store_id=event.store_id, product_id=event.product_id)
            savepoint.commit()
        except Exception as exc:
            savepoint.rollback()
            error_message = f"{type(exc).__name__}: {exc}"[:255]
            event.last_error = error_message
            if event.attempt_count >= event.max_attempts:
                event.status = "dead_letter"
                dead_lettered += 1
            else:
                event.status = "failed"
                event.next_attempt_at = now + timedelta(seconds=settings.stock_event_retry_seconds)
                failed += 1
            log_event(
                "stock_event.failed",
                level=logging.ERROR,
                event_id=event.id,
                product_id=event.product_id,
                store_id=event.store_id,
                attempt=event.attempt_count,
                status=event.status,
                error=error_message,
            )
            continue

        event.status = "processed"
        event.last_error = None
        event.processed_at = now
        succeeded += 1

    return DispatchSummary(
        processed=processed,
        succeeded=succeeded,
        failed=failed,
        dead_lettered=dead_lettered,
    )
