from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from inventory_service.core.observability import (
    http_exception_handler,
    request_logging_middleware,
    setup_observability,
    stock_ledger_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from inventory_service.core.config import settings
from inventory_service.core.errors import StockLedgerError
from inventory_service.db.session import engine
from inventory_service.routers import alerts, inventory

app = FastAPI(
    title=settings.app_name,
    version="0.1.0",
    description=(
        "Stock ledger API for CloudPOS stores.\n\n"
        "Every request needs a bearer token scoped to a store "
        "(claims `sub`, `store_id`, `role`). Click **Authorize** in Swagger and "
        "paste a token to try the `/inventory` endpoints."
    ),
    swagger_ui_parameters={
        "persistAuthorization": True,
        "displayRequestDuration": True,
        "defaultModelsExpandDepth": 1,
    },
    openapi_tags=[
        {"name": "health", "description": "Service status and quick links."},
        {"name": "inventory", "description": "Stock adjustments, reservations, levels, movements and valuation."},
        {"name": "alerts", "description": "Low-stock alerts and the stock event outbox."},
    ],
)

setup_observability()
app.middleware("http")(request_logging_middleware)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(StockLedgerError, stock_ledger_exception_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

cors_origins = settings.cors_origins or ["http://localhost:3000"]
allow_all_origins = "*" in cors_origins
env_value = settings.env.lower().strip()
allow_origin_regex = settings.cors_origin_regex

if (
    not allow_origin_regex
    and env_value in {"dev", "development", "staging", "stage"}
):
    allow_origin_regex = r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$"

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if allow_all_origins else cors_origins,
    allow_origin_regex=allow_origin_regex,
    allow_credentials=not allow_all_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(inventory.router)
app.include_router(alerts.router)


@app.get("/", tags=["health"])
def root():
    return {
        "app": settings.app_name,
        "docs": "/docs",
        "redoc": "/redoc",
        "health": "/health",
        "ready": "/ready",
    }


@app.get("/health", tags=["health"])
def health():
    return {"ok": True}


@app.get("/ready", tags=["health"])
def ready():
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError:
        return {"ok": False}
    return {"ok": True}
