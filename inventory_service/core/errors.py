class StockLedgerError(Exception):
    """Base for failures the ledger reports to its callers."""

    code = "stock_ledger_error"
    status_code = 400

    def __init__(self, message: str, *, details: list[dict] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details


class StockValidationError(StockLedgerError, ValueError):
    code = "validation_error"
    status_code = 422


class StockNotFoundError(StockLedgerError, LookupError):
    code = "not_found"
    status_code = 404


class InsufficientStockError(StockLedgerError):
    code = "insufficient_stock"
    status_code = 409

    def __init__(self, *, current_quantity: int, requested_quantity: int):
        super().__init__(
            f"Insufficient stock. Current: {current_quantity}, Requested: {requested_quantity}",
            details=[
                {
                    "field": "quantity",
                    "message": f"Only {current_quantity} on hand",
                    "type": "insufficient_stock",
                }
            ],
        )
        self.current_quantity = current_quantity
        self.requested_quantity = requested_quantity


class PersistenceError(StockLedgerError):
    code = "persistence_error"
    status_code = 503
