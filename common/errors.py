from __future__ import annotations

from typing import Any


class GarageError(Exception):
    """Base class for business-rule failures raised by the billing and inventory core."""

    code = "garage_error"
    status_code = 400

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ValidationError(GarageError):
    code = "validation_error"
    status_code = 400


class NotFoundError(GarageError):
    code = "not_found"
    status_code = 404

    def __init__(self, entity: str, message: str | None = None, details: dict[str, Any] | None = None):
        self.entity = entity
        super().__init__(message or f"{entity.capitalize()} not found", details)


class InvalidStateError(GarageError):
    code = "invalid_state"
    status_code = 409


class DuplicateInvoiceError(GarageError):
    code = "duplicate_invoice"
    status_code = 409

    def __init__(self, job_card_id, message: str = "Invoice already exists for this job card"):
        self.job_card_id = job_card_id
        super().__init__(message, {"job_card_id": str(job_card_id)})


class InsufficientStockError(GarageError):
    code = "insufficient_stock"
    status_code = 409

    def __init__(self, item_name: str, available: int, required: int):
        self.item_name = item_name
        self.available = available
        self.required = required
        super().__init__(
            f"Insufficient stock for {item_name}. Available: {available}, Required: {required}",
            {"item_name": item_name, "available": available, "required": required},
        )
