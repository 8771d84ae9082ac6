"""Service layer exception classes for Kitchen Ledger.

This module defines all custom exceptions used by the service layer to provide
consistent error handling across the application.

Exception Hierarchy:
    ServiceError (base)
    ├── ValidationError
    │   └── InvalidRecipe
    ├── NotFoundError
    │   ├── InventoryItemNotFound
    │   ├── RecipeNotFound
    │   └── UsageLogNotFound
    ├── InsufficientStockError
    ├── ConcurrencyConflictError
    └── TransientStoreError
"""

from decimal import Decimal
from typing import Any, Dict, List, Optional


class ServiceError(Exception):
    """Base exception for all service layer errors.

    All service-specific exceptions should inherit from this class.
    """

    pass


class ValidationError(ServiceError):
    """Raised when input validation fails.

    Args:
        errors: List of validation error messages

    Example:
        >>> raise ValidationError(["Quantity must be positive"])
        ValidationError: Validation failed: Quantity must be positive
    """

    def __init__(self, errors: List[str]):
        if isinstance(errors, str):
            errors = [errors]
        self.errors = errors
        super().__init__(f"Validation failed: {'; '.join(errors)}")


class InvalidRecipe(ValidationError):
    """Raised when a recipe cannot be scaled (e.g. non-positive output quantity)."""

    def __init__(self, recipe_name: Optional[str], reason: str):
        self.recipe_name = recipe_name
        self.reason = reason
        label = f"Recipe '{recipe_name}'" if recipe_name else "Recipe"
        super().__init__([f"{label}: {reason}"])


class NotFoundError(ServiceError):
    """Raised when a referenced record does not exist."""

    entity = "Record"

    def __init__(self, record_id: Any):
        self.record_id = record_id
        super().__init__(f"{self.entity} with ID {record_id} not found")


class InventoryItemNotFound(NotFoundError):
    """Raised when an inventory item cannot be found by ID.

    Example:
        >>> raise InventoryItemNotFound(456)
        InventoryItemNotFound: Inventory item with ID 456 not found
    """

    entity = "Inventory item"

    @property
    def inventory_item_id(self):
        return self.record_id


class RecipeNotFound(NotFoundError):
    """Raised when a recipe cannot be found by ID."""

    entity = "Recipe"

    @property
    def recipe_id(self):
        return self.record_id


class UsageLogNotFound(NotFoundError):
    """Raised when a usage log cannot be found by ID."""

    entity = "Usage log"


class InsufficientStockError(ServiceError):
    """Raised when production needs more stock than is on hand.

    Args:
        shortages: One dict per short ingredient with keys
            inventory_item_id, name, required_qty, current_stock, unit

    Example:
        >>> raise InsufficientStockError([
        ...     {"name": "Mutton", "required_qty": Decimal("12"),
        ...      "current_stock": Decimal("5"), "unit": "kg"}
        ... ])
        InsufficientStockError: Insufficient stock: Mutton: need 12 kg, have 5
    """

    def __init__(self, shortages: List[Dict[str, Any]]):
        self.shortages = shortages
        details = ", ".join(
            f"{s['name']}: need {s['required_qty']} {s.get('unit') or ''}".rstrip()
            + f", have {s['current_stock']}"
            for s in shortages
        )
        super().__init__(f"Insufficient stock: {details}")


class ConcurrencyConflictError(ServiceError):
    """Raised when stock changed between validation and the guarded write.

    The surrounding transaction has been rolled back, so the operation can
    be retried safely from the top.
    """

    def __init__(self, inventory_item_id: int, required: Decimal):
        self.inventory_item_id = inventory_item_id
        self.required = required
        super().__init__(
            f"Stock for inventory item {inventory_item_id} changed during write "
            f"(needed {required}); retry the operation"
        )


class TransientStoreError(ServiceError):
    """Raised when the store is temporarily unavailable (locked, timed out).

    Retryable with backoff, but a write that timed out may already have
    committed, so only retry writes that carry an idempotency key.
    """

    def __init__(self, message: str, original_error: Exception = None):
        self.original_error = original_error
        super().__init__(f"Store unavailable: {message}")
