"""Services package - Business logic layer for Kitchen Ledger.

This package contains all service modules that provide business logic
and database operations for the application.

Architecture:
- Services: Stateless functions organized by domain (inventory, recipe, ledger, production, metrics)
- Transactions: Managed via session_scope() context manager
- Exceptions: Consistent error handling via ServiceError hierarchy
- Validation: Input validation before database operations

Service Modules:
- inventory_service: Inventory item CRUD, subscriptions and stock movement primitives
- recipe_service: Recipe (BOM) CRUD and subscriptions
- bom_calculator: Pure recipe scaling against an inventory snapshot
- ledger_service: Purchase and waste events
- production_service: Production runs with compare-and-write stock deduction
- metrics_service: Additive daily financial counters and item sales
- event_query_service: Reads of the append-only event streams
- analytics_service: Ledger, category, item sales and daily reports

Infrastructure:
- exceptions: Custom exception classes for service layer errors
- database: Session management and database utilities
- change_feed: Post-commit change notifications
- retry: Bounded retry with exponential backoff
"""

# Service modules
from . import (
    database,
    change_feed,
    inventory_service,
    recipe_service,
    bom_calculator,
    metrics_service,
    ledger_service,
    production_service,
    event_query_service,
    analytics_service,
)

# Exceptions
from .exceptions import (
    ServiceError,
    ValidationError,
    InvalidRecipe,
    NotFoundError,
    InventoryItemNotFound,
    RecipeNotFound,
    UsageLogNotFound,
    InsufficientStockError,
    ConcurrencyConflictError,
    TransientStoreError,
)

# Database utilities
from .database import (
    session_scope,
    get_session,
    init_database,
    initialize_app_database,
)

__all__ = [
    # Service modules
    "database",
    "change_feed",
    "inventory_service",
    "recipe_service",
    "bom_calculator",
    "metrics_service",
    "ledger_service",
    "production_service",
    "event_query_service",
    "analytics_service",
    # Exceptions
    "ServiceError",
    "ValidationError",
    "InvalidRecipe",
    "NotFoundError",
    "InventoryItemNotFound",
    "RecipeNotFound",
    "UsageLogNotFound",
    "InsufficientStockError",
    "ConcurrencyConflictError",
    "TransientStoreError",
    # Database
    "session_scope",
    "get_session",
    "init_database",
    "initialize_app_database",
]
