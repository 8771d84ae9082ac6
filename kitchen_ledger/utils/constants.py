"""
Constants for the Kitchen Ledger application.

This module defines system-wide constants including:
- Application metadata
- Inventory defaults
- Ledger event types and metric field names
- Validation and precision limits
"""

from decimal import Decimal
from typing import List

# ============================================================================
# Application Metadata
# ============================================================================

APP_NAME = "Kitchen Ledger"
APP_VERSION = "0.1.0"
DATABASE_VERSION = "1.0"

# ============================================================================
# Inventory Categories
# ============================================================================

DEFAULT_CATEGORY = "other"

DEFAULT_WASTE_REASON = "Not specified"

# ============================================================================
# Ledger Event Types
# ============================================================================

EVENT_TYPE_PURCHASE = "PURCHASE"
EVENT_TYPE_PRODUCTION = "PRODUCTION"
EVENT_TYPE_WASTE = "WASTE"

# ============================================================================
# Daily Metrics
# ============================================================================

METRIC_TOTAL_SALES = "total_sales"
METRIC_TOTAL_ORDERS = "total_orders"
METRIC_DINE_IN_TABLES = "dine_in_tables"
METRIC_TOTAL_COGS = "total_cogs"
METRIC_TOTAL_WASTAGE_LOSS = "total_wastage_loss"

# Scalar counters that accept additive deltas
SCALAR_METRIC_FIELDS: List[str] = [
    METRIC_TOTAL_SALES,
    METRIC_TOTAL_ORDERS,
    METRIC_DINE_IN_TABLES,
    METRIC_TOTAL_COGS,
    METRIC_TOTAL_WASTAGE_LOSS,
]

# Delta key carrying per-item rollups
ITEM_SALES_FIELD = "item_sales"

# Replacement for characters that cannot appear in a sales key
SALES_KEY_REPLACEMENT = "_"

# ============================================================================
# Validation Constants
# ============================================================================

MAX_NAME_LENGTH = 200
MAX_CATEGORY_LENGTH = 100
MAX_UNIT_LENGTH = 50
MAX_REASON_LENGTH = 500
MAX_IDEMPOTENCY_KEY_LENGTH = 100

# Decimal precision
CURRENCY_QUANTUM = Decimal("0.01")
QUANTITY_QUANTUM = Decimal("0.001")

# ============================================================================
# Database Constants
# ============================================================================

DATABASE_FILENAME = "kitchen_ledger.db"

# Change-feed collection names
COLLECTION_INVENTORY = "inventory"
COLLECTION_RECIPES = "recipes"

# ============================================================================
# Retry Defaults
# ============================================================================

DEFAULT_RETRY_MAX_ATTEMPTS = 3
DEFAULT_RETRY_BASE_DELAY = 0.1
MAX_RETRY_DELAY = 1.0
DEFAULT_DB_TIMEOUT = 30

