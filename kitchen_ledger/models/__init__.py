"""
Database models package.

This package contains all SQLAlchemy ORM models for the application.
"""

from .base import Base, BaseModel
from .inventory_item import InventoryItem
from .recipe import Recipe, RecipeIngredient
from .purchase_record import PurchaseRecord
from .waste_entry import WasteEntry
from .usage_log import UsageLog, UsageLogIngredient
from .daily_metric import DailyMetric, DailyItemSale, SalesKeyName

__all__ = [
    "Base",
    "BaseModel",
    "InventoryItem",
    "Recipe",
    "RecipeIngredient",
    "PurchaseRecord",
    "WasteEntry",
    "UsageLog",
    "UsageLogIngredient",
    "DailyMetric",
    "DailyItemSale",
    "SalesKeyName",
]
