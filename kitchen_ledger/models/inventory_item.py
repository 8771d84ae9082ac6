"""
InventoryItem model for tracking stock on hand.

Each record is one stock-keeping item (e.g. "Mutton", "Ghee") with a
running quantity and the cost of its most recent purchase. Stock is
mutated only through the ledger and production services:
- purchases add stock and overwrite cost_per_unit (latest-cost policy)
- waste removes stock, clamped at zero
- production removes stock after a sufficiency check
"""

from decimal import Decimal

from sqlalchemy import Column, String, Numeric, DateTime, Index, CheckConstraint

from .base import BaseModel
from kitchen_ledger.utils.constants import DEFAULT_CATEGORY, CURRENCY_QUANTUM
from kitchen_ledger.utils.datetime_utils import utc_now


class InventoryItem(BaseModel):
    """
    InventoryItem model representing one stocked ingredient or supply.

    Attributes:
        name: Display name (snapshotted into history records)
        unit: Stock unit (e.g. "kg", "l", "pcs")
        current_stock: Quantity on hand, never negative
        cost_per_unit: Price paid per unit on the latest purchase
        reorder_level: Stock level at or below which the item needs reordering
        category: Grouping used by the categorical breakdown
        last_updated: Last stock or cost change
    """

    __tablename__ = "inventory_items"

    name = Column(String(200), nullable=False, index=True)
    unit = Column(String(50), nullable=False)

    current_stock = Column(Numeric(12, 3), nullable=False, default=Decimal("0"))
    cost_per_unit = Column(Numeric(12, 4), nullable=False, default=Decimal("0"))
    reorder_level = Column(Numeric(12, 3), nullable=False, default=Decimal("0"))

    category = Column(String(100), nullable=False, default=DEFAULT_CATEGORY)

    last_updated = Column(DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    __table_args__ = (
        Index("idx_inventory_category_name", "category", "name"),
        CheckConstraint("current_stock >= 0", name="ck_inventory_stock_non_negative"),
        CheckConstraint("cost_per_unit >= 0", name="ck_inventory_cost_non_negative"),
    )

    def __repr__(self) -> str:
        """String representation of inventory item."""
        return (
            f"InventoryItem(id={self.id}, name='{self.name}', "
            f"current_stock={self.current_stock}, unit='{self.unit}')"
        )

    @property
    def is_low_stock(self) -> bool:
        """True when stock is at or below the reorder level."""
        return Decimal(str(self.current_stock or 0)) <= Decimal(str(self.reorder_level or 0))

    @property
    def stock_value(self) -> Decimal:
        """Current stock valued at the latest cost."""
        stock = Decimal(str(self.current_stock or 0))
        cost = Decimal(str(self.cost_per_unit or 0))
        return (stock * cost).quantize(CURRENCY_QUANTUM)

    def to_dict(self, include_relationships: bool = False) -> dict:
        """
        Convert inventory item to dictionary.

        Args:
            include_relationships: Unused; inventory items have no relationships

        Returns:
            Dictionary representation with calculated fields
        """
        result = super().to_dict(include_relationships)
        result["is_low_stock"] = self.is_low_stock
        result["stock_value"] = self.stock_value
        return result
