"""
PurchaseRecord model for stock-in events.

Each record is one purchase of an inventory item. The record is
append-only: total_cost is computed once at write time and never
recalculated, and item_name is snapshotted so deleting the inventory item
leaves history intact.
"""

from decimal import Decimal

from sqlalchemy import Column, Integer, String, Numeric, DateTime, Index, CheckConstraint

from .base import BaseModel
from kitchen_ledger.utils.datetime_utils import utc_now


class PurchaseRecord(BaseModel):
    """
    PurchaseRecord model representing one stock purchase.

    Attributes:
        inventory_item_id: Item that received the stock (plain reference)
        item_name: Item name at purchase time
        quantity: Quantity bought (must be > 0)
        unit_cost: Price paid per unit (must be >= 0)
        total_cost: quantity * unit_cost, computed at write time
        purchase_date: When the purchase was recorded
        idempotency_key: Optional caller token; a repeat key returns the
            original record instead of applying the purchase twice
    """

    __tablename__ = "purchase_records"

    inventory_item_id = Column(Integer, nullable=False)
    item_name = Column(String(200), nullable=False)

    quantity = Column(Numeric(12, 3), nullable=False)
    unit_cost = Column(Numeric(12, 4), nullable=False, default=Decimal("0"))
    total_cost = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))

    purchase_date = Column(DateTime, nullable=False, default=utc_now)

    idempotency_key = Column(String(100), nullable=True, unique=True)

    __table_args__ = (
        Index("idx_purchase_item_date", "inventory_item_id", "purchase_date"),
        Index("idx_purchase_date", "purchase_date"),
        CheckConstraint("quantity > 0", name="ck_purchase_quantity_positive"),
        CheckConstraint("unit_cost >= 0", name="ck_purchase_unit_cost_non_negative"),
    )

    def __repr__(self) -> str:
        """String representation of purchase record."""
        return (
            f"PurchaseRecord(id={self.id}, item='{self.item_name}', "
            f"quantity={self.quantity}, total_cost={self.total_cost})"
        )
