"""
WasteEntry model for stock-out losses.

A waste entry records the quantity the caller reported as wasted, even
when stock on hand was lower and the item's stock was clamped at zero.
The gap between recorded waste and the actual stock reduction is kept on
purpose; reports show what was reported.
"""

from decimal import Decimal

from sqlalchemy import Column, Integer, String, Numeric, DateTime, Index, CheckConstraint

from .base import BaseModel
from kitchen_ledger.utils.constants import DEFAULT_WASTE_REASON
from kitchen_ledger.utils.datetime_utils import utc_now


class WasteEntry(BaseModel):
    """
    WasteEntry model representing one loss event.

    Attributes:
        inventory_item_id: Item that lost stock (plain reference)
        item_name: Item name at waste time
        quantity: Reported quantity wasted (must be > 0)
        reason: Free-text reason (e.g. "expired", "spilled")
        unit_cost: Cost per unit used to value the loss
        total_cost: quantity * unit_cost, computed at write time
        waste_date: When the waste was recorded
        idempotency_key: Optional caller token for safe retries
    """

    __tablename__ = "waste_entries"

    inventory_item_id = Column(Integer, nullable=False)
    item_name = Column(String(200), nullable=False)

    quantity = Column(Numeric(12, 3), nullable=False)
    reason = Column(String(500), nullable=False, default=DEFAULT_WASTE_REASON)
    unit_cost = Column(Numeric(12, 4), nullable=False, default=Decimal("0"))
    total_cost = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))

    waste_date = Column(DateTime, nullable=False, default=utc_now)

    idempotency_key = Column(String(100), nullable=True, unique=True)

    __table_args__ = (
        Index("idx_waste_item_date", "inventory_item_id", "waste_date"),
        Index("idx_waste_date", "waste_date"),
        CheckConstraint("quantity > 0", name="ck_waste_quantity_positive"),
        CheckConstraint("unit_cost >= 0", name="ck_waste_unit_cost_non_negative"),
    )

    def __repr__(self) -> str:
        """String representation of waste entry."""
        return (
            f"WasteEntry(id={self.id}, item='{self.item_name}', "
            f"quantity={self.quantity}, reason='{self.reason}')"
        )
