"""
Daily metrics models.

This module contains:
- DailyMetric: One row of running counters per local calendar date
- DailyItemSale: Per-item sales bucket for a date, keyed by sanitized name
- SalesKeyName: Side index of every display name written under a sales key

All counters are only ever changed through additive SQL expressions
(``col = col + :delta``), so concurrent writers never overwrite each
other. DailyItemSale.name is the single last-write field.
"""

from decimal import Decimal

from sqlalchemy import (
    Column,
    Integer,
    String,
    Numeric,
    DateTime,
    Index,
    UniqueConstraint,
)

from .base import BaseModel
from kitchen_ledger.utils.datetime_utils import utc_now


class DailyMetric(BaseModel):
    """
    DailyMetric model holding one day's financial counters.

    Attributes:
        date_key: Local date, "YYYY-MM-DD" (unique)
        total_sales: Revenue from checkouts
        total_orders: Number of checkouts
        dine_in_tables: Checkouts served at a table
        total_cogs: Ingredient cost of production
        total_wastage_loss: Cost of recorded waste
        last_updated: Last time any counter changed
    """

    __tablename__ = "daily_metrics"

    date_key = Column(String(10), nullable=False, unique=True)

    total_sales = Column(Numeric(14, 2), nullable=False, default=Decimal("0"))
    total_orders = Column(Integer, nullable=False, default=0)
    dine_in_tables = Column(Integer, nullable=False, default=0)
    total_cogs = Column(Numeric(14, 2), nullable=False, default=Decimal("0"))
    total_wastage_loss = Column(Numeric(14, 2), nullable=False, default=Decimal("0"))

    last_updated = Column(DateTime, nullable=False, default=utc_now)

    def __repr__(self) -> str:
        """String representation of daily metric."""
        return (
            f"DailyMetric(date_key='{self.date_key}', total_sales={self.total_sales}, "
            f"total_cogs={self.total_cogs})"
        )


class DailyItemSale(BaseModel):
    """
    Per-item sales rollup for one date.

    Distinct item names that sanitize to the same sales_key share one row;
    their qty and revenue are summed and the row's name is whichever was
    written last. SalesKeyName records the colliding names.

    Attributes:
        date_key: Local date, "YYYY-MM-DD"
        sales_key: sanitize(item name)
        name: Display name from the most recent write
        qty: Units sold
        revenue: Revenue from this item
    """

    __tablename__ = "daily_item_sales"

    date_key = Column(String(10), nullable=False)
    sales_key = Column(String(200), nullable=False)
    name = Column(String(200), nullable=False)
    qty = Column(Numeric(14, 3), nullable=False, default=Decimal("0"))
    revenue = Column(Numeric(14, 2), nullable=False, default=Decimal("0"))

    __table_args__ = (
        UniqueConstraint("date_key", "sales_key", name="uq_daily_item_sale_key"),
        Index("idx_daily_item_sale_date", "date_key"),
    )

    def __repr__(self) -> str:
        """String representation of daily item sale."""
        return (
            f"DailyItemSale(date_key='{self.date_key}', sales_key='{self.sales_key}', "
            f"qty={self.qty})"
        )


class SalesKeyName(BaseModel):
    """
    Side index mapping a sales key to each display name seen under it.

    More than one row for the same sales_key means distinct items are
    being merged into one sales bucket.

    Attributes:
        sales_key: sanitize(display_name)
        display_name: Item name as written by the caller
    """

    __tablename__ = "sales_key_names"

    sales_key = Column(String(200), nullable=False, index=True)
    display_name = Column(String(200), nullable=False)

    __table_args__ = (
        UniqueConstraint("sales_key", "display_name", name="uq_sales_key_display_name"),
    )
