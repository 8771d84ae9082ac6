"""
UsageLog models for production events.

A usage log is the immutable record of one production run: which recipe
was made, how much, what each ingredient contributed, and the total cost
at the moment of production. total_cost is a financial snapshot and is
never recomputed when an item's cost_per_unit later changes.
"""

from decimal import Decimal

from sqlalchemy import (
    Column,
    Integer,
    String,
    Numeric,
    DateTime,
    ForeignKey,
    Index,
)
from sqlalchemy.orm import relationship

from .base import BaseModel
from kitchen_ledger.utils.datetime_utils import utc_now


class UsageLog(BaseModel):
    """
    UsageLog model representing one production run.

    Attributes:
        recipe_id: Recipe that was produced (plain reference)
        recipe_name: Recipe name at production time
        target_quantity: Quantity produced
        output_unit: Unit of the produced quantity
        multiplier: target_quantity / recipe.output_quantity
        total_cost: Ingredient cost snapshot (rounded to 2 dp)
        timestamp: When production was recorded
        idempotency_key: Optional caller token for safe retries
        ingredients: UsageLogIngredient rows, one per recipe line
    """

    __tablename__ = "usage_logs"

    recipe_id = Column(Integer, nullable=False, index=True)
    recipe_name = Column(String(200), nullable=False)

    target_quantity = Column(Numeric(12, 3), nullable=False)
    output_unit = Column(String(50), nullable=False)
    multiplier = Column(Numeric(18, 6), nullable=False)
    total_cost = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))

    timestamp = Column(DateTime, nullable=False, default=utc_now)

    idempotency_key = Column(String(100), nullable=True, unique=True)

    ingredients = relationship(
        "UsageLogIngredient",
        back_populates="usage_log",
        cascade="all, delete-orphan",
        order_by="UsageLogIngredient.id",
        lazy="joined",
    )

    __table_args__ = (Index("idx_usage_timestamp", "timestamp"),)

    def __repr__(self) -> str:
        """String representation of usage log."""
        return (
            f"UsageLog(id={self.id}, recipe='{self.recipe_name}', "
            f"target_quantity={self.target_quantity}, total_cost={self.total_cost})"
        )

    def to_dict(self, include_relationships: bool = True) -> dict:
        """Convert usage log to dictionary, ingredients included by default."""
        result = super().to_dict(include_relationships=False)
        if include_relationships:
            result["ingredients"] = [ingredient.to_dict() for ingredient in self.ingredients]
        return result


class UsageLogIngredient(BaseModel):
    """
    Ingredient snapshot within a usage log.

    Attributes:
        usage_log_id: Owning usage log
        inventory_item_id: Item consumed (plain reference)
        name: Ingredient name at production time
        quantity_used: Quantity deducted from stock
        unit: Unit of quantity_used
        ingredient_cost: quantity_used valued at production time
    """

    __tablename__ = "usage_log_ingredients"

    usage_log_id = Column(
        Integer, ForeignKey("usage_logs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    inventory_item_id = Column(Integer, nullable=False)
    name = Column(String(200), nullable=False)
    quantity_used = Column(Numeric(12, 3), nullable=False)
    unit = Column(String(50), nullable=False)
    ingredient_cost = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))

    usage_log = relationship("UsageLog", back_populates="ingredients")

    __table_args__ = (Index("idx_usage_ingredient_item", "inventory_item_id"),)
