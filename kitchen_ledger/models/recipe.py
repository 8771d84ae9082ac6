"""
Recipe (bill of materials) models.

This module contains:
- Recipe: Output definition for one batch (name, quantity, unit)
- RecipeIngredient: One inventory item consumed per batch
"""

from sqlalchemy import (
    Column,
    String,
    Integer,
    Numeric,
    ForeignKey,
    Index,
    CheckConstraint,
)
from sqlalchemy.orm import relationship

from .base import BaseModel


class Recipe(BaseModel):
    """
    Recipe model representing a bill of materials.

    Ingredient quantities are per one batch of ``output_quantity``; the BOM
    calculator scales them linearly to any target quantity.

    Attributes:
        name: Recipe name (e.g. "Nihari")
        output_quantity: Quantity one batch yields (must be > 0)
        output_unit: Unit of the output (e.g. "kg", "plates")
        linked_menu_item_id: Optional POS menu item this recipe produces
        ingredients: Ordered RecipeIngredient rows
    """

    __tablename__ = "recipes"

    name = Column(String(200), nullable=False, index=True)
    output_quantity = Column(Numeric(12, 3), nullable=False)
    output_unit = Column(String(50), nullable=False)
    linked_menu_item_id = Column(String(100), nullable=True)

    ingredients = relationship(
        "RecipeIngredient",
        back_populates="recipe",
        cascade="all, delete-orphan",
        order_by="RecipeIngredient.position",
        lazy="joined",
    )

    __table_args__ = (
        CheckConstraint("output_quantity > 0", name="ck_recipe_output_quantity_positive"),
    )

    def __repr__(self) -> str:
        """String representation of recipe."""
        return (
            f"Recipe(id={self.id}, name='{self.name}', "
            f"output={self.output_quantity} {self.output_unit})"
        )

    def to_dict(self, include_relationships: bool = True) -> dict:
        """
        Convert recipe to dictionary.

        Ingredients are included by default since a recipe without them
        cannot be scaled.

        Args:
            include_relationships: If True, include the ingredient list

        Returns:
            Dictionary representation
        """
        result = super().to_dict(include_relationships=False)
        if include_relationships:
            result["ingredients"] = [ingredient.to_dict() for ingredient in self.ingredients]
        return result


class RecipeIngredient(BaseModel):
    """
    One ingredient line of a recipe.

    inventory_item_id is a plain reference rather than a foreign key:
    deleting an inventory item must not cascade into recipes, and the BOM
    calculator treats a missing item as out of stock.

    Attributes:
        recipe_id: Owning recipe
        inventory_item_id: Referenced inventory item
        name: Ingredient display name at the time the recipe was saved
        quantity: Quantity per batch (must be > 0)
        unit: Unit of the quantity
        position: Display order within the recipe
    """

    __tablename__ = "recipe_ingredients"

    recipe_id = Column(
        Integer, ForeignKey("recipes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    inventory_item_id = Column(Integer, nullable=False)
    name = Column(String(200), nullable=False)
    quantity = Column(Numeric(12, 3), nullable=False)
    unit = Column(String(50), nullable=False)
    position = Column(Integer, nullable=False, default=0)

    recipe = relationship("Recipe", back_populates="ingredients")

    __table_args__ = (
        Index("idx_recipe_ingredient_item", "inventory_item_id"),
        CheckConstraint("quantity > 0", name="ck_recipe_ingredient_quantity_positive"),
    )

    def __repr__(self) -> str:
        """String representation of recipe ingredient."""
        return (
            f"RecipeIngredient(recipe_id={self.recipe_id}, "
            f"inventory_item_id={self.inventory_item_id}, quantity={self.quantity})"
        )
