"""
BOM Calculator - scale a recipe against an inventory snapshot.

Pure functions with no database access. The result is safe to compute
repeatedly for a live preview against a possibly stale snapshot, but it
is never the authority for committing production: production_service
recalculates against fresh stock inside its own transaction.

Calculation:
    multiplier      = target_quantity / recipe.output_quantity
    required_qty    = ingredient.quantity * multiplier        (3 dp)
    ingredient_cost = required_qty * item.cost_per_unit       (2 dp)
    sufficient      = item.current_stock >= required_qty
    deficit         = max(0, required_qty - current_stock)    (3 dp)
    total_cost      = sum(ingredient_cost)                    (2 dp)
    all_in_stock    = all(sufficient)

An ingredient whose inventory item is missing from the snapshot is
treated as zero stock at zero cost: fully short, not an error.

Example Usage:
    >>> from kitchen_ledger.services.bom_calculator import calculate_bom
    >>> recipe = {
    ...     "name": "Nihari", "output_quantity": 10, "output_unit": "kg",
    ...     "ingredients": [
    ...         {"inventory_item_id": 1, "name": "Mutton", "quantity": 2, "unit": "kg"},
    ...     ],
    ... }
    >>> inventory = [{"id": 1, "current_stock": 5, "cost_per_unit": 100}]
    >>> bom = calculate_bom(recipe, 5, inventory)
    >>> bom["multiplier"], bom["total_cost"], bom["all_in_stock"]
    (Decimal('0.5'), Decimal('100.00'), True)
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Iterable, List, Mapping

from ..utils.constants import CURRENCY_QUANTUM, QUANTITY_QUANTUM
from ..utils.validators import to_decimal, validate_positive_number
from .exceptions import InvalidRecipe, ValidationError


def _field(obj: Any, name: str, default: Any = None) -> Any:
    """Read a field from a dict or a model object."""
    if isinstance(obj, Mapping):
        return obj.get(name, default)
    return getattr(obj, name, default)


def round_quantity(value: Decimal) -> Decimal:
    """Round a quantity to 3 decimal places."""
    return value.quantize(QUANTITY_QUANTUM, rounding=ROUND_HALF_UP)


def round_currency(value: Decimal) -> Decimal:
    """Round a money amount to 2 decimal places."""
    return value.quantize(CURRENCY_QUANTUM, rounding=ROUND_HALF_UP)


def index_inventory(inventory_items: Iterable[Any]) -> Dict[Any, Any]:
    """Map inventory item id -> item for O(1) lookup."""
    return {_field(item, "id"): item for item in inventory_items}


def calculate_bom(recipe: Any, target_quantity: Any, inventory_items: Iterable[Any]) -> Dict[str, Any]:
    """
    Calculate the bill of materials for a target output quantity.

    Args:
        recipe: Recipe dict (as returned by recipe_service.get_recipe) or
            Recipe model, with output_quantity and ingredients
        target_quantity: Desired output quantity (must be > 0)
        inventory_items: Inventory snapshot, dicts or InventoryItem models

    Returns:
        Dict with keys:
            - "recipe_id", "recipe_name", "output_unit"
            - "target_quantity" (Decimal)
            - "multiplier" (Decimal): exact target / output_quantity
            - "scaled_ingredients" (List[Dict]): per ingredient
              inventory_item_id, name, unit, required_qty, current_stock,
              cost_per_unit, ingredient_cost, sufficient, deficit
            - "total_cost" (Decimal): sum of ingredient costs, 2 dp
            - "all_in_stock" (bool)

    Raises:
        InvalidRecipe: If the recipe's output_quantity is missing or <= 0
        ValidationError: If target_quantity is not a positive number
    """
    recipe_name = _field(recipe, "name")

    output_quantity = to_decimal(_field(recipe, "output_quantity"))
    if output_quantity is None or output_quantity <= 0:
        raise InvalidRecipe(recipe_name, "output quantity must be greater than zero")

    is_valid, error = validate_positive_number(target_quantity, "Target quantity")
    if not is_valid:
        raise ValidationError([error])
    target = to_decimal(target_quantity)

    multiplier = target / output_quantity
    stock_by_id = index_inventory(inventory_items)

    scaled_ingredients: List[Dict[str, Any]] = []
    for ingredient in _field(recipe, "ingredients", None) or []:
        item_id = _field(ingredient, "inventory_item_id")
        per_batch = to_decimal(_field(ingredient, "quantity"))
        if per_batch is None:
            raise InvalidRecipe(
                recipe_name, f"ingredient '{_field(ingredient, 'name')}' has no valid quantity"
            )

        required_qty = round_quantity(per_batch * multiplier)

        item = stock_by_id.get(item_id)
        if item is not None:
            stock = to_decimal(_field(item, "current_stock")) or Decimal("0")
            current_stock = round_quantity(stock)
            cost_per_unit = to_decimal(_field(item, "cost_per_unit")) or Decimal("0")
        else:
            current_stock = Decimal("0")
            cost_per_unit = Decimal("0")

        sufficient = current_stock >= required_qty
        deficit = Decimal("0") if sufficient else required_qty - current_stock

        scaled_ingredients.append(
            {
                "inventory_item_id": item_id,
                "name": _field(ingredient, "name"),
                "unit": _field(ingredient, "unit"),
                "required_qty": required_qty,
                "current_stock": current_stock,
                "cost_per_unit": cost_per_unit,
                "ingredient_cost": round_currency(required_qty * cost_per_unit),
                "sufficient": sufficient,
                "deficit": round_quantity(deficit),
            }
        )

    total_cost = round_currency(
        sum((ing["ingredient_cost"] for ing in scaled_ingredients), Decimal("0"))
    )

    return {
        "recipe_id": _field(recipe, "id"),
        "recipe_name": recipe_name,
        "target_quantity": target,
        "output_unit": _field(recipe, "output_unit"),
        "multiplier": multiplier,
        "scaled_ingredients": scaled_ingredients,
        "total_cost": total_cost,
        "all_in_stock": all(ing["sufficient"] for ing in scaled_ingredients),
    }


def get_shortages(bom: Dict[str, Any]) -> List[Dict[str, Any]]:
    """
    List the ingredients a BOM result cannot cover.

    Returns:
        One dict per short ingredient with inventory_item_id, name,
        required_qty, current_stock, deficit and unit
    """
    return [
        {
            "inventory_item_id": ing["inventory_item_id"],
            "name": ing["name"],
            "required_qty": ing["required_qty"],
            "current_stock": ing["current_stock"],
            "deficit": ing["deficit"],
            "unit": ing["unit"],
        }
        for ing in bom["scaled_ingredients"]
        if not ing["sufficient"]
    ]
