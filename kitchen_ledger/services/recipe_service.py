"""Recipe Service - CRUD and change subscriptions for recipes (BOM definitions).

A recipe's ingredient quantities are per one batch of output_quantity.
Ingredient rows reference inventory items by id; a recipe stays valid when
an item is deleted, and the BOM calculator reports that line as short.

Example Usage:
    >>> from kitchen_ledger.services import recipe_service
    >>> recipe_id = recipe_service.add_recipe({
    ...     "name": "Nihari",
    ...     "output_quantity": 10,
    ...     "output_unit": "kg",
    ...     "ingredients": [
    ...         {"inventory_item_id": 1, "name": "Mutton", "quantity": 2, "unit": "kg"},
    ...     ],
    ... })
"""

from contextlib import nullcontext
from typing import Any, Callable, Dict, List

from ..models import Recipe, RecipeIngredient
from ..utils.constants import COLLECTION_RECIPES, MAX_NAME_LENGTH
from ..utils.validators import (
    to_decimal,
    validate_positive_number,
    validate_required_string,
    validate_string_length,
)
from . import change_feed
from .database import session_scope
from .exceptions import RecipeNotFound, ValidationError
from .logging_utils import get_service_logger, log_operation

logger = get_service_logger(__name__)

UPDATABLE_FIELDS = {"name", "output_quantity", "output_unit", "linked_menu_item_id", "ingredients"}


def _validate_ingredients(ingredients: Any) -> List[str]:
    errors = []
    if not isinstance(ingredients, (list, tuple)) or not ingredients:
        return ["Ingredients: At least one ingredient is required"]

    seen_item_ids = set()
    for position, ingredient in enumerate(ingredients, start=1):
        label = f"Ingredient {position}"
        item_id = ingredient.get("inventory_item_id")
        if item_id is None:
            errors.append(f"{label}: inventory_item_id is required")
        elif item_id in seen_item_ids:
            errors.append(f"{label}: inventory item {item_id} is already listed")
        else:
            seen_item_ids.add(item_id)
        is_valid, error = validate_required_string(ingredient.get("name"), f"{label} name")
        if not is_valid:
            errors.append(error)
        is_valid, error = validate_positive_number(ingredient.get("quantity"), f"{label} quantity")
        if not is_valid:
            errors.append(error)
        is_valid, error = validate_required_string(ingredient.get("unit"), f"{label} unit")
        if not is_valid:
            errors.append(error)
    return errors


def _validate_recipe_fields(data: Dict[str, Any], *, partial: bool) -> List[str]:
    errors = []

    if not partial or "name" in data:
        is_valid, error = validate_required_string(data.get("name"), "Name")
        if not is_valid:
            errors.append(error)
        else:
            is_valid, error = validate_string_length(data["name"].strip(), MAX_NAME_LENGTH, "Name")
            if not is_valid:
                errors.append(error)

    if not partial or "output_quantity" in data:
        is_valid, error = validate_positive_number(data.get("output_quantity"), "Output quantity")
        if not is_valid:
            errors.append(error)

    if not partial or "output_unit" in data:
        is_valid, error = validate_required_string(data.get("output_unit"), "Output unit")
        if not is_valid:
            errors.append(error)

    if not partial or "ingredients" in data:
        errors.extend(_validate_ingredients(data.get("ingredients")))

    return errors


def _build_ingredients(ingredients: List[Dict[str, Any]]) -> List[RecipeIngredient]:
    return [
        RecipeIngredient(
            inventory_item_id=ingredient["inventory_item_id"],
            name=ingredient["name"].strip(),
            quantity=to_decimal(ingredient["quantity"]),
            unit=ingredient["unit"].strip(),
            position=position,
        )
        for position, ingredient in enumerate(ingredients)
    ]


def get_recipe(recipe_id: int, *, session=None) -> Dict[str, Any]:
    """
    Get a recipe with its ingredients.

    Raises:
        RecipeNotFound: If the recipe doesn't exist
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        recipe = session.get(Recipe, recipe_id)
        if recipe is None:
            raise RecipeNotFound(recipe_id)
        return recipe.to_dict()


def list_recipes(*, session=None) -> List[Dict[str, Any]]:
    """List all recipes with ingredients, ordered by name."""
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        recipes = session.query(Recipe).order_by(Recipe.name, Recipe.id).all()
        return [recipe.to_dict() for recipe in recipes]


def add_recipe(data: Dict[str, Any], *, session=None) -> int:
    """
    Add a new recipe.

    Args:
        data: Dict with name, output_quantity, output_unit, ingredients
            (list of {inventory_item_id, name, quantity, unit}) and
            optionally linked_menu_item_id
        session: Optional database session

    Returns:
        New recipe ID

    Raises:
        ValidationError: If a field is missing or a quantity is not positive
    """
    errors = _validate_recipe_fields(data, partial=False)
    if errors:
        log_operation(logger, "add_recipe", "validation_failed", errors=errors)
        raise ValidationError(errors)

    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        recipe = Recipe(
            name=data["name"].strip(),
            output_quantity=to_decimal(data["output_quantity"]),
            output_unit=data["output_unit"].strip(),
            linked_menu_item_id=data.get("linked_menu_item_id") or None,
            ingredients=_build_ingredients(data["ingredients"]),
        )
        session.add(recipe)
        session.flush()
        change_feed.mark_changed(session, COLLECTION_RECIPES)

        log_operation(
            logger,
            "add_recipe",
            "success",
            recipe_id=recipe.id,
            ingredient_count=len(recipe.ingredients),
        )
        return recipe.id


def update_recipe(recipe_id: int, data: Dict[str, Any], *, session=None) -> Dict[str, Any]:
    """
    Update a recipe.

    When ``ingredients`` is supplied it replaces the whole ingredient list.

    Returns:
        Updated recipe dict

    Raises:
        RecipeNotFound: If the recipe doesn't exist
        ValidationError: If a field is unknown or invalid
    """
    unknown = sorted(set(data) - UPDATABLE_FIELDS)
    errors = [f"{field}: Cannot be updated" for field in unknown]
    errors.extend(_validate_recipe_fields(data, partial=True))
    if errors:
        log_operation(logger, "update_recipe", "validation_failed", recipe_id=recipe_id, errors=errors)
        raise ValidationError(errors)

    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        recipe = session.get(Recipe, recipe_id)
        if recipe is None:
            raise RecipeNotFound(recipe_id)

        if "name" in data:
            recipe.name = data["name"].strip()
        if "output_quantity" in data:
            recipe.output_quantity = to_decimal(data["output_quantity"])
        if "output_unit" in data:
            recipe.output_unit = data["output_unit"].strip()
        if "linked_menu_item_id" in data:
            recipe.linked_menu_item_id = data["linked_menu_item_id"] or None
        if "ingredients" in data:
            recipe.ingredients = _build_ingredients(data["ingredients"])

        session.flush()
        change_feed.mark_changed(session, COLLECTION_RECIPES)

        log_operation(logger, "update_recipe", "success", recipe_id=recipe_id, fields=sorted(data))
        return recipe.to_dict()


def delete_recipe(recipe_id: int, *, session=None) -> None:
    """
    Delete a recipe and its ingredient lines.

    Usage logs keep their recipe_name snapshot.

    Raises:
        RecipeNotFound: If the recipe doesn't exist
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        recipe = session.get(Recipe, recipe_id)
        if recipe is None:
            raise RecipeNotFound(recipe_id)
        session.delete(recipe)
        session.flush()
        change_feed.mark_changed(session, COLLECTION_RECIPES)

        log_operation(logger, "delete_recipe", "success", recipe_id=recipe_id)


def subscribe_to_recipes(callback: Callable[[List[Dict[str, Any]]], None]) -> Callable[[], None]:
    """
    Subscribe to recipe changes.

    The callback receives the recipe list (ordered by name) immediately
    and again after every committed recipe change.

    Returns:
        Unsubscribe function
    """

    def _deliver() -> None:
        callback(list_recipes())

    unsubscribe = change_feed.subscribe(COLLECTION_RECIPES, _deliver)
    _deliver()
    return unsubscribe
