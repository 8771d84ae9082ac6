"""Production Service - turn a recipe into stock deductions and COGS.

execute_production() is the only path that consumes ingredient stock for
production. Within one transaction it:

1. Re-reads the recipe and a fresh inventory snapshot
2. Recomputes the BOM and rejects the run if any ingredient is short
3. Deducts each ingredient with a compare-and-write UPDATE that only
   matches while enough stock is still on hand
4. Appends a UsageLog with the ingredient and cost snapshot
5. Adds the run's total cost to today's total_cogs

A compare-and-write that matches no row means another writer consumed
the stock after step 2. The transaction rolls back and, when this
service owns it, the whole run is retried from step 1.

Example Usage:
    >>> from kitchen_ledger.services import production_service
    >>> preview = production_service.check_can_produce(recipe_id, 5)
    >>> if preview["can_produce"]:
    ...     result = production_service.execute_production(recipe_id, 5)
"""

from contextlib import nullcontext
from typing import Any, Dict, List, Optional

from ..models import Recipe, UsageLog, UsageLogIngredient
from ..utils.constants import COLLECTION_INVENTORY, MAX_IDEMPOTENCY_KEY_LENGTH, METRIC_TOTAL_COGS
from ..utils.datetime_utils import ensure_utc, get_local_date_string, utc_now
from ..utils.validators import validate_positive_number, validate_string_length
from . import change_feed, inventory_service, metrics_service
from .bom_calculator import calculate_bom, round_quantity
from .database import session_scope
from .exceptions import (
    ConcurrencyConflictError,
    InsufficientStockError,
    RecipeNotFound,
    UsageLogNotFound,
    ValidationError,
)
from .logging_utils import get_service_logger, log_operation
from .retry import retry_with_backoff

logger = get_service_logger(__name__)


def _load_bom(session, recipe_id: int, target_quantity: Any) -> Dict[str, Any]:
    recipe = session.get(Recipe, recipe_id, populate_existing=True)
    if recipe is None:
        raise RecipeNotFound(recipe_id)
    recipe_data = recipe.to_dict()
    snapshot = inventory_service.get_inventory_snapshot(
        [ingredient["inventory_item_id"] for ingredient in recipe_data["ingredients"]],
        session=session,
    )
    return calculate_bom(recipe_data, target_quantity, snapshot)


def _find_shortages(bom: Dict[str, Any]) -> List[Dict[str, Any]]:
    """
    List the items the run cannot cover, combining lines for the same item.

    A recipe that names one item on several lines needs their sum on hand,
    not each line on its own.
    """
    needs: Dict[Any, Dict[str, Any]] = {}
    for ing in bom["scaled_ingredients"]:
        need = needs.get(ing["inventory_item_id"])
        if need is None:
            needs[ing["inventory_item_id"]] = {
                "inventory_item_id": ing["inventory_item_id"],
                "name": ing["name"],
                "required_qty": ing["required_qty"],
                "current_stock": ing["current_stock"],
                "unit": ing["unit"],
            }
        else:
            need["required_qty"] += ing["required_qty"]

    shortages = []
    for need in needs.values():
        if need["current_stock"] < need["required_qty"]:
            need["deficit"] = round_quantity(need["required_qty"] - need["current_stock"])
            shortages.append(need)
    return shortages


def _usage_result(usage_log: UsageLog) -> Dict[str, Any]:
    ingredients = [
        {
            "inventory_item_id": ingredient.inventory_item_id,
            "name": ingredient.name,
            "quantity_used": ingredient.quantity_used,
            "unit": ingredient.unit,
            "ingredient_cost": ingredient.ingredient_cost,
        }
        for ingredient in usage_log.ingredients
    ]
    return {
        "usage_log_id": usage_log.id,
        "recipe_id": usage_log.recipe_id,
        "recipe_name": usage_log.recipe_name,
        "quantity_produced": usage_log.target_quantity,
        "output_unit": usage_log.output_unit,
        "multiplier": usage_log.multiplier,
        "total_cost": usage_log.total_cost,
        "timestamp": usage_log.timestamp,
        "ingredients_used": len(ingredients),
        "consumptions": ingredients,
    }


def check_can_produce(recipe_id: int, target_quantity: Any, *, session=None) -> Dict[str, Any]:
    """
    Preview a production run without changing anything.

    Returns:
        Dict with keys:
            - "can_produce" (bool)
            - "bom" (Dict): calculate_bom() result against current stock
            - "shortages" (List[Dict]): ingredients that are short

    Raises:
        RecipeNotFound: If the recipe doesn't exist
        ValidationError: If target_quantity is not positive
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        bom = _load_bom(session, recipe_id, target_quantity)
        shortages = _find_shortages(bom)
        return {
            "can_produce": not shortages,
            "bom": bom,
            "shortages": shortages,
        }


def execute_production(
    recipe_id: int,
    target_quantity: Any,
    *,
    idempotency_key: Optional[str] = None,
    produced_at=None,
    session=None,
) -> Dict[str, Any]:
    """
    Produce target_quantity of a recipe, deducting ingredient stock.

    Args:
        recipe_id: Recipe to produce
        target_quantity: Output quantity (> 0), in the recipe's output unit
        idempotency_key: Optional token; a repeat returns the original run
        produced_at: When production happened (defaults to now)
        session: Optional database session. When given, the caller owns
            the transaction and no retry is attempted.

    Returns:
        Dict with keys:
            - "usage_log_id", "recipe_id", "recipe_name"
            - "quantity_produced", "output_unit", "multiplier"
            - "total_cost" (Decimal): ingredient cost snapshot
            - "ingredients_used" (int)
            - "consumptions" (List[Dict]): inventory_item_id, name,
              quantity_used, unit, ingredient_cost per ingredient

    Raises:
        ValidationError: If target_quantity is not positive
        RecipeNotFound: If the recipe doesn't exist
        InvalidRecipe: If the recipe's output quantity is not positive
        InsufficientStockError: If any ingredient is short (nothing changed)
        ConcurrencyConflictError: If stock kept changing under every attempt
    """
    errors = []
    is_valid, error = validate_positive_number(target_quantity, "Target quantity")
    if not is_valid:
        errors.append(error)
    if idempotency_key is not None:
        is_valid, error = validate_string_length(
            idempotency_key, MAX_IDEMPOTENCY_KEY_LENGTH, "Idempotency key"
        )
        if not is_valid:
            errors.append(error)
    if errors:
        log_operation(logger, "execute_production", "validation_failed", recipe_id=recipe_id, errors=errors)
        raise ValidationError(errors)

    produced_at = ensure_utc(produced_at) or utc_now()

    def _produce(session) -> Dict[str, Any]:
        if idempotency_key is not None:
            existing = (
                session.query(UsageLog).filter(UsageLog.idempotency_key == idempotency_key).first()
            )
            if existing is not None:
                log_operation(
                    logger,
                    "execute_production",
                    "duplicate",
                    usage_log_id=existing.id,
                    idempotency_key=idempotency_key,
                )
                return _usage_result(existing)

        bom = _load_bom(session, recipe_id, target_quantity)

        shortages = _find_shortages(bom)
        if shortages:
            log_operation(
                logger,
                "execute_production",
                "insufficient_stock",
                recipe_id=recipe_id,
                shortages=[shortage["name"] for shortage in shortages],
            )
            raise InsufficientStockError(shortages)

        for ingredient in bom["scaled_ingredients"]:
            if not inventory_service.decrease_stock_guarded(
                session, ingredient["inventory_item_id"], ingredient["required_qty"]
            ):
                log_operation(
                    logger,
                    "execute_production",
                    "conflict",
                    recipe_id=recipe_id,
                    inventory_item_id=ingredient["inventory_item_id"],
                )
                raise ConcurrencyConflictError(
                    ingredient["inventory_item_id"], ingredient["required_qty"]
                )

        usage_log = UsageLog(
            recipe_id=recipe_id,
            recipe_name=bom["recipe_name"],
            target_quantity=bom["target_quantity"],
            output_unit=bom["output_unit"],
            multiplier=bom["multiplier"],
            total_cost=bom["total_cost"],
            timestamp=produced_at,
            idempotency_key=idempotency_key,
            ingredients=[
                UsageLogIngredient(
                    inventory_item_id=ingredient["inventory_item_id"],
                    name=ingredient["name"],
                    quantity_used=ingredient["required_qty"],
                    unit=ingredient["unit"],
                    ingredient_cost=ingredient["ingredient_cost"],
                )
                for ingredient in bom["scaled_ingredients"]
            ],
        )
        session.add(usage_log)
        session.flush()

        metrics_service.apply_delta(
            get_local_date_string(produced_at),
            {METRIC_TOTAL_COGS: bom["total_cost"]},
            session=session,
        )
        change_feed.mark_changed(session, COLLECTION_INVENTORY)

        log_operation(
            logger,
            "execute_production",
            "success",
            usage_log_id=usage_log.id,
            recipe_id=recipe_id,
            total_cost=str(bom["total_cost"]),
        )
        return _usage_result(usage_log)

    if session is not None:
        return _produce(session)

    def _attempt() -> Dict[str, Any]:
        with session_scope() as owned:
            return _produce(owned)

    return retry_with_backoff(
        _attempt,
        operation_name="execute_production",
        retry_transient=idempotency_key is not None,
    )


def get_usage_log(usage_log_id: int, *, session=None) -> Dict[str, Any]:
    """
    Get one production run with its ingredient snapshot.

    Raises:
        UsageLogNotFound: If the usage log doesn't exist
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        usage_log = session.get(UsageLog, usage_log_id)
        if usage_log is None:
            raise UsageLogNotFound(usage_log_id)
        return usage_log.to_dict()
