"""Inventory Service - CRUD and change subscriptions for inventory items.

All functions are stateless and use session_scope() for transaction
management. Functions that accept ``session`` join the caller's
transaction instead of opening their own.

Stock levels are changed by hand only through update_inventory_item();
purchases, waste and production go through ledger_service and
production_service so every movement leaves a history record.

Example Usage:
    >>> from kitchen_ledger.services import inventory_service
    >>> item_id = inventory_service.add_inventory_item({
    ...     "name": "Mutton", "unit": "kg", "current_stock": 5,
    ...     "cost_per_unit": 100, "category": "meat",
    ... })
    >>> unsubscribe = inventory_service.subscribe_to_inventory(print)
    >>> unsubscribe()
"""

from contextlib import nullcontext
from decimal import Decimal
from typing import Any, Callable, Dict, List

from sqlalchemy import Numeric, case, func

from ..models import InventoryItem
from ..utils.constants import (
    COLLECTION_INVENTORY,
    DEFAULT_CATEGORY,
    MAX_CATEGORY_LENGTH,
    MAX_NAME_LENGTH,
    MAX_UNIT_LENGTH,
)
from ..utils.datetime_utils import utc_now
from ..utils.validators import (
    to_decimal,
    validate_non_negative_number,
    validate_required_string,
    validate_string_length,
)
from . import change_feed
from .database import session_scope
from .exceptions import InventoryItemNotFound, ValidationError
from .logging_utils import get_service_logger, log_operation

logger = get_service_logger(__name__)

# Fields update_inventory_item() accepts
UPDATABLE_FIELDS = {
    "name",
    "unit",
    "current_stock",
    "cost_per_unit",
    "reorder_level",
    "category",
}

_NUMERIC_FIELDS = ("current_stock", "cost_per_unit", "reorder_level")


def _validate_item_fields(data: Dict[str, Any], *, partial: bool) -> List[str]:
    """Collect validation errors for inventory item fields."""
    errors = []

    if not partial or "name" in data:
        is_valid, error = validate_required_string(data.get("name"), "Name")
        if not is_valid:
            errors.append(error)
        else:
            is_valid, error = validate_string_length(data["name"].strip(), MAX_NAME_LENGTH, "Name")
            if not is_valid:
                errors.append(error)

    if not partial or "unit" in data:
        is_valid, error = validate_required_string(data.get("unit"), "Unit")
        if not is_valid:
            errors.append(error)
        else:
            is_valid, error = validate_string_length(data["unit"].strip(), MAX_UNIT_LENGTH, "Unit")
            if not is_valid:
                errors.append(error)

    if data.get("category"):
        is_valid, error = validate_string_length(
            str(data["category"]).strip(), MAX_CATEGORY_LENGTH, "Category"
        )
        if not is_valid:
            errors.append(error)

    for field in _NUMERIC_FIELDS:
        if field in data and data[field] is not None:
            is_valid, error = validate_non_negative_number(data[field], field)
            if not is_valid:
                errors.append(error)

    return errors


def _sort_key(item: InventoryItem):
    return ((item.category or "").lower(), (item.name or "").lower())


def list_inventory_items(*, session=None) -> List[Dict[str, Any]]:
    """
    List all inventory items ordered by category, then name.

    Args:
        session: Optional database session

    Returns:
        List of inventory item dicts
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        items = session.query(InventoryItem).all()
        return [item.to_dict() for item in sorted(items, key=_sort_key)]


def get_inventory_item(inventory_item_id: int, *, session=None) -> Dict[str, Any]:
    """
    Get one inventory item.

    Raises:
        InventoryItemNotFound: If the item doesn't exist
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        item = session.get(InventoryItem, inventory_item_id)
        if item is None:
            raise InventoryItemNotFound(inventory_item_id)
        return item.to_dict()


def get_inventory_snapshot(inventory_item_ids, *, session) -> List[Dict[str, Any]]:
    """
    Read current stock and cost for the given items within a transaction.

    Missing ids are simply absent from the result.
    """
    ids = list({item_id for item_id in inventory_item_ids if item_id is not None})
    if not ids:
        return []
    items = (
        session.query(InventoryItem)
        .populate_existing()
        .filter(InventoryItem.id.in_(ids))
        .all()
    )
    return [item.to_dict() for item in items]


def get_low_stock_items(*, session=None) -> List[Dict[str, Any]]:
    """
    List items whose stock is at or below their reorder level.

    Returns:
        Inventory item dicts ordered by category, then name
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        items = (
            session.query(InventoryItem)
            .filter(InventoryItem.current_stock <= InventoryItem.reorder_level)
            .all()
        )
        return [item.to_dict() for item in sorted(items, key=_sort_key)]


def add_inventory_item(data: Dict[str, Any], *, session=None) -> int:
    """
    Add a new inventory item.

    Args:
        data: Dict with name, unit and optionally current_stock,
            cost_per_unit, reorder_level, category
        session: Optional database session

    Returns:
        New inventory item ID

    Raises:
        ValidationError: If required fields are missing or numbers are negative
    """
    errors = _validate_item_fields(data, partial=False)
    if errors:
        log_operation(logger, "add_inventory_item", "validation_failed", errors=errors)
        raise ValidationError(errors)

    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        item = InventoryItem(
            name=data["name"].strip(),
            unit=data["unit"].strip(),
            current_stock=to_decimal(data.get("current_stock")) or Decimal("0"),
            cost_per_unit=to_decimal(data.get("cost_per_unit")) or Decimal("0"),
            reorder_level=to_decimal(data.get("reorder_level")) or Decimal("0"),
            category=(data.get("category") or DEFAULT_CATEGORY).strip(),
        )
        session.add(item)
        session.flush()
        change_feed.mark_changed(session, COLLECTION_INVENTORY)

        log_operation(logger, "add_inventory_item", "success", inventory_item_id=item.id)
        return item.id


def update_inventory_item(
    inventory_item_id: int, fields: Dict[str, Any], *, session=None
) -> Dict[str, Any]:
    """
    Update fields of an inventory item.

    Only name, unit, current_stock, cost_per_unit, reorder_level and
    category can be changed.

    Args:
        inventory_item_id: Item to update
        fields: Field values to set
        session: Optional database session

    Returns:
        Updated inventory item dict

    Raises:
        InventoryItemNotFound: If the item doesn't exist
        ValidationError: If a field is unknown or a value is invalid
    """
    unknown = sorted(set(fields) - UPDATABLE_FIELDS)
    errors = [f"{field}: Cannot be updated" for field in unknown]
    errors.extend(_validate_item_fields(fields, partial=True))
    if errors:
        log_operation(
            logger,
            "update_inventory_item",
            "validation_failed",
            inventory_item_id=inventory_item_id,
            errors=errors,
        )
        raise ValidationError(errors)

    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        item = session.get(InventoryItem, inventory_item_id)
        if item is None:
            raise InventoryItemNotFound(inventory_item_id)

        for field, value in fields.items():
            if field in _NUMERIC_FIELDS:
                value = to_decimal(value) or Decimal("0")
            elif field == "category":
                value = (value or DEFAULT_CATEGORY).strip()
            elif isinstance(value, str):
                value = value.strip()
            setattr(item, field, value)
        item.last_updated = utc_now()
        session.flush()
        change_feed.mark_changed(session, COLLECTION_INVENTORY)

        log_operation(
            logger,
            "update_inventory_item",
            "success",
            inventory_item_id=inventory_item_id,
            fields=sorted(fields),
        )
        return item.to_dict()


def delete_inventory_item(inventory_item_id: int, *, session=None) -> None:
    """
    Delete an inventory item.

    Purchase, waste and usage history keep their item_name snapshots, and
    recipes that reference the item will treat it as out of stock.

    Raises:
        InventoryItemNotFound: If the item doesn't exist
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        item = session.get(InventoryItem, inventory_item_id)
        if item is None:
            raise InventoryItemNotFound(inventory_item_id)
        session.delete(item)
        session.flush()
        change_feed.mark_changed(session, COLLECTION_INVENTORY)

        log_operation(logger, "delete_inventory_item", "success", inventory_item_id=inventory_item_id)


def subscribe_to_inventory(callback: Callable[[List[Dict[str, Any]]], None]) -> Callable[[], None]:
    """
    Subscribe to inventory changes.

    The callback receives the full, ordered item list immediately and
    again after every committed inventory change.

    Args:
        callback: Called with the list of inventory item dicts

    Returns:
        Unsubscribe function
    """

    def _deliver() -> None:
        callback(list_inventory_items())

    unsubscribe = change_feed.subscribe(COLLECTION_INVENTORY, _deliver)
    _deliver()
    return unsubscribe


# =============================================================================
# Stock Movement Primitives
# =============================================================================
#
# Each primitive is a single UPDATE evaluated by the database against the
# committed value, so no caller ever writes back a stock figure it read
# earlier. They must run inside the caller's transaction.

_items = InventoryItem.__table__
_STOCK = Numeric(12, 3)


def _rounded(expression):
    return func.round(expression, 3, type_=_STOCK)


def _expire_cached(session, inventory_item_id: int) -> None:
    """Expire a loaded InventoryItem so the next access re-reads the row."""
    for obj in list(session.identity_map.values()):
        if isinstance(obj, InventoryItem) and obj.id == inventory_item_id:
            session.expire(obj)


def increase_stock(session, inventory_item_id: int, quantity: Decimal, unit_cost: Decimal) -> bool:
    """
    Add stock and overwrite cost_per_unit with the latest purchase price.

    Returns:
        False if the item doesn't exist
    """
    result = session.execute(
        _items.update()
        .where(_items.c.id == inventory_item_id)
        .values(
            current_stock=_rounded(_items.c.current_stock + quantity),
            cost_per_unit=unit_cost,
            last_updated=utc_now(),
        )
    )
    _expire_cached(session, inventory_item_id)
    return result.rowcount == 1


def clamped_decrease_statement(inventory_item_id: int, quantity: Decimal):
    """UPDATE that subtracts ``quantity`` and floors the stock at zero."""
    remaining = _rounded(_items.c.current_stock - quantity)
    return (
        _items.update()
        .where(_items.c.id == inventory_item_id)
        .values(
            current_stock=case((remaining < 0, 0), else_=remaining),
            last_updated=utc_now(),
        )
    )


def decrease_stock_clamped(session, inventory_item_id: int, quantity: Decimal) -> bool:
    """
    Remove stock, flooring the result at zero.

    Returns:
        False if the item doesn't exist
    """
    result = session.execute(clamped_decrease_statement(inventory_item_id, quantity))
    _expire_cached(session, inventory_item_id)
    return result.rowcount == 1


def decrease_stock_guarded(session, inventory_item_id: int, quantity: Decimal) -> bool:
    """
    Remove stock only if at least ``quantity`` is on hand right now.

    This is the compare-and-write used by production: the sufficiency test
    and the deduction happen in one statement.

    Returns:
        False if the item is missing or holds less than ``quantity``
    """
    result = session.execute(
        _items.update()
        .where(_items.c.id == inventory_item_id)
        .where(_rounded(_items.c.current_stock) >= quantity)
        .values(
            current_stock=_rounded(_items.c.current_stock - quantity),
            last_updated=utc_now(),
        )
    )
    _expire_cached(session, inventory_item_id)
    return result.rowcount == 1
