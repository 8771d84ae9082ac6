"""Ledger Service - purchase and waste events against inventory.

Each event is one transaction: the stock change and the history record
commit together or not at all.

- Purchases add stock and overwrite the item's cost_per_unit with the
  purchase price (latest-cost policy, not a weighted average).
- Waste removes stock clamped at zero, but the WasteEntry keeps the
  quantity the caller reported. The two can diverge when more waste is
  reported than was on hand.

An optional idempotency_key makes a write safe to resend: when a record
with the same key exists, it is returned and nothing is applied again.

Example Usage:
    >>> from kitchen_ledger.services import ledger_service
    >>> purchase = ledger_service.record_purchase(item_id, 10, 120)
    >>> waste = ledger_service.record_waste(item_id, 2, "expired")
"""

from typing import Any, Optional

from ..models import InventoryItem, PurchaseRecord, WasteEntry
from ..utils.constants import (
    COLLECTION_INVENTORY,
    DEFAULT_WASTE_REASON,
    MAX_IDEMPOTENCY_KEY_LENGTH,
    MAX_REASON_LENGTH,
    METRIC_TOTAL_WASTAGE_LOSS,
)
from ..utils.datetime_utils import ensure_utc, get_local_date_string, utc_now
from ..utils.validators import (
    to_decimal,
    validate_non_negative_number,
    validate_positive_number,
    validate_string_length,
)
from . import change_feed, inventory_service, metrics_service
from .bom_calculator import round_currency
from .database import session_scope
from .exceptions import InventoryItemNotFound, ValidationError
from .logging_utils import get_service_logger, log_operation
from .retry import retry_with_backoff

logger = get_service_logger(__name__)


def _validate_event(quantity: Any, unit_cost: Any, idempotency_key: Optional[str]) -> list:
    errors = []
    is_valid, error = validate_positive_number(quantity, "Quantity")
    if not is_valid:
        errors.append(error)
    if unit_cost is not None:
        is_valid, error = validate_non_negative_number(unit_cost, "Unit cost")
        if not is_valid:
            errors.append(error)
    if idempotency_key is not None:
        is_valid, error = validate_string_length(
            idempotency_key, MAX_IDEMPOTENCY_KEY_LENGTH, "Idempotency key"
        )
        if not is_valid:
            errors.append(error)
    return errors


def _run(operation, *, operation_name: str, session, idempotency_key: Optional[str]):
    """Run a write in the caller's transaction, or in a retried one of its own."""
    if session is not None:
        return operation(session)

    def _attempt():
        with session_scope() as owned:
            return operation(owned)

    return retry_with_backoff(
        _attempt,
        operation_name=operation_name,
        retry_transient=idempotency_key is not None,
    )


# =============================================================================
# Purchases
# =============================================================================


def record_purchase(
    inventory_item_id: int,
    quantity: Any,
    unit_cost: Any,
    *,
    purchase_date=None,
    idempotency_key: Optional[str] = None,
    session=None,
) -> PurchaseRecord:
    """
    Record a purchase: add stock and set the item's cost to the purchase price.

    Args:
        inventory_item_id: Item receiving stock
        quantity: Quantity bought (> 0)
        unit_cost: Price per unit (>= 0); becomes the item's cost_per_unit
        purchase_date: When the purchase happened (defaults to now)
        idempotency_key: Optional token; a repeat returns the original record
        session: Optional database session

    Returns:
        The PurchaseRecord (total_cost = quantity * unit_cost, 2 dp)

    Raises:
        ValidationError: If quantity <= 0 or unit_cost < 0
        InventoryItemNotFound: If the item doesn't exist
    """
    errors = _validate_event(quantity, unit_cost, idempotency_key)
    if unit_cost is None:
        errors.append("Unit cost: This field is required")
    if errors:
        log_operation(
            logger,
            "record_purchase",
            "validation_failed",
            inventory_item_id=inventory_item_id,
            errors=errors,
        )
        raise ValidationError(errors)

    qty = to_decimal(quantity)
    cost = to_decimal(unit_cost)

    def _purchase(session) -> PurchaseRecord:
        if idempotency_key is not None:
            existing = (
                session.query(PurchaseRecord)
                .filter(PurchaseRecord.idempotency_key == idempotency_key)
                .first()
            )
            if existing is not None:
                log_operation(
                    logger,
                    "record_purchase",
                    "duplicate",
                    purchase_record_id=existing.id,
                    idempotency_key=idempotency_key,
                )
                return existing

        item = session.get(InventoryItem, inventory_item_id)
        if item is None:
            raise InventoryItemNotFound(inventory_item_id)
        item_name = item.name

        if not inventory_service.increase_stock(session, inventory_item_id, qty, cost):
            raise InventoryItemNotFound(inventory_item_id)

        record = PurchaseRecord(
            inventory_item_id=inventory_item_id,
            item_name=item_name,
            quantity=qty,
            unit_cost=cost,
            total_cost=round_currency(qty * cost),
            purchase_date=ensure_utc(purchase_date) or utc_now(),
            idempotency_key=idempotency_key,
        )
        session.add(record)
        session.flush()
        change_feed.mark_changed(session, COLLECTION_INVENTORY)

        log_operation(
            logger,
            "record_purchase",
            "success",
            purchase_record_id=record.id,
            inventory_item_id=inventory_item_id,
            quantity=str(qty),
            unit_cost=str(cost),
        )
        return record

    return _run(
        _purchase,
        operation_name="record_purchase",
        session=session,
        idempotency_key=idempotency_key,
    )


# =============================================================================
# Waste
# =============================================================================


def record_waste(
    inventory_item_id: int,
    quantity: Any,
    reason: Optional[str] = None,
    unit_cost: Any = None,
    *,
    waste_date=None,
    idempotency_key: Optional[str] = None,
    session=None,
) -> WasteEntry:
    """
    Record waste: remove stock (floored at zero) and book the loss.

    The entry stores the requested quantity even if less was on hand, and
    its total_cost is added to the day's total_wastage_loss.

    Args:
        inventory_item_id: Item that lost stock
        quantity: Quantity wasted (> 0)
        reason: Free-text reason (defaults to "Not specified")
        unit_cost: Cost per unit to value the loss; None uses the item's
            current cost_per_unit
        waste_date: When the waste happened (defaults to now)
        idempotency_key: Optional token; a repeat returns the original entry
        session: Optional database session

    Returns:
        The WasteEntry

    Raises:
        ValidationError: If quantity <= 0 or unit_cost < 0
        InventoryItemNotFound: If the item doesn't exist
    """
    errors = _validate_event(quantity, unit_cost, idempotency_key)
    reason = (reason or "").strip() or DEFAULT_WASTE_REASON
    is_valid, error = validate_string_length(reason, MAX_REASON_LENGTH, "Reason")
    if not is_valid:
        errors.append(error)
    if errors:
        log_operation(
            logger,
            "record_waste",
            "validation_failed",
            inventory_item_id=inventory_item_id,
            errors=errors,
        )
        raise ValidationError(errors)

    qty = to_decimal(quantity)
    wasted_at = ensure_utc(waste_date) or utc_now()

    def _waste(session) -> WasteEntry:
        if idempotency_key is not None:
            existing = (
                session.query(WasteEntry)
                .filter(WasteEntry.idempotency_key == idempotency_key)
                .first()
            )
            if existing is not None:
                log_operation(
                    logger,
                    "record_waste",
                    "duplicate",
                    waste_entry_id=existing.id,
                    idempotency_key=idempotency_key,
                )
                return existing

        item = session.get(InventoryItem, inventory_item_id)
        if item is None:
            raise InventoryItemNotFound(inventory_item_id)
        item_name = item.name
        cost = to_decimal(unit_cost) if unit_cost is not None else to_decimal(item.cost_per_unit)

        if not inventory_service.decrease_stock_clamped(session, inventory_item_id, qty):
            raise InventoryItemNotFound(inventory_item_id)

        total_cost = round_currency(qty * cost)
        entry = WasteEntry(
            inventory_item_id=inventory_item_id,
            item_name=item_name,
            quantity=qty,
            reason=reason,
            unit_cost=cost,
            total_cost=total_cost,
            waste_date=wasted_at,
            idempotency_key=idempotency_key,
        )
        session.add(entry)
        session.flush()

        metrics_service.apply_delta(
            get_local_date_string(wasted_at),
            {METRIC_TOTAL_WASTAGE_LOSS: total_cost},
            session=session,
        )
        change_feed.mark_changed(session, COLLECTION_INVENTORY)

        log_operation(
            logger,
            "record_waste",
            "success",
            waste_entry_id=entry.id,
            inventory_item_id=inventory_item_id,
            quantity=str(qty),
            reason=reason,
        )
        return entry

    return _run(
        _waste,
        operation_name="record_waste",
        session=session,
        idempotency_key=idempotency_key,
    )
