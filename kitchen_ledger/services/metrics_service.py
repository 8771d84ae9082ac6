"""Metrics Service - additive daily financial counters.

Each local calendar date has one DailyMetric row plus one DailyItemSale
row per sanitized item name. Counters are only ever changed with
single-statement increments (``SET f = f + :v`` or an
``INSERT ... ON CONFLICT DO UPDATE``), never by reading the record and
writing it back, so concurrent writers merge in any order.

apply_delta() has no built-in idempotency: callers invoke it exactly once
per business event, inside the same transaction as the event itself.

Example Usage:
    >>> from kitchen_ledger.services import metrics_service
    >>> metrics_service.apply_delta("2025-01-15", {"total_cogs": Decimal("100.00")})
    >>> metrics_service.record_checkout(
    ...     [{"name": "Nihari", "qty": 2, "price": 450}], dine_in=True
    ... )
"""

import re
from collections import defaultdict
from contextlib import nullcontext
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite

from ..models import DailyItemSale, DailyMetric, SalesKeyName
from ..utils.constants import (
    ITEM_SALES_FIELD,
    METRIC_DINE_IN_TABLES,
    METRIC_TOTAL_ORDERS,
    METRIC_TOTAL_SALES,
    SALES_KEY_REPLACEMENT,
    SCALAR_METRIC_FIELDS,
)
from ..utils.datetime_utils import get_local_date_string, utc_now
from ..utils.validators import (
    to_decimal,
    validate_non_negative_number,
    validate_positive_number,
    validate_required_string,
)
from .bom_calculator import round_currency
from .database import session_scope
from .exceptions import ValidationError
from .logging_utils import get_service_logger, log_operation

logger = get_service_logger(__name__)

_metrics = DailyMetric.__table__
_item_sales = DailyItemSale.__table__
_key_names = SalesKeyName.__table__

_INTEGER_FIELDS = {METRIC_TOTAL_ORDERS, METRIC_DINE_IN_TABLES}
_DATE_KEY_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9]")


def sanitize_item_key(name: str) -> str:
    """
    Derive the sales bucket key for an item display name.

    Every character outside [A-Za-z0-9] becomes "_". Distinct names can
    collide ("Goat Leg!" and "Goat Leg?" both map to "Goat_Leg_").
    """
    return _UNSAFE_KEY_CHARS.sub(SALES_KEY_REPLACEMENT, name)


def _insert_for(session, table):
    """Dialect insert construct that supports ON CONFLICT clauses."""
    if session.get_bind().dialect.name == "postgresql":
        return postgresql.insert(table)
    return sqlite.insert(table)


def _validate_deltas(date_key: Any, deltas: Any) -> List[str]:
    errors = []
    if not isinstance(date_key, str) or not _DATE_KEY_PATTERN.match(date_key):
        errors.append(f"Date key: Must be YYYY-MM-DD, got {date_key!r}")

    if not isinstance(deltas, Mapping):
        return errors + ["Deltas: Must be a mapping of field to increment"]

    for field, value in deltas.items():
        if field == ITEM_SALES_FIELD:
            errors.extend(_validate_item_sales(value))
        elif field not in SCALAR_METRIC_FIELDS:
            errors.append(f"{field}: Unknown metric field")
        else:
            number = to_decimal(value)
            if number is None:
                errors.append(f"{field}: Must be a valid number")
            elif field in _INTEGER_FIELDS and number != number.to_integral_value():
                errors.append(f"{field}: Must be a whole number")
    return errors


def _validate_item_sales(item_sales: Any) -> List[str]:
    if not isinstance(item_sales, Mapping):
        return [f"{ITEM_SALES_FIELD}: Must map item name to {{qty, revenue}}"]

    errors = []
    for name, bucket in item_sales.items():
        is_valid, error = validate_required_string(name, f"{ITEM_SALES_FIELD} name")
        if not is_valid:
            errors.append(error)
            continue
        if not isinstance(bucket, Mapping):
            errors.append(f"{ITEM_SALES_FIELD}.{name}: Must contain qty and revenue")
            continue
        for subfield in ("qty", "revenue"):
            if to_decimal(bucket.get(subfield, 0)) is None:
                errors.append(f"{ITEM_SALES_FIELD}.{name}.{subfield}: Must be a valid number")
    return errors


def _apply_item_sale(session, date_key: str, name: str, bucket: Mapping) -> None:
    sales_key = sanitize_item_key(name)
    now = utc_now()

    insert = _insert_for(session, _item_sales).values(
        date_key=date_key,
        sales_key=sales_key,
        name=name,
        qty=to_decimal(bucket.get("qty", 0)),
        revenue=to_decimal(bucket.get("revenue", 0)),
    )
    session.execute(
        insert.on_conflict_do_update(
            index_elements=[_item_sales.c.date_key, _item_sales.c.sales_key],
            set_={
                "name": insert.excluded.name,
                "qty": _item_sales.c.qty + insert.excluded.qty,
                "revenue": _item_sales.c.revenue + insert.excluded.revenue,
                "updated_at": now,
            },
        )
    )

    session.execute(
        _insert_for(session, _key_names)
        .values(sales_key=sales_key, display_name=name)
        .on_conflict_do_nothing(index_elements=[_key_names.c.sales_key, _key_names.c.display_name])
    )


def apply_delta(date_key: str, deltas: Dict[str, Any], *, session=None) -> None:
    """
    Merge commutative increments into a day's metrics.

    Args:
        date_key: Local date "YYYY-MM-DD"
        deltas: Field increments. Scalar fields are total_sales,
            total_orders, dine_in_tables, total_cogs and total_wastage_loss.
            ``item_sales`` maps an item display name to {qty, revenue}.
        session: Optional database session

    Raises:
        ValidationError: If a field is unknown or a value is not numeric

    Note:
        The day row is created on first use. Item buckets are keyed by
        sanitize_item_key(name); the bucket's name is last-write while qty
        and revenue accumulate.
    """
    errors = _validate_deltas(date_key, deltas)
    if errors:
        log_operation(logger, "apply_delta", "validation_failed", date_key=date_key, errors=errors)
        raise ValidationError(errors)

    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        session.execute(
            _insert_for(session, _metrics)
            .values(date_key=date_key)
            .on_conflict_do_nothing(index_elements=[_metrics.c.date_key])
        )

        increments = {
            field: _metrics.c[field] + (
                int(to_decimal(value)) if field in _INTEGER_FIELDS else to_decimal(value)
            )
            for field, value in deltas.items()
            if field in SCALAR_METRIC_FIELDS
        }
        session.execute(
            _metrics.update()
            .where(_metrics.c.date_key == date_key)
            .values(last_updated=utc_now(), **increments)
        )

        for name, bucket in (deltas.get(ITEM_SALES_FIELD) or {}).items():
            _apply_item_sale(session, date_key, name, bucket)

        log_operation(
            logger,
            "apply_delta",
            "success",
            date_key=date_key,
            fields=sorted(deltas),
        )


def record_checkout(
    items: List[Dict[str, Any]],
    *,
    dine_in: bool = False,
    sold_at=None,
    session=None,
) -> Dict[str, Any]:
    """
    Record a completed sale in the day's metrics.

    Adds the order total to total_sales, counts one order (and one table
    when dine-in) and adds each line's qty and revenue to its item bucket.

    Args:
        items: Sold lines, each {name, qty, price}
        dine_in: True when the order was served at a table
        sold_at: When the sale happened (defaults to now)
        session: Optional database session

    Returns:
        Dict with date_key, total and item_count

    Raises:
        ValidationError: If there are no items or a line is invalid
    """
    errors = []
    if not items:
        errors.append("Items: At least one item is required")
    for position, item in enumerate(items or [], start=1):
        label = f"Item {position}"
        for is_valid, error in (
            validate_required_string(item.get("name"), f"{label} name"),
            validate_positive_number(item.get("qty"), f"{label} qty"),
            validate_non_negative_number(item.get("price"), f"{label} price"),
        ):
            if not is_valid:
                errors.append(error)
    if errors:
        log_operation(logger, "record_checkout", "validation_failed", errors=errors)
        raise ValidationError(errors)

    item_sales: Dict[str, Dict[str, Decimal]] = defaultdict(
        lambda: {"qty": Decimal("0"), "revenue": Decimal("0")}
    )
    for item in items:
        name = item["name"].strip()
        qty = to_decimal(item["qty"])
        item_sales[name]["qty"] += qty
        item_sales[name]["revenue"] += round_currency(qty * to_decimal(item["price"]))

    total = round_currency(sum((b["revenue"] for b in item_sales.values()), Decimal("0")))
    date_key = get_local_date_string(sold_at)

    deltas: Dict[str, Any] = {
        METRIC_TOTAL_SALES: total,
        METRIC_TOTAL_ORDERS: 1,
        ITEM_SALES_FIELD: dict(item_sales),
    }
    if dine_in:
        deltas[METRIC_DINE_IN_TABLES] = 1

    apply_delta(date_key, deltas, session=session)

    log_operation(
        logger,
        "record_checkout",
        "success",
        date_key=date_key,
        total=str(total),
        dine_in=dine_in,
    )
    return {"date_key": date_key, "total": total, "item_count": len(item_sales)}


def _metric_document(metric: DailyMetric, item_rows: List[DailyItemSale]) -> Dict[str, Any]:
    document = {
        "date_key": metric.date_key,
        "last_updated": metric.last_updated,
    }
    for field in SCALAR_METRIC_FIELDS:
        value = getattr(metric, field)
        document[field] = value if field in _INTEGER_FIELDS else to_decimal(value)
    document[ITEM_SALES_FIELD] = {
        row.sales_key: {
            "name": row.name,
            "qty": to_decimal(row.qty),
            "revenue": to_decimal(row.revenue),
        }
        for row in item_rows
    }
    return document


def get_daily_metrics(date_key: str, *, session=None) -> Optional[Dict[str, Any]]:
    """
    Get one day's metrics as a nested document.

    Returns:
        Dict with the scalar counters, last_updated and ``item_sales``
        ({sales_key: {name, qty, revenue}}), or None if nothing was
        recorded for that date
    """
    documents = get_metrics_documents(date_key, date_key, session=session)
    return documents[0] if documents else None


def get_metrics_documents(
    start_key: Optional[str] = None, end_key: Optional[str] = None, *, session=None
) -> List[Dict[str, Any]]:
    """
    Get metrics documents for an inclusive range of date keys.

    Args:
        start_key: First date key (None for no lower bound)
        end_key: Last date key (None for no upper bound)
        session: Optional database session

    Returns:
        Documents ordered by date_key
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        metric_query = session.query(DailyMetric).populate_existing()
        sale_query = session.query(DailyItemSale).populate_existing()
        if start_key is not None:
            metric_query = metric_query.filter(DailyMetric.date_key >= start_key)
            sale_query = sale_query.filter(DailyItemSale.date_key >= start_key)
        if end_key is not None:
            metric_query = metric_query.filter(DailyMetric.date_key <= end_key)
            sale_query = sale_query.filter(DailyItemSale.date_key <= end_key)

        sales_by_date: Dict[str, List[DailyItemSale]] = defaultdict(list)
        for row in sale_query.order_by(DailyItemSale.sales_key).all():
            sales_by_date[row.date_key].append(row)

        return [
            _metric_document(metric, sales_by_date[metric.date_key])
            for metric in metric_query.order_by(DailyMetric.date_key).all()
        ]


def find_key_collisions(*, session=None) -> Dict[str, List[str]]:
    """
    Find sales keys shared by more than one display name.

    Returns:
        {sales_key: sorted display names} for every colliding key
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        colliding = (
            select(SalesKeyName.sales_key)
            .group_by(SalesKeyName.sales_key)
            .having(func.count(SalesKeyName.id) > 1)
        )
        rows = (
            session.query(SalesKeyName)
            .filter(SalesKeyName.sales_key.in_(colliding))
            .order_by(SalesKeyName.sales_key, SalesKeyName.display_name)
            .all()
        )

        collisions: Dict[str, List[str]] = defaultdict(list)
        for row in rows:
            collisions[row.sales_key].append(row.display_name)
        return dict(collisions)
