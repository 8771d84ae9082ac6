"""
Analytics Service - rebuild reports from the event streams.

Pure functions over the dicts returned by event_query_service,
metrics_service and inventory_service. Nothing here touches the database,
so the same inputs always produce the same report.

Reports:
- build_ledger: purchases, production and waste merged into one timeline
- build_categorical_breakdown: spent / utilized / wasted per category
- build_item_sales_aggregate: per-item sales across daily metrics
- build_summary_metrics: period totals and current inventory value
- build_daily_report: one day's sales, cost and profit figures

Categories always come from the *current* inventory, so re-categorising
an item moves its whole history to the new category.
"""

from collections import defaultdict
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional

from ..utils.constants import (
    DEFAULT_CATEGORY,
    EVENT_TYPE_PRODUCTION,
    EVENT_TYPE_PURCHASE,
    EVENT_TYPE_WASTE,
    ITEM_SALES_FIELD,
    METRIC_DINE_IN_TABLES,
    METRIC_TOTAL_COGS,
    METRIC_TOTAL_ORDERS,
    METRIC_TOTAL_SALES,
    METRIC_TOTAL_WASTAGE_LOSS,
)
from ..utils.datetime_utils import ensure_utc
from ..utils.validators import to_decimal
from .bom_calculator import round_currency
from .metrics_service import sanitize_item_key

_EARLIEST = datetime.min.replace(tzinfo=timezone.utc)
_FLAT_ITEM_PREFIX = f"{ITEM_SALES_FIELD}."


def _amount(value: Any) -> Decimal:
    return to_decimal(value) or Decimal("0")


def _format_quantity(value: Any) -> str:
    number = _amount(value)
    if number == number.to_integral_value():
        return str(number.quantize(Decimal("1")))
    return format(number.normalize(), "f")


# =============================================================================
# Ledger
# =============================================================================


def build_ledger(
    purchases: Iterable[Mapping],
    usages: Iterable[Mapping],
    wastes: Iterable[Mapping],
) -> List[Dict[str, Any]]:
    """
    Merge the three event streams into one timeline, newest first.

    Each entry has:
        id, type ("PURCHASE" | "PRODUCTION" | "WASTE"), label, date,
        quantity_delta (Decimal, signed), movement (display string) and
        value (the event's total_cost)

    Production moves several items at once, so its quantity_delta is the
    negated ingredient count and movement reads "-N ingredients".

    Events with equal dates are ordered by (id, type); undated events go
    last.
    """
    events: List[Dict[str, Any]] = []

    for purchase in purchases:
        quantity = _amount(purchase.get("quantity"))
        events.append(
            {
                "id": purchase.get("id"),
                "type": EVENT_TYPE_PURCHASE,
                "label": f"Purchased: {purchase.get('item_name')}",
                "date": purchase.get("purchase_date"),
                "quantity_delta": quantity,
                "movement": f"+{_format_quantity(quantity)}",
                "value": _amount(purchase.get("total_cost")),
            }
        )

    for usage in usages:
        ingredient_count = len(usage.get("ingredients") or [])
        produced = _format_quantity(usage.get("target_quantity"))
        events.append(
            {
                "id": usage.get("id"),
                "type": EVENT_TYPE_PRODUCTION,
                "label": f"Produced: {produced} {usage.get('output_unit')} {usage.get('recipe_name')}",
                "date": usage.get("timestamp"),
                "quantity_delta": Decimal(-ingredient_count),
                "movement": f"-{ingredient_count} ingredients",
                "value": _amount(usage.get("total_cost")),
            }
        )

    for waste in wastes:
        quantity = _amount(waste.get("quantity"))
        events.append(
            {
                "id": waste.get("id"),
                "type": EVENT_TYPE_WASTE,
                "label": f"Waste: {waste.get('item_name')} ({waste.get('reason')})",
                "date": waste.get("waste_date"),
                "quantity_delta": -quantity,
                "movement": f"-{_format_quantity(quantity)}",
                "value": _amount(waste.get("total_cost")),
            }
        )

    # Two stable passes: tie-break first, then date descending
    events.sort(key=lambda event: (event["id"], event["type"]))
    events.sort(
        key=lambda event: (event["date"] is not None, ensure_utc(event["date"]) or _EARLIEST),
        reverse=True,
    )
    return events


# =============================================================================
# Category and summary reports
# =============================================================================


def build_categorical_breakdown(
    purchases: Iterable[Mapping],
    usages: Iterable[Mapping],
    wastes: Iterable[Mapping],
    current_inventory: Iterable[Mapping],
) -> Dict[str, Dict[str, Decimal]]:
    """
    Total spent, utilized and wasted per inventory category.

    - spent: sum of purchase total_cost
    - utilized: each consumed quantity valued at the item's current
      cost_per_unit (not the cost at production time)
    - wasted: sum of waste total_cost

    Items no longer in inventory fall under "other".

    Returns:
        {category: {"spent", "utilized", "wasted"}} with 2 dp Decimals
    """
    items_by_id = {item.get("id"): item for item in current_inventory}

    def category_of(inventory_item_id: Any) -> str:
        item = items_by_id.get(inventory_item_id)
        return (item.get("category") if item else None) or DEFAULT_CATEGORY

    breakdown: Dict[str, Dict[str, Decimal]] = defaultdict(
        lambda: {"spent": Decimal("0"), "utilized": Decimal("0"), "wasted": Decimal("0")}
    )

    for purchase in purchases:
        category = category_of(purchase.get("inventory_item_id"))
        breakdown[category]["spent"] += _amount(purchase.get("total_cost"))

    for usage in usages:
        for ingredient in usage.get("ingredients") or []:
            item_id = ingredient.get("inventory_item_id")
            item = items_by_id.get(item_id)
            cost_per_unit = _amount(item.get("cost_per_unit")) if item else Decimal("0")
            breakdown[category_of(item_id)]["utilized"] += (
                _amount(ingredient.get("quantity_used")) * cost_per_unit
            )

    for waste in wastes:
        category = category_of(waste.get("inventory_item_id"))
        breakdown[category]["wasted"] += _amount(waste.get("total_cost"))

    return {
        category: {field: round_currency(total) for field, total in totals.items()}
        for category, totals in breakdown.items()
    }


def build_summary_metrics(
    purchases: Iterable[Mapping],
    usages: Iterable[Mapping],
    wastes: Iterable[Mapping],
    current_inventory: Iterable[Mapping],
) -> Dict[str, Decimal]:
    """
    Period totals for the analytics header cards.

    Returns:
        Dict with total_spent, total_utilized (production cost snapshots),
        total_wasted and current_inventory_value (stock * cost today)
    """
    inventory_value = sum(
        (
            _amount(item.get("current_stock")) * _amount(item.get("cost_per_unit"))
            for item in current_inventory
        ),
        Decimal("0"),
    )
    return {
        "total_spent": round_currency(
            sum((_amount(p.get("total_cost")) for p in purchases), Decimal("0"))
        ),
        "total_utilized": round_currency(
            sum((_amount(u.get("total_cost")) for u in usages), Decimal("0"))
        ),
        "total_wasted": round_currency(
            sum((_amount(w.get("total_cost")) for w in wastes), Decimal("0"))
        ),
        "current_inventory_value": round_currency(inventory_value),
    }


# =============================================================================
# Item sales
# =============================================================================


def _item_buckets(metrics_doc: Mapping):
    """Yield (sales_key, field, value) from flattened and nested item sales."""
    for key, value in metrics_doc.items():
        if key.startswith(_FLAT_ITEM_PREFIX):
            parts = key.split(".")
            if len(parts) == 3:
                yield sanitize_item_key(parts[1]), parts[2], value
        elif key == ITEM_SALES_FIELD and isinstance(value, Mapping):
            for sales_key, bucket in value.items():
                if not isinstance(bucket, Mapping):
                    continue
                for field in ("name", "qty", "revenue"):
                    if field in bucket:
                        yield sanitize_item_key(str(sales_key)), field, bucket[field]


def build_item_sales_aggregate(metrics_docs: Iterable[Mapping]) -> List[Dict[str, Any]]:
    """
    Sum item sales across daily metrics documents.

    Accepts both storage shapes: flattened keys ("item_sales.<key>.qty")
    and a nested "item_sales" mapping of {key: {name, qty, revenue}}.

    Buckets are merged by sanitized key, so distinct names that sanitize
    alike ("Goat Leg!", "Goat Leg?") are reported as one item under the
    name written last.

    Returns:
        [{"sales_key", "name", "qty", "revenue"}] sorted by qty descending
    """
    aggregate: Dict[str, Dict[str, Any]] = {}

    for metrics_doc in metrics_docs:
        for sales_key, field, value in _item_buckets(metrics_doc):
            bucket = aggregate.setdefault(
                sales_key,
                {"sales_key": sales_key, "name": sales_key, "qty": Decimal("0"), "revenue": Decimal("0")},
            )
            if field == "name":
                if value:
                    bucket["name"] = value
            elif field in ("qty", "revenue"):
                bucket[field] += _amount(value)

    return sorted(aggregate.values(), key=lambda bucket: bucket["qty"], reverse=True)


# =============================================================================
# Daily report
# =============================================================================


def build_daily_report(metrics_doc: Optional[Mapping]) -> Optional[Dict[str, Any]]:
    """
    Summarize one day's metrics document.

    Online orders are the orders not served at a table, floored at zero.
    Gross profit is revenue minus COGS; wastage is reported separately.

    Returns:
        Report dict, or None when no document exists for the day
    """
    if metrics_doc is None:
        return None

    total_revenue = _amount(metrics_doc.get(METRIC_TOTAL_SALES))
    total_orders = int(_amount(metrics_doc.get(METRIC_TOTAL_ORDERS)))
    dine_in_tables = int(_amount(metrics_doc.get(METRIC_DINE_IN_TABLES)))
    total_cogs = _amount(metrics_doc.get(METRIC_TOTAL_COGS))

    return {
        "date_key": metrics_doc.get("date_key"),
        "total_revenue": round_currency(total_revenue),
        "total_orders": total_orders,
        "dine_in_tables": dine_in_tables,
        "online_orders": max(0, total_orders - dine_in_tables),
        "total_cogs": round_currency(total_cogs),
        "total_wastage_loss": round_currency(_amount(metrics_doc.get(METRIC_TOTAL_WASTAGE_LOSS))),
        "gross_profit": round_currency(total_revenue - total_cogs),
        "items": build_item_sales_aggregate([metrics_doc]),
    }
