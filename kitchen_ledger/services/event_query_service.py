"""Event Query Service - read the append-only event streams.

Purchases, waste entries and usage logs are never updated after they are
written; these queries return them as dicts for reporting.

Datetime bounds are inclusive. Naive datetimes are taken as UTC.
"""

from contextlib import nullcontext
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select

from ..models import PurchaseRecord, UsageLog, UsageLogIngredient, WasteEntry
from ..utils.datetime_utils import ensure_utc, get_local_date_string
from . import metrics_service
from .database import session_scope
from .exceptions import ValidationError


def _validate_range(start: Optional[datetime], end: Optional[datetime]) -> None:
    if start is not None and end is not None and ensure_utc(start) > ensure_utc(end):
        raise ValidationError(["Date range: start must not be after end"])


def _filtered(query, model, date_column, *, start, end, descending):
    if start is not None:
        query = query.filter(date_column >= ensure_utc(start))
    if end is not None:
        query = query.filter(date_column <= ensure_utc(end))
    if descending:
        return query.order_by(date_column.desc(), model.id.desc())
    return query.order_by(date_column, model.id)


def get_purchase_records(
    *,
    inventory_item_id: Optional[int] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    descending: bool = True,
    session=None,
) -> List[Dict[str, Any]]:
    """
    List purchase records, newest first by default.

    Args:
        inventory_item_id: Only purchases of this item
        start: Earliest purchase_date (inclusive)
        end: Latest purchase_date (inclusive)
        descending: Newest first if True
        session: Optional database session

    Returns:
        List of purchase record dicts
    """
    _validate_range(start, end)
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        query = session.query(PurchaseRecord)
        if inventory_item_id is not None:
            query = query.filter(PurchaseRecord.inventory_item_id == inventory_item_id)
        query = _filtered(
            query,
            PurchaseRecord,
            PurchaseRecord.purchase_date,
            start=start,
            end=end,
            descending=descending,
        )
        return [record.to_dict() for record in query.all()]


def get_waste_entries(
    *,
    inventory_item_id: Optional[int] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    descending: bool = True,
    session=None,
) -> List[Dict[str, Any]]:
    """List waste entries, newest first by default. Filters as get_purchase_records()."""
    _validate_range(start, end)
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        query = session.query(WasteEntry)
        if inventory_item_id is not None:
            query = query.filter(WasteEntry.inventory_item_id == inventory_item_id)
        query = _filtered(
            query, WasteEntry, WasteEntry.waste_date, start=start, end=end, descending=descending
        )
        return [entry.to_dict() for entry in query.all()]


def get_usage_logs(
    *,
    inventory_item_id: Optional[int] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    descending: bool = True,
    session=None,
) -> List[Dict[str, Any]]:
    """
    List production runs with their ingredient snapshots.

    Args:
        inventory_item_id: Only runs that consumed this item

    Returns:
        List of usage log dicts, each with an ``ingredients`` list
    """
    _validate_range(start, end)
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        query = session.query(UsageLog)
        if inventory_item_id is not None:
            consumed = select(UsageLogIngredient.usage_log_id).where(
                UsageLogIngredient.inventory_item_id == inventory_item_id
            )
            query = query.filter(UsageLog.id.in_(consumed))
        query = _filtered(
            query, UsageLog, UsageLog.timestamp, start=start, end=end, descending=descending
        )
        return [usage_log.to_dict() for usage_log in query.all()]


def get_analytics_data(start: datetime, end: datetime, *, session=None) -> Dict[str, Any]:
    """
    Fetch every event stream for a reporting period.

    Args:
        start: Period start (inclusive)
        end: Period end (inclusive)
        session: Optional database session

    Returns:
        Dict with keys:
            - "purchases", "usages", "wastes": event dicts, newest first
            - "metrics_docs": daily metrics documents whose local date
              falls within the period
    """
    _validate_range(start, end)
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        return {
            "purchases": get_purchase_records(start=start, end=end, session=session),
            "usages": get_usage_logs(start=start, end=end, session=session),
            "wastes": get_waste_entries(start=start, end=end, session=session),
            "metrics_docs": metrics_service.get_metrics_documents(
                get_local_date_string(ensure_utc(start)),
                get_local_date_string(ensure_utc(end)),
                session=session,
            ),
        }
