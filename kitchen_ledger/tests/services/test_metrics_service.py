"""
Tests for the daily metrics aggregator.

Counters only move by additive deltas; item sales buckets are keyed by
the sanitized item name.
"""

from datetime import datetime
from decimal import Decimal

import pytest

from kitchen_ledger.models import DailyItemSale, DailyMetric
from kitchen_ledger.services import metrics_service
from kitchen_ledger.services.analytics_service import build_item_sales_aggregate
from kitchen_ledger.services.exceptions import ValidationError

DAY = "2025-01-15"


class TestSanitizeItemKey:
    """Sales key derivation."""

    @pytest.mark.parametrize(
        "name,expected",
        [
            ("Nihari", "Nihari"),
            ("Goat Leg!", "Goat_Leg_"),
            ("Goat Leg?", "Goat_Leg_"),
            ("Paya (Full)", "Paya__Full_"),
            ("Roti x2", "Roti_x2"),
            ("Café", "Caf_"),
        ],
    )
    def test_replaces_unsafe_characters(self, name, expected):
        assert metrics_service.sanitize_item_key(name) == expected


class TestApplyDelta:
    """Commutative counter increments."""

    def test_creates_day_on_first_delta(self, test_db):
        """The day row is created by the first increment."""
        metrics_service.apply_delta(DAY, {"total_cogs": Decimal("100.00")})

        metrics = metrics_service.get_daily_metrics(DAY)
        assert metrics["date_key"] == DAY
        assert metrics["total_cogs"] == Decimal("100.00")
        assert metrics["total_sales"] == Decimal("0")
        assert metrics["total_orders"] == 0
        assert metrics["item_sales"] == {}

    def test_increments_accumulate(self, test_db):
        """Repeated deltas add up."""
        metrics_service.apply_delta(DAY, {"total_sales": 450, "total_orders": 1})
        metrics_service.apply_delta(DAY, {"total_sales": "99.50", "total_orders": 1})

        metrics = metrics_service.get_daily_metrics(DAY)
        assert metrics["total_sales"] == Decimal("549.50")
        assert metrics["total_orders"] == 2

    def test_order_does_not_matter(self, test_db):
        """Applying the same deltas in any order gives the same totals."""
        deltas = [
            {"total_cogs": "10.10"},
            {"total_cogs": "20.20", "total_wastage_loss": 5},
            {"total_cogs": "0.30"},
        ]
        for delta in deltas:
            metrics_service.apply_delta("2025-01-01", delta)
        for delta in reversed(deltas):
            metrics_service.apply_delta("2025-01-02", delta)

        first, second = metrics_service.get_metrics_documents("2025-01-01", "2025-01-02")
        assert first["total_cogs"] == second["total_cogs"] == Decimal("30.60")
        assert first["total_wastage_loss"] == second["total_wastage_loss"] == Decimal("5.00")

    def test_days_are_independent(self, test_db):
        """Deltas only touch their own date."""
        metrics_service.apply_delta("2025-01-01", {"total_sales": 10})
        metrics_service.apply_delta("2025-01-02", {"total_sales": 20})

        assert metrics_service.get_daily_metrics("2025-01-01")["total_sales"] == Decimal("10")
        assert metrics_service.get_daily_metrics("2025-01-02")["total_sales"] == Decimal("20")

    def test_item_sales_are_additive(self, test_db):
        """qty and revenue accumulate in the item's bucket."""
        metrics_service.apply_delta(DAY, {"item_sales": {"Nihari": {"qty": 2, "revenue": 900}}})
        metrics_service.apply_delta(DAY, {"item_sales": {"Nihari": {"qty": 1, "revenue": 450}}})

        bucket = metrics_service.get_daily_metrics(DAY)["item_sales"]["Nihari"]
        assert bucket == {"name": "Nihari", "qty": Decimal("3"), "revenue": Decimal("1350")}

    def test_single_row_per_bucket(self, test_db):
        """Upserts never duplicate a (date, key) row."""
        for _ in range(3):
            metrics_service.apply_delta(DAY, {"item_sales": {"Paya": {"qty": 1, "revenue": 300}}})

        session = test_db()
        assert session.query(DailyItemSale).count() == 1
        assert session.query(DailyMetric).count() == 1

    def test_colliding_names_merge(self, test_db):
        """Names that sanitize alike share one bucket; the last name wins."""
        metrics_service.apply_delta(DAY, {"item_sales": {"Goat Leg!": {"qty": 2, "revenue": 200}}})
        metrics_service.apply_delta(DAY, {"item_sales": {"Goat Leg?": {"qty": 3, "revenue": 330}}})

        item_sales = metrics_service.get_daily_metrics(DAY)["item_sales"]
        assert list(item_sales) == ["Goat_Leg_"]
        assert item_sales["Goat_Leg_"]["name"] == "Goat Leg?"
        assert item_sales["Goat_Leg_"]["qty"] == Decimal("5")
        assert item_sales["Goat_Leg_"]["revenue"] == Decimal("530")

    def test_collisions_are_reported(self, test_db):
        """The side index exposes every name written under a shared key."""
        metrics_service.apply_delta(DAY, {"item_sales": {"Goat Leg!": {"qty": 1, "revenue": 1}}})
        metrics_service.apply_delta(DAY, {"item_sales": {"Goat Leg?": {"qty": 1, "revenue": 1}}})
        metrics_service.apply_delta(DAY, {"item_sales": {"Nihari": {"qty": 1, "revenue": 1}}})
        metrics_service.apply_delta(DAY, {"item_sales": {"Nihari": {"qty": 1, "revenue": 1}}})

        assert metrics_service.find_key_collisions() == {"Goat_Leg_": ["Goat Leg!", "Goat Leg?"]}

    @pytest.mark.parametrize(
        "date_key,deltas",
        [
            (DAY, {"total_tips": 5}),
            (DAY, {"total_sales": "abc"}),
            (DAY, {"total_orders": "1.5"}),
            (DAY, {"item_sales": ["Nihari"]}),
            (DAY, {"item_sales": {"Nihari": {"qty": "many"}}}),
            ("15/01/2025", {"total_sales": 1}),
        ],
    )
    def test_invalid_delta(self, test_db, date_key, deltas):
        """Unknown fields, bad numbers and bad date keys are rejected."""
        with pytest.raises(ValidationError):
            metrics_service.apply_delta(date_key, deltas)

        assert metrics_service.get_metrics_documents() == []

    def test_joins_caller_transaction(self, test_db):
        """A rolled-back caller transaction leaves no metrics."""
        session = test_db()
        metrics_service.apply_delta(DAY, {"total_cogs": 50}, session=session)
        session.rollback()

        assert metrics_service.get_daily_metrics(DAY) is None


class TestRecordCheckout:
    """Sales path."""

    def test_dine_in_checkout(self, test_db):
        """A dine-in checkout counts revenue, one order and one table."""
        result = metrics_service.record_checkout(
            [
                {"name": "Nihari", "qty": 2, "price": 450},
                {"name": "Roti", "qty": 4, "price": "15.50"},
            ],
            dine_in=True,
            sold_at=datetime(2025, 1, 15, 20, 0),
        )

        assert result == {"date_key": DAY, "total": Decimal("962.00"), "item_count": 2}
        metrics = metrics_service.get_daily_metrics(DAY)
        assert metrics["total_sales"] == Decimal("962.00")
        assert metrics["total_orders"] == 1
        assert metrics["dine_in_tables"] == 1
        assert metrics["item_sales"]["Roti"]["revenue"] == Decimal("62.00")

    def test_takeaway_checkout(self, test_db):
        """A takeaway order does not count a table."""
        metrics_service.record_checkout(
            [{"name": "Nihari", "qty": 1, "price": 450}], sold_at=datetime(2025, 1, 15, 12, 0)
        )

        metrics = metrics_service.get_daily_metrics(DAY)
        assert metrics["total_orders"] == 1
        assert metrics["dine_in_tables"] == 0

    def test_repeated_lines_are_combined(self, test_db):
        """Two lines for the same item land in one bucket."""
        metrics_service.record_checkout(
            [
                {"name": "Nihari", "qty": 1, "price": 450},
                {"name": "Nihari", "qty": 1, "price": 450},
            ],
            sold_at=datetime(2025, 1, 15, 12, 0),
        )

        bucket = metrics_service.get_daily_metrics(DAY)["item_sales"]["Nihari"]
        assert bucket["qty"] == Decimal("2")
        assert bucket["revenue"] == Decimal("900")

    @pytest.mark.parametrize(
        "items",
        [
            [],
            [{"name": "", "qty": 1, "price": 1}],
            [{"name": "Nihari", "qty": 0, "price": 1}],
            [{"name": "Nihari", "qty": 1, "price": -1}],
        ],
    )
    def test_invalid_checkout(self, test_db, items):
        """Empty orders and bad lines are rejected."""
        with pytest.raises(ValidationError):
            metrics_service.record_checkout(items)


class TestCollisionScenario:
    """Two distinct menu items that sanitize to the same key."""

    def test_aggregate_reports_one_merged_bucket(self, test_db):
        """Both items sell; the aggregate shows one bucket with their sum."""
        metrics_service.record_checkout(
            [{"name": "Goat Leg!", "qty": 2, "price": 100}], sold_at=datetime(2025, 1, 15, 12, 0)
        )
        metrics_service.record_checkout(
            [{"name": "Goat Leg?", "qty": 1, "price": 150}], sold_at=datetime(2025, 1, 15, 13, 0)
        )

        aggregate = build_item_sales_aggregate(metrics_service.get_metrics_documents())

        assert len(aggregate) == 1
        assert aggregate[0]["sales_key"] == "Goat_Leg_"
        assert aggregate[0]["name"] == "Goat Leg?"
        assert aggregate[0]["qty"] == Decimal("3")
        assert aggregate[0]["revenue"] == Decimal("350")


class TestMetricsQueries:
    """Reading metrics documents."""

    def test_missing_day_is_none(self, test_db):
        assert metrics_service.get_daily_metrics(DAY) is None

    def test_range_is_inclusive_and_ordered(self, test_db):
        """Documents come back by date within inclusive bounds."""
        for day in ("2025-01-03", "2025-01-01", "2025-01-02", "2025-01-04"):
            metrics_service.apply_delta(day, {"total_orders": 1})

        documents = metrics_service.get_metrics_documents("2025-01-02", "2025-01-03")

        assert [doc["date_key"] for doc in documents] == ["2025-01-02", "2025-01-03"]
