"""
Tests for production execution.

Covers the stock deduction, usage log snapshot and COGS update, the
all-or-nothing behaviour on shortages, and conflict retries.
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from kitchen_ledger.models import Recipe, RecipeIngredient, UsageLog
from kitchen_ledger.services import (
    inventory_service,
    metrics_service,
    production_service,
    recipe_service,
)
from kitchen_ledger.services.exceptions import (
    ConcurrencyConflictError,
    InsufficientStockError,
    RecipeNotFound,
    UsageLogNotFound,
    ValidationError,
)
from kitchen_ledger.utils.datetime_utils import get_local_date_string

PRODUCED_AT = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)


def _stock(item_id):
    return inventory_service.get_inventory_item(item_id)["current_stock"]


@pytest.fixture
def korma(test_db, mutton, ghee):
    """Korma: 1 kg mutton and 0.5 l ghee per 4 kg batch."""
    return recipe_service.add_recipe(
        {
            "name": "Korma",
            "output_quantity": 4,
            "output_unit": "kg",
            "ingredients": [
                {"inventory_item_id": mutton, "name": "Mutton", "quantity": 1, "unit": "kg"},
                {"inventory_item_id": ghee, "name": "Ghee", "quantity": "0.5", "unit": "l"},
            ],
        }
    )


class TestExecuteProduction:
    """Successful production runs."""

    def test_deducts_stock_and_returns_result(self, test_db, nihari, mutton):
        """Half a batch of nihari uses 1 kg of mutton."""
        result = production_service.execute_production(nihari, 5, produced_at=PRODUCED_AT)

        assert _stock(mutton) == Decimal("4")
        assert result["recipe_id"] == nihari
        assert result["recipe_name"] == "Nihari"
        assert result["quantity_produced"] == Decimal("5")
        assert result["output_unit"] == "kg"
        assert result["multiplier"] == Decimal("0.5")
        assert result["total_cost"] == Decimal("100.00")
        assert result["ingredients_used"] == 1
        assert result["consumptions"][0]["inventory_item_id"] == mutton
        assert result["consumptions"][0]["quantity_used"] == Decimal("1")

    def test_writes_usage_log_snapshot(self, test_db, nihari, mutton):
        """The usage log keeps the ingredient and cost snapshot."""
        result = production_service.execute_production(nihari, 5, produced_at=PRODUCED_AT)

        usage_log = production_service.get_usage_log(result["usage_log_id"])
        assert usage_log["recipe_name"] == "Nihari"
        assert usage_log["total_cost"] == Decimal("100.00")
        assert len(usage_log["ingredients"]) == 1
        assert usage_log["ingredients"][0]["name"] == "Mutton"
        assert usage_log["ingredients"][0]["quantity_used"] == Decimal("1.000")
        assert usage_log["ingredients"][0]["unit"] == "kg"

    def test_adds_total_cost_to_cogs(self, test_db, nihari):
        """Production cost is added to the day's COGS."""
        production_service.execute_production(nihari, 5, produced_at=PRODUCED_AT)
        production_service.execute_production(nihari, 5, produced_at=PRODUCED_AT)

        metrics = metrics_service.get_daily_metrics(get_local_date_string(PRODUCED_AT))
        assert metrics["total_cogs"] == Decimal("200.00")

    def test_multi_ingredient_recipe(self, test_db, korma, mutton, ghee):
        """Every ingredient is deducted in one run."""
        result = production_service.execute_production(korma, 8, produced_at=PRODUCED_AT)

        assert _stock(mutton) == Decimal("3")
        assert _stock(ghee) == Decimal("2")
        assert result["total_cost"] == Decimal("600.00")
        assert result["ingredients_used"] == 2

    def test_can_consume_all_stock(self, test_db, nihari, mutton):
        """Producing exactly what stock allows leaves zero."""
        production_service.execute_production(nihari, 25)

        assert _stock(mutton) == Decimal("0")

    def test_later_cost_change_keeps_snapshot(self, test_db, nihari, mutton):
        """The usage log's cost is not recomputed when item cost changes."""
        result = production_service.execute_production(nihari, 5)
        inventory_service.update_inventory_item(mutton, {"cost_per_unit": 999})

        usage_log = production_service.get_usage_log(result["usage_log_id"])
        assert usage_log["total_cost"] == Decimal("100.00")


class TestInsufficientStock:
    """Production that cannot be covered changes nothing."""

    def test_rejects_and_leaves_stock_unchanged(self, test_db, nihari, mutton):
        """Six batches need 12 kg against 5 kg on hand."""
        with pytest.raises(InsufficientStockError) as exc_info:
            production_service.execute_production(nihari, 60, produced_at=PRODUCED_AT)

        assert _stock(mutton) == Decimal("5")
        shortage = exc_info.value.shortages[0]
        assert shortage["inventory_item_id"] == mutton
        assert shortage["name"] == "Mutton"
        assert shortage["required_qty"] == Decimal("12")
        assert shortage["current_stock"] == Decimal("5")
        assert shortage["unit"] == "kg"
        assert "Mutton: need 12" in str(exc_info.value)

    def test_no_usage_log_or_cogs(self, test_db, nihari):
        """A rejected run writes no history and no COGS."""
        with pytest.raises(InsufficientStockError):
            production_service.execute_production(nihari, 60, produced_at=PRODUCED_AT)

        session = test_db()
        assert session.query(UsageLog).count() == 0
        assert metrics_service.get_daily_metrics(get_local_date_string(PRODUCED_AT)) is None

    def test_partial_shortage_deducts_nothing(self, test_db, korma, mutton, ghee):
        """One short ingredient blocks the others too."""
        inventory_service.update_inventory_item(ghee, {"current_stock": "0.1"})

        with pytest.raises(InsufficientStockError) as exc_info:
            production_service.execute_production(korma, 4)

        assert [s["name"] for s in exc_info.value.shortages] == ["Ghee"]
        assert _stock(mutton) == Decimal("5")
        assert _stock(ghee) == Decimal("0.1")

    def test_deleted_ingredient_counts_as_short(self, test_db, nihari, mutton):
        """A recipe line whose item was deleted cannot be produced."""
        inventory_service.delete_inventory_item(mutton)

        with pytest.raises(InsufficientStockError):
            production_service.execute_production(nihari, 5)


class TestConcurrencyConflict:
    """Compare-and-write misses roll back and retry."""

    def test_conflict_is_retried(self, test_db, nihari, mutton, monkeypatch):
        """A single lost race is retried and then succeeds."""
        original = inventory_service.decrease_stock_guarded
        calls = {"count": 0}

        def flaky(session, inventory_item_id, quantity):
            calls["count"] += 1
            if calls["count"] == 1:
                return False
            return original(session, inventory_item_id, quantity)

        monkeypatch.setattr(inventory_service, "decrease_stock_guarded", flaky)

        result = production_service.execute_production(nihari, 5)

        assert calls["count"] == 2
        assert result["total_cost"] == Decimal("100.00")
        assert _stock(mutton) == Decimal("4")

    def test_conflict_rolls_back_earlier_deductions(self, test_db, korma, mutton, ghee, monkeypatch):
        """A miss on the second ingredient undoes the first one."""
        original = inventory_service.decrease_stock_guarded

        def fail_on_ghee(session, inventory_item_id, quantity):
            if inventory_item_id == ghee:
                return False
            return original(session, inventory_item_id, quantity)

        monkeypatch.setattr(inventory_service, "decrease_stock_guarded", fail_on_ghee)

        with pytest.raises(ConcurrencyConflictError) as exc_info:
            production_service.execute_production(korma, 4)

        assert exc_info.value.inventory_item_id == ghee
        assert _stock(mutton) == Decimal("5")
        assert _stock(ghee) == Decimal("3")
        session = test_db()
        assert session.query(UsageLog).count() == 0

    def test_caller_session_is_not_retried(self, test_db, nihari, monkeypatch):
        """Inside a caller's transaction the conflict propagates at once."""
        calls = {"count": 0}

        def always_miss(session, inventory_item_id, quantity):
            calls["count"] += 1
            return False

        monkeypatch.setattr(inventory_service, "decrease_stock_guarded", always_miss)

        with pytest.raises(ConcurrencyConflictError):
            production_service.execute_production(nihari, 5, session=test_db())

        assert calls["count"] == 1

    def test_guarded_decrease_refuses_overdraw(self, test_db, mutton):
        """The compare-and-write matches no row when stock is too low."""
        session = test_db()

        assert inventory_service.decrease_stock_guarded(session, mutton, Decimal("6")) is False
        assert inventory_service.decrease_stock_guarded(session, mutton, Decimal("5")) is True
        session.commit()

        assert _stock(mutton) == Decimal("0")


class TestIdempotentProduction:
    """Repeated idempotency keys."""

    def test_repeat_key_returns_original_run(self, test_db, nihari, mutton):
        """The second call returns the first run and deducts nothing."""
        first = production_service.execute_production(nihari, 5, idempotency_key="run-1")
        second = production_service.execute_production(nihari, 5, idempotency_key="run-1")

        assert second["usage_log_id"] == first["usage_log_id"]
        assert _stock(mutton) == Decimal("4")
        session = test_db()
        assert session.query(UsageLog).count() == 1


class TestProductionValidation:
    """Bad input."""

    @pytest.mark.parametrize("target", [0, -1, "lots"])
    def test_invalid_target(self, test_db, nihari, target):
        """The target must be a positive number."""
        with pytest.raises(ValidationError):
            production_service.execute_production(nihari, target)

    def test_unknown_recipe(self, test_db):
        """An unknown recipe id raises RecipeNotFound."""
        with pytest.raises(RecipeNotFound):
            production_service.execute_production(999, 5)

    def test_unknown_usage_log(self, test_db):
        """An unknown usage log id raises UsageLogNotFound."""
        with pytest.raises(UsageLogNotFound):
            production_service.get_usage_log(999)


class TestCheckCanProduce:
    """Dry-run previews."""

    def test_preview_in_stock(self, test_db, nihari):
        """A coverable run reports no shortages."""
        preview = production_service.check_can_produce(nihari, 5)

        assert preview["can_produce"] is True
        assert preview["shortages"] == []
        assert preview["bom"]["total_cost"] == Decimal("100.00")

    def test_preview_short_changes_nothing(self, test_db, nihari, mutton):
        """A short preview lists the deficit and leaves stock alone."""
        preview = production_service.check_can_produce(nihari, 60)

        assert preview["can_produce"] is False
        assert preview["shortages"][0]["deficit"] == Decimal("7")
        assert _stock(mutton) == Decimal("5")


@pytest.fixture
def double_mutton(test_db, mutton):
    """A stored recipe naming mutton on two 3 kg lines per 10 kg batch."""
    session = test_db()
    recipe = Recipe(name="Double Mutton", output_quantity=Decimal("10"), output_unit="kg")
    recipe.ingredients = [
        RecipeIngredient(
            inventory_item_id=mutton, name="Mutton", quantity=Decimal("3"), unit="kg", position=0
        ),
        RecipeIngredient(
            inventory_item_id=mutton, name="Mutton", quantity=Decimal("3"), unit="kg", position=1
        ),
    ]
    session.add(recipe)
    session.commit()
    return recipe.id


class TestRepeatedIngredientLines:
    """Lines for the same item are checked against stock together."""

    def test_preview_combines_lines(self, test_db, double_mutton, mutton):
        """Two 3 kg lines need 6 kg, which 5 kg cannot cover."""
        preview = production_service.check_can_produce(double_mutton, 10)

        assert preview["can_produce"] is False
        assert len(preview["shortages"]) == 1
        shortage = preview["shortages"][0]
        assert shortage["inventory_item_id"] == mutton
        assert shortage["required_qty"] == Decimal("6")
        assert shortage["current_stock"] == Decimal("5")
        assert shortage["deficit"] == Decimal("1")

    def test_execute_reports_insufficient_stock_without_retrying(
        self, test_db, double_mutton, mutton, monkeypatch, caplog
    ):
        """The run fails as a shortage on the first attempt and writes nothing."""
        calls = {"count": 0}
        original = inventory_service.decrease_stock_guarded

        def counting(*args, **kwargs):
            calls["count"] += 1
            return original(*args, **kwargs)

        monkeypatch.setattr(inventory_service, "decrease_stock_guarded", counting)

        with pytest.raises(InsufficientStockError) as exc_info:
            production_service.execute_production(double_mutton, 10)

        assert exc_info.value.shortages[0]["required_qty"] == Decimal("6")
        assert calls["count"] == 0
        assert "retries_exhausted" not in caplog.text
        assert _stock(mutton) == Decimal("5")
        assert test_db().query(UsageLog).count() == 0

    def test_combined_lines_within_stock_succeed(self, test_db, double_mutton, mutton):
        """Both lines are deducted when their sum is on hand."""
        result = production_service.execute_production(double_mutton, 5)

        assert result["ingredients_used"] == 2
        assert _stock(mutton) == Decimal("2")
