"""
Tests for database models.

Tests cover:
- Model creation and defaults
- Calculated properties
- Relationships and cascades
- Database-level constraints
"""

import pytest
from decimal import Decimal

from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from kitchen_ledger.models import (
    DailyItemSale,
    DailyMetric,
    InventoryItem,
    Recipe,
    RecipeIngredient,
    UsageLog,
    UsageLogIngredient,
)
from kitchen_ledger.models.base import Base


@pytest.fixture(scope="function")
def db_session():
    """
    Create a test database session.

    This fixture creates an in-memory database for each test,
    ensuring tests are isolated.
    """
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    Session = sessionmaker(bind=engine)
    session = Session()

    yield session

    session.close()
    engine.dispose()


class TestInventoryItemModel:
    """Tests for InventoryItem model."""

    def test_defaults(self, db_session):
        item = InventoryItem(name="Salt", unit="kg")
        db_session.add(item)
        db_session.commit()

        assert item.id is not None
        assert len(item.uuid) == 36
        assert item.category == "other"
        assert item.current_stock == Decimal("0")
        assert item.created_at is not None

    def test_low_stock_and_value(self):
        item = InventoryItem(
            name="Mutton",
            unit="kg",
            current_stock=Decimal("2"),
            cost_per_unit=Decimal("120.5"),
            reorder_level=Decimal("2"),
        )

        assert item.is_low_stock is True
        assert item.stock_value == Decimal("241.00")

    def test_negative_stock_rejected(self, db_session):
        db_session.add(InventoryItem(name="Salt", unit="kg", current_stock=Decimal("-0.5")))

        with pytest.raises(IntegrityError):
            db_session.commit()


class TestRecipeModel:
    """Tests for Recipe model."""

    def test_ingredients_ordered_and_cascaded(self, db_session):
        recipe = Recipe(name="Korma", output_quantity=Decimal("4"), output_unit="kg")
        recipe.ingredients = [
            RecipeIngredient(inventory_item_id=2, name="Ghee", quantity=Decimal("1"), unit="l", position=0),
            RecipeIngredient(inventory_item_id=1, name="Mutton", quantity=Decimal("2"), unit="kg", position=1),
        ]
        db_session.add(recipe)
        db_session.commit()

        data = recipe.to_dict()
        assert [i["name"] for i in data["ingredients"]] == ["Ghee", "Mutton"]

        db_session.delete(recipe)
        db_session.commit()
        assert db_session.query(RecipeIngredient).count() == 0

    def test_output_quantity_must_be_positive(self, db_session):
        db_session.add(Recipe(name="Broken", output_quantity=Decimal("0"), output_unit="kg"))

        with pytest.raises(IntegrityError):
            db_session.commit()


class TestUsageLogModel:
    """Tests for UsageLog model."""

    def test_to_dict_includes_ingredients(self, db_session):
        usage_log = UsageLog(
            recipe_id=1,
            recipe_name="Nihari",
            target_quantity=Decimal("5"),
            output_unit="kg",
            multiplier=Decimal("0.5"),
            total_cost=Decimal("120.00"),
        )
        usage_log.ingredients = [
            UsageLogIngredient(
                inventory_item_id=1,
                name="Mutton",
                quantity_used=Decimal("1"),
                unit="kg",
                ingredient_cost=Decimal("120.00"),
            )
        ]
        db_session.add(usage_log)
        db_session.commit()

        data = usage_log.to_dict()
        assert data["recipe_name"] == "Nihari"
        assert data["timestamp"] is not None
        assert data["ingredients"][0]["quantity_used"] == Decimal("1")


class TestDailyMetricModels:
    """Tests for DailyMetric and DailyItemSale models."""

    def test_date_key_unique(self, db_session):
        db_session.add(DailyMetric(date_key="2025-01-15"))
        db_session.add(DailyMetric(date_key="2025-01-15"))

        with pytest.raises(IntegrityError):
            db_session.commit()

    def test_one_bucket_per_key_and_day(self, db_session):
        db_session.add(DailyItemSale(date_key="2025-01-15", sales_key="Paya", name="Paya"))
        db_session.add(DailyItemSale(date_key="2025-01-15", sales_key="Paya", name="Paya"))

        with pytest.raises(IntegrityError):
            db_session.commit()

    def test_counter_defaults(self, db_session):
        metric = DailyMetric(date_key="2025-01-15")
        db_session.add(metric)
        db_session.commit()

        assert metric.total_orders == 0
        assert metric.total_sales == Decimal("0")
