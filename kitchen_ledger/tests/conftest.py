"""Pytest configuration and fixtures for service layer tests."""

from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, scoped_session

from kitchen_ledger.models.base import Base
from kitchen_ledger.services import change_feed
from kitchen_ledger.utils.config import reset_config


@pytest.fixture(autouse=True)
def fast_retries(monkeypatch):
    """Retry without sleeping and start each test with fresh config."""
    monkeypatch.setenv("KITCHEN_LEDGER_RETRY_BASE_DELAY", "0")
    reset_config()
    yield
    reset_config()


@pytest.fixture(scope="function")
def test_db():
    """Provide a clean test database for each test function.

    This fixture:
    1. Creates an in-memory SQLite database
    2. Creates all tables
    3. Provides the database to the test
    4. Drops all tables and change listeners after the test completes
    """
    # Create in-memory SQLite database for testing
    engine = create_engine("sqlite:///:memory:", echo=False)

    # Create all tables
    Base.metadata.create_all(engine)

    # Create session factory
    session_factory = sessionmaker(bind=engine, expire_on_commit=False)
    Session = scoped_session(session_factory)

    # Monkey-patch the global session factory for tests
    import kitchen_ledger.services.database as db_module

    original_get_session_factory = db_module.get_session_factory
    db_module.get_session_factory = lambda: Session

    # Provide database to test
    yield Session

    # Cleanup
    change_feed.clear_listeners()
    Session.remove()
    Base.metadata.drop_all(engine)
    engine.dispose()

    # Restore original session factory
    db_module.get_session_factory = original_get_session_factory


@pytest.fixture(scope="function")
def mutton(test_db):
    """Mutton: 5 kg on hand at 100 per kg."""
    from kitchen_ledger.services import inventory_service

    return inventory_service.add_inventory_item(
        {
            "name": "Mutton",
            "unit": "kg",
            "current_stock": Decimal("5"),
            "cost_per_unit": Decimal("100"),
            "reorder_level": Decimal("2"),
            "category": "meat",
        }
    )


@pytest.fixture(scope="function")
def ghee(test_db):
    """Ghee: 3 l on hand at 400 per l."""
    from kitchen_ledger.services import inventory_service

    return inventory_service.add_inventory_item(
        {
            "name": "Ghee",
            "unit": "l",
            "current_stock": Decimal("3"),
            "cost_per_unit": Decimal("400"),
            "category": "oils",
        }
    )


@pytest.fixture(scope="function")
def nihari(test_db, mutton):
    """Nihari: 2 kg mutton per 10 kg batch."""
    from kitchen_ledger.services import recipe_service

    return recipe_service.add_recipe(
        {
            "name": "Nihari",
            "output_quantity": Decimal("10"),
            "output_unit": "kg",
            "ingredients": [
                {"inventory_item_id": mutton, "name": "Mutton", "quantity": Decimal("2"), "unit": "kg"},
            ],
        }
    )
