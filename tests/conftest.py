from datetime import UTC, datetime
from decimal import Decimal

import pytest

from database_ops import DatabaseManager


class FixedClock:
    """Callable clock returning a settable aware datetime."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock():
    """Clock pinned to mid-March 2024, noon UTC."""
    return FixedClock(datetime(2024, 3, 15, 12, 0, tzinfo=UTC))


@pytest.fixture
def db_manager():
    """In-memory SQLite database with the schema created."""
    manager = DatabaseManager("sqlite:///:memory:")
    manager.create_tables()
    yield manager
    manager.close()


@pytest.fixture
def make_user(db_manager):
    """Factory creating users with a monthly budget."""
    counter = {"n": 0}

    def _make_user(budget=Decimal("1000"), **settings):
        counter["n"] += 1
        return db_manager.add_user(
            f"user{counter['n']}@example.com",
            f"User {counter['n']}",
            budget_amount=budget,
            **settings
        )

    return _make_user
