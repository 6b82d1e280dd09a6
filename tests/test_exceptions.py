"""
Unit tests for the unified exception hierarchy.
"""

import pytest

from exceptions import (
    BudgetError,
    BudgetWatchError,
    ConfigError,
    DatabaseError,
    NotificationError,
    ReportError,
    UserNotFoundError,
)


class TestBudgetWatchError:
    """Test base BudgetWatchError class."""

    def test_basic_exception_creation(self):
        error = BudgetWatchError("Test error message")
        assert str(error) == "Test error message"
        assert error.details == {}
        assert error.original_error is None

    def test_exception_with_details(self):
        error = BudgetWatchError("Lookup failed", details={"user_id": 7, "month": "March 2024"})
        assert str(error) == "Lookup failed (user_id=7, month=March 2024)"

    def test_exception_with_original_error(self):
        original = ValueError("bad value")
        error = BudgetWatchError("Wrapped", original_error=original)
        assert error.original_error is original


@pytest.mark.parametrize("exc_class", [
    ConfigError, DatabaseError, UserNotFoundError, BudgetError, ReportError, NotificationError,
])
def test_subclasses_share_base(exc_class):
    error = exc_class("failure", details={"key": "value"})
    assert isinstance(error, BudgetWatchError)
    assert error.details == {"key": "value"}

    with pytest.raises(BudgetWatchError):
        raise error
