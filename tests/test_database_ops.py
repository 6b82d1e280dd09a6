"""
Unit tests for database operations.

Tests user budget configuration, alert timestamps, transaction queries
and error wrapping.
"""

from datetime import UTC, datetime
from decimal import Decimal
from unittest.mock import patch

import pytest
from sqlalchemy import Boolean
from sqlalchemy.exc import OperationalError

from database_ops import NotificationType, TransactionType, Transaction, User
from exceptions import BudgetError, DatabaseError, UserNotFoundError


class TestUsers:
    """Tests for user creation and budget settings."""

    def test_add_user_defaults(self, db_manager):
        user = db_manager.add_user("ana@example.com", "Ana")

        stored = db_manager.get_user(user.id)
        assert stored.budget_amount == Decimal("0")
        assert stored.budget_currency == "USD"
        assert stored.warning_threshold == Decimal("80")
        assert stored.critical_threshold == Decimal("95")
        assert stored.budget_alerts is True
        assert stored.monthly_reports is True
        assert stored.report_format is None
        assert stored.last_alert_sent("warning") is None

    def test_opt_ins_are_the_only_email_switches(self):
        switches = {column.name for column in User.__table__.columns if isinstance(column.type, Boolean)}

        assert switches == {"budget_alerts", "monthly_reports"}

    def test_get_user_missing_returns_none(self, db_manager):
        assert db_manager.get_user(42) is None

    def test_duplicate_email_raises_database_error(self, db_manager):
        db_manager.add_user("ana@example.com", "Ana")
        with pytest.raises(DatabaseError):
            db_manager.add_user("ana@example.com", "Ana Again")

    def test_update_budget(self, db_manager, make_user):
        user = make_user()

        updated = db_manager.update_budget(
            user.id, amount=Decimal("2500"), currency="eur", warning=Decimal("70"), critical=Decimal("90")
        )

        assert updated.budget_amount == Decimal("2500")
        assert updated.budget_currency == "EUR"
        stored = db_manager.get_user(user.id)
        assert stored.warning_threshold == Decimal("70")
        assert stored.critical_threshold == Decimal("90")

    def test_update_budget_partial_keeps_other_fields(self, db_manager, make_user):
        user = make_user()

        db_manager.update_budget(user.id, warning=Decimal("60"))

        stored = db_manager.get_user(user.id)
        assert stored.budget_amount == Decimal("1000")
        assert stored.warning_threshold == Decimal("60")
        assert stored.critical_threshold == Decimal("95")

    @pytest.mark.parametrize("kwargs", [
        {"amount": Decimal("-1")},
        {"warning": Decimal("101")},
        {"critical": Decimal("-5")},
        {"warning": Decimal("95"), "critical": Decimal("90")},
        {"warning": Decimal("96")},
    ])
    def test_update_budget_rejects_invalid(self, db_manager, make_user, kwargs):
        user = make_user()
        with pytest.raises(BudgetError):
            db_manager.update_budget(user.id, **kwargs)

    def test_update_budget_missing_user(self, db_manager):
        with pytest.raises(UserNotFoundError):
            db_manager.update_budget(77, amount=Decimal("10"))

    def test_users_with_budget_alerts(self, db_manager, make_user):
        with_budget = make_user()
        make_user(budget=Decimal("0"))
        make_user(budget_alerts=False)

        users = db_manager.get_users_with_budget_alerts()

        assert [user.id for user in users] == [with_budget.id]


class TestAlertTimestamps:
    """Tests for update_last_alert_sent."""

    def test_sets_only_requested_type(self, db_manager, make_user):
        user = make_user()
        sent_at = datetime(2024, 3, 15, 9, 30, tzinfo=UTC)

        db_manager.update_last_alert_sent(user.id, "critical", sent_at)

        stored = db_manager.get_user(user.id)
        assert stored.last_critical_alert_sent.replace(tzinfo=UTC) == sent_at
        assert stored.last_warning_alert_sent is None

    def test_unknown_type(self, db_manager, make_user):
        user = make_user()
        with pytest.raises(BudgetError):
            db_manager.update_last_alert_sent(user.id, "info", datetime.now(UTC))

    def test_missing_user(self, db_manager):
        with pytest.raises(UserNotFoundError):
            db_manager.update_last_alert_sent(5, "warning", datetime.now(UTC))


class TestTransactions:
    """Tests for transaction storage and range queries."""

    def test_amount_must_be_positive(self):
        with pytest.raises(ValueError):
            Transaction(user_id=1, title="bad", amount=Decimal("0"), type=TransactionType.EXPENSE)

    def test_range_is_inclusive_and_ordered(self, db_manager, make_user):
        user = make_user()
        late = db_manager.add_transaction(user.id, Decimal("3"), TransactionType.EXPENSE, datetime(2024, 3, 31, 23, 59))
        early = db_manager.add_transaction(user.id, Decimal("1"), TransactionType.EXPENSE, datetime(2024, 3, 1))
        db_manager.add_transaction(user.id, Decimal("2"), TransactionType.INCOME, datetime(2024, 3, 15))
        db_manager.add_transaction(user.id, Decimal("4"), TransactionType.EXPENSE, datetime(2024, 4, 1))

        expenses = db_manager.get_transactions(
            user.id,
            datetime(2024, 3, 1),
            datetime(2024, 3, 31, 23, 59, 59, 999999),
            transaction_type=TransactionType.EXPENSE,
        )

        assert [t.id for t in expenses] == [early.id, late.id]

    def test_other_users_excluded(self, db_manager, make_user):
        owner = make_user()
        other = make_user()
        db_manager.add_transaction(other.id, Decimal("9"), TransactionType.EXPENSE, datetime(2024, 3, 5))

        assert db_manager.get_transactions(owner.id, datetime(2024, 3, 1), datetime(2024, 3, 31)) == []

    def test_query_failure_wrapped(self, db_manager):
        with patch.object(db_manager, "get_session") as mock_session:
            mock_session.return_value.query.side_effect = OperationalError("SELECT", {}, Exception("locked"))
            with pytest.raises(DatabaseError) as exc_info:
                db_manager.get_transactions(1, datetime(2024, 3, 1), datetime(2024, 3, 31))

        assert isinstance(exc_info.value.original_error, OperationalError)


class TestCategoriesAndNotifications:
    """Tests for categories and in-app notifications."""

    def test_category_map(self, db_manager, make_user):
        user = make_user()
        food = db_manager.add_category(user.id, "Food")
        salary = db_manager.add_category(user.id, "Salary", TransactionType.INCOME)

        assert db_manager.get_category_map(user.id) == {food.id: "Food", salary.id: "Salary"}

    def test_create_notification(self, db_manager, make_user):
        user = make_user()

        db_manager.create_notification(user.id, "Budget Warning", "Careful", NotificationType.WARNING)

        notifications = db_manager.get_notifications(user.id)
        assert len(notifications) == 1
        assert notifications[0].type is NotificationType.WARNING
        assert notifications[0].read is False
