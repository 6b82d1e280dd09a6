"""
Unit tests for monthly budget tracking.

Covers expense totals, alert level selection, once-per-day alert
deduplication and the per-category overview.
"""

from datetime import UTC, datetime
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import Mock

import pytest

from budgeting import UNCATEGORIZED, AlertLevel, BudgetTracker, round_percentage
from database_ops import DatabaseManager, TransactionType
from exceptions import BudgetError, UserNotFoundError


@pytest.fixture
def tracker(db_manager, clock):
    """BudgetTracker on the in-memory database with a fixed clock."""
    return BudgetTracker(db_manager, clock=clock)


def add_expense(db_manager, user_id, amount, when, category_id=None):
    return db_manager.add_transaction(
        user_id, Decimal(str(amount)), TransactionType.EXPENSE, when, category_id=category_id
    )


class TestMonthlyExpenses:
    """Tests for get_monthly_expenses."""

    def test_sums_only_current_month_expenses(self, db_manager, tracker, make_user):
        user = make_user()
        add_expense(db_manager, user.id, 100, datetime(2024, 3, 1, 0, 0))
        add_expense(db_manager, user.id, 50, datetime(2024, 3, 31, 23, 30))
        add_expense(db_manager, user.id, 999, datetime(2024, 2, 29, 23, 59))
        add_expense(db_manager, user.id, 999, datetime(2024, 4, 1, 0, 0))
        db_manager.add_transaction(user.id, Decimal("5000"), TransactionType.INCOME, datetime(2024, 3, 5))

        expenses = tracker.get_monthly_expenses(user.id)

        assert expenses.month == 3
        assert expenses.year == 2024
        assert expenses.total_expenses == Decimal("150")
        assert expenses.transaction_count == 2

    def test_explicit_month(self, db_manager, tracker, make_user):
        user = make_user()
        add_expense(db_manager, user.id, 75, datetime(2024, 2, 10))

        expenses = tracker.get_monthly_expenses(user.id, month=2, year=2024)

        assert expenses.total_expenses == Decimal("75")
        assert expenses.period_start == datetime(2024, 2, 1)
        assert expenses.period_end.date() == datetime(2024, 2, 29).date()

    @pytest.mark.parametrize("month", [0, 13, -1])
    def test_invalid_month_raises(self, tracker, month):
        with pytest.raises(BudgetError):
            tracker.get_monthly_expenses(1, month=month, year=2024)


class TestAlertLevel:
    """Tests for threshold evaluation."""

    @pytest.mark.parametrize("percentage, expected", [
        (Decimal("79.99"), AlertLevel.SAFE),
        (Decimal("80"), AlertLevel.WARNING),
        (Decimal("94.99"), AlertLevel.WARNING),
        (Decimal("95"), AlertLevel.CRITICAL),
        (Decimal("150"), AlertLevel.CRITICAL),
    ])
    def test_determine_alert_level(self, percentage, expected):
        level = BudgetTracker.determine_alert_level(percentage, Decimal("80"), Decimal("95"))
        assert level is expected

    def test_round_percentage_half_up(self):
        assert round_percentage(Decimal("0.00625")) == 0.01
        assert round_percentage(Decimal("100") / Decimal("300") * 100) == 33.33


class TestCheckBudgetStatus:
    """Tests for check_budget_status."""

    def test_warning_due_when_never_sent(self, db_manager, tracker, make_user):
        user = make_user()
        add_expense(db_manager, user.id, 850, datetime(2024, 3, 10))

        status = tracker.check_budget_status(user.id)

        assert status.budget_set is True
        assert status.spent == Decimal("850")
        assert status.remaining == Decimal("150")
        assert status.percentage_used == 85.0
        assert status.alert_level is AlertLevel.WARNING
        assert status.should_send_alert is True
        assert status.alert_type is AlertLevel.WARNING

    def test_critical_due_after_warning_sent_today(self, db_manager, tracker, make_user):
        user = make_user()
        add_expense(db_manager, user.id, 960, datetime(2024, 3, 10))
        db_manager.update_last_alert_sent(user.id, "warning", datetime(2024, 3, 15, 8, 0, tzinfo=UTC))

        status = tracker.check_budget_status(user.id)

        assert status.alert_level is AlertLevel.CRITICAL
        assert status.should_send_alert is True
        assert status.alert_type is AlertLevel.CRITICAL

    def test_alert_suppressed_when_sent_earlier_today(self, db_manager, tracker, make_user):
        user = make_user()
        add_expense(db_manager, user.id, 850, datetime(2024, 3, 10))
        db_manager.update_last_alert_sent(user.id, "warning", datetime(2024, 3, 15, 8, 0, tzinfo=UTC))

        status = tracker.check_budget_status(user.id)

        assert status.alert_level is AlertLevel.WARNING
        assert status.should_send_alert is False
        assert status.alert_type is None

    def test_alert_due_again_after_midnight(self, db_manager, clock, make_user):
        user = make_user()
        add_expense(db_manager, user.id, 850, datetime(2024, 3, 10))
        db_manager.update_last_alert_sent(user.id, "warning", datetime(2024, 3, 14, 23, 59, tzinfo=UTC))
        clock.now = datetime(2024, 3, 15, 0, 1, tzinfo=UTC)

        status = BudgetTracker(db_manager, clock=clock).check_budget_status(user.id)

        assert status.should_send_alert is True

    def test_calendar_day_uses_configured_timezone(self, db_manager, clock, make_user):
        user = make_user()
        add_expense(db_manager, user.id, 850, datetime(2024, 3, 10))
        # 11:00 and 23:00 on March 14th in New York
        db_manager.update_last_alert_sent(user.id, "warning", datetime(2024, 3, 14, 15, 0, tzinfo=UTC))
        clock.now = datetime(2024, 3, 15, 3, 0, tzinfo=UTC)

        ny_status = BudgetTracker(db_manager, clock=clock, timezone="America/New_York").check_budget_status(user.id)
        utc_status = BudgetTracker(db_manager, clock=clock).check_budget_status(user.id)

        assert ny_status.should_send_alert is False
        assert utc_status.should_send_alert is True

    def test_overspent_remaining_is_zero(self, db_manager, tracker, make_user):
        user = make_user()
        add_expense(db_manager, user.id, 1200, datetime(2024, 3, 10))

        status = tracker.check_budget_status(user.id)

        assert status.remaining == Decimal("0")
        assert status.percentage_used == 120.0
        assert status.alert_level is AlertLevel.CRITICAL

    def test_safe_below_warning(self, db_manager, tracker, make_user):
        user = make_user()
        add_expense(db_manager, user.id, 100, datetime(2024, 3, 10))

        status = tracker.check_budget_status(user.id)

        assert status.alert_level is AlertLevel.SAFE
        assert status.should_send_alert is False

    def test_no_budget_skips_transaction_query(self, clock):
        db = Mock(spec=DatabaseManager)
        db.get_user.return_value = SimpleNamespace(budget_amount=Decimal("0"))

        status = BudgetTracker(db, clock=clock).check_budget_status(1)

        assert status.budget_set is False
        assert status.message == "No monthly budget set"
        db.get_transactions.assert_not_called()

    def test_missing_user_raises(self, tracker):
        with pytest.raises(UserNotFoundError):
            tracker.check_budget_status(12345)

    def test_to_dict_uses_enum_values(self, db_manager, tracker, make_user):
        user = make_user()
        add_expense(db_manager, user.id, 960, datetime(2024, 3, 10))

        result = tracker.check_budget_status(user.id).to_dict()

        assert result["alert_level"] == "critical"
        assert result["alert_type"] == "critical"
        assert "monthly_data" not in result


class TestBudgetOverview:
    """Tests for the per-category breakdown."""

    def test_breakdown_sorted_with_uncategorized_bucket(self, db_manager, tracker, make_user):
        user = make_user()
        food = db_manager.add_category(user.id, "Food")
        rent = db_manager.add_category(user.id, "Rent")
        add_expense(db_manager, user.id, 100, datetime(2024, 3, 2), category_id=food.id)
        add_expense(db_manager, user.id, 500, datetime(2024, 3, 3), category_id=rent.id)
        add_expense(db_manager, user.id, 30, datetime(2024, 3, 4))
        add_expense(db_manager, user.id, 20, datetime(2024, 3, 5), category_id=9999)

        overview = tracker.get_budget_overview(user.id)
        breakdown = overview.category_breakdown

        assert [entry.category_name for entry in breakdown] == ["Rent", "Food", UNCATEGORIZED]
        uncategorized = breakdown[-1]
        assert uncategorized.category_id is None
        assert uncategorized.amount == Decimal("50")
        assert uncategorized.transaction_count == 2
        assert breakdown[0].percentage == pytest.approx(76.92)

    def test_blank_category_name_joins_uncategorized(self, db_manager, tracker, make_user):
        user = make_user()
        blank = db_manager.add_category(user.id, "")
        add_expense(db_manager, user.id, 30, datetime(2024, 3, 4), category_id=blank.id)
        add_expense(db_manager, user.id, 20, datetime(2024, 3, 5))

        breakdown = tracker.get_budget_overview(user.id).category_breakdown

        assert len(breakdown) == 1
        assert breakdown[0].category_name == UNCATEGORIZED
        assert breakdown[0].category_id is None
        assert breakdown[0].amount == Decimal("50")
        assert breakdown[0].transaction_count == 2

    def test_no_budget_has_empty_breakdown(self, tracker, make_user):
        user = make_user(budget=Decimal("0"))

        overview = tracker.get_budget_overview(user.id)

        assert overview.status.budget_set is False
        assert overview.category_breakdown == []


class TestUpdateLastAlertSent:
    """Tests for recording alert timestamps."""

    def test_records_clock_time(self, db_manager, tracker, clock, make_user):
        user = make_user()

        timestamp = tracker.update_last_alert_sent(user.id, AlertLevel.CRITICAL)

        assert timestamp == clock.now
        stored = db_manager.get_user(user.id)
        assert stored.last_critical_alert_sent.replace(tzinfo=UTC) == clock.now
        assert stored.last_warning_alert_sent is None

    def test_rejects_unknown_type(self, tracker, make_user):
        user = make_user()
        with pytest.raises(BudgetError):
            tracker.update_last_alert_sent(user.id, AlertLevel.SAFE)
