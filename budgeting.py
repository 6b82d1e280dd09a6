"""
Budgeting module for monthly budget tracking.

This module computes how much of a user's monthly budget has been spent,
which alert level that corresponds to, and whether an alert email for that
level is still due today.
"""

import enum
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple

from database_ops import ALERT_TYPES, DatabaseManager, Transaction, TransactionType, utc_now
from exceptions import BudgetError, UserNotFoundError
from utils import ensure_utc, get_month_period, get_timezone

# Configure logging
logger = logging.getLogger(__name__)

UNCATEGORIZED = "Uncategorized"


class AlertLevel(enum.Enum):
    """Budget health derived from the percentage of budget spent."""
    SAFE = "safe"
    WARNING = "warning"
    CRITICAL = "critical"


def round_percentage(value: Decimal) -> float:
    """Round a percentage to two decimal places."""
    return float(Decimal(value).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


@dataclass
class MonthlyExpenses:
    """
    Expense totals for one calendar month.

    Attributes:
        month: Month number (1-12)
        year: Four-digit year
        total_expenses: Sum of expense amounts in the period
        transaction_count: Number of expense transactions
        transactions: The matching transactions
        period_start: First instant of the month
        period_end: Last instant of the month
    """
    month: int
    year: int
    total_expenses: Decimal
    transaction_count: int
    transactions: List[Transaction]
    period_start: datetime
    period_end: datetime


@dataclass
class CategorySpending:
    """Spending for a single category within a month."""
    category_id: Optional[int]
    category_name: str
    amount: Decimal
    percentage: float
    transaction_count: int


@dataclass
class BudgetStatus:
    """
    Status of a user's monthly budget.

    Computed fresh on every call and never persisted. When ``budget_set`` is
    False only ``message`` is meaningful.
    """
    budget_set: bool
    message: str = ""
    budget: Decimal = Decimal("0")
    spent: Decimal = Decimal("0")
    remaining: Decimal = Decimal("0")
    percentage_used: float = 0.0
    alert_level: AlertLevel = AlertLevel.SAFE
    should_send_alert: bool = False
    alert_type: Optional[AlertLevel] = None
    thresholds: Dict[str, Decimal] = field(default_factory=dict)
    monthly_data: Optional[MonthlyExpenses] = None
    currency: str = "USD"

    def to_dict(self) -> Dict[str, Any]:
        """Plain dictionary view (enums as their values, no transaction objects)."""
        if not self.budget_set:
            return {"budget_set": False, "message": self.message}
        return {
            "budget_set": True,
            "budget": self.budget,
            "spent": self.spent,
            "remaining": self.remaining,
            "percentage_used": self.percentage_used,
            "alert_level": self.alert_level.value,
            "should_send_alert": self.should_send_alert,
            "alert_type": self.alert_type.value if self.alert_type else None,
            "thresholds": dict(self.thresholds),
            "currency": self.currency,
        }


@dataclass
class BudgetOverview:
    """Budget status plus a per-category breakdown of the month's spending."""
    status: BudgetStatus
    category_breakdown: List[CategorySpending] = field(default_factory=list)


class BudgetTracker:
    """
    Tracks monthly spending against a user's budget.

    The tracker is stateless between calls: every operation reads a fresh
    snapshot through the injected DatabaseManager.
    """

    def __init__(
        self,
        db_manager: DatabaseManager,
        clock: Optional[Callable[[], datetime]] = None,
        timezone: str = "UTC"
    ):
        """
        Initialize the budget tracker.

        Args:
            db_manager: DatabaseManager instance
            clock: Callable returning the current aware datetime (default: UTC now)
            timezone: IANA timezone that defines "today" and "this month"
        """
        self.db_manager = db_manager
        self.clock = clock or utc_now
        self.tz = get_timezone(timezone)
        logger.info("Budget tracker initialized (timezone=%s)", self.tz.key)

    def now(self) -> datetime:
        """Current time in the tracker's timezone."""
        return ensure_utc(self.clock()).astimezone(self.tz)

    def today(self) -> date:
        """Today's calendar date in the tracker's timezone."""
        return self.now().date()

    def get_monthly_expenses(
        self,
        user_id: int,
        month: Optional[int] = None,
        year: Optional[int] = None
    ) -> MonthlyExpenses:
        """
        Calculate total expenses for a user in a calendar month.

        Args:
            user_id: User ID
            month: Month (1-12); defaults to the current month
            year: Year; defaults to the current year

        Returns:
            MonthlyExpenses for the period

        Raises:
            BudgetError: If month is out of range
            DatabaseError: If the transaction query fails
        """
        today = self.today()
        target_month = month if month is not None else today.month
        target_year = year if year is not None else today.year
        if not 1 <= target_month <= 12:
            raise BudgetError("Month must be between 1 and 12", details={"month": target_month})

        period_start, period_end = get_month_period(target_year, target_month)
        logger.debug(
            "Calculating expenses for user %s, %02d/%d (%s - %s)",
            user_id, target_month, target_year, period_start.date(), period_end.date()
        )

        transactions = self.db_manager.get_transactions(
            user_id,
            period_start,
            period_end,
            transaction_type=TransactionType.EXPENSE
        )
        total = sum((Decimal(t.amount) for t in transactions), Decimal("0"))

        logger.info(
            "Monthly expenses for user %s: %s (%d transactions)",
            user_id, total, len(transactions)
        )
        return MonthlyExpenses(
            month=target_month,
            year=target_year,
            total_expenses=total,
            transaction_count=len(transactions),
            transactions=transactions,
            period_start=period_start,
            period_end=period_end,
        )

    def _is_new_day(self, last_alert: Optional[datetime]) -> bool:
        """True if no alert was sent yet on today's calendar date."""
        if last_alert is None:
            return True
        return ensure_utc(last_alert).astimezone(self.tz).date() != self.today()

    @staticmethod
    def determine_alert_level(
        percentage: Decimal,
        warning_threshold: Decimal,
        critical_threshold: Decimal
    ) -> AlertLevel:
        """
        Map a percentage of budget used to an alert level.

        Thresholds are evaluated highest first, so a percentage above both
        yields CRITICAL.
        """
        if percentage >= critical_threshold:
            return AlertLevel.CRITICAL
        if percentage >= warning_threshold:
            return AlertLevel.WARNING
        return AlertLevel.SAFE

    def check_budget_status(self, user_id: int) -> BudgetStatus:
        """
        Check how much of the monthly budget is used and whether to alert.

        Args:
            user_id: User ID

        Returns:
            BudgetStatus; budget_set is False when the user has no budget

        Raises:
            UserNotFoundError: If the user does not exist
            DatabaseError: If a query fails
        """
        logger.debug("Checking budget status for user %s", user_id)
        user = self.db_manager.get_user(user_id)
        if user is None:
            raise UserNotFoundError("User not found", details={"user_id": user_id})

        budget = Decimal(user.budget_amount or 0)
        if budget == 0:
            logger.info("No monthly budget set for user %s", user_id)
            return BudgetStatus(budget_set=False, message="No monthly budget set")

        monthly_data = self.get_monthly_expenses(user_id)
        spent = monthly_data.total_expenses
        percentage = spent / budget * 100

        warning_threshold = Decimal(user.warning_threshold)
        critical_threshold = Decimal(user.critical_threshold)
        alert_level = self.determine_alert_level(percentage, warning_threshold, critical_threshold)

        should_send_alert = False
        alert_type = None
        if alert_level is not AlertLevel.SAFE:
            # Only the selected level's history matters; a warning sent
            # earlier today does not hold back a critical alert.
            if self._is_new_day(user.last_alert_sent(alert_level.value)):
                should_send_alert = True
                alert_type = alert_level

        status = BudgetStatus(
            budget_set=True,
            budget=budget,
            spent=spent,
            remaining=max(Decimal("0"), budget - spent),
            percentage_used=round_percentage(percentage),
            alert_level=alert_level,
            should_send_alert=should_send_alert,
            alert_type=alert_type,
            thresholds={"warning": warning_threshold, "critical": critical_threshold},
            monthly_data=monthly_data,
            currency=user.budget_currency,
        )

        logger.info(
            "Budget status for user %s: %.1f%% used (%s), spent %s of %s",
            user_id, status.percentage_used, alert_level.value, spent, budget
        )
        return status

    def get_budget_overview(self, user_id: int) -> BudgetOverview:
        """
        Budget status plus spending grouped by category for the current month.

        Args:
            user_id: User ID

        Returns:
            BudgetOverview; the breakdown is empty when no budget is set
        """
        status = self.check_budget_status(user_id)
        if not status.budget_set:
            return BudgetOverview(status=status)

        category_names = self.db_manager.get_category_map(user_id)
        grouped: Dict[Optional[int], Tuple[Decimal, int]] = {}
        for transaction in status.monthly_data.transactions:
            key = transaction.category_id if category_names.get(transaction.category_id) else None
            amount, count = grouped.get(key, (Decimal("0"), 0))
            grouped[key] = (amount + Decimal(transaction.amount), count + 1)

        breakdown = [
            CategorySpending(
                category_id=category_id,
                category_name=category_names.get(category_id) or UNCATEGORIZED,
                amount=amount,
                percentage=round_percentage(amount / status.spent * 100),
                transaction_count=count,
            )
            for category_id, (amount, count) in grouped.items()
        ]
        breakdown.sort(key=lambda entry: entry.amount, reverse=True)

        return BudgetOverview(status=status, category_breakdown=breakdown)

    def update_last_alert_sent(self, user_id: int, alert_type) -> datetime:
        """
        Record that an alert of ``alert_type`` was sent now.

        Args:
            user_id: User ID
            alert_type: AlertLevel.WARNING/CRITICAL or 'warning'/'critical'

        Returns:
            The timestamp written

        Raises:
            BudgetError: If alert_type is not warning or critical
        """
        value = alert_type.value if isinstance(alert_type, AlertLevel) else alert_type
        if value not in ALERT_TYPES:
            raise BudgetError("Unknown alert type", details={"alert_type": value})

        timestamp = ensure_utc(self.clock())
        self.db_manager.update_last_alert_sent(user_id, value, timestamp)
        logger.info("Updated last %s alert timestamp for user %s", value, user_id)
        return timestamp
