"""
Monthly report aggregation and delivery.

This module reduces a user's transactions for one calendar month into the
figures shown in the monthly financial report, and runs the end-of-month
batch that renders and emails those reports.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from database_ops import DatabaseManager, ReportFormat, TransactionType, utc_now
from email_service import EmailService
from exceptions import UserNotFoundError
from report_generator import ReportGenerator
from utils import ensure_utc, get_month_period, get_timezone, month_label, previous_month, shift_months

logger = logging.getLogger(__name__)

TOP_CATEGORY_COUNT = 3
OTHER_CATEGORY = "Other"


@dataclass
class ReportData:
    """
    Figures for one user's monthly report.

    When ``has_data`` is False the month had no transactions and every
    total is zero.
    """
    has_data: bool
    month: str
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None
    total_income: Decimal = Decimal("0")
    total_expenses: Decimal = Decimal("0")
    net_savings: Decimal = Decimal("0")
    transaction_count: int = 0
    top_categories: List[Tuple[str, Decimal]] = field(default_factory=list)

    @property
    def savings_rate(self) -> float:
        """Net savings as a percentage of income (income of 0 treated as 1)."""
        return float(self.net_savings / (self.total_income or 1) * 100)

    @property
    def expense_ratio(self) -> float:
        """Expenses as a percentage of income (income of 0 treated as 1)."""
        return float(self.total_expenses / (self.total_income or 1) * 100)

    @property
    def average_transaction(self) -> float:
        """Average expense per transaction in the month."""
        if not self.transaction_count:
            return 0.0
        return float(self.total_expenses / self.transaction_count)

    def category_share(self, amount: Decimal) -> float:
        """Share of total expenses taken by ``amount``, as a percentage."""
        if not self.total_expenses:
            return 0.0
        return float(Decimal(amount) / self.total_expenses * 100)


class MonthlyReportService:
    """
    Aggregate monthly report figures and deliver reports by email.
    """

    def __init__(
        self,
        db_manager: DatabaseManager,
        report_generator: Optional[ReportGenerator] = None,
        email_service: Optional[EmailService] = None,
        clock: Optional[Callable[[], datetime]] = None,
        timezone: str = "UTC",
        default_format: ReportFormat = ReportFormat.EXCEL
    ):
        """
        Initialize the report service.

        Args:
            db_manager: DatabaseManager instance
            report_generator: Renderer for spreadsheet/PDF attachments
            email_service: Delivery for the report emails
            clock: Callable returning the current aware datetime (default: UTC now)
            timezone: IANA timezone that defines "previous month"
            default_format: Attachment format for users without a preference
        """
        self.db_manager = db_manager
        self.report_generator = report_generator or ReportGenerator()
        self.email_service = email_service or EmailService()
        self.clock = clock or utc_now
        self.tz = get_timezone(timezone)
        self.default_format = ReportFormat(default_format)
        logger.info("Monthly report service initialized")

    def today(self) -> date:
        """Today's calendar date in the service's timezone."""
        return ensure_utc(self.clock()).astimezone(self.tz).date()

    def get_user_report_data(self, user_id: int, target_date: Optional[date] = None) -> ReportData:
        """
        Compute report figures for one month.

        Args:
            user_id: User ID
            target_date: Any date within the month to report on; defaults to
                the previous calendar month

        Returns:
            ReportData; has_data is False when the month has no transactions

        Raises:
            DatabaseError: If a query fails
        """
        report_month = target_date.replace(day=1) if target_date else previous_month(self.today())
        label = month_label(report_month)
        period_start, period_end = get_month_period(report_month.year, report_month.month)

        transactions = self.db_manager.get_transactions(user_id, period_start, period_end)
        logger.info(
            "Found %d transactions for user %s in %s", len(transactions), user_id, label
        )
        if not transactions:
            return ReportData(has_data=False, month=label, period_start=period_start, period_end=period_end)

        total_income = Decimal("0")
        total_expenses = Decimal("0")
        for transaction in transactions:
            if transaction.type == TransactionType.INCOME:
                total_income += Decimal(transaction.amount)
            else:
                total_expenses += Decimal(transaction.amount)

        category_names = self.db_manager.get_category_map(user_id)
        category_spending: Dict[str, Decimal] = {}
        for transaction in transactions:
            if transaction.type != TransactionType.EXPENSE:
                continue
            name = category_names.get(transaction.category_id, OTHER_CATEGORY)
            category_spending[name] = category_spending.get(name, Decimal("0")) + Decimal(transaction.amount)

        # sorted() is stable: equal totals keep first-encountered order
        top_categories = sorted(
            category_spending.items(), key=lambda item: item[1], reverse=True
        )[:TOP_CATEGORY_COUNT]

        return ReportData(
            has_data=True,
            month=label,
            period_start=period_start,
            period_end=period_end,
            total_income=total_income,
            total_expenses=total_expenses,
            net_savings=total_income - total_expenses,
            transaction_count=len(transactions),
            top_categories=top_categories,
        )

    def list_monthly_reports(self, user_id: int, months: int = 12) -> List[ReportData]:
        """
        Report data for the current month and the ``months - 1`` before it.

        Months without transactions are omitted; newest first.
        """
        today = self.today()
        reports = []
        for offset in range(months):
            report = self.get_user_report_data(user_id, shift_months(today, offset))
            if report.has_data:
                reports.append(report)
        return reports

    def _send_report(self, user, report_data: ReportData) -> Dict[str, Any]:
        """Render the user's report, email it, and clean up the temp file."""
        report_format = user.report_format or self.default_format
        file_path: Optional[Path] = None
        try:
            file_path, _ = self.report_generator.render(report_data, report_format)
            logger.info("Sending %s report to %s", report_format.value, user.email)
            self.email_service.send_monthly_report(user.email, user.name, report_data, file_path)
            return {"success": True, "report_sent": True, "format": report_format.value}
        finally:
            if file_path is not None and file_path.exists():
                file_path.unlink()

    def generate_monthly_reports(self) -> Dict[str, Any]:
        """
        Send last month's report to every user opted into monthly reports.

        A failure for one user never stops the batch. If rendering or
        delivery fails, a fallback email without the attachment is tried.

        Returns:
            Summary dictionary with counts and per-user details
        """
        users = self.db_manager.get_users_for_monthly_reports()
        logger.info("Found %d users with monthly reports enabled", len(users))

        results: Dict[str, Any] = {
            "total_users": len(users),
            "reports_sent": 0,
            "fallbacks_sent": 0,
            "skipped": 0,
            "errors": 0,
            "details": [],
        }

        for user in users:
            detail: Dict[str, Any] = {"user_id": user.id, "email": user.email}
            try:
                report_data = self.get_user_report_data(user.id)
            except Exception as e:
                logger.error("Failed to compute report data for %s: %s", user.email, e, exc_info=True)
                results["errors"] += 1
                results["details"].append({**detail, "success": False, "error": str(e)})
                continue

            if not report_data.has_data:
                logger.info("No data available for %s, skipping", user.email)
                results["skipped"] += 1
                results["details"].append({**detail, "success": True, "report_sent": False, "reason": "No data"})
                continue

            try:
                outcome = self._send_report(user, report_data)
                results["reports_sent"] += 1
                results["details"].append({**detail, **outcome})
                continue
            except Exception as e:
                logger.error("Error generating report for %s: %s", user.email, e, exc_info=True)
                detail["error"] = str(e)

            try:
                self.email_service.send_monthly_report(user.email, user.name, report_data)
                logger.info("Fallback email sent to %s", user.email)
                results["fallbacks_sent"] += 1
                results["details"].append({**detail, "success": True, "report_sent": False, "fallback_sent": True})
            except Exception as e:
                logger.error("Failed to send fallback email to %s: %s", user.email, e, exc_info=True)
                results["errors"] += 1
                results["details"].append(
                    {**detail, "success": False, "fallback_sent": False, "fallback_error": str(e)}
                )

        logger.info(
            "Monthly reports complete: %d sent, %d fallbacks, %d skipped, %d errors",
            results["reports_sent"], results["fallbacks_sent"], results["skipped"], results["errors"]
        )
        return results

    def get_report_for_user(self, user_id: int, target_date: Optional[date] = None) -> Tuple[Any, ReportData]:
        """
        Look up a user and their report data together.

        Raises:
            UserNotFoundError: If the user does not exist
        """
        user = self.db_manager.get_user(user_id)
        if user is None:
            raise UserNotFoundError("User not found", details={"user_id": user_id})
        return user, self.get_user_report_data(user_id, target_date)
