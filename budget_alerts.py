"""
Budget alert dispatch.

Checks a user's budget status and, when an alert is due, emails it, records
the send time so the same alert is not repeated today, and leaves an in-app
notification. Also runs the same check for every user with alerts enabled.
"""

import logging
import time
from typing import Any, Dict, Optional

from budgeting import AlertLevel, BudgetTracker
from database_ops import DatabaseManager, NotificationType
from email_service import EmailService
from exceptions import BudgetWatchError, UserNotFoundError

logger = logging.getLogger(__name__)

DEFAULT_DELAY_SECONDS = 1.0

NOTIFICATIONS = {
    AlertLevel.CRITICAL: (
        "Critical Budget Alert",
        "You have reached the critical spending threshold for this month.",
        NotificationType.ERROR,
    ),
    AlertLevel.WARNING: (
        "Budget Warning",
        "You are approaching your monthly budget limit.",
        NotificationType.WARNING,
    ),
}


class BudgetAlertService:
    """
    Send budget alert emails for one user or for all users.
    """

    def __init__(
        self,
        db_manager: DatabaseManager,
        tracker: BudgetTracker,
        email_service: EmailService,
        delay_seconds: float = DEFAULT_DELAY_SECONDS
    ):
        """
        Initialize the alert service.

        Args:
            db_manager: DatabaseManager instance
            tracker: BudgetTracker sharing the same database manager
            email_service: Delivery for the alert emails
            delay_seconds: Pause between users in the batch check
        """
        self.db_manager = db_manager
        self.tracker = tracker
        self.email_service = email_service
        self.delay_seconds = delay_seconds
        logger.info("Budget alert service initialized")

    def _create_notification(self, user_id: int, alert_type: AlertLevel) -> None:
        """Mirror the alert as an in-app notification; failures are only logged."""
        title, message, notification_type = NOTIFICATIONS[alert_type]
        try:
            self.db_manager.create_notification(user_id, title, message, notification_type)
        except BudgetWatchError as e:
            logger.warning("Alert sent but notification for user %s was not saved: %s", user_id, e)

    def check_and_send_budget_alert(self, user_id: int) -> Dict[str, Any]:
        """
        Check one user's budget and send an alert if one is due.

        The last-sent timestamp is only written after the email went out, so
        a failed send is retried on the next check.

        Args:
            user_id: User ID

        Returns:
            Result dictionary with success and alert_sent flags
        """
        try:
            user = self.db_manager.get_user(user_id)
            if user is None:
                raise UserNotFoundError("User not found", details={"user_id": user_id})

            if not user.budget_alerts:
                logger.info("Budget alerts disabled for user %s", user_id)
                return {"success": True, "alert_sent": False, "reason": "Budget alerts disabled"}

            status = self.tracker.check_budget_status(user_id)
            if not status.budget_set:
                return {"success": True, "alert_sent": False, "reason": "No budget set"}

            if not status.should_send_alert:
                logger.info("No alert needed for user %s. Status: %s", user_id, status.alert_level.value)
                return {
                    "success": True,
                    "alert_sent": False,
                    "reason": (
                        f"Budget status: {status.alert_level.value}, no alert threshold reached "
                        "or alert already sent today"
                    ),
                }

            alert_data = {
                "alert_type": status.alert_type.value,
                "budget": status.budget,
                "spent": status.spent,
                "remaining": status.remaining,
                "percentage_used": status.percentage_used,
                "currency": status.currency,
            }
            logger.info("Sending %s budget alert to %s", status.alert_type.value, user.email)
            email_result = self.email_service.send_budget_alert(user.email, user.name, alert_data)

            if not email_result.get("success"):
                logger.error("Failed to send budget alert email to %s", user.email)
                return {
                    "success": False,
                    "alert_sent": False,
                    "error": "Failed to send email",
                    "email_error": email_result.get("error"),
                }

            self.tracker.update_last_alert_sent(user_id, status.alert_type)
            self._create_notification(user_id, status.alert_type)

            return {
                "success": True,
                "alert_sent": True,
                "alert_type": status.alert_type.value,
                "email_result": email_result,
                "budget_status": status.to_dict(),
            }
        except Exception as e:
            logger.error("Error in budget alert check for user %s: %s", user_id, e, exc_info=True)
            return {"success": False, "alert_sent": False, "error": str(e)}

    def check_all_user_budgets(self, delay_seconds: Optional[float] = None) -> Dict[str, Any]:
        """
        Run the alert check for every user with a budget and alerts enabled.

        Users are processed one at a time with a fixed pause between them to
        stay under the mail server's rate limits.

        Args:
            delay_seconds: Override of the configured pause

        Returns:
            Summary with alerts_sent, warnings, critical, errors and details
        """
        delay = self.delay_seconds if delay_seconds is None else delay_seconds
        users = self.db_manager.get_users_with_budget_alerts()
        logger.info("Found %d users with budget alerts enabled", len(users))

        results: Dict[str, Any] = {
            "total_users": len(users),
            "alerts_sent": 0,
            "warnings": 0,
            "critical": 0,
            "errors": 0,
            "details": [],
        }

        for index, user in enumerate(users):
            detail = {"user_id": user.id, "user_name": user.name, "email": user.email}
            try:
                result = self.check_and_send_budget_alert(user.id)
            except Exception as e:
                logger.error("Error checking budget for user %s: %s", user.id, e, exc_info=True)
                results["errors"] += 1
                results["details"].append({**detail, "success": False, "error": str(e)})
                continue

            results["details"].append({**detail, **result})
            if result.get("alert_sent"):
                results["alerts_sent"] += 1
                if result.get("alert_type") == AlertLevel.WARNING.value:
                    results["warnings"] += 1
                elif result.get("alert_type") == AlertLevel.CRITICAL.value:
                    results["critical"] += 1
            if not result.get("success"):
                results["errors"] += 1

            if delay > 0 and index < len(users) - 1:
                time.sleep(delay)

        logger.info(
            "Budget alert check complete: %d sent (%d warning, %d critical), %d errors",
            results["alerts_sent"], results["warnings"], results["critical"], results["errors"]
        )
        return results

    def get_budget_alert_summary(self, user_id: int) -> Dict[str, Any]:
        """
        Current alert state for one user.

        Raises:
            UserNotFoundError: If the user does not exist
        """
        status = self.tracker.check_budget_status(user_id)
        if not status.budget_set:
            return {"budget_set": False, "alerts_enabled": False, "current_status": "no_budget"}

        user = self.db_manager.get_user(user_id)
        return {
            "budget_set": True,
            "alerts_enabled": bool(user.budget_alerts),
            "current_status": status.alert_level.value,
            "percentage_used": status.percentage_used,
            "should_send_alert": status.should_send_alert,
            "last_alerts": {
                "warning": user.last_warning_alert_sent,
                "critical": user.last_critical_alert_sent,
            },
            "thresholds": status.thresholds,
        }
