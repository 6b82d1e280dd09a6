"""
Email delivery for budget alerts and monthly reports.

Messages are built with the standard library email package and delivered
over SMTP using the settings in the ``email`` config section.
"""

import logging
import mimetypes
import smtplib
from datetime import datetime
from email.message import EmailMessage
from email.utils import make_msgid
from html import escape
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from exceptions import NotificationError

logger = logging.getLogger(__name__)

ALERT_STYLES = {
    "critical": {
        "title": "Critical Budget Alert",
        "message": "You have reached the critical spending threshold for this month",
        "color": "#dc2626",
    },
    "warning": {
        "title": "Budget Warning",
        "message": "You are approaching your monthly budget limit",
        "color": "#f59e0b",
    },
}


class EmailService:
    """
    Send budget alert and monthly report emails over SMTP.

    The SMTP client class is injectable so tests can substitute a mock.
    """

    def __init__(
        self,
        email_config: Optional[Dict[str, Any]] = None,
        smtp_factory: Callable[..., smtplib.SMTP] = smtplib.SMTP
    ):
        """
        Initialize the email service.

        Args:
            email_config: The ``email`` config section
            smtp_factory: Callable with the smtplib.SMTP signature
        """
        config = email_config or {}
        self.smtp_host = config.get("smtp_host", "localhost")
        self.smtp_port = int(config.get("smtp_port", 587))
        self.username = config.get("username")
        self.password = config.get("password")
        self.use_tls = bool(config.get("use_tls", True))
        self.timeout = config.get("timeout", 30)
        self.from_address = config.get("from_address", "noreply@budget-watch.local")
        self.app_url = config.get("app_url", "http://localhost:4200")
        self.smtp_factory = smtp_factory
        logger.info(
            "Email service configured for %s:%s (credentials %s)",
            self.smtp_host, self.smtp_port, "set" if self.username else "missing"
        )

    def _deliver(self, message: EmailMessage) -> str:
        """Send a message and return its Message-ID."""
        message_id = make_msgid(domain=self.from_address.split("@")[-1])
        message["Message-ID"] = message_id
        with self.smtp_factory(self.smtp_host, self.smtp_port, timeout=self.timeout) as smtp:
            if self.use_tls:
                smtp.starttls()
            if self.username and self.password:
                smtp.login(self.username, self.password)
            smtp.send_message(message)
        return message_id

    def _new_message(self, to_address: str, subject: str) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self.from_address
        message["To"] = to_address
        message["Subject"] = subject
        return message

    def send_budget_alert(self, email: str, name: str, alert_data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Send a budget alert email.

        Delivery is best effort: failures are logged and reported in the
        result, never raised.

        Args:
            email: Recipient address
            name: Recipient display name
            alert_data: Dict with alert_type, budget, spent, remaining,
                percentage_used and optionally currency

        Returns:
            {"success": True, "message_id": ...} or {"success": False, "error": ...}
        """
        alert_type = alert_data["alert_type"]
        style = ALERT_STYLES.get(alert_type, ALERT_STYLES["warning"])
        currency = alert_data.get("currency", "USD")
        percentage = float(alert_data["percentage_used"])

        try:
            message = self._new_message(email, f"{style['title']} - Budget Watch")
        except ValueError as e:
            logger.error("Invalid recipient for %s budget alert %r: %s", alert_type, email, e)
            return {"success": False, "error": str(e)}

        message.set_content(
            f"Hi {name},\n\n"
            f"{style['message']}.\n\n"
            f"Budget:     {alert_data['budget']:,.2f} {currency}\n"
            f"Spent:      {alert_data['spent']:,.2f} {currency}\n"
            f"Remaining:  {alert_data['remaining']:,.2f} {currency}\n"
            f"Used:       {percentage:.1f}%\n\n"
            f"Review your spending: {self.app_url}/dashboard\n"
        )
        message.add_alternative(
            f"""<html><body style="font-family: sans-serif;">
<div style="background-color: {style['color']}; color: white; padding: 24px; text-align: center;">
  <h1 style="margin: 0;">{style['title']}</h1>
</div>
<div style="padding: 24px;">
  <p>Hi {escape(name)},</p>
  <p>{style['message']}. Here's your current spending summary:</p>
  <table>
    <tr><td>Budget</td><td>{alert_data['budget']:,.2f} {currency}</td></tr>
    <tr><td>Spent</td><td>{alert_data['spent']:,.2f} {currency}</td></tr>
    <tr><td>Remaining</td><td>{alert_data['remaining']:,.2f} {currency}</td></tr>
  </table>
  <div style="background: #e5e7eb; height: 12px; border-radius: 6px;">
    <div style="background: {style['color']}; width: {min(percentage, 100):.0f}%; height: 12px; border-radius: 6px;"></div>
  </div>
  <p>{percentage:.1f}% of your monthly budget used.</p>
  <p><a href="{self.app_url}/dashboard">Review your spending</a></p>
</div>
</body></html>""",
            subtype="html",
        )

        try:
            message_id = self._deliver(message)
            logger.info("Sent %s budget alert to %s (%s)", alert_type, email, message_id)
            return {"success": True, "message_id": message_id}
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Failed to send %s budget alert to %s: %s", alert_type, email, e)
            return {"success": False, "error": str(e)}

    def send_monthly_report(
        self,
        email: str,
        name: str,
        report_data,
        attachment_path: Optional[Path] = None
    ) -> str:
        """
        Send the monthly report email, optionally with the rendered report attached.

        Args:
            email: Recipient address
            name: Recipient display name
            report_data: ReportData for the month
            attachment_path: Rendered report file, or None for the summary-only email

        Returns:
            The Message-ID of the sent email

        Raises:
            NotificationError: If the recipient is invalid, the attachment cannot be
                read or SMTP delivery fails
        """
        top_lines = "\n".join(
            f"  {rank}. {category}: {amount:,.2f}"
            for rank, (category, amount) in enumerate(report_data.top_categories, start=1)
        ) or "  (no expenses)"
        outcome = "saved" if report_data.net_savings >= 0 else "overspent by"

        try:
            message = self._new_message(email, f"Your {report_data.month} Financial Report - Budget Watch")
            message.set_content(
                f"Hi {name},\n\n"
                f"Here is your financial summary for {report_data.month}.\n\n"
                f"Total income:    {report_data.total_income:,.2f}\n"
                f"Total expenses:  {report_data.total_expenses:,.2f}\n"
                f"You {outcome} {abs(report_data.net_savings):,.2f} "
                f"({report_data.savings_rate:.1f}% savings rate) across "
                f"{report_data.transaction_count} transactions.\n\n"
                f"Top spending categories:\n{top_lines}\n\n"
                f"{'The full report is attached.' if attachment_path else ''}\n"
                f"Generated {datetime.now():%Y-%m-%d}\n"
            )
            if attachment_path:
                path = Path(attachment_path)
                mime_type, _ = mimetypes.guess_type(path.name)
                maintype, subtype = (mime_type or "application/octet-stream").split("/", 1)
                message.add_attachment(
                    path.read_bytes(),
                    maintype=maintype,
                    subtype=subtype,
                    filename=f"Monthly-Report-{report_data.month.replace(' ', '-')}{path.suffix}",
                )
            message_id = self._deliver(message)
        except (smtplib.SMTPException, OSError, ValueError) as e:
            logger.error("Error sending monthly report to %r: %s", email, e)
            raise NotificationError(
                "Failed to send monthly report",
                details={"email": email, "month": report_data.month},
                original_error=e
            ) from e

        logger.info(
            "Monthly report for %s sent to %s with %d attachment(s)",
            report_data.month, email, 1 if attachment_path else 0
        )
        return message_id
