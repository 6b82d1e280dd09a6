"""
Command-line entry point for budget-watch.

Wires configuration, logging and the database handle into the budget
tracker, alert service and monthly report service, and exposes them as
subcommands. The batch commands ('alerts check' and 'reports generate')
are meant to be run from cron.
"""

import argparse
import logging
import logging.handlers
import sys
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, Optional

from tabulate import tabulate

from budget_alerts import BudgetAlertService
from budgeting import BudgetTracker
from config_manager import get_section, load_config
from database_ops import DatabaseManager
from email_service import EmailService
from exceptions import BudgetWatchError, ConfigError
from monthly_reports import MonthlyReportService
from report_generator import ReportGenerator
from utils import ensure_data_dir, resolve_connection_string, resolve_log_path, resolve_project_path

# Configure module-level logger
logger = logging.getLogger(__name__)

DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(config: dict) -> None:
    """
    Configure the root logger based on config settings.

    Console logging is always enabled. A log file and a critical-error
    SMTP handler are added when configured; problems with either are
    reported as warnings and do not stop start-up.

    Args:
        config: Configuration dictionary with logging settings
    """
    log_config = config.get("logging") or {}
    level_name = str(log_config.get("level") or "INFO").upper()
    log_level = getattr(logging, level_name, None)
    invalid_level = not isinstance(log_level, int)
    if invalid_level:
        log_level = logging.INFO

    log_format = log_config.get("format") or DEFAULT_LOG_FORMAT
    if "%(asctime)s" not in log_format:
        log_format = "%(asctime)s - " + log_format
    formatter = logging.Formatter(log_format)

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
    root.setLevel(log_level)

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(formatter)
    root.addHandler(console)

    if invalid_level:
        logger.warning("Invalid log level '%s'; using INFO", level_name)

    log_file = log_config.get("file")
    if log_file:
        try:
            file_handler = logging.FileHandler(resolve_log_path(log_file))
            file_handler.setFormatter(formatter)
            root.addHandler(file_handler)
        except OSError as exc:
            logger.warning("Unable to open log file '%s': %s", log_file, exc)

    alert_config = config.get("email_alerts") or {}
    if alert_config.get("enabled"):
        missing = [key for key in ("smtp_host", "from_address", "to_addresses") if not alert_config.get(key)]
        if missing:
            logger.warning("Email alerts enabled but missing settings: %s", ", ".join(missing))
            return
        try:
            credentials = None
            if alert_config.get("username"):
                credentials = (alert_config["username"], alert_config.get("password", ""))
            smtp_handler = logging.handlers.SMTPHandler(
                mailhost=(alert_config["smtp_host"], int(alert_config.get("smtp_port", 587))),
                fromaddr=alert_config["from_address"],
                toaddrs=list(alert_config["to_addresses"]),
                subject=alert_config.get("subject", "budget-watch error"),
                credentials=credentials,
                secure=() if alert_config.get("use_tls") else None,
            )
            smtp_handler.setLevel(
                getattr(logging, str(alert_config.get("level", "CRITICAL")).upper(), logging.CRITICAL)
            )
            smtp_handler.setFormatter(formatter)
            root.addHandler(smtp_handler)
        except (TypeError, ValueError) as exc:
            logger.warning("Failed to configure email alerts: %s", exc)


def build_services(config: Dict[str, Any], db_manager: DatabaseManager) -> Dict[str, Any]:
    """
    Construct the services around one database handle.

    Returns:
        Dictionary with 'tracker', 'alerts' and 'reports' entries
    """
    alerts_config = get_section(config, "alerts")
    reports_config = get_section(config, "reports")
    timezone = alerts_config.get("timezone") or "UTC"

    email_service = EmailService(get_section(config, "email"))
    tracker = BudgetTracker(db_manager, timezone=timezone)
    alert_service = BudgetAlertService(
        db_manager,
        tracker,
        email_service,
        delay_seconds=float(alerts_config.get("delay_seconds", 1.0)),
    )
    report_service = MonthlyReportService(
        db_manager,
        report_generator=ReportGenerator(resolve_project_path(reports_config["temp_dir"])),
        email_service=email_service,
        timezone=timezone,
        default_format=reports_config.get("default_format") or "excel",
    )
    return {"tracker": tracker, "alerts": alert_service, "reports": report_service}


def parse_month(value: Optional[str]) -> Optional[date]:
    """Parse a YYYY-MM argument into the first day of that month."""
    if not value:
        return None
    try:
        return datetime.strptime(value, "%Y-%m").date()
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid month '{value}', expected YYYY-MM")


def _decimal(value: str) -> Decimal:
    try:
        return Decimal(value)
    except InvalidOperation:
        raise argparse.ArgumentTypeError(f"Invalid amount '{value}'")


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with all subcommands."""
    parser = argparse.ArgumentParser(
        description="Monthly budget tracking, alerts and financial reports",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument(
        "--config",
        "-c",
        type=str,
        default="config.yaml",
        help="Path to configuration file (default: config.yaml)"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("init-db", help="Create database tables")

    # Budget command
    budget_parser = subparsers.add_parser("budget", aliases=["bud"], help="Monthly budget status and settings")
    budget_subparsers = budget_parser.add_subparsers(dest="budget_action", help="Budget actions")

    bud_set = budget_subparsers.add_parser("set", help="Configure a user's monthly budget")
    bud_set.add_argument("--user", type=int, required=True, help="User ID")
    bud_set.add_argument("--amount", type=_decimal, help="Monthly budget amount (0 clears it)")
    bud_set.add_argument("--currency", type=str, help="Currency code, e.g. USD")
    bud_set.add_argument("--warning", type=_decimal, help="Warning threshold (percent)")
    bud_set.add_argument("--critical", type=_decimal, help="Critical threshold (percent)")

    bud_status = budget_subparsers.add_parser("status", help="Show this month's budget status")
    bud_status.add_argument("--user", type=int, required=True, help="User ID")

    bud_overview = budget_subparsers.add_parser("overview", help="Show budget status with category breakdown")
    bud_overview.add_argument("--user", type=int, required=True, help="User ID")

    # Alerts command
    alerts_parser = subparsers.add_parser("alerts", help="Budget alert emails")
    alerts_subparsers = alerts_parser.add_subparsers(dest="alerts_action", help="Alert actions")

    alerts_check = alerts_subparsers.add_parser("check", help="Send due alerts (one user or all)")
    alerts_check.add_argument("--user", type=int, help="Only check this user")
    alerts_check.add_argument("--delay", type=float, help="Seconds to wait between users")

    alerts_summary = alerts_subparsers.add_parser("summary", help="Show a user's alert state")
    alerts_summary.add_argument("--user", type=int, required=True, help="User ID")

    # Reports command
    reports_parser = subparsers.add_parser("reports", aliases=["report"], help="Monthly financial reports")
    reports_subparsers = reports_parser.add_subparsers(dest="reports_action", help="Report actions")

    rep_show = reports_subparsers.add_parser("show", help="Print a monthly report")
    rep_show.add_argument("--user", type=int, required=True, help="User ID")
    rep_show.add_argument("--month", type=parse_month, help="Month (YYYY-MM, default: previous month)")

    rep_list = reports_subparsers.add_parser("list", help="List months with report data")
    rep_list.add_argument("--user", type=int, required=True, help="User ID")
    rep_list.add_argument("--months", type=int, default=12, help="How many months back (default: 12)")

    rep_export = reports_subparsers.add_parser("export", help="Render a report to a file")
    rep_export.add_argument("--user", type=int, required=True, help="User ID")
    rep_export.add_argument("--month", type=parse_month, help="Month (YYYY-MM, default: previous month)")
    rep_export.add_argument("--format", choices=["excel", "pdf"], help="Override the user's report format")
    rep_export.add_argument("--output", type=str, help="Output directory")

    reports_subparsers.add_parser("generate", help="Email last month's report to all opted-in users")

    return parser


def handle_budget_command(args: argparse.Namespace, services: Dict[str, Any], db_manager: DatabaseManager) -> None:
    """
    Handle the budget command.

    Args:
        args: Parsed command-line arguments
        services: Services from build_services
        db_manager: Database handle
    """
    tracker: BudgetTracker = services["tracker"]

    if args.budget_action == "set":
        user = db_manager.update_budget(
            args.user,
            amount=args.amount,
            currency=args.currency,
            warning=args.warning,
            critical=args.critical,
        )
        print(
            f"Budget for {user.name}: {user.budget_amount:,.2f} {user.budget_currency} "
            f"(warning {user.warning_threshold}%, critical {user.critical_threshold}%)"
        )
        return

    if args.budget_action in ("status", "overview"):
        overview = tracker.get_budget_overview(args.user) if args.budget_action == "overview" else None
        status = overview.status if overview else tracker.check_budget_status(args.user)
        if not status.budget_set:
            print(status.message)
            return

        print("=" * 70)
        print(f"BUDGET STATUS - user {args.user}")
        print("=" * 70)
        print(f"Budget:        {status.budget:>15,.2f} {status.currency}")
        print(f"Spent:         {status.spent:>15,.2f}")
        print(f"Remaining:     {status.remaining:>15,.2f}")
        print(f"Used:          {status.percentage_used:>14.2f}%")
        print(f"Alert level:   {status.alert_level.value:>15}")
        if status.should_send_alert:
            print(f"Alert due:     {status.alert_type.value:>15}")

        if overview and overview.category_breakdown:
            print(tabulate(
                [
                    [entry.category_name, f"{entry.amount:,.2f}", entry.transaction_count, f"{entry.percentage:.2f}%"]
                    for entry in overview.category_breakdown
                ],
                headers=["Category", "Amount", "Count", "Share"],
                tablefmt="grid"
            ))
        print("=" * 70)
        return

    print("Specify a budget action: set, status or overview", file=sys.stderr)
    sys.exit(1)


def handle_alerts_command(args: argparse.Namespace, services: Dict[str, Any]) -> None:
    """
    Handle the alerts command.

    Args:
        args: Parsed command-line arguments
        services: Services from build_services
    """
    alert_service: BudgetAlertService = services["alerts"]

    if args.alerts_action == "check":
        if args.user is not None:
            result = alert_service.check_and_send_budget_alert(args.user)
            if result["alert_sent"]:
                print(f"Sent {result['alert_type']} alert")
            elif result["success"]:
                print(f"No alert sent: {result['reason']}")
            else:
                print(f"Alert check failed: {result['error']}", file=sys.stderr)
                sys.exit(1)
            return

        summary = alert_service.check_all_user_budgets(delay_seconds=args.delay)
        print(f"Users checked:  {summary['total_users']}")
        print(f"Alerts sent:    {summary['alerts_sent']}")
        print(f"  Warnings:     {summary['warnings']}")
        print(f"  Critical:     {summary['critical']}")
        print(f"Errors:         {summary['errors']}")
        return

    if args.alerts_action == "summary":
        summary = alert_service.get_budget_alert_summary(args.user)
        print(tabulate(list(summary.items()), headers=["Field", "Value"], tablefmt="grid"))
        return

    print("Specify an alerts action: check or summary", file=sys.stderr)
    sys.exit(1)


def handle_reports_command(args: argparse.Namespace, services: Dict[str, Any]) -> None:
    """
    Handle the reports command.

    Args:
        args: Parsed command-line arguments
        services: Services from build_services
    """
    report_service: MonthlyReportService = services["reports"]

    if args.reports_action == "show":
        _, report_data = report_service.get_report_for_user(args.user, args.month)
        print(report_service.report_generator.generate_text_report(report_data))
        return

    if args.reports_action == "list":
        reports = report_service.list_monthly_reports(args.user, months=args.months)
        if not reports:
            print("No reports available")
            return
        print(tabulate(
            [
                [
                    report.month,
                    f"{report.total_income:,.2f}",
                    f"{report.total_expenses:,.2f}",
                    f"{report.net_savings:,.2f}",
                    report.transaction_count,
                ]
                for report in reports
            ],
            headers=["Month", "Income", "Expenses", "Net", "Transactions"],
            tablefmt="grid"
        ))
        return

    if args.reports_action == "export":
        user, report_data = report_service.get_report_for_user(args.user, args.month)
        if not report_data.has_data:
            print(f"No data available for {report_data.month}", file=sys.stderr)
            sys.exit(1)
        report_format = args.format or user.report_format or report_service.default_format
        file_path, _ = report_service.report_generator.render(
            report_data, report_format, Path(args.output) if args.output else None
        )
        print(f"Report written to {file_path}")
        return

    if args.reports_action == "generate":
        summary = report_service.generate_monthly_reports()
        print(f"Users:           {summary['total_users']}")
        print(f"Reports sent:    {summary['reports_sent']}")
        print(f"Fallback emails: {summary['fallbacks_sent']}")
        print(f"Skipped:         {summary['skipped']}")
        print(f"Errors:          {summary['errors']}")
        return

    print("Specify a reports action: show, list, export or generate", file=sys.stderr)
    sys.exit(1)


def main(argv=None):
    """Main entry point for the application."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        config = load_config(Path(args.config))
    except ConfigError as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        ensure_data_dir(config)
    except OSError as exc:
        print(f"Failed to prepare data directory: {exc}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config)

    db_manager = DatabaseManager(resolve_connection_string(config))
    try:
        db_manager.create_tables()
        if args.command == "init-db":
            print("Database tables created")
            return

        services = build_services(config, db_manager)
        if args.command in ("budget", "bud"):
            handle_budget_command(args, services, db_manager)
        elif args.command == "alerts":
            handle_alerts_command(args, services)
        elif args.command in ("reports", "report"):
            handle_reports_command(args, services)
        else:
            parser.print_help()
            sys.exit(1)
    except BudgetWatchError as e:
        logger.error(f"Command '{args.command}' failed: {e}")
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        db_manager.close()


if __name__ == "__main__":
    main()
