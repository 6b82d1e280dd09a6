"""
Utility helpers for filesystem paths, connection strings and calendar periods.

Centralizes logic for resolving the project data directory and database
connection string, plus the month arithmetic shared by the budget tracker
and the report aggregator.
"""

from __future__ import annotations

import logging
import os
from datetime import UTC, date, datetime, timedelta
from pathlib import Path
from typing import Any, Dict, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.engine import make_url

from exceptions import ConfigError

logger = logging.getLogger(__name__)

_PROJECT_ROOT = Path(__file__).resolve().parent
_DEFAULT_DATA_DIR_NAME = "data"
_DEFAULT_DB_FILENAME = "budget_watch.db"

MONTH_LABEL_FORMAT = "%B %Y"


def get_project_root() -> Path:
    """Return the repository root directory."""
    return _PROJECT_ROOT


def _coerce_path(path_value: str | Path) -> Path:
    """
    Convert a string/Path into an absolute project-root based Path.

    Args:
        path_value: Candidate filesystem path.

    Returns:
        Absolute Path instance.
    """
    path = Path(path_value)
    if path.is_absolute():
        return path
    return get_project_root() / path


def get_data_dir(config: Optional[Dict[str, Any]] = None) -> Path:
    """
    Resolve the data directory path without creating it.

    Args:
        config: Optional configuration dictionary.

    Returns:
        Path to the data directory (may not exist yet).
    """
    db_config = (config or {}).get("database", {})
    data_dir_raw = db_config.get("data_dir", _DEFAULT_DATA_DIR_NAME)
    return _coerce_path(data_dir_raw)


def ensure_data_dir(config: Optional[Dict[str, Any]] = None) -> Path:
    """
    Ensure the data directory exists and return its Path.

    Args:
        config: Optional configuration dictionary.

    Returns:
        Absolute Path to the ensured data directory.
    """
    data_dir = get_data_dir(config)
    try:
        data_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        logger.error("Failed to create data directory '%s': %s", data_dir, exc)
        raise
    return data_dir


def _ensure_sqlite_parent_dir(connection_string: str) -> None:
    """
    Ensure the parent directory for a SQLite database exists.

    Args:
        connection_string: SQLAlchemy connection string.
    """
    try:
        url = make_url(connection_string)
    except Exception as exc:  # pragma: no cover - logging only
        logger.debug("Unable to parse connection string '%s': %s", connection_string, exc)
        return

    if not url.drivername.startswith("sqlite"):
        return

    database = url.database
    if not database or database == ":memory:":
        return

    db_path = Path(database)
    if not db_path.is_absolute():
        db_path = get_project_root() / db_path

    try:
        db_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        logger.error("Failed to create SQLite parent directory '%s': %s", db_path.parent, exc)
        raise


def resolve_connection_string(config: Optional[Dict[str, Any]] = None) -> str:
    """
    Resolve the database connection string using env var, config, or defaults.

    Order of precedence:
        1. DB_CONNECTION_STRING environment variable
        2. config['database']['connection_string']
        3. Constructed from data_dir/path defaults

    Args:
        config: Optional configuration dictionary.

    Returns:
        SQLAlchemy connection string.
    """
    config = config or {}
    env_conn = os.environ.get("DB_CONNECTION_STRING")
    if env_conn:
        _ensure_sqlite_parent_dir(env_conn)
        return env_conn

    db_config = config.get("database", {})
    config_conn = db_config.get("connection_string")
    if config_conn:
        _ensure_sqlite_parent_dir(config_conn)
        return config_conn

    data_dir = ensure_data_dir(config)
    db_path = Path(db_config.get("path") or _DEFAULT_DB_FILENAME)
    if not db_path.is_absolute():
        db_path = data_dir / db_path
    else:
        db_path.parent.mkdir(parents=True, exist_ok=True)

    return f"sqlite:///{db_path.as_posix()}"


def resolve_log_path(log_path: str) -> Path:
    """
    Convert a log file path to an absolute path under the project root when needed.

    Args:
        log_path: Configured log file path (relative or absolute).

    Returns:
        Absolute Path for logging output.
    """
    resolved = _coerce_path(log_path)
    if resolved.parent != resolved:
        resolved.parent.mkdir(parents=True, exist_ok=True)
    return resolved


def get_timezone(name: Optional[str]) -> ZoneInfo:
    """
    Resolve an IANA timezone name, defaulting to UTC.

    Raises:
        ConfigError: If the name is not a known timezone.
    """
    try:
        return ZoneInfo(name or "UTC")
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ConfigError(
            f"Unknown timezone: {name}",
            details={"timezone": name},
            original_error=exc
        ) from exc


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Return an aware UTC datetime.

    SQLite hands timestamps back without tzinfo; those are stored as UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def get_month_period(year: int, month: int) -> Tuple[datetime, datetime]:
    """
    Get the first and last instant of a calendar month.

    Args:
        year: Four-digit year
        month: Month number (1-12)

    Returns:
        Tuple of (period_start, period_end) as naive datetimes, both inclusive.
    """
    period_start = date(year, month, 1)
    if month == 12:
        period_end = date(year + 1, 1, 1) - timedelta(days=1)
    else:
        period_end = date(year, month + 1, 1) - timedelta(days=1)
    return (
        datetime.combine(period_start, datetime.min.time()),
        datetime.combine(period_end, datetime.max.time()),
    )


def previous_month(reference: date) -> date:
    """Return the first day of the month before the one containing ``reference``."""
    return (reference.replace(day=1) - timedelta(days=1)).replace(day=1)


def shift_months(reference: date, months_back: int) -> date:
    """Return the first day of the month ``months_back`` months before ``reference``."""
    month_index = reference.year * 12 + (reference.month - 1) - months_back
    return date(month_index // 12, month_index % 12 + 1, 1)


def month_label(reference: date) -> str:
    """Human-readable "Month Year" label, e.g. ``September 2026``."""
    return reference.strftime(MONTH_LABEL_FORMAT)


def resolve_project_path(path_value: str | Path) -> Path:
    """Resolve a configured directory relative to the project root."""
    return _coerce_path(path_value)
