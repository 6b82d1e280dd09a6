"""
Unified exception hierarchy for the budget-watch project.

This module defines the exception hierarchy with BudgetWatchError as the
base exception, allowing consistent error handling across the budget
tracker, report aggregator and their collaborators.
"""

from typing import Optional


class BudgetWatchError(Exception):
    """
    Base exception class for all budget-watch errors.

    All custom exceptions in the application should inherit from this class
    to enable unified error handling and consistent error messages.

    Attributes:
        message: Human-readable error message
        details: Optional dictionary with additional error context
        original_error: Optional original exception that caused this error
    """

    def __init__(
        self,
        message: str,
        details: Optional[dict] = None,
        original_error: Optional[Exception] = None
    ) -> None:
        """
        Initialize BudgetWatchError.

        Args:
            message: Human-readable error message
            details: Optional dictionary with additional error context
            original_error: Optional original exception that caused this error
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.original_error = original_error

    def __str__(self) -> str:
        """Return string representation of the error."""
        msg = self.message
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            msg = f"{msg} ({detail_str})"
        return msg


class ConfigError(BudgetWatchError):
    """Raised when configuration loading or validation fails."""
    pass


class DatabaseError(BudgetWatchError):
    """Raised when database operations fail."""
    pass


class UserNotFoundError(BudgetWatchError):
    """Raised when a referenced user does not exist."""
    pass


class BudgetError(BudgetWatchError):
    """Raised when budget tracking or budget configuration fails."""
    pass


class ReportError(BudgetWatchError):
    """Raised when report aggregation or rendering fails."""
    pass


class NotificationError(BudgetWatchError):
    """Raised when an email or in-app notification cannot be delivered."""
    pass
