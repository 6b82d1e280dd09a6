"""
Database operations module for users, categories, transactions and notifications.

This module handles database connections, schema creation and the queries
the budget tracker and report aggregator run, using SQLAlchemy ORM.
Supports SQLite by default with easy migration to other databases.
"""

import enum
import logging
from datetime import UTC, datetime
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    create_engine,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker, validates

from exceptions import BudgetError, DatabaseError, UserNotFoundError

# Configure logging
logger = logging.getLogger(__name__)

ALERT_TYPES = ("warning", "critical")


def utc_now() -> datetime:
    """
    Get current UTC datetime with timezone awareness.

    All timestamps written by this module are stored in UTC.

    Returns:
        Current datetime in UTC with timezone info
    """
    return datetime.now(UTC)


# Base class for declarative models
Base = declarative_base()


class TransactionType(enum.Enum):
    """Enumeration of transaction kinds."""
    INCOME = "income"
    EXPENSE = "expense"


class ReportFormat(enum.Enum):
    """Attachment format for the monthly report email."""
    EXCEL = "excel"
    PDF = "pdf"


class NotificationType(enum.Enum):
    """Severity of an in-app notification."""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class User(Base):
    """
    SQLAlchemy model representing a user and their embedded budget configuration.

    Attributes:
        id: Auto-incrementing primary key
        email: Unique email address used for alerts and reports
        name: Display name
        budget_amount: Monthly budget (0 means no budget set)
        budget_currency: ISO currency code
        warning_threshold: Percentage of budget that triggers a warning alert
        critical_threshold: Percentage of budget that triggers a critical alert
        last_warning_alert_sent: When the last warning alert email went out
        last_critical_alert_sent: When the last critical alert email went out
        budget_alerts: Budget alert opt-in
        monthly_reports: Monthly report opt-in
        report_format: Attachment format for monthly reports (None: configured default)
    """

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), nullable=False, unique=True, index=True)
    name = Column(String(255), nullable=False)

    budget_amount = Column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    budget_currency = Column(String(3), nullable=False, default="USD")
    warning_threshold = Column(Numeric(5, 2), nullable=False, default=Decimal("80"))
    critical_threshold = Column(Numeric(5, 2), nullable=False, default=Decimal("95"))
    last_warning_alert_sent = Column(DateTime(timezone=True), nullable=True)
    last_critical_alert_sent = Column(DateTime(timezone=True), nullable=True)

    budget_alerts = Column(Boolean, nullable=False, default=True)
    monthly_reports = Column(Boolean, nullable=False, default=True)
    report_format = Column(Enum(ReportFormat), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)

    def last_alert_sent(self, alert_type: str) -> Optional[datetime]:
        """Return the stored timestamp for ``alert_type`` ('warning' or 'critical')."""
        return getattr(self, f"last_{alert_type}_alert_sent")

    def __repr__(self) -> str:
        """String representation of the user."""
        return f"<User(id={self.id}, email='{self.email}', budget={self.budget_amount})>"


class Category(Base):
    """SQLAlchemy model representing a user-defined transaction category."""

    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    type = Column(Enum(TransactionType), nullable=False)
    color = Column(String(7), nullable=False, default="#3B82F6")
    icon = Column(String(50), nullable=False, default="category")

    def __repr__(self) -> str:
        return f"<Category(id={self.id}, name='{self.name}', type={self.type.value})>"


class Transaction(Base):
    """
    SQLAlchemy model representing an income or expense transaction.

    Attributes:
        id: Auto-incrementing primary key
        user_id: Owning user
        title: Short label
        amount: Positive amount (2 decimal places)
        type: Income or expense
        category_id: Optional category reference (may dangle after a delete)
        date: Occurrence timestamp
        description: Free text
    """

    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    type = Column(Enum(TransactionType), nullable=False, index=True)
    category_id = Column(Integer, nullable=True)
    date = Column(DateTime, nullable=False, default=datetime.now, index=True)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    # Composite index for the per-user monthly range scans
    __table_args__ = (
        Index('idx_user_type_date', 'user_id', 'type', 'date'),
    )

    @validates("amount")
    def _validate_amount(self, key: str, value) -> Decimal:
        """Amounts are always positive; the type column carries the sign."""
        amount = Decimal(str(value))
        if amount <= 0:
            raise ValueError("Transaction amount must be greater than zero.")
        return amount

    def __repr__(self) -> str:
        """String representation of the transaction."""
        return (
            f"<Transaction(id={self.id}, date={self.date}, "
            f"type={self.type.value}, amount={self.amount})>"
        )


class Notification(Base):
    """SQLAlchemy model representing an in-app notification."""

    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    type = Column(Enum(NotificationType), nullable=False, default=NotificationType.INFO)
    read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    def __repr__(self) -> str:
        return f"<Notification(id={self.id}, user_id={self.user_id}, title='{self.title}')>"


class DatabaseManager:
    """
    Manages database connections and operations.

    One instance is created at process start and passed to every service;
    call close() at shutdown to release the connection pool.
    """

    def __init__(self, connection_string: str):
        """
        Initialize the database manager.

        Args:
            connection_string: SQLAlchemy connection string (e.g., 'sqlite:///data/budget_watch.db')

        Raises:
            DatabaseError: If the engine cannot be created
        """
        try:
            self.engine = create_engine(connection_string, echo=False)
            self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)
            logger.info(f"Database manager initialized with connection: {connection_string}")
        except SQLAlchemyError as e:
            logger.error(f"Failed to initialize database: {e}")
            raise DatabaseError(
                "Failed to initialize database",
                details={"connection_string": connection_string},
                original_error=e
            ) from e

    def create_tables(self) -> None:
        """
        Create all database tables if they don't exist.

        Raises:
            DatabaseError: If table creation fails
        """
        try:
            Base.metadata.create_all(self.engine)
            logger.info("Database tables created/verified successfully")
        except SQLAlchemyError as e:
            logger.error(f"Failed to create database tables: {e}")
            raise DatabaseError("Failed to create database tables", original_error=e) from e

    def close(self) -> None:
        """Dispose of the engine and its connection pool."""
        self.engine.dispose()
        logger.info("Database connections closed")

    def get_session(self) -> Session:
        """
        Get a new database session.

        Returns:
            SQLAlchemy session object

        Note:
            Caller is responsible for closing the session.
        """
        return self.SessionLocal()

    def _fail(self, operation: str, error: SQLAlchemyError, **details) -> DatabaseError:
        """Log a failed query and build the DatabaseError to raise."""
        logger.error(f"Failed to {operation}: {error}")
        return DatabaseError(f"Failed to {operation}", details=details, original_error=error)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def add_user(
        self,
        email: str,
        name: str,
        budget_amount: Decimal = Decimal("0"),
        session: Optional[Session] = None,
        **settings
    ) -> User:
        """
        Insert a user.

        Args:
            email: Unique email address
            name: Display name
            budget_amount: Monthly budget (0 for none)
            session: Optional existing session (creates new one if None)
            **settings: Any other User column (thresholds, opt-ins, report_format)

        Returns:
            The persisted User
        """
        close_session = False
        if session is None:
            session = self.get_session()
            close_session = True

        try:
            user = User(email=email, name=name, budget_amount=Decimal(str(budget_amount)), **settings)
            session.add(user)
            session.commit()
            logger.info(f"Created user {user.id} ({email})")
            return user
        except SQLAlchemyError as e:
            session.rollback()
            raise self._fail("add user", e, email=email) from e
        finally:
            if close_session:
                session.close()

    def get_user(self, user_id: int, session: Optional[Session] = None) -> Optional[User]:
        """
        Get a user by ID.

        Args:
            user_id: User ID
            session: Optional existing session

        Returns:
            User object or None if not found

        Raises:
            DatabaseError: If the query fails
        """
        close_session = False
        if session is None:
            session = self.get_session()
            close_session = True

        try:
            return session.get(User, user_id)
        except SQLAlchemyError as e:
            raise self._fail("get user", e, user_id=user_id) from e
        finally:
            if close_session:
                session.close()

    def _require_user(self, session: Session, user_id: int) -> User:
        user = session.get(User, user_id)
        if user is None:
            raise UserNotFoundError("User not found", details={"user_id": user_id})
        return user

    def update_budget(
        self,
        user_id: int,
        amount: Optional[Decimal] = None,
        currency: Optional[str] = None,
        warning: Optional[Decimal] = None,
        critical: Optional[Decimal] = None,
        session: Optional[Session] = None
    ) -> User:
        """
        Update a user's monthly budget configuration.

        Only the provided fields change. The merged thresholds must satisfy
        0 <= warning < critical <= 100 and the amount must not be negative.

        Returns:
            The updated User

        Raises:
            UserNotFoundError: If the user does not exist
            BudgetError: If the new configuration is invalid
            DatabaseError: If the update fails
        """
        if amount is not None and Decimal(str(amount)) < 0:
            raise BudgetError("Budget amount cannot be negative", details={"amount": amount})
        for label, value in (("warning", warning), ("critical", critical)):
            if value is not None and not 0 <= Decimal(str(value)) <= 100:
                raise BudgetError(
                    f"{label.capitalize()} threshold must be between 0 and 100",
                    details={label: value}
                )

        close_session = False
        if session is None:
            session = self.get_session()
            close_session = True

        try:
            user = self._require_user(session, user_id)
            new_warning = Decimal(str(warning)) if warning is not None else user.warning_threshold
            new_critical = Decimal(str(critical)) if critical is not None else user.critical_threshold
            if new_warning >= new_critical:
                raise BudgetError(
                    "Warning threshold must be less than critical threshold",
                    details={"warning": new_warning, "critical": new_critical}
                )

            if amount is not None:
                user.budget_amount = Decimal(str(amount))
            if currency:
                user.budget_currency = currency.upper()
            user.warning_threshold = new_warning
            user.critical_threshold = new_critical
            session.commit()
            logger.info(f"Updated budget for user {user_id}: {user.budget_amount} {user.budget_currency}")
            return user
        except SQLAlchemyError as e:
            session.rollback()
            raise self._fail("update budget", e, user_id=user_id) from e
        finally:
            if close_session:
                session.close()

    def update_last_alert_sent(
        self,
        user_id: int,
        alert_type: str,
        timestamp: datetime,
        session: Optional[Session] = None
    ) -> None:
        """
        Record when an alert of ``alert_type`` was last sent to the user.

        Args:
            user_id: User ID
            alert_type: 'warning' or 'critical'
            timestamp: Aware datetime of the dispatch
            session: Optional existing session

        Raises:
            BudgetError: If alert_type is not recognized
            UserNotFoundError: If the user does not exist
            DatabaseError: If the update fails
        """
        if alert_type not in ALERT_TYPES:
            raise BudgetError("Unknown alert type", details={"alert_type": alert_type})

        close_session = False
        if session is None:
            session = self.get_session()
            close_session = True

        try:
            user = self._require_user(session, user_id)
            setattr(user, f"last_{alert_type}_alert_sent", timestamp)
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise self._fail("update last alert timestamp", e, user_id=user_id) from e
        finally:
            if close_session:
                session.close()

    def get_users_with_budget_alerts(self, session: Optional[Session] = None) -> List[User]:
        """Users with a budget set and budget alerts enabled."""
        close_session = False
        if session is None:
            session = self.get_session()
            close_session = True

        try:
            return (
                session.query(User)
                .filter(User.budget_amount > 0, User.budget_alerts.is_(True))
                .order_by(User.id)
                .all()
            )
        except SQLAlchemyError as e:
            raise self._fail("list users with budget alerts", e) from e
        finally:
            if close_session:
                session.close()

    def get_users_for_monthly_reports(self, session: Optional[Session] = None) -> List[User]:
        """Users who have not opted out of monthly reports."""
        close_session = False
        if session is None:
            session = self.get_session()
            close_session = True

        try:
            return (
                session.query(User)
                .filter(User.monthly_reports.is_(True))
                .order_by(User.id)
                .all()
            )
        except SQLAlchemyError as e:
            raise self._fail("list users for monthly reports", e) from e
        finally:
            if close_session:
                session.close()

    # ------------------------------------------------------------------
    # Categories
    # ------------------------------------------------------------------

    def add_category(
        self,
        user_id: int,
        name: str,
        category_type: TransactionType = TransactionType.EXPENSE,
        session: Optional[Session] = None
    ) -> Category:
        """Insert a category for the user."""
        close_session = False
        if session is None:
            session = self.get_session()
            close_session = True

        try:
            category = Category(user_id=user_id, name=name, type=category_type)
            session.add(category)
            session.commit()
            return category
        except SQLAlchemyError as e:
            session.rollback()
            raise self._fail("add category", e, user_id=user_id, name=name) from e
        finally:
            if close_session:
                session.close()

    def get_categories(self, user_id: int, session: Optional[Session] = None) -> List[Category]:
        """All categories owned by the user."""
        close_session = False
        if session is None:
            session = self.get_session()
            close_session = True

        try:
            return session.query(Category).filter(Category.user_id == user_id).all()
        except SQLAlchemyError as e:
            raise self._fail("get categories", e, user_id=user_id) from e
        finally:
            if close_session:
                session.close()

    def get_category_map(self, user_id: int, session: Optional[Session] = None) -> Dict[int, str]:
        """
        Map of category id to name for the user.

        Returns:
            Dictionary keyed by category id
        """
        return {category.id: category.name for category in self.get_categories(user_id, session=session)}

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def add_transaction(
        self,
        user_id: int,
        amount: Decimal,
        transaction_type: TransactionType,
        date: datetime,
        title: str = "",
        category_id: Optional[int] = None,
        description: Optional[str] = None,
        session: Optional[Session] = None
    ) -> Transaction:
        """
        Insert a transaction.

        Raises:
            ValueError: If amount is not positive
            DatabaseError: If the insert fails
        """
        close_session = False
        if session is None:
            session = self.get_session()
            close_session = True

        try:
            transaction = Transaction(
                user_id=user_id,
                title=title or transaction_type.value,
                amount=amount,
                type=transaction_type,
                category_id=category_id,
                date=date,
                description=description,
            )
            session.add(transaction)
            session.commit()
            return transaction
        except SQLAlchemyError as e:
            session.rollback()
            raise self._fail("add transaction", e, user_id=user_id) from e
        finally:
            if close_session:
                session.close()

    def get_transactions(
        self,
        user_id: int,
        date_start: datetime,
        date_end: datetime,
        transaction_type: Optional[TransactionType] = None,
        session: Optional[Session] = None
    ) -> List[Transaction]:
        """
        Get a user's transactions within an inclusive date range.

        Args:
            user_id: Owning user
            date_start: Inclusive start
            date_end: Inclusive end
            transaction_type: Optional income/expense filter
            session: Optional existing session (creates new one if None)

        Returns:
            Transactions ordered by date, then id

        Raises:
            DatabaseError: If the query fails
        """
        close_session = False
        if session is None:
            session = self.get_session()
            close_session = True

        try:
            query = session.query(Transaction).filter(
                Transaction.user_id == user_id,
                Transaction.date >= date_start,
                Transaction.date <= date_end,
            )
            if transaction_type is not None:
                query = query.filter(Transaction.type == transaction_type)

            transactions = query.order_by(Transaction.date.asc(), Transaction.id.asc()).all()
            logger.debug(
                f"Retrieved {len(transactions)} transactions for user {user_id} "
                f"between {date_start} and {date_end}"
            )
            return transactions
        except SQLAlchemyError as e:
            raise self._fail("get transactions", e, user_id=user_id) from e
        finally:
            if close_session:
                session.close()

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def create_notification(
        self,
        user_id: int,
        title: str,
        message: str,
        notification_type: NotificationType = NotificationType.INFO,
        session: Optional[Session] = None
    ) -> Notification:
        """Persist an unread in-app notification."""
        close_session = False
        if session is None:
            session = self.get_session()
            close_session = True

        try:
            notification = Notification(
                user_id=user_id,
                title=title,
                message=message,
                type=notification_type,
                read=False,
            )
            session.add(notification)
            session.commit()
            return notification
        except SQLAlchemyError as e:
            session.rollback()
            raise self._fail("create notification", e, user_id=user_id) from e
        finally:
            if close_session:
                session.close()

    def get_notifications(self, user_id: int, session: Optional[Session] = None) -> List[Notification]:
        """A user's notifications, newest first."""
        close_session = False
        if session is None:
            session = self.get_session()
            close_session = True

        try:
            return (
                session.query(Notification)
                .filter(Notification.user_id == user_id)
                .order_by(Notification.created_at.desc(), Notification.id.desc())
                .all()
            )
        except SQLAlchemyError as e:
            raise self._fail("get notifications", e, user_id=user_id) from e
        finally:
            if close_session:
                session.close()
