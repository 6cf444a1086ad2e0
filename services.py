from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Generic, Optional, Sequence, TypeVar

from sqlalchemy import case, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, contains_eager, joinedload
from sqlalchemy.sql.elements import ColumnElement

from config import get_settings
from errors import (
    Conflict,
    Forbidden,
    InternalFailure,
    InvalidInput,
    NotFound,
    ServiceError,
    Unauthorized,
    guarded,
)
from models import (
    CENT,
    Category,
    LoginLog,
    LoginStatus,
    Transaction,
    TransactionType,
    User,
    UserRole,
    UserStatus,
    amount_to_cents,
    cents_to_amount,
)
from notifications import Notifier, reset_password_message
from periods import Period
from schemas import (
    PasswordChangeIn,
    RegisterIn,
    TransactionIn,
    TransactionPatch,
    UserUpdateIn,
)
from security import (
    TokenExpired,
    TokenInvalid,
    hash_password,
    issue_access_token,
    issue_reset_token,
    read_reset_token,
    verify_password,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

TOP_CATEGORIES_LIMIT = 5


@dataclass
class TransactionFilters:
    type: Optional[TransactionType] = None
    category: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    search: Optional[str] = None
    page: int = 1
    page_size: Optional[int] = None


@dataclass
class AdminTransactionFilters(TransactionFilters):
    username: Optional[str] = None


@dataclass
class Page(Generic[T]):
    items: list[T]
    total_items: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total_items / self.page_size)


@dataclass(frozen=True)
class Caller:
    user_id: int
    role: UserRole = UserRole.user

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.admin


def _paging(page: Optional[int], page_size: Optional[int]) -> tuple[int, int]:
    settings = get_settings()
    page = max(page or 1, 1)
    size = page_size or settings.default_page_size
    size = min(max(size, 1), settings.max_page_size)
    return page, size


def _contains(value: str) -> str:
    return f"%{value.strip().lower()}%"


def _ilike(column, value: str) -> ColumnElement[bool]:
    return func.lower(func.coalesce(column, "")).like(_contains(value))


def _active_transactions() -> ColumnElement[bool]:
    return Transaction.deleted_at.is_(None)


def _active_users() -> ColumnElement[bool]:
    return User.deleted_at.is_(None)


def _as_amount(value) -> Decimal:
    return cents_to_amount(int(value or 0))


class CategoryService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _visible(self) -> ColumnElement[bool]:
        return or_(Category.user_id == self.user_id, Category.user_id.is_(None))

    @guarded("Failed to fetch categories")
    def list_visible(self) -> Sequence[Category]:
        stmt = (
            select(Category)
            .where(self._visible())
            .order_by(Category.name.asc(), Category.id.asc())
        )
        return self.session.scalars(stmt).all()

    def find(self, name: str) -> Optional[Category]:
        # One query over both scopes; a user's own category shadows a global one.
        stmt = (
            select(Category)
            .where(func.lower(Category.name) == name.lower(), self._visible())
            .order_by(
                case((Category.user_id.is_(None), 1), else_=0),
                Category.id.asc(),
            )
            .limit(1)
        )
        return self.session.scalar(stmt)

    @guarded("Failed to resolve category")
    def resolve_or_create(self, name: str) -> Category:
        clean_name = (name or "").strip()
        if not clean_name:
            raise InvalidInput("Category name is required.")
        existing = self.find(clean_name)
        if existing:
            return existing
        category = Category(name=clean_name, user_id=self.user_id)
        self.session.add(category)
        self.session.flush()
        logger.info(
            f"category_created: id={category.id} user_id={self.user_id} name={clean_name!r}"
        )
        return category


class TransactionService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _owned(self, transaction_id: int) -> Optional[Transaction]:
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category))
            .where(
                Transaction.id == transaction_id,
                Transaction.user_id == self.user_id,
                _active_transactions(),
            )
        )
        return self.session.scalar(stmt)

    @guarded("Failed to create transaction")
    def create(self, data: TransactionIn) -> Transaction:
        if data.amount is None or data.amount <= 0:
            raise InvalidInput("Amount must be greater than zero.")
        category = CategoryService(self.session, self.user_id).resolve_or_create(
            data.category
        )
        txn = Transaction(
            user_id=self.user_id,
            amount_cents=amount_to_cents(data.amount),
            type=data.type,
            category_id=category.id,
            description=data.description,
            date=data.date,
        )
        self.session.add(txn)
        self.session.commit()
        logger.info(
            f"transaction_created: id={txn.id} user_id={self.user_id} "
            f"type={txn.type.value} category_id={category.id}"
        )
        return self.get(txn.id)

    @guarded("Failed to fetch transaction")
    def get(self, transaction_id: int) -> Transaction:
        txn = self._owned(transaction_id)
        if not txn:
            raise NotFound("Transaction not found")
        return txn

    @guarded("Failed to update transaction")
    def update(self, transaction_id: int, data: TransactionPatch) -> Transaction:
        txn = self._owned(transaction_id)
        if not txn:
            raise NotFound("Transaction not found or unauthorized")

        fields = data.model_fields_set
        if "amount" in fields and (data.amount is None or data.amount <= 0):
            raise InvalidInput("Amount must be greater than zero.")
        if "type" in fields and data.type is None:
            raise InvalidInput("Type must be either 'income' or 'expense'.")
        if "date" in fields and data.date is None:
            raise InvalidInput("Date is required.")

        if "category" in fields and data.category and data.category.strip():
            category = CategoryService(self.session, self.user_id).resolve_or_create(
                data.category
            )
            txn.category_id = category.id
        if "amount" in fields:
            txn.amount_cents = amount_to_cents(data.amount)
        if "type" in fields:
            txn.type = data.type
        if "description" in fields:
            txn.description = data.description
        if "date" in fields:
            txn.date = data.date

        self.session.commit()
        logger.info(
            f"transaction_updated: id={txn.id} user_id={self.user_id} "
            f"fields={','.join(sorted(fields))}"
        )
        self.session.expire(txn, ["category"])
        return self.get(txn.id)

    @guarded("Failed to delete transaction")
    def soft_delete(self, transaction_id: int) -> None:
        txn = self._owned(transaction_id)
        if not txn:
            raise NotFound("Transaction not found or unauthorized")
        txn.deleted_at = datetime.utcnow()
        self.session.commit()
        logger.info(f"transaction_deleted: id={txn.id} user_id={self.user_id}")

    @staticmethod
    def _conditions(filters: TransactionFilters) -> list[ColumnElement[bool]]:
        conditions: list[ColumnElement[bool]] = [_active_transactions()]
        if filters.type:
            conditions.append(Transaction.type == filters.type)
        if filters.start_date:
            conditions.append(Transaction.date >= filters.start_date)
        if filters.end_date:
            conditions.append(Transaction.date <= filters.end_date)
        if filters.category and filters.category.strip():
            conditions.append(_ilike(Category.name, filters.category))
        return conditions

    def _page(
        self,
        conditions: list[ColumnElement[bool]],
        filters: TransactionFilters,
        *,
        with_user: bool = False,
    ) -> Page[Transaction]:
        page, size = _paging(filters.page, filters.page_size)

        count_stmt = (
            select(func.count(Transaction.id))
            .join(Transaction.category)
            .where(*conditions)
        )
        stmt = (
            select(Transaction)
            .join(Transaction.category)
            .options(contains_eager(Transaction.category))
            .where(*conditions)
            .order_by(
                Transaction.date.desc(),
                Transaction.created_at.desc(),
                Transaction.id.desc(),
            )
            .offset((page - 1) * size)
            .limit(size)
        )
        if with_user:
            count_stmt = count_stmt.join(Transaction.user)
            stmt = stmt.join(Transaction.user).options(contains_eager(Transaction.user))

        total = int(self.session.execute(count_stmt).scalar_one() or 0)
        items = list(self.session.scalars(stmt).all())
        return Page(items=items, total_items=total, page=page, page_size=size)

    @guarded("Failed to fetch transactions")
    def list(self, filters: Optional[TransactionFilters] = None) -> Page[Transaction]:
        filters = filters or TransactionFilters()
        conditions = self._conditions(filters)
        conditions.append(Transaction.user_id == self.user_id)
        if filters.search and filters.search.strip():
            conditions.append(
                or_(
                    _ilike(Transaction.description, filters.search),
                    _ilike(Category.name, filters.search),
                )
            )
        return self._page(conditions, filters)

    @guarded("Failed to fetch all transactions")
    def list_all(
        self, filters: Optional[AdminTransactionFilters] = None
    ) -> Page[Transaction]:
        """Transactions of every user, ignoring ownership. Admin callers only."""
        filters = filters or AdminTransactionFilters()
        conditions = self._conditions(filters)
        if filters.username and filters.username.strip():
            conditions.append(_ilike(User.username, filters.username))
        if filters.search and filters.search.strip():
            conditions.append(
                or_(
                    _ilike(Transaction.description, filters.search),
                    _ilike(Category.name, filters.search),
                    _ilike(User.username, filters.search),
                    _ilike(User.email, filters.search),
                )
            )
        return self._page(conditions, filters, with_user=True)


class MetricsService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _window(self, period: Period) -> list[ColumnElement[bool]]:
        conditions: list[ColumnElement[bool]] = [
            Transaction.user_id == self.user_id,
            _active_transactions(),
        ]
        if period.start:
            conditions.append(Transaction.date >= period.start)
        if period.end:
            conditions.append(Transaction.date <= period.end)
        return conditions

    def totals(self, period: Period) -> tuple[int, int]:
        stmt = select(
            func.coalesce(
                func.sum(
                    case(
                        (
                            Transaction.type == TransactionType.income,
                            Transaction.amount_cents,
                        ),
                        else_=0,
                    )
                ),
                0,
            ).label("income"),
            func.coalesce(
                func.sum(
                    case(
                        (
                            Transaction.type == TransactionType.expense,
                            Transaction.amount_cents,
                        ),
                        else_=0,
                    )
                ),
                0,
            ).label("expenses"),
        ).where(*self._window(period))
        row = self.session.execute(stmt).one()
        return int(row.income or 0), int(row.expenses or 0)

    def expense_breakdown(self, period: Period) -> list[dict[str, object]]:
        stmt = (
            select(Category.name, func.sum(Transaction.amount_cents).label("total"))
            .join(Category, Category.id == Transaction.category_id)
            .where(*self._window(period), Transaction.type == TransactionType.expense)
            .group_by(Category.name)
            .order_by(Category.name.asc())
        )
        return [
            {"name": row.name, "total": _as_amount(row.total)}
            for row in self.session.execute(stmt).all()
        ]

    @guarded("Failed to fetch transaction summary")
    def summary(self, period: Optional[Period] = None) -> dict[str, object]:
        period = period or Period()
        income_cents, expense_cents = self.totals(period)
        income = cents_to_amount(income_cents)
        expenses = cents_to_amount(expense_cents)
        return {
            "totalIncome": income,
            "totalExpenses": expenses,
            "balance": (income - expenses).quantize(CENT),
            "categories": self.expense_breakdown(period),
            "period": period.describe(),
        }


class ReportService:
    """System-wide reporting across all users."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def _count(self, *conditions: ColumnElement[bool], column=None) -> int:
        target = column if column is not None else User.id
        stmt = select(func.count(target)).where(*conditions)
        return int(self.session.execute(stmt).scalar_one() or 0)

    def user_activity(self, period: Period) -> dict[str, int]:
        lower, upper = period.datetime_bounds()
        return {
            "totalUsers": self._count(_active_users()),
            "newRegistrations": self._count(
                _active_users(), User.created_at >= lower, User.created_at < upper
            ),
            "activeUsers": self._count(
                _active_users(), User.status == UserStatus.active
            ),
            "deactivatedUsers": self._count(
                _active_users(), User.status == UserStatus.deactivated
            ),
        }

    def financial_performance(self, period: Period) -> dict[str, object]:
        window = (
            _active_transactions(),
            Transaction.date >= period.start,
            Transaction.date <= period.end,
        )
        stmt = select(
            func.coalesce(
                func.sum(
                    case(
                        (
                            Transaction.type == TransactionType.income,
                            Transaction.amount_cents,
                        ),
                        else_=0,
                    )
                ),
                0,
            ).label("income"),
            func.coalesce(
                func.sum(
                    case(
                        (
                            Transaction.type == TransactionType.expense,
                            Transaction.amount_cents,
                        ),
                        else_=0,
                    )
                ),
                0,
            ).label("expenses"),
            func.count(Transaction.id).label("count"),
        ).where(*window)
        row = self.session.execute(stmt).one()
        income = _as_amount(row.income)
        expenses = _as_amount(row.expenses)
        return {
            "platformTotalIncome": income,
            "platformTotalExpenses": expenses,
            "platformNetBalance": (income - expenses).quantize(CENT),
            "totalTransactionsCount": int(row.count or 0),
        }

    def security_and_logs(self, period: Period) -> dict[str, int]:
        lower, upper = period.datetime_bounds()
        window = (LoginLog.login_at >= lower, LoginLog.login_at < upper)
        stmt = select(
            func.count(LoginLog.id).label("total"),
            func.coalesce(
                func.sum(case((LoginLog.status == LoginStatus.success, 1), else_=0)),
                0,
            ).label("successes"),
            func.coalesce(
                func.sum(case((LoginLog.status == LoginStatus.failed, 1), else_=0)),
                0,
            ).label("failures"),
        ).where(*window)
        row = self.session.execute(stmt).one()
        unique_users = self._count(
            *window,
            LoginLog.status == LoginStatus.success,
            LoginLog.user_id.is_not(None),
            column=func.distinct(LoginLog.user_id),
        )
        return {
            "totalLoginAttempts": int(row.total or 0),
            "successfulLogins": int(row.successes or 0),
            "failedLogins": int(row.failures or 0),
            "uniqueUsersLoggedIn": unique_users,
        }

    def top_expense_categories(
        self, period: Period, limit: int = TOP_CATEGORIES_LIMIT
    ) -> list[dict[str, object]]:
        total = func.sum(Transaction.amount_cents).label("total")
        stmt = (
            select(Category.id, Category.name, total)
            .join(Category, Category.id == Transaction.category_id)
            .where(
                _active_transactions(),
                Transaction.type == TransactionType.expense,
                Transaction.date >= period.start,
                Transaction.date <= period.end,
            )
            .group_by(Category.id, Category.name)
            .order_by(total.desc(), Category.name.asc())
            .limit(limit)
        )
        return [
            {"name": row.name, "total": _as_amount(row.total)}
            for row in self.session.execute(stmt).all()
        ]

    @guarded("Failed to generate admin overview report")
    def admin_overview(self, period: Period) -> dict[str, object]:
        if not period.is_bounded:
            raise InvalidInput(
                "startDate and endDate are required query parameters (YYYY-MM-DD)."
            )
        return {
            "period": period.describe(),
            "userActivity": self.user_activity(period),
            "financialPerformance": self.financial_performance(period),
            "securityAndLogs": self.security_and_logs(period),
            "topCategoriesSystemWide": self.top_expense_categories(period),
        }


class AccessService:
    """Public transaction and reporting operations with ownership checks."""

    def __init__(self, session: Session, caller: Caller) -> None:
        self.session = session
        self.caller = caller
        self.transactions = TransactionService(session, caller.user_id)
        self.categories = CategoryService(session, caller.user_id)
        self.metrics = MetricsService(session, caller.user_id)

    def _require_admin(self) -> None:
        if not self.caller.is_admin:
            raise Forbidden("Access denied. Admin privileges required.")

    def create_transaction(self, data: TransactionIn) -> Transaction:
        return self.transactions.create(data)

    def list_transactions(self, filters: TransactionFilters) -> Page[Transaction]:
        return self.transactions.list(filters)

    def get_transaction(self, transaction_id: int) -> Transaction:
        return self.transactions.get(transaction_id)

    def update_transaction(
        self, transaction_id: int, data: TransactionPatch
    ) -> Transaction:
        return self.transactions.update(transaction_id, data)

    def delete_transaction(self, transaction_id: int) -> None:
        self.transactions.soft_delete(transaction_id)

    def summary(self, period: Period) -> dict[str, object]:
        return self.metrics.summary(period)

    def list_categories(self) -> Sequence[Category]:
        return self.categories.list_visible()

    def list_all_transactions(
        self, filters: AdminTransactionFilters
    ) -> Page[Transaction]:
        self._require_admin()
        return self.transactions.list_all(filters)

    def overview(self, period: Period) -> dict[str, object]:
        self._require_admin()
        return ReportService(self.session).admin_overview(period)

    def view_user(self, user_id: int) -> User:
        if not self.caller.is_admin and self.caller.user_id != user_id:
            raise Forbidden("Access denied. You can only view your own profile.")
        return UserService(self.session).get(user_id)


@dataclass
class LoginResult:
    token: str
    user: User


@dataclass
class LoginInfo:
    success_count: int
    failed_count: int
    last_successful_login: Optional[LoginLog] = None
    last_failed_login: Optional[LoginLog] = None


class UserService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def _taken(self, column, value: str, exclude_id: Optional[int] = None) -> bool:
        stmt = select(User.id).where(column == value)
        if exclude_id is not None:
            stmt = stmt.where(User.id != exclude_id)
        return self.session.scalar(stmt.limit(1)) is not None

    def _commit_unique(self) -> None:
        # A concurrent writer can claim the name between the check and the commit.
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise Conflict("Username or email is already in use") from exc

    @guarded("Database error: Unable to create user")
    def register(self, data: RegisterIn) -> User:
        if self._taken(User.username, data.username):
            raise Conflict("Username is already taken")
        if self._taken(User.email, str(data.email)):
            raise Conflict("Email is already registered")
        user = User(
            username=data.username,
            email=str(data.email),
            password_hash=hash_password(data.password),
            first_name=data.first_name,
            last_name=data.last_name,
            sex=data.sex,
            date_of_birth=data.date_of_birth,
            role=UserRole.user,
            status=UserStatus.active,
        )
        self.session.add(user)
        self._commit_unique()
        logger.info(f"user_registered: id={user.id} username={user.username!r}")
        return user

    @guarded("Unable to fetch user details")
    def get(self, user_id: int) -> User:
        user = self.session.get(User, user_id)
        if not user or user.is_deleted:
            raise NotFound("User not found")
        return user

    @guarded("Update failed")
    def update_profile(self, user_id: int, data: UserUpdateIn) -> User:
        user = self.get(user_id)
        fields = data.model_fields_set
        if data.username and data.username != user.username:
            if self._taken(User.username, data.username, exclude_id=user.id):
                raise Conflict("Username already taken")
            user.username = data.username
        if data.email and str(data.email) != user.email:
            if self._taken(User.email, str(data.email), exclude_id=user.id):
                raise Conflict("Email already registered")
            user.email = str(data.email)
        for name in ("first_name", "last_name", "sex", "date_of_birth"):
            if name in fields:
                setattr(user, name, getattr(data, name))
        self._commit_unique()
        logger.info(f"user_updated: id={user.id} fields={','.join(sorted(fields))}")
        return user

    @guarded("Password update failed")
    def change_password(self, user_id: int, data: PasswordChangeIn) -> None:
        user = self.get(user_id)
        if not verify_password(data.currentPassword, user.password_hash):
            raise InvalidInput("Incorrect current password")
        user.password_hash = hash_password(data.newPassword)
        self.session.commit()
        logger.info(f"password_changed: id={user.id}")

    @guarded("Account deletion failed")
    def delete_account(self, user_id: int) -> None:
        user = self.get(user_id)
        user.deleted_at = datetime.utcnow()
        user.status = UserStatus.deactivated
        self.session.commit()
        logger.info(f"user_deleted: id={user.id}")

    @guarded("Unable to fetch users")
    def list_users(
        self,
        search: Optional[str] = None,
        page: Optional[int] = None,
        page_size: Optional[int] = None,
    ) -> Page[User]:
        page, size = _paging(page, page_size)
        conditions: list[ColumnElement[bool]] = [_active_users()]
        if search and search.strip():
            conditions.append(
                or_(
                    _ilike(User.username, search),
                    _ilike(User.email, search),
                    _ilike(User.first_name, search),
                    _ilike(User.last_name, search),
                )
            )
        total = int(
            self.session.execute(
                select(func.count(User.id)).where(*conditions)
            ).scalar_one()
            or 0
        )
        stmt = (
            select(User)
            .where(*conditions)
            .order_by(User.created_at.desc(), User.id.desc())
            .offset((page - 1) * size)
            .limit(size)
        )
        items = list(self.session.scalars(stmt).all())
        return Page(items=items, total_items=total, page=page, page_size=size)

    @guarded("Status update failed")
    def set_status(self, admin_id: int, target_id: int, status: UserStatus) -> User:
        if admin_id == target_id:
            raise Forbidden("You cannot deactivate or activate your own account.")
        user = self.get(target_id)
        user.status = status
        self.session.commit()
        logger.info(
            f"user_status_changed: id={user.id} status={status.value} by={admin_id}"
        )
        return user

    @guarded("Admin password reset failed")
    def admin_reset_password(self, target_id: int, new_password: str) -> User:
        user = self.get(target_id)
        user.password_hash = hash_password(new_password)
        self.session.commit()
        logger.info(f"password_reset_by_admin: id={user.id}")
        return user

    @guarded("Unable to fetch login information")
    def login_info(self, user_id: int) -> LoginInfo:
        def count(status: LoginStatus) -> int:
            stmt = select(func.count(LoginLog.id)).where(
                LoginLog.user_id == user_id, LoginLog.status == status
            )
            return int(self.session.execute(stmt).scalar_one() or 0)

        def last(status: LoginStatus) -> Optional[LoginLog]:
            stmt = (
                select(LoginLog)
                .where(LoginLog.user_id == user_id, LoginLog.status == status)
                .order_by(LoginLog.login_at.desc(), LoginLog.id.desc())
                .limit(1)
            )
            return self.session.scalar(stmt)

        return LoginInfo(
            success_count=count(LoginStatus.success),
            failed_count=count(LoginStatus.failed),
            last_successful_login=last(LoginStatus.success),
            last_failed_login=last(LoginStatus.failed),
        )

    @guarded("Unable to process password reset request")
    def request_password_reset(self, email: str, notifier: Notifier) -> None:
        user = self.session.scalar(
            select(User).where(User.email == email, _active_users())
        )
        if not user:
            raise NotFound("No user found with this email")

        settings = get_settings()
        token = issue_reset_token(user.id, user.email)
        link = f"{settings.client_url.rstrip('/')}/reset-password/{token}"
        body = reset_password_message(
            user.username, link, settings.reset_token_ttl_minutes
        )
        try:
            notifier.send(user.email, "Password Reset Request", body)
        except Exception as exc:
            logger.exception(f"reset_email_failed: user_id={user.id}")
            raise InternalFailure(
                "Error sending email. Please try again later."
            ) from exc
        logger.info(f"reset_email_sent: user_id={user.id}")

    @guarded("Password reset failed")
    def reset_password(self, token: str, new_password: str) -> None:
        try:
            payload = read_reset_token(token)
        except TokenExpired as exc:
            raise InvalidInput("Reset token has expired") from exc
        except TokenInvalid as exc:
            raise InvalidInput("Invalid reset token") from exc

        user = self.session.get(User, payload["uid"])
        if not user or user.is_deleted:
            raise InvalidInput("Invalid or expired token")
        user.password_hash = hash_password(new_password)
        self.session.commit()
        logger.info(f"password_reset: id={user.id}")


class AuthService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def _record(
        self,
        user_id: Optional[int],
        status: LoginStatus,
        ip_address: Optional[str],
        user_agent: Optional[str],
    ) -> None:
        self.session.add(
            LoginLog(
                user_id=user_id,
                ip_address=ip_address,
                user_agent=user_agent,
                status=status,
            )
        )
        self.session.commit()

    def login(
        self,
        identifier: str,
        password: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> LoginResult:
        user: Optional[User] = None
        try:
            user = self.session.scalar(
                select(User).where(
                    or_(User.email == identifier, User.username == identifier),
                    _active_users(),
                )
            )
            if not user:
                self._record(None, LoginStatus.failed, ip_address, user_agent)
                logger.info("login_failed: reason=unknown_identifier")
                raise Unauthorized("Invalid email/username or password")

            if user.status == UserStatus.deactivated:
                self._record(user.id, LoginStatus.failed, ip_address, user_agent)
                logger.info(f"login_failed: user_id={user.id} reason=deactivated")
                raise Forbidden(
                    "Your account has been deactivated. Please contact admin."
                )

            if not verify_password(password, user.password_hash):
                self._record(user.id, LoginStatus.failed, ip_address, user_agent)
                logger.info(f"login_failed: user_id={user.id} reason=bad_password")
                raise Unauthorized("Invalid email or password")

            token = issue_access_token(user.id, user.role.value)
            self._record(user.id, LoginStatus.success, ip_address, user_agent)
            logger.info(f"login_succeeded: user_id={user.id}")
            return LoginResult(token=token, user=user)
        except ServiceError:
            raise
        except Exception as exc:
            self.session.rollback()
            logger.exception("login_error")
            try:
                self._record(
                    user.id if user else None,
                    LoginStatus.failed,
                    ip_address,
                    user_agent,
                )
            except Exception:
                self.session.rollback()
                logger.exception("login_log_write_failed")
            raise InternalFailure("Login failed") from exc
