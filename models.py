from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base

CENT = Decimal("0.01")


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"


class UserRole(str, Enum):
    user = "USER"
    admin = "ADMIN"


class UserStatus(str, Enum):
    active = "ACTIVE"
    deactivated = "DEACTIVATED"


class Sex(str, Enum):
    male = "MALE"
    female = "FEMALE"
    other = "OTHER"


class LoginStatus(str, Enum):
    success = "SUCCESS"
    failed = "FAILED"


def _values_enum(enum_cls: type[Enum], name: str) -> SAEnum:
    return SAEnum(
        enum_cls,
        name=name,
        values_callable=lambda members: [member.value for member in members],
    )


def cents_to_amount(cents: int) -> Decimal:
    return (Decimal(int(cents)) / 100).quantize(CENT)


def amount_to_cents(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).to_integral_value())


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    username: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    email: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    first_name: Mapped[Optional[str]] = mapped_column(String(100))
    last_name: Mapped[Optional[str]] = mapped_column(String(100))
    sex: Mapped[Optional[Sex]] = mapped_column(_values_enum(Sex, "sex"))
    date_of_birth: Mapped[Optional[date]] = mapped_column(Date)
    role: Mapped[UserRole] = mapped_column(
        _values_enum(UserRole, "userrole"), default=UserRole.user, nullable=False
    )
    status: Mapped[UserStatus] = mapped_column(
        _values_enum(UserStatus, "userstatus"),
        default=UserStatus.active,
        nullable=False,
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="user"
    )
    categories: Mapped[list["Category"]] = relationship(
        "Category", back_populates="user"
    )

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.admin


class Category(Base, TimestampMixin):
    """A global category when ``user_id`` is null, otherwise private to one user.

    Names are unique per scope case-insensitively; the resolver keeps that
    invariant, there is no table constraint for it.
    """

    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    user_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"))

    user: Mapped[Optional["User"]] = relationship("User", back_populates="categories")
    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="category"
    )

    __table_args__ = (Index("ix_categories_user_name", "user_id", "name"),)

    @property
    def is_global(self) -> bool:
        return self.user_id is None


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    amount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )
    description: Mapped[Optional[str]] = mapped_column(Text)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    user: Mapped["User"] = relationship("User", back_populates="transactions")
    category: Mapped["Category"] = relationship(
        "Category", back_populates="transactions"
    )

    __table_args__ = (
        Index("ix_transactions_user_date", "user_id", "date"),
        Index("ix_transactions_user_type_date", "user_id", "type", "date"),
        CheckConstraint("amount_cents > 0", name="ck_transactions_amount_positive"),
    )

    @property
    def amount(self) -> Decimal:
        return cents_to_amount(self.amount_cents)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


class LoginLog(Base):
    """One row per authentication attempt. Rows are never updated."""

    __tablename__ = "login_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"))
    login_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    ip_address: Mapped[Optional[str]] = mapped_column(String(45))
    user_agent: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[LoginStatus] = mapped_column(
        _values_enum(LoginStatus, "loginstatus"), nullable=False
    )

    user: Mapped[Optional["User"]] = relationship("User")

    __table_args__ = (
        Index("ix_login_logs_login_at", "login_at"),
        Index("ix_login_logs_user_status", "user_id", "status"),
    )
