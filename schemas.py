import datetime as dt
import re
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from models import LoginStatus, Sex, TransactionType, UserStatus

_PASSWORD_RULES = (
    re.compile(r"[a-z]"),
    re.compile(r"[A-Z]"),
    re.compile(r"[0-9]"),
    re.compile(r"[!@#$%^&*]"),
)


def check_password_strength(value: str) -> str:
    if len(value) < 8:
        raise ValueError("Password must be at least 8 characters long.")
    if not all(rule.search(value) for rule in _PASSWORD_RULES):
        raise ValueError(
            "Password must include at least one uppercase letter, one lowercase "
            "letter, one number, and one special character."
        )
    return value


class TransactionIn(BaseModel):
    amount: Decimal = Field(..., gt=0, max_digits=15, decimal_places=2)
    type: TransactionType
    category: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    date: dt.date

    @field_validator("category")
    @classmethod
    def _category_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Category name is required.")
        return value.strip()


class TransactionPatch(BaseModel):
    """Partial update; only fields present in the payload are applied."""

    model_config = ConfigDict(extra="forbid")

    amount: Optional[Decimal] = Field(default=None, gt=0, max_digits=15, decimal_places=2)
    type: Optional[TransactionType] = None
    category: Optional[str] = Field(default=None, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    date: Optional[dt.date] = None


class RegisterIn(BaseModel):
    username: str = Field(..., min_length=3, max_length=30)
    email: EmailStr
    password: str
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    sex: Optional[Sex] = None
    date_of_birth: Optional[dt.date] = None

    @field_validator("password")
    @classmethod
    def _strong_password(cls, value: str) -> str:
        return check_password_strength(value)


class LoginIn(BaseModel):
    identifier: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class UserUpdateIn(BaseModel):
    username: Optional[str] = Field(default=None, min_length=3, max_length=30)
    email: Optional[EmailStr] = None
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    sex: Optional[Sex] = None
    date_of_birth: Optional[dt.date] = None


class PasswordChangeIn(BaseModel):
    currentPassword: str = Field(..., min_length=1)
    newPassword: str

    @field_validator("newPassword")
    @classmethod
    def _strong_password(cls, value: str) -> str:
        return check_password_strength(value)


class ForgotPasswordIn(BaseModel):
    email: EmailStr


class ResetPasswordIn(BaseModel):
    token: str = Field(..., min_length=1)
    newPassword: str

    @field_validator("newPassword")
    @classmethod
    def _strong_password(cls, value: str) -> str:
        return check_password_strength(value)


class AdminResetPasswordIn(BaseModel):
    userId: int
    defaultPassword: str = Field(..., min_length=1)


class UserStatusIn(BaseModel):
    userId: int
    status: UserStatus


class LoginAttemptOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    login_at: dt.datetime
    ip_address: Optional[str]
    user_agent: Optional[str]
    status: LoginStatus
