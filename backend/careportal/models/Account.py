import re
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import EmailStr, field_validator
from sqlalchemy import Column, JSON
from sqlmodel import Field, SQLModel

from ..core.timeutils import utc_now
from .Role import Role

LOGIN_PATTERN = re.compile(r"^[a-z0-9_.@+-]{3,254}$")
PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 128


class ApprovalState(str, Enum):
    PENDING_EMAIL_VERIFICATION = "pending_email_verification"
    PENDING_ADMIN_APPROVAL = "pending_admin_approval"
    APPROVED = "approved"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self in (ApprovalState.APPROVED, ApprovalState.REJECTED)

# ==========================================
# SQLModel (Database Entity + Base Pydantic)
# ==========================================
class Account(SQLModel, table=True):
    __tablename__ = "accounts"

    id: int | None = Field(default=None, primary_key=True)
    login: str = Field(unique=True, index=True, nullable=False)
    email: str | None = Field(default=None, unique=True, index=True, nullable=True)
    hashed_password: str = Field(nullable=False)
    full_name: str | None = Field(default=None, nullable=True)
    role: Role = Field(index=True)
    profile: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    email_verified: bool = Field(default=False)
    approval_state: ApprovalState = Field(default=ApprovalState.PENDING_EMAIL_VERIFICATION, index=True)
    review_cycle: int = Field(default=1)  # bumped each time a rejected login re-registers
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    last_login_at: datetime | None = Field(default=None, nullable=True)

# ==========================================
# Pydantic Models (DTOs)
# ==========================================

def normalize_login(value: str) -> str:
    value = value.strip().lower()
    if not LOGIN_PATTERN.match(value):
        raise ValueError(
            "Login must be 3 to 254 characters of letters, numbers, '.', '_', '-', '+' or '@'"
        )
    return value


def check_password(value: str) -> str:
    if not PASSWORD_MIN_LENGTH <= len(value) <= PASSWORD_MAX_LENGTH:
        raise ValueError(
            f"Password must be between {PASSWORD_MIN_LENGTH} and {PASSWORD_MAX_LENGTH} characters"
        )
    return value


# Properties to receive via API on self-registration
class RegisterRequest(SQLModel):
    login: str
    password: str
    role: Role
    email: EmailStr | None = None
    full_name: str | None = Field(default=None, max_length=200)
    profile: dict[str, Any] = Field(default_factory=dict)

    @field_validator("login")
    @classmethod
    def validate_login(cls, value: str) -> str:
        return normalize_login(value)

    @field_validator("password")
    @classmethod
    def validate_password(cls, value: str) -> str:
        return check_password(value)

    @field_validator("email")
    @classmethod
    def lower_email(cls, value: str | None) -> str | None:
        return value.lower() if value else value

# Properties to receive via API on login
class LoginRequest(SQLModel):
    login: str
    password: str

    @field_validator("login")
    @classmethod
    def strip_login(cls, value: str) -> str:
        return value.strip().lower()

class ResendRequest(SQLModel):
    login: str

    @field_validator("login")
    @classmethod
    def strip_login(cls, value: str) -> str:
        return value.strip().lower()

class ChangePasswordRequest(SQLModel):
    current_password: str
    new_password: str

    @field_validator("new_password")
    @classmethod
    def validate_password(cls, value: str) -> str:
        return check_password(value)

# Properties to return via API
class AccountResponse(SQLModel):
    id: int
    login: str
    email: str | None = None
    full_name: str | None = None
    role: Role
    email_verified: bool
    approval_state: ApprovalState
    created_at: datetime
    last_login_at: datetime | None = None

class AccountDetail(AccountResponse):
    profile: dict[str, Any] = Field(default_factory=dict)
    permissions: list[str] = Field(default_factory=list)

class RegisterResponse(SQLModel):
    account_id: int
    approval_state: ApprovalState
    message: str

class PendingAccountsPage(SQLModel):
    items: list[AccountDetail]
    total: int
    page: int
    limit: int
    pages: int
