from datetime import datetime

from pydantic import field_validator
from sqlmodel import Field, SQLModel

from ..core.timeutils import utc_now
from .Account import check_password

class PasswordResetToken(SQLModel, table=True):
    __tablename__ = "password_reset_tokens"

    token: str = Field(primary_key=True)
    account_id: int = Field(index=True, foreign_key="accounts.id")
    issued_at: datetime = Field(default_factory=utc_now)
    expires_at: datetime
    consumed_at: datetime | None = Field(default=None, nullable=True)
    superseded_at: datetime | None = Field(default=None, nullable=True)

    @property
    def is_live(self) -> bool:
        return self.consumed_at is None and self.superseded_at is None

# Properties to receive via API
class ForgotPasswordRequest(SQLModel):
    login: str

    @field_validator("login")
    @classmethod
    def strip_login(cls, value: str) -> str:
        return value.strip().lower()

class ResetPasswordRequest(SQLModel):
    token: str = Field(min_length=1)
    new_password: str

    @field_validator("new_password")
    @classmethod
    def validate_password(cls, value: str) -> str:
        return check_password(value)
