from datetime import datetime

from sqlmodel import Field, SQLModel

from ..core.timeutils import utc_now

class VerificationToken(SQLModel, table=True):
    __tablename__ = "verification_tokens"

    token: str = Field(primary_key=True)  # opaque value mailed to the account owner
    account_id: int = Field(index=True, foreign_key="accounts.id")
    issued_at: datetime = Field(default_factory=utc_now)
    expires_at: datetime
    consumed_at: datetime | None = Field(default=None, nullable=True)
    superseded_at: datetime | None = Field(default=None, nullable=True)

    @property
    def is_live(self) -> bool:
        return self.consumed_at is None and self.superseded_at is None

class VerificationResponse(SQLModel):
    message: str
    account_id: int
    approval_state: str
