from datetime import datetime
from enum import Enum

from sqlmodel import SQLModel, Field

from ..core.timeutils import utc_now
from .Role import Role

class TokenKind(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"

class TokenPair(SQLModel):
    access_token: str # JWT Token
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int # Access token lifetime in seconds

class RefreshRequest(SQLModel):
    refresh_token: str

class SessionToken(SQLModel, table=True):
    """Issued credential. ``revoked_at`` is the marker checked on every request."""
    __tablename__ = "session_tokens"

    id: str = Field(primary_key=True) # JWT jti
    account_id: int = Field(index=True, foreign_key="accounts.id")
    kind: TokenKind
    role: Role # snapshot at issuance
    refresh_id: str | None = Field(default=None, index=True, nullable=True) # refresh token this access token was minted with
    issued_at: datetime = Field(default_factory=utc_now)
    expires_at: datetime
    revoked_at: datetime | None = Field(default=None, nullable=True)
