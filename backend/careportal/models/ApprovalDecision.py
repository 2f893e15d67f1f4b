from datetime import datetime
from enum import Enum

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

from ..core.timeutils import utc_now

class Decision(str, Enum):
    APPROVED = "approved"
    REJECTED = "rejected"

class ApprovalDecision(SQLModel, table=True):
    """Append-only record of a review outcome, one per account review cycle."""
    __tablename__ = "approval_decisions"
    __table_args__ = (UniqueConstraint("account_id", "review_cycle", name="uq_decision_per_cycle"),)

    id: int | None = Field(default=None, primary_key=True)
    account_id: int = Field(index=True, foreign_key="accounts.id")
    review_cycle: int
    decision: Decision
    reviewer_id: int | None = Field(default=None, nullable=True)  # None when policy approved the account
    notes: str | None = Field(default=None, nullable=True)
    decided_at: datetime = Field(default_factory=utc_now)

class DecisionRequest(SQLModel):
    notes: str | None = Field(default=None, max_length=1000)
