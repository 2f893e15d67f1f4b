from datetime import datetime

from sqlalchemy import Column, JSON, UniqueConstraint
from sqlmodel import Field, SQLModel

from ..core.timeutils import utc_now
from .Role import Role

class RolePermissionDocument(SQLModel, table=True):
    """
    One revision of the whole role -> permissions matrix.

    Rows are never updated: a write inserts ``version + 1``. Two writers
    starting from the same revision collide on the primary key.
    """
    __tablename__ = "role_permissions"

    version: int = Field(primary_key=True, sa_column_kwargs={"autoincrement": False})
    roles: dict[str, list[str]] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    updated_by: int | None = Field(default=None, nullable=True)
    updated_at: datetime = Field(default_factory=utc_now)

class AccountPermissionOverride(SQLModel, table=True):
    __tablename__ = "account_permission_overrides"
    __table_args__ = (UniqueConstraint("account_id", "permission_id", name="uq_override_per_permission"),)

    id: int | None = Field(default=None, primary_key=True)
    account_id: int = Field(index=True, foreign_key="accounts.id")
    permission_id: str
    granted: bool
    created_by: int | None = Field(default=None, nullable=True)
    created_at: datetime = Field(default_factory=utc_now)

# ==========================================
# Pydantic Models (DTOs)
# ==========================================

class RolePermissionsUpdate(SQLModel):
    role: Role
    permissions: list[str]
    expected_version: int | None = None

class MatrixResponse(SQLModel):
    version: int
    roles: dict[str, list[str]]
    categories: dict[str, list[str]]

class OverrideRequest(SQLModel):
    granted: bool
