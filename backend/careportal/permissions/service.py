import logging
import threading
from typing import Iterable, Mapping

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from ..core.database import with_store_retry
from ..core.errors import AccountNotFound, MatrixConflict, ValidationFailed
from ..models.Account import Account, ApprovalState
from ..models.Role import Role
from ..models.RolePermission import AccountPermissionOverride, RolePermissionDocument
from . import catalog
from .matrix import PermissionMatrix, default_document, merge

logger = logging.getLogger(__name__)


def _latest_document(session: Session) -> RolePermissionDocument | None:
    statement = select(RolePermissionDocument).order_by(col(RolePermissionDocument.version).desc())
    return session.exec(statement).first()


def _validate_changes(changes: Mapping) -> dict[Role, list[str]]:
    errors = []
    validated: dict[Role, list[str]] = {}
    for key, permission_ids in changes.items():
        try:
            role = Role(key)
        except ValueError:
            errors.append({"field": "role", "message": f"Unknown role '{key}'"})
            continue
        if role is Role.ADMIN:
            errors.append({"field": "role", "message": "The admin role always holds every permission"})
            continue
        permission_ids = list(permission_ids)
        for permission_id in catalog.unknown(permission_ids):
            errors.append({"field": "permissions", "message": f"Unknown permission '{permission_id}'"})
        validated[role] = permission_ids
    if errors:
        raise ValidationFailed(errors)
    return validated


class AuthorizationEngine:
    """
    Answers allow/deny questions against the current permission matrix.

    The engine keeps one immutable PermissionMatrix and swaps the reference
    whenever a newer version is written or observed in the store, so a
    reader always sees either the whole old matrix or the whole new one.
    """

    def __init__(self, matrix: PermissionMatrix | None = None):
        self._matrix = matrix or PermissionMatrix.defaults()
        self._lock = threading.Lock()

    @property
    def matrix(self) -> PermissionMatrix:
        return self._matrix

    def _swap(self, matrix: PermissionMatrix) -> PermissionMatrix:
        with self._lock:
            if matrix.version != self._matrix.version:
                logger.info("Permission matrix now at version %s", matrix.version)
            self._matrix = matrix
        return matrix

    # Loading

    def _seed(self, session: Session) -> RolePermissionDocument:
        document = RolePermissionDocument(version=1, roles=default_document())
        session.add(document)
        try:
            session.commit()
        except IntegrityError:
            # Another worker seeded first.
            session.rollback()
            return _latest_document(session)
        session.refresh(document)
        logger.info("Seeded default permission matrix")
        return document

    def load(self, session: Session) -> PermissionMatrix:
        document = _latest_document(session) or self._seed(session)
        return self._swap(PermissionMatrix.build(document.version, document.roles, strict=False))

    def refresh_if_stale(self, session: Session) -> PermissionMatrix:
        current = session.exec(select(func.max(RolePermissionDocument.version))).one()
        if current is None or current != self._matrix.version:
            return self.load(session)
        return self._matrix

    # Questions

    def has_permission(self, role, permission_id: str) -> bool:
        return self._matrix.has_permission(role, permission_id)

    def can(self, session: Session, account: Account, permission_id: str, role: Role | None = None) -> bool:
        """
        ``role`` is the snapshot carried by a session token; it defaults to
        the account's stored role. Unapproved accounts hold no permissions.
        """
        if account.approval_state is not ApprovalState.APPROVED or not account.email_verified:
            return False
        matrix = self.refresh_if_stale(session)

        override = session.exec(
            select(AccountPermissionOverride).where(
                AccountPermissionOverride.account_id == account.id,
                AccountPermissionOverride.permission_id == permission_id,
            )
        ).first()
        if override is not None:
            return override.granted
        return matrix.has_permission(role or account.role, permission_id)

    def effective_permissions(self, session: Session, account: Account, role: Role | None = None) -> list[str]:
        if account.approval_state is not ApprovalState.APPROVED or not account.email_verified:
            return []
        matrix = self.refresh_if_stale(session)
        granted = set(matrix.permissions_for(role or account.role))
        for override in self.overrides_for(session, account.id):
            if override.granted:
                granted.add(override.permission_id)
            else:
                granted.discard(override.permission_id)
        return sorted(granted)

    # Changes

    @with_store_retry
    def replace_roles(self, session: Session, changes: Mapping, updated_by: int | None, expected_version: int | None = None) -> PermissionMatrix:
        """
        Write a new matrix version in which every role in ``changes`` gets
        exactly the given permission set. All roles change in one insert.
        """
        validated = _validate_changes(changes)
        current = _latest_document(session) or self._seed(session)
        if expected_version is not None and expected_version != current.version:
            raise MatrixConflict(current_version=current.version)

        document = RolePermissionDocument(
            version=current.version + 1,
            roles=merge(current.roles, validated),
            updated_by=updated_by,
        )
        session.add(document)
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            raise MatrixConflict(current_version=_latest_document(session).version)

        session.refresh(document)
        logger.info("Matrix version %s written by %s for roles %s", document.version, updated_by, [role.value for role in validated])
        return self._swap(PermissionMatrix.build(document.version, document.roles, strict=False))

    def set_role_permissions(self, session: Session, role: Role, permissions: Iterable[str], updated_by: int | None, expected_version: int | None = None) -> PermissionMatrix:
        return self.replace_roles(session, {role: list(permissions)}, updated_by, expected_version)

    # Account overrides

    def overrides_for(self, session: Session, account_id: int) -> list[AccountPermissionOverride]:
        statement = select(AccountPermissionOverride).where(AccountPermissionOverride.account_id == account_id)
        return list(session.exec(statement).all())

    @with_store_retry
    def set_override(self, session: Session, account_id: int, permission_id: str, granted: bool, created_by: int | None) -> AccountPermissionOverride:
        if session.get(Account, account_id) is None:
            raise AccountNotFound()
        if not catalog.is_known(permission_id):
            raise ValidationFailed([{"field": "permission_id", "message": f"Unknown permission '{permission_id}'"}])

        override = session.exec(
            select(AccountPermissionOverride).where(
                AccountPermissionOverride.account_id == account_id,
                AccountPermissionOverride.permission_id == permission_id,
            )
        ).first()
        if override is None:
            override = AccountPermissionOverride(account_id=account_id, permission_id=permission_id, granted=granted, created_by=created_by)
        else:
            override.granted = granted
            override.created_by = created_by
        session.add(override)
        session.commit()
        session.refresh(override)
        logger.info("Override %s=%s for account %s by %s", permission_id, granted, account_id, created_by)
        return override

    @with_store_retry
    def clear_override(self, session: Session, account_id: int, permission_id: str) -> bool:
        override = session.exec(
            select(AccountPermissionOverride).where(
                AccountPermissionOverride.account_id == account_id,
                AccountPermissionOverride.permission_id == permission_id,
            )
        ).first()
        if override is None:
            return False
        session.delete(override)
        session.commit()
        return True


authorization = AuthorizationEngine()

def get_authorization() -> AuthorizationEngine:
    return authorization
