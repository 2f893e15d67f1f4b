import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, Mapping

from ..models.Role import Role
from . import catalog

logger = logging.getLogger(__name__)

DEFAULT_ROLE_PERMISSIONS: dict[Role, tuple[str, ...]] = {
    Role.DOCTOR: (
        "patient.read", "patient.update",
        "medical.create", "medical.read", "medical.update",
        "appointment.create", "appointment.read", "appointment.update",
        "prescription.create", "prescription.read", "prescription.update",
        "lab.create", "lab.read", "lab.update",
    ),
    Role.NURSE: (
        "patient.read", "patient.update",
        "medical.read", "medical.update",
        "appointment.read", "appointment.update",
        "prescription.read",
        "lab.read",
    ),
    Role.PHARMACIST: ("prescription.read", "prescription.update", "patient.read"),
    Role.LAB_TECHNICIAN: ("lab.create", "lab.read", "lab.update", "patient.read"),
    Role.STAFF: (
        "patient.create", "patient.read", "patient.update",
        "appointment.create", "appointment.read", "appointment.update",
    ),
    Role.PATIENT: ("patient.read", "appointment.read", "prescription.read", "lab.read"),
    Role.EXTERNAL_REQUESTER: ("patient.read", "medical.read"),
}


def _as_role(role) -> Role | None:
    try:
        return Role(role)
    except ValueError:
        return None


@dataclass(frozen=True)
class PermissionMatrix:
    """
    Immutable snapshot of role -> permissions at one version.

    The admin entry is never stored: it is always the whole catalog.
    """
    version: int
    grants: Mapping[Role, frozenset[str]] = field(default_factory=dict)

    @classmethod
    def build(cls, version: int, roles: Mapping, strict: bool = True) -> "PermissionMatrix":
        index: dict[Role, frozenset[str]] = {}
        for key, permission_ids in roles.items():
            role = _as_role(key)
            if role is None or role is Role.ADMIN:
                continue
            permission_ids = set(permission_ids)
            missing = catalog.unknown(permission_ids)
            if missing:
                if strict:
                    raise ValueError(f"Unknown permissions for {role.value}: {', '.join(missing)}")
                logger.warning("Dropping unknown permissions for %s: %s", role.value, missing)
                permission_ids -= set(missing)
            index[role] = frozenset(permission_ids)

        for role in Role:
            index.setdefault(role, frozenset())
        index[Role.ADMIN] = catalog.ALL_PERMISSIONS
        return cls(version=version, grants=MappingProxyType(index))

    @classmethod
    def defaults(cls, version: int = 0) -> "PermissionMatrix":
        return cls.build(version, DEFAULT_ROLE_PERMISSIONS)

    def has_permission(self, role, permission_id: str) -> bool:
        role = _as_role(role)
        if role is None:
            return False
        return permission_id in self.grants[role]

    def permissions_for(self, role) -> frozenset[str]:
        role = _as_role(role)
        return self.grants[role] if role is not None else frozenset()

    def as_dict(self) -> dict[str, list[str]]:
        return {role.value: sorted(self.grants[role]) for role in Role}


def default_document() -> dict[str, list[str]]:
    return {role.value: sorted(permission_ids) for role, permission_ids in DEFAULT_ROLE_PERMISSIONS.items()}


def merge(current: Mapping[str, Iterable[str]], changes: Mapping[Role, Iterable[str]]) -> dict[str, list[str]]:
    roles = {key: sorted(set(value)) for key, value in current.items()}
    for role, permission_ids in changes.items():
        roles[Role(role).value] = sorted(set(permission_ids))
    return roles
