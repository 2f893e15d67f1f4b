from dataclasses import dataclass
from typing import Iterable

CATEGORIES = ("user", "patient", "medical", "appointment", "prescription", "lab", "system")


@dataclass(frozen=True)
class Permission:
    id: str
    category: str
    description: str


PERMISSIONS = (
    # user
    Permission("user.create", "user", "Create user accounts"),
    Permission("user.read", "user", "View user accounts"),
    Permission("user.update", "user", "Modify user accounts"),
    Permission("user.delete", "user", "Delete user accounts"),
    Permission("user.approve", "user", "Approve or reject registrations"),
    # patient
    Permission("patient.create", "patient", "Register patients"),
    Permission("patient.read", "patient", "View patient information"),
    Permission("patient.update", "patient", "Modify patient information"),
    Permission("patient.delete", "patient", "Delete patient records"),
    # medical records
    Permission("medical.create", "medical", "Create medical records"),
    Permission("medical.read", "medical", "View medical records"),
    Permission("medical.update", "medical", "Modify medical records"),
    Permission("medical.delete", "medical", "Delete medical records"),
    # appointment
    Permission("appointment.create", "appointment", "Schedule appointments"),
    Permission("appointment.read", "appointment", "View appointments"),
    Permission("appointment.update", "appointment", "Modify appointments"),
    Permission("appointment.delete", "appointment", "Cancel appointments"),
    # prescription
    Permission("prescription.create", "prescription", "Issue prescriptions"),
    Permission("prescription.read", "prescription", "View prescriptions"),
    Permission("prescription.update", "prescription", "Modify prescriptions"),
    Permission("prescription.delete", "prescription", "Delete prescriptions"),
    # lab
    Permission("lab.create", "lab", "Create lab results"),
    Permission("lab.read", "lab", "View lab results"),
    Permission("lab.update", "lab", "Modify lab results"),
    Permission("lab.delete", "lab", "Delete lab results"),
    # system
    Permission("system.settings", "system", "Manage system settings and the permission matrix"),
    Permission("system.backup", "system", "Manage backups"),
    Permission("system.audit", "system", "View and verify the audit log"),
    Permission("system.reports", "system", "Generate reports"),
)


def _build_index(permissions: Iterable[Permission]) -> dict[str, Permission]:
    index: dict[str, Permission] = {}
    for permission in permissions:
        if permission.category not in CATEGORIES:
            raise ValueError(f"Permission {permission.id!r} uses unknown category {permission.category!r}")
        if permission.id in index:
            raise ValueError(f"Permission {permission.id!r} is declared more than once")
        index[permission.id] = permission
    return index


CATALOG = _build_index(PERMISSIONS)
ALL_PERMISSIONS = frozenset(CATALOG)


def is_known(permission_id: str) -> bool:
    return permission_id in CATALOG


def unknown(permission_ids: Iterable[str]) -> list[str]:
    return sorted({permission_id for permission_id in permission_ids if permission_id not in CATALOG})


def by_category() -> dict[str, list[str]]:
    grouped: dict[str, list[str]] = {category: [] for category in CATEGORIES}
    for permission in PERMISSIONS:
        grouped[permission.category].append(permission.id)
    return grouped
