"""
Onboarding policy tables.

These are the only place where a role decides an onboarding rule: whether an
account needs an administrator's review after its email is verified, whether
the role may be chosen at self-registration, and which profile fields the
registration form must carry for it. Review and registration roles come from
settings (``REVIEW_REQUIRED_ROLES``, ``SELF_REGISTRATION_ROLES``) so a
deployment can change them without touching code.
"""
from typing import Any

from ..core.settings import settings
from ..models.Role import Role

REQUIRED_PROFILE_FIELDS: dict[Role, tuple[str, ...]] = {
    Role.PATIENT: (),
    Role.DOCTOR: ("license_number", "specialization"),
    Role.NURSE: ("license_number",),
    Role.PHARMACIST: ("license_number",),
    Role.LAB_TECHNICIAN: ("license_number",),
    Role.STAFF: ("department",),
    Role.EXTERNAL_REQUESTER: ("organization_name", "organization_type"),
    Role.ADMIN: (),
}


def review_required_roles() -> frozenset[Role]:
    return frozenset(settings.REVIEW_REQUIRED_ROLES)


def requires_review(role: Role) -> bool:
    return Role(role) in review_required_roles()


def self_registration_roles() -> frozenset[Role]:
    # Administrators are only ever created by the bootstrap seed.
    return frozenset(settings.SELF_REGISTRATION_ROLES) - {Role.ADMIN}


def validate_registration(role: Role, profile: dict[str, Any]) -> list[dict[str, str]]:
    """Return field-level errors for a registration; empty when it is acceptable."""
    errors = []
    if role not in self_registration_roles():
        errors.append({"field": "role", "message": f"Role '{role.value}' cannot self-register"})
        return errors

    for field in REQUIRED_PROFILE_FIELDS.get(role, ()):
        value = profile.get(field)
        if value is None or (isinstance(value, str) and not value.strip()):
            errors.append({"field": f"profile.{field}", "message": f"'{field}' is required for role '{role.value}'"})
    return errors


def describe() -> dict[str, dict[str, Any]]:
    return {
        role.value: {
            "self_registration": role in self_registration_roles(),
            "requires_review": requires_review(role),
            "required_profile_fields": list(REQUIRED_PROFILE_FIELDS.get(role, ())),
        }
        for role in Role
    }
