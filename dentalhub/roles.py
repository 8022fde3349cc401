"""Role definitions and the fixed per-role capability matrix."""
from __future__ import annotations

from enum import Enum
from typing import Dict, Iterable, Optional, Union


class UserRole(str, Enum):
    ADMIN = "admin"
    DENTIST = "dentist"
    HYGIENIST = "hygienist"
    STAFF = "staff"
    PATIENT = "patient"


class PermissionRole(str, Enum):
    """Roles a module permission rule may name."""
    ADMIN = "admin"
    DENTIST = "dentist"
    HYGIENIST = "hygienist"
    STAFF = "staff"


# Role used for module checks when neither an explicit nor a current role is known.
FALLBACK_ROLE = PermissionRole.STAFF

STAFF_ROLES = frozenset({UserRole.ADMIN, UserRole.DENTIST, UserRole.HYGIENIST, UserRole.STAFF})

CAPABILITIES = (
    "view_all_patients",
    "edit_patients",
    "view_audit_logs",
    "manage_users",
    "view_analytics",
    "manage_settings",
    "view_medical_records",
    "edit_medical_records",
    "manage_appointments",
    "view_consent_forms",
    "manage_consent_forms",
)


def _capabilities(*granted: str) -> Dict[str, bool]:
    return {name: name in granted for name in CAPABILITIES}


ROLE_CAPABILITIES: Dict[UserRole, Dict[str, bool]] = {
    UserRole.ADMIN: _capabilities(*CAPABILITIES),
    UserRole.DENTIST: _capabilities(
        "view_all_patients",
        "edit_patients",
        "view_analytics",
        "view_medical_records",
        "edit_medical_records",
        "manage_appointments",
        "view_consent_forms",
        "manage_consent_forms",
    ),
    UserRole.STAFF: _capabilities(
        "view_all_patients",
        "edit_patients",
        "view_medical_records",
        "manage_appointments",
        "view_consent_forms",
    ),
    # Patients act on their own records only.
    UserRole.PATIENT: _capabilities(
        "manage_settings",
        "view_medical_records",
        "manage_appointments",
        "view_consent_forms",
    ),
}
# Hygienists share the front-desk staff capabilities.
ROLE_CAPABILITIES[UserRole.HYGIENIST] = dict(ROLE_CAPABILITIES[UserRole.STAFF])

RoleLike = Union[UserRole, PermissionRole, str]


def coerce_role(value: Optional[RoleLike]) -> Optional[UserRole]:
    """Return the UserRole for a raw value, or None when it is empty or unknown."""
    if value is None or value == "":
        return None
    raw = value.value if isinstance(value, Enum) else str(value)
    try:
        return UserRole(raw.strip().lower())
    except ValueError:
        return None


def capabilities_for(user_role: Optional[RoleLike]) -> Dict[str, bool]:
    """Capability flags for a role; users without a role get the patient row."""
    role = coerce_role(user_role) or UserRole.PATIENT
    return dict(ROLE_CAPABILITIES[role])


def has_capability(user_role: Optional[RoleLike], capability: str) -> bool:
    if capability not in CAPABILITIES:
        raise KeyError(f"Unknown capability: {capability}")
    return capabilities_for(user_role)[capability]


def has_role(user_role: Optional[RoleLike], roles: Union[RoleLike, Iterable[RoleLike]]) -> bool:
    role = coerce_role(user_role) or UserRole.PATIENT
    if isinstance(roles, (str, Enum)):
        return role == coerce_role(roles)
    return role in {coerce_role(item) for item in roles}


def is_staff_member(user_role: Optional[RoleLike]) -> bool:
    return coerce_role(user_role) in STAFF_ROLES
