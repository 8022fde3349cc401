"""Navigation entries filtered by role requirements and tenant module rules."""
from __future__ import annotations

from typing import List, NamedTuple, Optional, Tuple

from .permissions import MODULE_LABELS, ModuleKey, TenantModuleAccess
from .roles import RoleLike, UserRole, has_role

STAFF = (UserRole.ADMIN, UserRole.DENTIST, UserRole.HYGIENIST, UserRole.STAFF)
CLINICIANS = (UserRole.ADMIN, UserRole.DENTIST)
ADMIN_ONLY = (UserRole.ADMIN,)
PATIENT_ONLY = (UserRole.PATIENT,)


class NavigationItem(NamedTuple):
    module_key: ModuleKey
    url: str
    required_roles: Tuple[UserRole, ...] = ()

    @property
    def title(self) -> str:
        return MODULE_LABELS[self.module_key]


NAVIGATION_ITEMS: List[NavigationItem] = [
    NavigationItem(ModuleKey.PRACTICE_DASHBOARD, "/", STAFF),
    NavigationItem(ModuleKey.DENTIST_DASHBOARD, "/dentist", CLINICIANS),
    NavigationItem(ModuleKey.PATIENTS, "/patients", STAFF),
    NavigationItem(ModuleKey.MEDICAL_HISTORY, "/patients/history", STAFF),
    NavigationItem(ModuleKey.CONSENT_FORMS, "/patients/consent", STAFF),
    NavigationItem(ModuleKey.TREATMENT_PLANS, "/patients/treatments", STAFF),
    NavigationItem(ModuleKey.INSURANCE_BILLING, "/billing", STAFF),
    NavigationItem(ModuleKey.SCHEDULE, "/schedule", STAFF),
    NavigationItem(ModuleKey.SCHEDULE_MANAGEMENT, "/schedule/manage", STAFF),
    NavigationItem(ModuleKey.AI_SCHEDULING, "/schedule/ai", STAFF),
    NavigationItem(ModuleKey.TELEDENTISTRY, "/teledentistry", STAFF),
    NavigationItem(ModuleKey.TELEDENTISTRY_ENHANCED, "/teledentistry/enhanced", STAFF),
    NavigationItem(ModuleKey.VOICE_TRANSCRIPTION, "/ai/voice", STAFF),
    NavigationItem(ModuleKey.IMAGE_ANALYSIS, "/ai/image", STAFF),
    NavigationItem(ModuleKey.VOICE_AGENT, "/ai/agent", STAFF),
    NavigationItem(ModuleKey.TRANSLATION, "/ai/translation", STAFF),
    NavigationItem(ModuleKey.ANALYTICS, "/ai/analytics", STAFF),
    NavigationItem(ModuleKey.AI_MARKETING, "/ai/marketing", STAFF),
    NavigationItem(ModuleKey.XRAY_DIAGNOSTICS, "/ai/xray", CLINICIANS),
    NavigationItem(ModuleKey.VOICE_TO_CHART, "/ai/voice-to-chart", CLINICIANS),
    NavigationItem(ModuleKey.CHAIRSIDE_ASSISTANT, "/ai/chairside", CLINICIANS),
    NavigationItem(ModuleKey.REPORTS, "/reports", STAFF),
    NavigationItem(ModuleKey.REPORTS_PATIENTS, "/reports/patients", STAFF),
    NavigationItem(ModuleKey.MULTI_PRACTICE_ANALYTICS, "/enterprise/analytics", CLINICIANS),
    NavigationItem(ModuleKey.MARKETING_AUTOMATION, "/enterprise/marketing", CLINICIANS),
    NavigationItem(ModuleKey.SMART_OPERATIONS, "/enterprise/operations", CLINICIANS),
    NavigationItem(ModuleKey.REVENUE_MANAGEMENT, "/enterprise/revenue", CLINICIANS),
    NavigationItem(ModuleKey.MARKET_INTELLIGENCE, "/enterprise/market", CLINICIANS),
    NavigationItem(ModuleKey.REPUTATION_MANAGEMENT, "/enterprise/reputation", CLINICIANS),
    NavigationItem(ModuleKey.LEAD_CONVERSION, "/enterprise/leads", CLINICIANS),
    NavigationItem(ModuleKey.COMPLIANCE_SECURITY, "/enterprise/compliance", CLINICIANS),
    NavigationItem(ModuleKey.PATIENT_CONCIERGE, "/enterprise/concierge", CLINICIANS),
    NavigationItem(ModuleKey.ADMIN_USER_APPROVALS, "/admin/approvals", ADMIN_ONLY),
    NavigationItem(ModuleKey.ADMIN_EMPLOYEES, "/admin/employees", ADMIN_ONLY),
    NavigationItem(ModuleKey.ADMIN_ROLES, "/admin/roles", ADMIN_ONLY),
    NavigationItem(ModuleKey.ADMIN_PASSWORDS, "/admin/passwords", ADMIN_ONLY),
    NavigationItem(ModuleKey.ADMIN_ADD_EMPLOYEE, "/admin/employees/new", ADMIN_ONLY),
    NavigationItem(ModuleKey.ADMIN_NAVIGATION_PERMISSIONS, "/admin/navigation-permissions", ADMIN_ONLY),
    NavigationItem(ModuleKey.PATIENT_DASHBOARD, "/patient", PATIENT_ONLY),
    NavigationItem(ModuleKey.PATIENT_MY_APPOINTMENTS, "/patient/appointments", PATIENT_ONLY),
    NavigationItem(ModuleKey.PATIENT_MEDICAL_RECORDS, "/patient/records", PATIENT_ONLY),
    NavigationItem(ModuleKey.PATIENT_TREATMENT_PLANS, "/patient/treatments", PATIENT_ONLY),
    NavigationItem(ModuleKey.PATIENT_CONSENT_FORMS, "/patient/consent", PATIENT_ONLY),
]


def can_access_item(
    item: NavigationItem,
    user_role: Optional[RoleLike],
    access: TenantModuleAccess,
) -> bool:
    if item.required_roles and not has_role(user_role, item.required_roles):
        return False
    return access.can_access_module(item.module_key)


def filter_navigation(
    items: List[NavigationItem],
    user_role: Optional[RoleLike],
    access: TenantModuleAccess,
) -> List[NavigationItem]:
    return [item for item in items if can_access_item(item, user_role, access)]
