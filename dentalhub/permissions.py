"""
Tenant-scoped module access control.

A module permission rule says whether a staff role may use a module inside one
tenant. Absence of a rule means the role is allowed; a tenant with no rules
therefore lets everyone use everything. Rule sets are loaded once per tenant
and reused, so access checks never hit the store.
"""
from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from fastapi import Depends, HTTPException, Request, status
from pydantic import ValidationError

from .auth import require_current_user
from .models import ModulePermissionRule
from .roles import FALLBACK_ROLE, PermissionRole, RoleLike

logger = logging.getLogger(__name__)


class ModuleKey(str, Enum):
    PRACTICE_DASHBOARD = "practice_dashboard"
    DENTIST_DASHBOARD = "dentist_dashboard"
    PATIENTS = "patients"
    MEDICAL_HISTORY = "medical_history"
    CONSENT_FORMS = "consent_forms"
    TREATMENT_PLANS = "treatment_plans"
    INSURANCE_BILLING = "insurance_billing"
    SCHEDULE = "schedule"
    SCHEDULE_MANAGEMENT = "schedule_management"
    AI_SCHEDULING = "ai_scheduling"
    TELEDENTISTRY = "teledentistry"
    TELEDENTISTRY_ENHANCED = "teledentistry_enhanced"
    VOICE_TRANSCRIPTION = "voice_transcription"
    IMAGE_ANALYSIS = "image_analysis"
    VOICE_AGENT = "voice_agent"
    TRANSLATION = "translation"
    ANALYTICS = "analytics"
    AI_MARKETING = "ai_marketing"
    XRAY_DIAGNOSTICS = "xray_diagnostics"
    VOICE_TO_CHART = "voice_to_chart"
    CHAIRSIDE_ASSISTANT = "chairside_assistant"
    REPORTS = "reports"
    REPORTS_PATIENTS = "reports_patients"
    MULTI_PRACTICE_ANALYTICS = "multi_practice_analytics"
    MARKETING_AUTOMATION = "marketing_automation"
    SMART_OPERATIONS = "smart_operations"
    REVENUE_MANAGEMENT = "revenue_management"
    MARKET_INTELLIGENCE = "market_intelligence"
    REPUTATION_MANAGEMENT = "reputation_management"
    LEAD_CONVERSION = "lead_conversion"
    COMPLIANCE_SECURITY = "compliance_security"
    PATIENT_CONCIERGE = "patient_concierge"
    ADMIN_USER_APPROVALS = "admin_user_approvals"
    ADMIN_EMPLOYEES = "admin_employees"
    ADMIN_ROLES = "admin_roles"
    ADMIN_PASSWORDS = "admin_passwords"
    ADMIN_ADD_EMPLOYEE = "admin_add_employee"
    PATIENT_DASHBOARD = "patient_dashboard"
    PATIENT_MY_APPOINTMENTS = "patient_my_appointments"
    PATIENT_MEDICAL_RECORDS = "patient_medical_records"
    PATIENT_TREATMENT_PLANS = "patient_treatment_plans"
    PATIENT_CONSENT_FORMS = "patient_consent_forms"
    ADMIN_NAVIGATION_PERMISSIONS = "admin_navigation_permissions"


MODULE_LABELS: Dict[ModuleKey, str] = {
    ModuleKey.PRACTICE_DASHBOARD: "Practice Overview",
    ModuleKey.DENTIST_DASHBOARD: "Dentist Workspace",
    ModuleKey.PATIENTS: "Patient Management",
    ModuleKey.MEDICAL_HISTORY: "Medical History",
    ModuleKey.CONSENT_FORMS: "Consent Forms",
    ModuleKey.TREATMENT_PLANS: "Treatment Plans",
    ModuleKey.INSURANCE_BILLING: "Insurance & Billing",
    ModuleKey.SCHEDULE: "Appointment Calendar",
    ModuleKey.SCHEDULE_MANAGEMENT: "Schedule Management",
    ModuleKey.AI_SCHEDULING: "AI Smart Scheduling",
    ModuleKey.TELEDENTISTRY: "Teledentistry",
    ModuleKey.TELEDENTISTRY_ENHANCED: "Enhanced Teledentistry",
    ModuleKey.VOICE_TRANSCRIPTION: "Voice Transcription",
    ModuleKey.IMAGE_ANALYSIS: "Image Analysis",
    ModuleKey.VOICE_AGENT: "Voice Agent",
    ModuleKey.TRANSLATION: "Translation",
    ModuleKey.ANALYTICS: "Predictive/Practice Analytics",
    ModuleKey.AI_MARKETING: "AI Marketing",
    ModuleKey.XRAY_DIAGNOSTICS: "X-Ray Diagnostics",
    ModuleKey.VOICE_TO_CHART: "Voice-to-Chart",
    ModuleKey.CHAIRSIDE_ASSISTANT: "Chairside Assistant",
    ModuleKey.REPORTS: "Practice Reports",
    ModuleKey.REPORTS_PATIENTS: "Patient Insights",
    ModuleKey.MULTI_PRACTICE_ANALYTICS: "Multi-Practice Analytics",
    ModuleKey.MARKETING_AUTOMATION: "Marketing Automation",
    ModuleKey.SMART_OPERATIONS: "Smart Operations",
    ModuleKey.REVENUE_MANAGEMENT: "Revenue Management",
    ModuleKey.MARKET_INTELLIGENCE: "Market Intelligence",
    ModuleKey.REPUTATION_MANAGEMENT: "Reputation Management",
    ModuleKey.LEAD_CONVERSION: "Lead Conversion AI",
    ModuleKey.COMPLIANCE_SECURITY: "Compliance & Security",
    ModuleKey.PATIENT_CONCIERGE: "Patient Concierge",
    ModuleKey.ADMIN_USER_APPROVALS: "Admin • User Approvals",
    ModuleKey.ADMIN_EMPLOYEES: "Admin • Employees",
    ModuleKey.ADMIN_ROLES: "Admin • Role Assignment",
    ModuleKey.ADMIN_PASSWORDS: "Admin • Password Management",
    ModuleKey.ADMIN_ADD_EMPLOYEE: "Admin • Add Employee",
    ModuleKey.PATIENT_DASHBOARD: "Patient Dashboard",
    ModuleKey.PATIENT_MY_APPOINTMENTS: "My Appointments",
    ModuleKey.PATIENT_MEDICAL_RECORDS: "My Medical Records",
    ModuleKey.PATIENT_TREATMENT_PLANS: "My Treatment Plans",
    ModuleKey.PATIENT_CONSENT_FORMS: "My Consent Forms",
    ModuleKey.ADMIN_NAVIGATION_PERMISSIONS: "Admin • Module Access",
}

RuleKey = Tuple[str, str]
ModuleLike = Union[ModuleKey, str]


class PermissionUpdateError(Exception):
    """Raised when a module permission rule could not be written."""


class NoTenantSelectedError(Exception):
    """Raised when a rule mutation is attempted without a tenant in context."""


def _value(item: Union[Enum, str]) -> str:
    return item.value if isinstance(item, Enum) else str(item)


def parse_module_key(value: str) -> ModuleKey:
    try:
        return ModuleKey(value)
    except ValueError as exc:
        raise ValueError(f"Unknown module: {value}") from exc


class ModuleAccessResolver:
    """Application-wide rule cache over a store exposing list/upsert of module permissions."""

    def __init__(self, store: Any) -> None:
        self.store = store
        self._rules_by_tenant: Dict[int, Dict[RuleKey, ModulePermissionRule]] = {}

    def _read_rules(self, tenant_id: int) -> Optional[Dict[RuleKey, ModulePermissionRule]]:
        """Rules keyed by (module_key, role), or None when the store could not be read."""
        try:
            rows = self.store.list_module_permissions(tenant_id)
        except Exception as exc:
            logger.error("Failed to load module permissions for tenant %s: %s", tenant_id, exc)
            return None
        rules: Dict[RuleKey, ModulePermissionRule] = {}
        for row in rows or []:
            try:
                rule = ModulePermissionRule.model_validate(row)
            except ValidationError as exc:
                logger.warning("Skipping unusable module permission row for tenant %s: %s", tenant_id, exc)
                continue
            rules[(rule.module_key, rule.role.value)] = rule
        return rules

    def list_rules(self, tenant_id: Optional[int]) -> Dict[RuleKey, ModulePermissionRule]:
        """Read the tenant's rules from the store. Read failures yield an empty mapping."""
        if tenant_id is None:
            return {}
        rules = self._read_rules(tenant_id)
        return rules if rules is not None else {}

    def rules_for(self, tenant_id: Optional[int]) -> Dict[RuleKey, ModulePermissionRule]:
        # A failed read allows everything for this call only; the next call reads again.
        if tenant_id is None:
            return {}
        cached = self._rules_by_tenant.get(tenant_id)
        if cached is not None:
            return cached
        rules = self._read_rules(tenant_id)
        if rules is None:
            return {}
        self._rules_by_tenant[tenant_id] = rules
        return rules

    def invalidate(self, tenant_id: Optional[int] = None) -> None:
        if tenant_id is None:
            self._rules_by_tenant.clear()
        else:
            self._rules_by_tenant.pop(tenant_id, None)

    def reload(self, tenant_id: Optional[int]) -> Dict[RuleKey, ModulePermissionRule]:
        self.invalidate(tenant_id)
        return self.rules_for(tenant_id)

    def upsert(
        self,
        tenant_id: int,
        corporation_id: Optional[str],
        module_key: ModuleLike,
        role: RoleLike,
        allowed: bool,
    ) -> None:
        try:
            self.store.upsert_module_permission(
                tenant_id,
                corporation_id,
                _value(module_key),
                _value(role),
                bool(allowed),
            )
        except Exception as exc:
            logger.error(
                "Failed to update module permission %s/%s for tenant %s: %s",
                _value(module_key),
                _value(role),
                tenant_id,
                exc,
            )
            raise PermissionUpdateError("Unable to update module permission") from exc
        self.reload(tenant_id)

    def for_context(
        self,
        tenant_id: Optional[int],
        current_role: Optional[RoleLike] = None,
        corporation_id: Optional[str] = None,
    ) -> "TenantModuleAccess":
        return TenantModuleAccess(self, tenant_id, current_role, corporation_id)


class TenantModuleAccess:
    """Access checks and rule updates bound to one tenant and the caller's role."""

    def __init__(
        self,
        resolver: ModuleAccessResolver,
        tenant_id: Optional[int],
        current_role: Optional[RoleLike] = None,
        corporation_id: Optional[str] = None,
    ) -> None:
        self.resolver = resolver
        self.tenant_id = tenant_id
        self.current_role = current_role
        self.corporation_id = corporation_id

    @property
    def permissions(self) -> List[ModulePermissionRule]:
        return list(self.resolver.rules_for(self.tenant_id).values())

    def effective_role(self, role: Optional[RoleLike] = None) -> str:
        return _value(role or self.current_role or FALLBACK_ROLE)

    def can_access_module(self, module_key: ModuleLike, role: Optional[RoleLike] = None) -> bool:
        rules = self.resolver.rules_for(self.tenant_id)
        rule = rules.get((_value(module_key), self.effective_role(role)))
        return rule.allowed if rule is not None else True

    def set_permission(self, module_key: ModuleLike, role: RoleLike, allowed: bool) -> None:
        if self.tenant_id is None:
            raise NoTenantSelectedError("No tenant selected")
        self.resolver.upsert(self.tenant_id, self.corporation_id, module_key, role, allowed)

    def allowed_modules(self, role: Optional[RoleLike] = None) -> List[ModuleKey]:
        return [module for module in ModuleKey if self.can_access_module(module, role)]

    def matrix(self) -> List[Dict[str, Any]]:
        rows = []
        for module in ModuleKey:
            rows.append(
                {
                    "module_key": module.value,
                    "label": MODULE_LABELS[module],
                    "roles": {role.value: self.can_access_module(module, role) for role in PermissionRole},
                }
            )
        return rows


def get_module_access(request: Request, current_user: dict = Depends(require_current_user)) -> TenantModuleAccess:
    """Build the access view for the signed-in user's own clinic."""
    resolver: ModuleAccessResolver = request.app.state.access_resolver
    tenant_id = current_user.get("tenant_id")
    corporation_id = None
    if tenant_id is not None:
        tenant = request.app.state.store.fetch_tenant(tenant_id)
        corporation_id = tenant.get("corporation_id") if tenant else None
    return resolver.for_context(tenant_id, current_user.get("role"), corporation_id)


def require_module(module_key: ModuleLike):
    """Dependency factory rejecting requests when the caller's role may not use the module."""

    def dependency(access: TenantModuleAccess = Depends(get_module_access)) -> TenantModuleAccess:
        if not access.can_access_module(module_key):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Module disabled: {_value(module_key)}",
            )
        return access

    return dependency
