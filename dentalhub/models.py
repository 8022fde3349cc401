"""Pydantic models for tenants, branches, users, and module permissions."""
from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from .geocoding import Coordinates
from .roles import PermissionRole, UserRole


class TenantBase(BaseModel):
    name: str = Field(..., min_length=1, description="Clinic display name")
    address: Optional[str] = Field(None, description="Free-text street address used for geocoding")
    phone: Optional[str] = Field(None, description="Front desk phone number")
    email: Optional[str] = Field(None, description="Front desk email address")
    clinic_code: str = Field(..., min_length=1, description="Short unique clinic code")
    corporation_id: Optional[str] = Field(None, description="Owning corporation, when the clinic belongs to a group")

    @field_validator("name", "clinic_code")
    @classmethod
    def strip_required(cls, value: str) -> str:
        text = value.strip()
        if not text:
            raise ValueError("must not be blank")
        return text


class TenantCreate(TenantBase):
    pass


class TenantUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, description="Clinic display name")
    address: Optional[str] = Field(None, description="Free-text street address used for geocoding")
    phone: Optional[str] = Field(None, description="Front desk phone number")
    email: Optional[str] = Field(None, description="Front desk email address")
    clinic_code: Optional[str] = Field(None, min_length=1, description="Short unique clinic code")
    corporation_id: Optional[str] = Field(None, description="Owning corporation")


class Tenant(TenantBase):
    id: int = Field(..., description="Database identifier for the tenant")
    created_at: Optional[str] = Field(None, description="Timestamp when the tenant was created")
    updated_at: Optional[str] = Field(None, description="Timestamp when the tenant was last updated")


class Branch(BaseModel):
    """A clinic location as shown on the branch map."""
    id: int
    name: str
    address: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    clinic_code: str
    coordinates: Optional[Coordinates] = None


class BranchDirectoryState(BaseModel):
    branches: List[Branch] = Field(default_factory=list)
    loading: bool = False
    error: Optional[str] = None


class LoginRequest(BaseModel):
    username: str
    password: str


class User(BaseModel):
    id: int
    username: str
    role: Optional[UserRole] = None
    tenant_id: Optional[int] = None
    is_admin: bool = False


class UserCreate(BaseModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=4)
    role: Optional[UserRole] = None
    tenant_id: Optional[int] = None


class UserPasswordUpdate(BaseModel):
    password: str = Field(..., min_length=4)


class UserRoleUpdate(BaseModel):
    role: Optional[UserRole] = Field(None, description="New role; null clears it")
    tenant_id: Optional[int] = Field(None, description="Move the user to another clinic")


class ModulePermissionRule(BaseModel):
    tenant_id: int
    corporation_id: Optional[str] = None
    module_key: str
    role: PermissionRole
    allowed: bool


class ModulePermissionUpdate(BaseModel):
    module_key: str = Field(..., description="Module identifier, e.g. 'schedule'")
    role: PermissionRole = Field(..., description="Staff role the rule applies to")
    allowed: bool = Field(..., description="Whether the role may use the module")


class ModuleAccessCheck(BaseModel):
    module_key: str
    role: str
    allowed: bool


class ModuleMatrixRow(BaseModel):
    module_key: str
    label: str
    roles: Dict[str, bool]


class NavigationEntry(BaseModel):
    module_key: str
    title: str
    url: str
