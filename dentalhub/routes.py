"""API routes that power the DentalHub backend."""
from __future__ import annotations

import sqlite3
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status

from . import database
from .auth import (
    end_session,
    hash_password,
    is_admin,
    require_admin_user,
    require_current_user,
    sanitize_user,
    start_session,
    verify_password,
)
from .branches import BranchDirectory
from .models import (
    BranchDirectoryState,
    LoginRequest,
    ModuleAccessCheck,
    ModuleMatrixRow,
    ModulePermissionRule,
    ModulePermissionUpdate,
    NavigationEntry,
    Tenant,
    TenantCreate,
    TenantUpdate,
    User,
    UserCreate,
    UserPasswordUpdate,
    UserRoleUpdate,
)
from .navigation import NAVIGATION_ITEMS, filter_navigation
from .permissions import (
    ModuleAccessResolver,
    ModuleKey,
    NoTenantSelectedError,
    PermissionUpdateError,
    TenantModuleAccess,
    get_module_access,
    parse_module_key,
    require_module,
)
from .realtime import publish_change
from .roles import PermissionRole
from .settings import get_settings

auth_router = APIRouter(prefix="/auth", tags=["auth"])
tenants_router = APIRouter(prefix="/tenants", tags=["tenants"])
permissions_router = APIRouter(prefix="/module-permissions", tags=["module permissions"])
navigation_router = APIRouter(tags=["navigation"])
branches_router = APIRouter(prefix="/branches", tags=["branches"])
config_router = APIRouter(prefix="/config", tags=["config"])

TENANT_NOT_FOUND = "Tenant not found"


def _tenant_label(tenant: Optional[dict]) -> str:
    if not tenant:
        return "Clinic"
    name = (tenant.get("name") or "").strip()
    return name or f"Clinic #{tenant.get('id')}"


def _directory(request: Request) -> BranchDirectory:
    return request.app.state.branch_directory


def _resolver(request: Request) -> ModuleAccessResolver:
    return request.app.state.access_resolver


def _access_for_tenant(
    request: Request,
    current_user: dict,
    tenant_id: Optional[int],
) -> TenantModuleAccess:
    """Access view for the user's clinic, or another clinic when an admin asks for it."""
    target_id = tenant_id if tenant_id is not None else current_user.get("tenant_id")
    if target_id is not None and target_id != current_user.get("tenant_id") and not is_admin(current_user):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    corporation_id = None
    if target_id is not None:
        tenant = database.fetch_tenant(target_id)
        if not tenant:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=TENANT_NOT_FOUND)
        corporation_id = tenant.get("corporation_id")
    return _resolver(request).for_context(target_id, current_user.get("role"), corporation_id)


# Auth -------------------------------------------------------------------------


@auth_router.post("/login", response_model=User)
def login(payload: LoginRequest, response: Response) -> User:
    record = database.get_user_by_username(payload.username)
    if not record or not verify_password(payload.password, record["password_hash"]):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    start_session(response, record["id"])
    return User(**sanitize_user(record))


@auth_router.post("/logout")
def logout(response: Response, _: dict = Depends(require_current_user)) -> dict[str, str]:
    end_session(response)
    return {"detail": "Logged out"}


@auth_router.get("/me", response_model=User)
def current_user_route(current_user: dict = Depends(require_current_user)) -> User:
    return User(**sanitize_user(current_user))


@auth_router.get("/users", response_model=List[User])
def list_users_route(_: dict = Depends(require_admin_user)) -> List[User]:
    return [User(**sanitize_user(user)) for user in database.list_users()]


@auth_router.post("/users", response_model=User, status_code=status.HTTP_201_CREATED)
def create_user_route(payload: UserCreate, current_user: dict = Depends(require_admin_user)) -> User:
    if database.get_user_by_username(payload.username):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Username already exists")
    tenant_id = payload.tenant_id if payload.tenant_id is not None else current_user.get("tenant_id")
    if tenant_id is not None and not database.fetch_tenant(tenant_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=TENANT_NOT_FOUND)
    record = database.create_user(
        payload.username,
        hash_password(payload.password),
        payload.role.value if payload.role else None,
        tenant_id,
    )
    return User(**sanitize_user(record))


@auth_router.put("/users/{user_id}/password", response_model=User)
def update_user_password_route(
    user_id: int,
    payload: UserPasswordUpdate,
    _: dict = Depends(require_admin_user),
) -> User:
    updated = database.update_user_password(user_id, hash_password(payload.password))
    if not updated:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return User(**sanitize_user(database.get_user(user_id)))


@auth_router.put("/users/{user_id}/role", response_model=User)
def update_user_role_route(
    user_id: int,
    payload: UserRoleUpdate,
    current_user: dict = Depends(require_admin_user),
) -> User:
    record = database.get_user(user_id)
    if not record:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    new_role = payload.role.value if payload.role else None
    if user_id == current_user["id"] and new_role != "admin":
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot remove your own admin rights")
    if is_admin(record) and new_role != "admin":
        admins = [user for user in database.list_users() if is_admin(user)]
        if len(admins) <= 1:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="At least one admin is required")
    if payload.tenant_id is not None and not database.fetch_tenant(payload.tenant_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=TENANT_NOT_FOUND)
    if not database.update_user_role(user_id, new_role, payload.tenant_id):
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Unable to update user")
    return User(**sanitize_user(database.get_user(user_id)))


@auth_router.delete("/users/{user_id}", response_model=None, status_code=status.HTTP_204_NO_CONTENT)
def delete_user_route(user_id: int, current_user: dict = Depends(require_admin_user)) -> None:
    if user_id == current_user["id"]:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot delete your own account")
    record = database.get_user(user_id)
    if not record:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    if not database.delete_user(user_id):
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Unable to delete user")


# Tenants ----------------------------------------------------------------------


@tenants_router.get("/", response_model=List[Tenant])
def list_tenants_route() -> List[Tenant]:
    return [Tenant(**tenant) for tenant in database.list_tenants()]


@tenants_router.get("/{tenant_id}", response_model=Tenant)
def get_tenant_route(tenant_id: int) -> Tenant:
    tenant = database.fetch_tenant(tenant_id)
    if not tenant:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=TENANT_NOT_FOUND)
    return Tenant(**tenant)


@tenants_router.post("/", response_model=Tenant, status_code=status.HTTP_201_CREATED)
async def create_tenant_route(
    payload: TenantCreate,
    request: Request,
    _: dict = Depends(require_admin_user),
) -> Tenant:
    try:
        tenant = database.create_tenant(payload.model_dump())
    except sqlite3.IntegrityError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Clinic code already exists") from exc
    await publish_change(
        request,
        table="tenants",
        action="insert",
        record=tenant,
        summary=f"{_tenant_label(tenant)} was added",
    )
    return Tenant(**tenant)


@tenants_router.put("/{tenant_id}", response_model=Tenant)
async def update_tenant_route(
    tenant_id: int,
    payload: TenantUpdate,
    request: Request,
    _: dict = Depends(require_admin_user),
) -> Tenant:
    try:
        tenant = database.update_tenant(tenant_id, payload.model_dump(exclude_unset=True))
    except sqlite3.IntegrityError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Clinic code already exists") from exc
    if not tenant:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=TENANT_NOT_FOUND)
    await publish_change(
        request,
        table="tenants",
        action="update",
        record=tenant,
        summary=f"{_tenant_label(tenant)} was updated",
    )
    return Tenant(**tenant)


@tenants_router.delete("/{tenant_id}", response_model=None, status_code=status.HTTP_204_NO_CONTENT)
async def delete_tenant_route(
    tenant_id: int,
    request: Request,
    current_user: dict = Depends(require_admin_user),
) -> None:
    if tenant_id == current_user.get("tenant_id"):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot delete your own clinic")
    tenant = database.fetch_tenant(tenant_id)
    if not tenant or not database.delete_tenant(tenant_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=TENANT_NOT_FOUND)
    _resolver(request).invalidate(tenant_id)
    await publish_change(
        request,
        table="tenants",
        action="delete",
        record=tenant,
        summary=f"{_tenant_label(tenant)} was removed",
    )


# Module permissions -----------------------------------------------------------


@permissions_router.get("/", response_model=List[ModulePermissionRule])
def list_module_permissions_route(
    request: Request,
    tenant_id: Optional[int] = Query(None, description="Clinic to inspect (admins only)"),
    current_user: dict = Depends(require_current_user),
) -> List[ModulePermissionRule]:
    access = _access_for_tenant(request, current_user, tenant_id)
    return access.permissions


@permissions_router.get("/check", response_model=ModuleAccessCheck)
def check_module_access_route(
    module_key: str = Query(..., description="Module identifier"),
    role: Optional[PermissionRole] = Query(None, description="Role to check; defaults to the caller's"),
    access: TenantModuleAccess = Depends(get_module_access),
) -> ModuleAccessCheck:
    try:
        module = parse_module_key(module_key)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    return ModuleAccessCheck(
        module_key=module.value,
        role=access.effective_role(role),
        allowed=access.can_access_module(module, role),
    )


@permissions_router.get("/matrix", response_model=List[ModuleMatrixRow])
def module_matrix_route(
    request: Request,
    tenant_id: Optional[int] = Query(None, description="Clinic to inspect"),
    current_user: dict = Depends(require_admin_user),
) -> List[ModuleMatrixRow]:
    access = _access_for_tenant(request, current_user, tenant_id)
    return [ModuleMatrixRow(**row) for row in access.matrix()]


@permissions_router.put("/", response_model=List[ModulePermissionRule])
def set_module_permission_route(
    payload: ModulePermissionUpdate,
    request: Request,
    tenant_id: Optional[int] = Query(None, description="Clinic to update"),
    current_user: dict = Depends(require_admin_user),
) -> List[ModulePermissionRule]:
    try:
        module = parse_module_key(payload.module_key)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    access = _access_for_tenant(request, current_user, tenant_id)
    try:
        access.set_permission(module, payload.role, payload.allowed)
    except NoTenantSelectedError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except PermissionUpdateError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return access.permissions


# Navigation -------------------------------------------------------------------


@navigation_router.get("/navigation", response_model=List[NavigationEntry])
def navigation_route(
    access: TenantModuleAccess = Depends(get_module_access),
    current_user: dict = Depends(require_current_user),
) -> List[NavigationEntry]:
    items = filter_navigation(NAVIGATION_ITEMS, current_user.get("role"), access)
    return [NavigationEntry(module_key=item.module_key.value, title=item.title, url=item.url) for item in items]


# Branches ---------------------------------------------------------------------


branch_module_gate = [Depends(require_module(ModuleKey.MULTI_PRACTICE_ANALYTICS))]


@branches_router.get("/", response_model=BranchDirectoryState, dependencies=branch_module_gate)
async def list_branches_route(request: Request) -> BranchDirectoryState:
    directory = _directory(request)
    await directory.wait_for_refresh()
    if not directory.loaded:
        await directory.load()
    return BranchDirectoryState(**directory.snapshot())


@branches_router.post("/refresh", response_model=BranchDirectoryState, dependencies=branch_module_gate)
async def refresh_branches_route(request: Request) -> BranchDirectoryState:
    directory = _directory(request)
    await directory.refresh()
    return BranchDirectoryState(**directory.snapshot())


# Config -----------------------------------------------------------------------


@config_router.get("/mapbox-token")
def mapbox_token_route(_: dict = Depends(require_current_user)) -> dict[str, str]:
    """Issue the public geocoding token to signed-in clients."""
    token = get_settings().mapbox_token
    if not token:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Mapbox token not configured")
    return {"token": token}
