"""Custom-role administration endpoints (roles, templates, user assignments).

Every route requires `roles.manage`.
"""

from fastapi import APIRouter, Depends, Response, status

from sekolah_rbac.auth.custom_roles import CustomRoleStore
from sekolah_rbac.auth.deps import Caller, get_role_store, require_permission
from sekolah_rbac.middleware.exceptions import (
    ResourceNotFoundError,
    RoleConflictError,
    StorageUnavailableError,
)
from sekolah_rbac.schemas.roles import (
    CustomRole,
    CustomRoleCreate,
    CustomRoleUpdate,
    EffectivePermissionsResponse,
    InstantiateTemplateRequest,
    RoleTemplate,
    RoleTemplateCreate,
    UserRolesResponse,
)

router = APIRouter()

_manage = require_permission("roles.manage")


def _user_roles(store: CustomRoleStore, user_id: str) -> UserRolesResponse:
    return UserRolesResponse(
        user_id=user_id,
        role_ids=store.get_assignments(user_id),
        roles=store.get_user_roles(user_id),
    )


# ── Templates ────────────────────────────────────────────────
# Declared before /{role_id} so the literal segments win

@router.get("/templates", response_model=list[RoleTemplate])
async def list_templates(
    store: CustomRoleStore = Depends(get_role_store),
    _caller: Caller = Depends(_manage),
):
    return store.list_templates()


@router.post("/templates", response_model=RoleTemplate, status_code=status.HTTP_201_CREATED)
async def create_template(
    body: RoleTemplateCreate,
    store: CustomRoleStore = Depends(get_role_store),
    _caller: Caller = Depends(_manage),
):
    template = store.create_template(body)
    if template is None:
        raise StorageUnavailableError("save role template")
    return template


@router.post(
    "/templates/{template_id}/instantiate",
    response_model=CustomRole,
    status_code=status.HTTP_201_CREATED,
)
async def instantiate_template(
    template_id: str,
    body: InstantiateTemplateRequest | None = None,
    store: CustomRoleStore = Depends(get_role_store),
    caller: Caller = Depends(_manage),
):
    created_by = body.created_by if body else (caller.user_id or "admin")
    if store.get_template(template_id) is None:
        raise ResourceNotFoundError("Role template", template_id)
    role = store.create_from_template(template_id, created_by=created_by)
    if role is None:
        raise StorageUnavailableError("create custom role")
    return role


# ── Assignments ──────────────────────────────────────────────

@router.get("/assignments/{user_id}", response_model=UserRolesResponse)
async def get_user_assignments(
    user_id: str,
    store: CustomRoleStore = Depends(get_role_store),
    _caller: Caller = Depends(_manage),
):
    return _user_roles(store, user_id)


@router.put("/assignments/{user_id}/{role_id}", response_model=UserRolesResponse)
async def assign_role(
    user_id: str,
    role_id: str,
    store: CustomRoleStore = Depends(get_role_store),
    _caller: Caller = Depends(_manage),
):
    if store.get(role_id) is None:
        raise ResourceNotFoundError("Custom role", role_id)
    if not store.assign(user_id, role_id):
        raise StorageUnavailableError("assign custom role")
    return _user_roles(store, user_id)


@router.delete("/assignments/{user_id}/{role_id}", response_model=UserRolesResponse)
async def unassign_role(
    user_id: str,
    role_id: str,
    store: CustomRoleStore = Depends(get_role_store),
    _caller: Caller = Depends(_manage),
):
    if not store.unassign(user_id, role_id):
        raise StorageUnavailableError("unassign custom role")
    return _user_roles(store, user_id)


# ── Custom roles ─────────────────────────────────────────────

@router.get("/", response_model=list[CustomRole])
async def list_roles(
    store: CustomRoleStore = Depends(get_role_store),
    _caller: Caller = Depends(_manage),
):
    return store.list()


@router.post("/", response_model=CustomRole, status_code=status.HTTP_201_CREATED)
async def create_role(
    body: CustomRoleCreate,
    store: CustomRoleStore = Depends(get_role_store),
    _caller: Caller = Depends(_manage),
):
    if body.id and store.get(body.id) is not None:
        raise RoleConflictError(body.id)
    role = store.create(body)
    if role is None:
        # an id taken between the check and the write also lands here
        if body.id and store.get(body.id) is not None:
            raise RoleConflictError(body.id)
        raise StorageUnavailableError("create custom role")
    return role


@router.get("/{role_id}", response_model=CustomRole)
async def get_role(
    role_id: str,
    store: CustomRoleStore = Depends(get_role_store),
    _caller: Caller = Depends(_manage),
):
    role = store.get(role_id)
    if role is None:
        raise ResourceNotFoundError("Custom role", role_id)
    return role


@router.patch("/{role_id}", response_model=CustomRole)
async def update_role(
    role_id: str,
    body: CustomRoleUpdate,
    store: CustomRoleStore = Depends(get_role_store),
    _caller: Caller = Depends(_manage),
):
    if store.get(role_id) is None:
        raise ResourceNotFoundError("Custom role", role_id)
    role = store.update(role_id, body)
    if role is None:
        raise StorageUnavailableError("update custom role")
    return role


@router.delete("/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_role(
    role_id: str,
    store: CustomRoleStore = Depends(get_role_store),
    _caller: Caller = Depends(_manage),
):
    if store.get(role_id) is None:
        raise ResourceNotFoundError("Custom role", role_id)
    if not store.delete(role_id):
        raise StorageUnavailableError("delete custom role")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{role_id}/effective-permissions", response_model=EffectivePermissionsResponse)
async def effective_permissions(
    role_id: str,
    fallback_base_role: str | None = None,
    store: CustomRoleStore = Depends(get_role_store),
    _caller: Caller = Depends(_manage),
):
    if store.get(role_id) is None:
        raise ResourceNotFoundError("Custom role", role_id)
    return EffectivePermissionsResponse(
        role_id=role_id,
        permissions=store.effective_permissions(role_id, fallback_base_role or None),
    )
