"""Authorization decision endpoints used by UI guards and other services.

Endpoints:
    POST   /api/access/check                         Single permission check
    POST   /api/access/check-any                     Any-of permission check
    POST   /api/access/check-resource                Resource + action check
    POST   /api/access/check-route                   Route reachability check
    GET    /api/access/permissions                   Effective permissions of a role combination
    GET    /api/access/routes                        Routes reachable by a role combination
    GET    /api/access/combination                   Validate a role combination
    GET    /api/access/matrix                        Export a role combination's permission ids
    GET    /api/access/catalog                       Full permission catalog
    GET    /api/access/catalog/categories            Permission categories (resources)
    GET    /api/access/catalog/categories/{resource} Permissions of one category
"""

from fastapi import APIRouter, Depends, Request

from sekolah_rbac.auth import permissions as catalog
from sekolah_rbac.auth.deps import get_engine, get_route_guard
from sekolah_rbac.auth.engine import PermissionEngine
from sekolah_rbac.auth.route_guard import RouteGuard
from sekolah_rbac.schemas.access import (
    AccessContext,
    AccessResult,
    CheckAnyPermissionRequest,
    CheckPermissionRequest,
    CheckResourceRequest,
    CheckRouteRequest,
    CombinationResponse,
    Permission,
    RouteConfig,
)

router = APIRouter()


def _blank_to_none(value: str | None) -> str | None:
    return value or None


def _request_context(request: Request, context: AccessContext | None) -> AccessContext:
    """Fill ip / user agent from the request when the caller did not supply them."""
    context = context or AccessContext()
    updates = {}
    if context.ip is None and request.client:
        updates["ip"] = request.client.host
    if context.user_agent is None:
        updates["user_agent"] = request.headers.get("user-agent")
    return context.model_copy(update=updates) if updates else context


# ══════════════════════════════════════════════════════════════
# DECISIONS
# ══════════════════════════════════════════════════════════════

@router.post("/check", response_model=AccessResult)
async def check_permission(
    body: CheckPermissionRequest,
    request: Request,
    engine: PermissionEngine = Depends(get_engine),
):
    return engine.has_permission(
        body.role,
        _blank_to_none(body.extra_role),
        body.permission_id,
        _request_context(request, body.context),
    )


@router.post("/check-any", response_model=AccessResult)
async def check_any_permission(
    body: CheckAnyPermissionRequest,
    request: Request,
    engine: PermissionEngine = Depends(get_engine),
):
    return engine.has_any_permission(
        body.role,
        _blank_to_none(body.extra_role),
        body.permission_ids,
        _request_context(request, body.context),
    )


@router.post("/check-resource", response_model=AccessResult)
async def check_resource(
    body: CheckResourceRequest,
    request: Request,
    engine: PermissionEngine = Depends(get_engine),
):
    return engine.can_access_resource(
        body.role,
        _blank_to_none(body.extra_role),
        body.resource,
        body.action,
        _request_context(request, body.context),
    )


@router.post("/check-route", response_model=AccessResult)
async def check_route(
    body: CheckRouteRequest,
    request: Request,
    guard: RouteGuard = Depends(get_route_guard),
):
    return guard.can_access_route(
        _blank_to_none(body.role),
        _blank_to_none(body.extra_role),
        body.path,
        _request_context(request, body.context),
    )


# ══════════════════════════════════════════════════════════════
# ROLE COMBINATIONS
# ══════════════════════════════════════════════════════════════

@router.get("/permissions", response_model=list[Permission])
async def user_permissions(
    role: str | None = None,
    extra_role: str | None = None,
    engine: PermissionEngine = Depends(get_engine),
):
    return engine.get_user_permissions(role, _blank_to_none(extra_role))


@router.get("/routes", response_model=list[RouteConfig])
async def accessible_routes(
    role: str | None = None,
    extra_role: str | None = None,
    guard: RouteGuard = Depends(get_route_guard),
):
    return guard.list_accessible_routes(_blank_to_none(role), _blank_to_none(extra_role))


@router.get("/combination", response_model=CombinationResponse)
async def validate_combination(
    role: str | None = None,
    extra_role: str | None = None,
    engine: PermissionEngine = Depends(get_engine),
):
    extra_role = _blank_to_none(extra_role)
    return CombinationResponse(
        role=role,
        extra_role=extra_role,
        valid=engine.is_valid_role_combination(role, extra_role),
    )


@router.get("/matrix", response_model=dict[str, list[str]])
async def export_matrix(
    role: str,
    extra_role: str | None = None,
    engine: PermissionEngine = Depends(get_engine),
):
    return engine.export_permission_matrix(role, _blank_to_none(extra_role))


# ══════════════════════════════════════════════════════════════
# CATALOG
# ══════════════════════════════════════════════════════════════

@router.get("/catalog", response_model=list[Permission])
async def list_catalog():
    return catalog.list_all_permissions()


@router.get("/catalog/categories", response_model=list[str])
async def list_categories():
    return catalog.list_categories()


@router.get("/catalog/categories/{resource}", response_model=list[Permission])
async def list_category(resource: str):
    return catalog.list_by_category(resource)
