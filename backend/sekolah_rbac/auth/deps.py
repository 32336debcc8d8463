"""FastAPI dependencies for authorization.

Identity is established upstream (gateway / session layer) and forwarded in
request headers; this service only decides what that identity may do.

Dependencies:
  get_engine / get_role_store / get_route_guard → app-scoped singletons
  get_caller                                    → identity from X-User-* headers
  require_permission(...)                       → restrict to callers holding ALL listed permissions
"""

from dataclasses import dataclass

from fastapi import Depends, Header, Request

from sekolah_rbac.auth.custom_roles import CustomRoleStore
from sekolah_rbac.auth.engine import PermissionEngine
from sekolah_rbac.auth.route_guard import RouteGuard
from sekolah_rbac.middleware.exceptions import AuthenticationRequiredError, PermissionDeniedError
from sekolah_rbac.schemas.access import AccessContext


@dataclass
class Caller:
    role: str | None
    extra_role: str | None
    user_id: str | None
    ip: str | None = None
    user_agent: str | None = None

    @property
    def is_authenticated(self) -> bool:
        return bool(self.role)

    def context(self) -> AccessContext:
        return AccessContext(user_id=self.user_id, ip=self.ip, user_agent=self.user_agent)


# ── App-scoped services ─────────────────────────────────────

def get_engine(request: Request) -> PermissionEngine:
    return request.app.state.engine


def get_role_store(request: Request) -> CustomRoleStore:
    return request.app.state.role_store


def get_route_guard(request: Request) -> RouteGuard:
    return request.app.state.route_guard


# ── Caller identity ─────────────────────────────────────────

async def get_caller(
    request: Request,
    x_user_role: str | None = Header(default=None),
    x_user_extra_role: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
) -> Caller:
    """Read the forwarded identity. Missing or blank headers mean "absent"."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        ip = forwarded.split(",")[0].strip()
    else:
        ip = request.client.host if request.client else None

    return Caller(
        role=x_user_role or None,
        extra_role=x_user_extra_role or None,
        user_id=x_user_id or None,
        ip=ip,
        user_agent=request.headers.get("user-agent"),
    )


# ── Permission-based access control ─────────────────────────

def require_permission(*perms: str):
    """Dependency factory. Restricts to callers holding ALL listed permissions.

    Usage:
        @router.get("/roles")
        async def list_roles(caller: Caller = Depends(require_permission("roles.manage"))):
            ...
    """
    async def _check(
        caller: Caller = Depends(get_caller),
        engine: PermissionEngine = Depends(get_engine),
    ) -> Caller:
        if not caller.is_authenticated:
            raise AuthenticationRequiredError()

        context = caller.context()
        missing = [
            p for p in perms
            if not engine.has_permission(caller.role, caller.extra_role, p, context).granted
        ]
        if missing:
            raise PermissionDeniedError(missing)
        return caller

    return _check
