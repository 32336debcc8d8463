"""Route-level authorization on top of the permission engine.

Routes are opaque path strings registered with an optional required
permission, an optional required base role, or a public flag. Matching is
first-match-wins over the registration order: a pattern ending in `*`
matches any path with that prefix, anything else must match exactly.

Guarded routes also require a valid base/extra role pairing. Unmatched
paths are granted to any authenticated caller. Register a
trailing catch-all (e.g. `RouteConfig(path="*", required_role="admin")`)
for fail-closed behaviour.
"""

from __future__ import annotations

import threading
from typing import Any

from sekolah_rbac.auth.engine import PermissionEngine
from sekolah_rbac.auth.permissions import is_valid_combination, role_value
from sekolah_rbac.schemas.access import AccessContext, AccessResult, RouteConfig


# ── Portal routes registered at startup ─────────────────────

DEFAULT_ROUTES: tuple[RouteConfig, ...] = (
    RouteConfig(path="/", is_public=True),
    RouteConfig(path="/login", is_public=True),
    RouteConfig(path="/reset-password", is_public=True),
    RouteConfig(path="/ppdb/register", is_public=True),
    RouteConfig(path="/admin/*", required_role="admin"),
    RouteConfig(path="/dashboard/teacher", required_role="teacher"),
    RouteConfig(path="/dashboard/student", required_role="student"),
    RouteConfig(path="/dashboard/parent", required_role="parent"),
    RouteConfig(path="/users/*", required_permission="users.read"),
    RouteConfig(path="/grades/*", required_permission="academic.grades"),
    RouteConfig(path="/attendance/*", required_permission="academic.attendance"),
    RouteConfig(path="/library", required_permission="student.library"),
    RouteConfig(path="/inventory", required_permission="inventory.manage"),
    RouteConfig(path="/osis/events", required_permission="osis.events"),
    RouteConfig(path="/ppdb/manage", required_permission="ppdb.manage"),
    RouteConfig(path="/reports/school", required_permission="school.reports"),
    RouteConfig(path="/audit", required_permission="audit.read"),
)


def path_matches(pattern: str, path: str) -> bool:
    if pattern.endswith("*"):
        return path.startswith(pattern[:-1])
    return pattern == path


class RouteGuard:
    def __init__(self, engine: PermissionEngine, routes: tuple[RouteConfig, ...] | list[RouteConfig] = ()):
        self._engine = engine
        self._lock = threading.Lock()
        # Replaced wholesale on every registration; readers never lock
        self._routes: tuple[RouteConfig, ...] = ()
        for route in routes:
            self.register_route(route)

    def register_route(self, config: RouteConfig | dict) -> RouteConfig:
        if not isinstance(config, RouteConfig):
            config = RouteConfig.model_validate(config)
        with self._lock:
            self._routes = (*self._routes, config)
        return config

    def routes(self) -> list[RouteConfig]:
        return list(self._routes)

    def match_route(self, path: Any) -> RouteConfig | None:
        if not isinstance(path, str):
            return None
        return next((r for r in self._routes if path_matches(r.path, path)), None)

    def can_access_route(
        self,
        role: Any,
        extra_role: Any,
        path: Any,
        context: AccessContext | dict | None = None,
    ) -> AccessResult:
        return self._evaluate(self.match_route(path), role, extra_role, context)

    def list_accessible_routes(
        self,
        role: Any,
        extra_role: Any,
        context: AccessContext | dict | None = None,
    ) -> list[RouteConfig]:
        return [
            route for route in self._routes
            if self._evaluate(route, role, extra_role, context).granted
        ]

    def _evaluate(
        self,
        route: RouteConfig | None,
        role: Any,
        extra_role: Any,
        context: AccessContext | dict | None,
    ) -> AccessResult:
        role = role_value(role)

        if not role:
            if route is not None and route.is_public:
                return AccessResult(granted=True)
            return AccessResult(granted=False, reason="User not authenticated")

        if route is None or route.is_public:
            return AccessResult(granted=True)

        if not is_valid_combination(role, extra_role):
            extra = role_value(extra_role)
            return AccessResult(
                granted=False,
                reason=f"Invalid role combination: {role} + {'none' if extra is None else extra}",
                required_permission=route.required_permission,
            )

        if route.required_role and route.required_role != role:
            return AccessResult(
                granted=False,
                reason=f"Route '{route.path}' requires role '{route.required_role}'",
                required_permission=route.required_permission,
            )

        if route.required_permission:
            return self._engine.has_permission(role, extra_role, route.required_permission, context)

        return AccessResult(granted=True)
