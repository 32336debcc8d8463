"""Permission engine: the single entry point for authorization decisions.

Every decision is a pure function of the static catalog/matrix (plus the
custom-role store for user-level checks) and never raises for bad input:
malformed arguments, unknown permissions and illegal role combinations all
come back as a denied AccessResult with a stable `reason`.

Each `has_permission` call, granted or not, is appended to the engine's
audit trail.

Usage:
    engine = PermissionEngine()
    result = engine.has_permission("teacher", "staff", "inventory.manage")
    if not result.granted:
        log.info(result.reason)
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any

from pydantic import ValidationError

from sekolah_rbac.auth.audit import AuditTrail
from sekolah_rbac.auth.custom_roles import CustomRoleStore, template_references
from sekolah_rbac.auth.permissions import (
    PERMISSIONS,
    effective_permission_ids,
    get_permission,
    is_valid_combination,
    list_all_permissions,
    role_value,
    validate_catalog,
)
from sekolah_rbac.schemas.access import (
    AccessContext,
    AccessResult,
    AuditLogEntry,
    Permission,
)

_TAG_RE = re.compile(r"<[^>]*>")
_NON_WORD_RE = re.compile(r"[^A-Za-z0-9_]")


def sanitize_segment(value: str) -> str:
    """Strip tag-like substrings, then cut at the first non-word character."""
    return _NON_WORD_RE.split(_TAG_RE.sub("", value), maxsplit=1)[0]


def _label(extra_role: Any) -> str:
    return "none" if extra_role is None else str(extra_role)


def _extra_suffix(extra_role: Any) -> str:
    return f" with extra role '{extra_role}'" if extra_role else ""


def _as_context(context: AccessContext | dict | None) -> AccessContext:
    if context is None:
        return AccessContext()
    if isinstance(context, AccessContext):
        return context
    try:
        return AccessContext.model_validate(context)
    except ValidationError:
        return AccessContext()


class PermissionEngine:
    def __init__(
        self,
        audit: AuditTrail | None = None,
        custom_roles: CustomRoleStore | None = None,
    ):
        validate_catalog(template_references())
        self.audit = audit if audit is not None else AuditTrail()
        self.custom_roles = custom_roles

    # ── Audit plumbing ──────────────────────────────────────

    def _record(
        self,
        role: Any,
        extra_role: Any,
        permission_id: Any,
        granted: bool,
        context: AccessContext,
        permission: Permission | None = None,
    ) -> None:
        if permission is not None:
            resource, action = permission.resource, permission.action
        elif isinstance(permission_id, str):
            resource, _, action = permission_id.partition(".")
        else:
            resource, action = "", ""

        self.audit.record(AuditLogEntry(
            user_id=context.user_id or "unknown",
            role=role if isinstance(role, str) else None,
            extra_role=extra_role if isinstance(extra_role, str) else None,
            resource=resource,
            action=action,
            granted=granted,
            ip=context.ip,
            user_agent=context.user_agent,
        ))

    def _deny(
        self,
        reason: str,
        role: Any,
        extra_role: Any,
        permission_id: Any,
        context: AccessContext,
        permission: Permission | None = None,
    ) -> AccessResult:
        self._record(role, extra_role, permission_id, False, context, permission)
        return AccessResult(
            granted=False,
            reason=reason,
            required_permission=permission_id if isinstance(permission_id, str) else None,
        )

    # ── Single-permission checks ────────────────────────────

    def has_permission(
        self,
        role: Any,
        extra_role: Any,
        permission_id: Any,
        context: AccessContext | dict | None = None,
    ) -> AccessResult:
        """Decide whether a base role (plus optional extra role) holds a permission."""
        role = role_value(role)
        extra_role = role_value(extra_role)
        ctx = _as_context(context)

        if not role or not isinstance(role, str):
            return self._deny("Invalid user role provided", role, extra_role, permission_id, ctx)

        if not permission_id or not isinstance(permission_id, str):
            return self._deny("Invalid permission ID provided", role, extra_role, permission_id, ctx)

        permission = get_permission(permission_id)
        if permission is None:
            return self._deny(
                f"Permission '{permission_id}' does not exist",
                role, extra_role, permission_id, ctx,
            )

        if not is_valid_combination(role, extra_role):
            return self._deny(
                f"Invalid role combination: {role} + {_label(extra_role)}",
                role, extra_role, permission_id, ctx, permission,
            )

        granted = permission_id in effective_permission_ids(role, extra_role)
        self._record(role, extra_role, permission_id, granted, ctx, permission)

        return AccessResult(
            granted=granted,
            reason=None if granted else (
                f"Permission '{permission.name}' not granted for role '{role}'"
                f"{_extra_suffix(extra_role)}"
            ),
            required_permission=permission_id,
        )

    def has_any_permission(
        self,
        role: Any,
        extra_role: Any,
        permission_ids: Any,
        context: AccessContext | dict | None = None,
    ) -> AccessResult:
        """Grant on the first permission in `permission_ids` that is held."""
        if not isinstance(permission_ids, (list, tuple)) or not permission_ids:
            return AccessResult(granted=False, reason="Invalid permissions array provided")

        for permission_id in permission_ids:
            if not permission_id or not isinstance(permission_id, str):
                continue
            result = self.has_permission(role, extra_role, permission_id, context)
            if result.granted:
                return result

        requested = ", ".join("" if p is None else str(p) for p in permission_ids)
        role = role_value(role)
        return AccessResult(
            granted=False,
            reason=(
                f"None of the required permissions [{requested}] are granted "
                f"for role '{role}'{_extra_suffix(role_value(extra_role))}"
            ),
        )

    def can_access_resource(
        self,
        role: Any,
        extra_role: Any,
        resource: Any,
        action: Any,
        context: AccessContext | dict | None = None,
    ) -> AccessResult:
        if not resource or not isinstance(resource, str):
            return AccessResult(granted=False, reason="Invalid resource provided")
        if not action or not isinstance(action, str):
            return AccessResult(granted=False, reason="Invalid action provided")

        permission_id = f"{sanitize_segment(resource)}.{sanitize_segment(action)}"
        return self.has_permission(role, extra_role, permission_id, context)

    # ── Custom-role checks ──────────────────────────────────

    def has_custom_role_permission(
        self,
        user_id: Any,
        base_role: Any,
        permission_id: Any,
        context: AccessContext | dict | None = None,
    ) -> AccessResult:
        """Check a permission against the custom roles assigned to a user.

        Users without custom roles (or engines without a store) are checked
        against the static matrix of `base_role`.
        """
        base_role = role_value(base_role)
        ctx = _as_context(context)
        if ctx.user_id is None and isinstance(user_id, str):
            ctx = ctx.model_copy(update={"user_id": user_id})

        if not user_id or not isinstance(user_id, str):
            return self._deny("Invalid user ID provided", base_role, None, permission_id, ctx)

        roles = self.custom_roles.get_user_roles(user_id) if self.custom_roles else []
        if not roles:
            return self.has_permission(base_role, None, permission_id, ctx)

        if not permission_id or not isinstance(permission_id, str):
            return self._deny("Invalid permission ID provided", base_role, None, permission_id, ctx)

        permission = get_permission(permission_id)
        if permission is None:
            return self._deny(
                f"Permission '{permission_id}' does not exist",
                base_role, None, permission_id, ctx,
            )

        granted = any(
            permission_id in self.custom_roles.effective_permissions(r.id, base_role)
            for r in roles
        )
        self._record(base_role, None, permission_id, granted, ctx, permission)

        return AccessResult(
            granted=granted,
            reason=None if granted else (
                f"Permission '{permission.name}' not granted by the custom roles of user '{user_id}'"
            ),
            required_permission=permission_id,
        )

    # ── Introspection ───────────────────────────────────────

    def is_valid_role_combination(self, role: Any, extra_role: Any) -> bool:
        return is_valid_combination(role, extra_role)

    def get_permission(self, permission_id: Any) -> Permission | None:
        return get_permission(permission_id)

    def get_all_permissions(self) -> list[Permission]:
        return list_all_permissions()

    def get_user_permissions(self, role: Any, extra_role: Any) -> list[Permission]:
        """Catalog entries for a role combination; [] when the input is invalid."""
        role = role_value(role)
        if not role or not isinstance(role, str):
            return []
        if not is_valid_combination(role, extra_role):
            return []
        ids = effective_permission_ids(role, extra_role)
        return [PERMISSIONS[pid] for pid in ids if pid in PERMISSIONS]

    def export_permission_matrix(self, role: Any, extra_role: Any = None) -> dict[str, list[str]]:
        """Snapshot of a combination's permission ids, keyed like the admin export."""
        role = role_value(role)
        extra_role = role_value(extra_role)
        ids = [p.id for p in self.get_user_permissions(role, extra_role)]
        if not ids:
            return {}
        matrix = {role: ids}
        if extra_role:
            matrix[f"{role}-{extra_role}"] = ids
        return matrix

    # ── Audit access ────────────────────────────────────────

    def get_audit_logs(
        self,
        user_id: str | None = None,
        role: str | None = None,
        granted: bool | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[AuditLogEntry]:
        return self.audit.query(
            user_id=user_id,
            role=role_value(role),
            granted=granted,
            start=start,
            end=end,
        )

    def clear_audit_logs(self) -> None:
        self.audit.clear()
