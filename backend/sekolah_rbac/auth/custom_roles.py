"""Administrator-defined roles layered on top of the static role matrix.

A custom role bundles permission ids and may inherit from other custom
roles. Its effective permission set is the union of its own permissions and
those of every role reachable through `inherits_from`; cycles are cut with
a visited set so resolution always terminates.

State (roles, stored templates, user assignments) is kept as three JSON
blobs in the storage collaborator. Read-modify-write sequences are
serialized with a re-entrant lock; a failed read yields an empty
collection. Nothing is raised: malformed input, a failed write or a
missing record is reported through the return value (None or False).
"""

from __future__ import annotations

import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, TypeAdapter, ValidationError

from sekolah_rbac.auth.permissions import ROLE_PERMISSION_MATRIX, role_value
from sekolah_rbac.schemas.roles import (
    CustomRole,
    CustomRoleCreate,
    CustomRoleUpdate,
    RoleTemplate,
    RoleTemplateCreate,
)
from sekolah_rbac.storage.blobs import BlobStorage, load_json, save_json

logger = logging.getLogger(__name__)

_roles_adapter = TypeAdapter(list[CustomRole])
_templates_adapter = TypeAdapter(list[RoleTemplate])
_assignments_adapter = TypeAdapter(dict[str, list[str]])


# ── Built-in templates ──────────────────────────────────────

DEFAULT_ROLE_TEMPLATES: tuple[RoleTemplate, ...] = (
    RoleTemplate(
        id="template_class_teacher",
        name="Class Teacher",
        description="Teacher with full class management capabilities",
        base_role_id="teacher",
        permissions=[
            "academic.grades", "academic.attendance", "academic.schedule", "academic.classes",
            "content.create", "content.read", "content.update",
            "student.library", "student.materials",
            "quizzes.view_results", "quizzes.view_history",
        ],
        is_system=True,
    ),
    RoleTemplate(
        id="template_subject_teacher",
        name="Subject Teacher",
        description="Teacher focused on specific subjects",
        base_role_id="teacher",
        permissions=[
            "academic.grades", "academic.attendance",
            "content.create", "content.read", "content.update",
            "student.library", "student.materials",
            "quizzes.view_results", "quizzes.view_history",
        ],
        is_system=True,
    ),
    RoleTemplate(
        id="template_librarian",
        name="Librarian",
        description="Manages library and learning resources",
        base_role_id="staff",
        permissions=[
            "content.create", "content.read", "content.update", "content.delete",
            "student.library", "student.materials",
            "inventory.manage",
        ],
        is_system=True,
    ),
    RoleTemplate(
        id="template_finance",
        name="Finance Staff",
        description="Manages school finances and payments",
        base_role_id="staff",
        permissions=[
            "payments.create", "payments.read", "payments.update",
            "users.read", "content.read",
            "school.reports",
        ],
        is_system=True,
    ),
    RoleTemplate(
        id="template_counselor",
        name="School Counselor",
        description="Student guidance and counseling",
        base_role_id="staff",
        permissions=[
            "users.read", "users.update",
            "academic.grades", "academic.attendance",
            "academic.discipline",
            "student.library", "student.materials",
            "parent.communication",
        ],
        is_system=True,
    ),
)


def template_references() -> dict[str, list[str]]:
    """Permission ids referenced by built-in templates, for catalog checks."""
    return {f"template:{t.id}": list(t.permissions) for t in DEFAULT_ROLE_TEMPLATES}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _coerce(model: type[BaseModel], data: Any) -> Any:
    """Validate a dict against `model`; None (with a warning) when it does not fit."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        logger.warning(f"Rejected {model.__name__}: {exc.error_count()} validation error(s)")
        return None


class CustomRoleStore:
    def __init__(self, storage: BlobStorage, key_prefix: str = "sekolah_rbac"):
        self._storage = storage
        self._roles_key = f"{key_prefix}:custom_roles"
        self._templates_key = f"{key_prefix}:role_templates"
        self._assignments_key = f"{key_prefix}:custom_role_assignments"
        self._lock = threading.RLock()

    # ── Storage plumbing ────────────────────────────────────

    def _load_roles(self) -> list[CustomRole]:
        return load_json(self._storage, self._roles_key, _roles_adapter) or []

    def _save_roles(self, roles: list[CustomRole]) -> bool:
        return save_json(self._storage, self._roles_key, _roles_adapter, roles)

    def _load_assignments(self) -> dict[str, list[str]]:
        return load_json(self._storage, self._assignments_key, _assignments_adapter) or {}

    def _save_assignments(self, assignments: dict[str, list[str]]) -> bool:
        return save_json(self._storage, self._assignments_key, _assignments_adapter, assignments)

    # ── Custom role CRUD ────────────────────────────────────

    def list(self) -> list[CustomRole]:
        return self._load_roles()

    def get(self, role_id: str) -> CustomRole | None:
        if not role_id:
            return None
        return next((r for r in self._load_roles() if r.id == role_id), None)

    def create(self, data: CustomRoleCreate | dict[str, Any]) -> CustomRole | None:
        """Store a new custom role.

        Returns None if the data is malformed, the id is already taken, or
        the write fails.
        """
        data = _coerce(CustomRoleCreate, data)
        if data is None:
            return None

        now = _now()
        role = CustomRole(
            **data.model_dump(exclude={"id"}),
            id=data.id or f"custom_role_{uuid.uuid4().hex[:12]}",
            is_custom=True,
            created_at=now,
            updated_at=now,
        )

        with self._lock:
            roles = self._load_roles()
            if any(r.id == role.id for r in roles):
                logger.warning(f"Custom role id already exists: {role.id}")
                return None
            if not self._save_roles([*roles, role]):
                return None

        logger.info(f"Created custom role {role.id}", extra={"created_by": role.created_by})
        return role

    def update(self, role_id: str, patch: CustomRoleUpdate | dict[str, Any]) -> CustomRole | None:
        """Apply a partial update. None for unknown ids, bad patches or failed writes."""
        patch = _coerce(CustomRoleUpdate, patch)
        if patch is None:
            return None
        # base_role_id is the only field that may be cleared
        changes = {
            k: v for k, v in patch.model_dump(exclude_unset=True).items()
            if v is not None or k == "base_role_id"
        }

        with self._lock:
            roles = self._load_roles()
            for index, role in enumerate(roles):
                if role.id == role_id:
                    updated = role.model_copy(update={**changes, "updated_at": _now()})
                    roles[index] = updated
                    return updated if self._save_roles(roles) else None
        return None

    def delete(self, role_id: str) -> bool:
        """True only when the role existed and the removal was written."""
        with self._lock:
            roles = self._load_roles()
            remaining = [r for r in roles if r.id != role_id]
            if len(remaining) == len(roles) or not self._save_roles(remaining):
                return False

        logger.info(f"Deleted custom role {role_id}")
        return True

    # ── Inheritance ─────────────────────────────────────────

    def effective_permissions(self, role_id: str, fallback_base_role: Any = None) -> list[str]:
        """Flattened permission ids for a custom role.

        An id that does not resolve to a stored role (the root or any
        inherited id) contributes the static matrix of `fallback_base_role`.
        """
        roles = {r.id: r for r in self._load_roles()}
        return self._flatten(role_id, role_value(fallback_base_role), roles, set())

    def _flatten(
        self,
        role_id: str,
        fallback_base_role: str | None,
        roles: dict[str, CustomRole],
        visited: set[str],
    ) -> list[str]:
        if role_id in visited:
            return []
        visited.add(role_id)

        role = roles.get(role_id)
        if role is None:
            return list(ROLE_PERMISSION_MATRIX.get(fallback_base_role, ()))

        ids = list(role.permissions)
        for parent_id in role.inherits_from:
            ids.extend(self._flatten(parent_id, fallback_base_role, roles, visited))
        return list(dict.fromkeys(ids))

    # ── Templates ───────────────────────────────────────────

    def _load_custom_templates(self) -> list[RoleTemplate]:
        stored = load_json(self._storage, self._templates_key, _templates_adapter) or []
        return [t for t in stored if not t.is_system]

    def list_templates(self) -> list[RoleTemplate]:
        return [*DEFAULT_ROLE_TEMPLATES, *self._load_custom_templates()]

    def get_template(self, template_id: str) -> RoleTemplate | None:
        return next((t for t in self.list_templates() if t.id == template_id), None)

    def create_template(self, data: RoleTemplateCreate | dict[str, Any]) -> RoleTemplate | None:
        data = _coerce(RoleTemplateCreate, data)
        if data is None:
            return None

        template = RoleTemplate(
            **data.model_dump(),
            id=f"custom_template_{uuid.uuid4().hex[:12]}",
            is_system=False,
        )
        with self._lock:
            templates = [*self._load_custom_templates(), template]
            if not save_json(self._storage, self._templates_key, _templates_adapter, templates):
                return None
        return template

    def create_from_template(self, template_id: str, created_by: str = "admin") -> CustomRole | None:
        """Instantiate a template as a new, independent custom role."""
        template = self.get_template(template_id)
        if template is None:
            return None
        return self.create(CustomRoleCreate(
            name=f"{template.name} (Custom)",
            description=template.description,
            base_role_id=template.base_role_id,
            permissions=list(template.permissions),
            inherits_from=[],
            created_by=created_by,
        ))

    # ── Assignments ─────────────────────────────────────────

    def assign(self, user_id: str, role_id: str) -> bool:
        """Idempotent. False only when the write fails."""
        with self._lock:
            assignments = self._load_assignments()
            role_ids = assignments.setdefault(user_id, [])
            if role_id in role_ids:
                return True
            role_ids.append(role_id)
            return self._save_assignments(assignments)

    def unassign(self, user_id: str, role_id: str) -> bool:
        with self._lock:
            assignments = self._load_assignments()
            if role_id not in assignments.get(user_id, []):
                return True
            assignments[user_id] = [r for r in assignments[user_id] if r != role_id]
            return self._save_assignments(assignments)

    def get_assignments(self, user_id: str) -> list[str]:
        return list(self._load_assignments().get(user_id, []))

    def get_user_roles(self, user_id: str) -> list[CustomRole]:
        """Assigned roles in assignment order; dangling ids are skipped."""
        roles = {r.id: r for r in self._load_roles()}
        return [roles[rid] for rid in self.get_assignments(user_id) if rid in roles]
