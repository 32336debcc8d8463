"""Permission catalog, role matrix and role-combination rules.

Design:
  - Every grantable capability is declared once in PERMISSIONS (static,
    never mutated at runtime).
  - Each base role has a DEFAULT permission list in ROLE_PERMISSION_MATRIX.
  - An optional extra role layers additional permissions on top of the base
    role via EXTRA_ROLE_PERMISSIONS.
  - Not every (base role, extra role) pair is legal; see
    `is_valid_combination`.

Permission naming: `<resource>.<action>`
  Resources: system, users, roles, audit, content, academic, student,
             quizzes, inventory, payments, school, parent, osis, ppdb,
             announcements
"""

from __future__ import annotations

import enum
import logging
from types import MappingProxyType
from typing import Any

from sekolah_rbac.schemas.access import Permission

logger = logging.getLogger(__name__)


class BaseRole(str, enum.Enum):
    ADMIN = "admin"
    TEACHER = "teacher"
    STUDENT = "student"
    PARENT = "parent"


class ExtraRole(str, enum.Enum):
    STAFF = "staff"
    OSIS = "osis"
    WAKASEK = "wakasek"
    KEPSEK = "kepsek"


BASE_ROLES: frozenset[str] = frozenset(r.value for r in BaseRole)
EXTRA_ROLES: frozenset[str] = frozenset(r.value for r in ExtraRole)

# Substrings that must never reach an associative lookup.
BLOCKED_KEY_FRAGMENTS = ("__proto__", "constructor", "prototype")


class CatalogError(Exception):
    """The static catalog is inconsistent (raised at startup only)."""


# ── All known permissions ───────────────────────────────────

_CATALOG: list[tuple[str, str, str, str, str]] = [
    # (id, name, description, resource, action)

    # System
    ("system.admin", "System Administration", "Full administrative control of the platform", "system", "admin"),
    ("system.stats", "View System Statistics", "View usage and health statistics", "system", "stats"),
    ("system.settings", "Manage System Settings", "Change global school settings", "system", "settings"),

    # User management
    ("users.create", "Create Users", "Create new user accounts", "users", "create"),
    ("users.read", "View Users", "View user accounts and profiles", "users", "read"),
    ("users.update", "Update Users", "Edit user accounts and profiles", "users", "update"),
    ("users.delete", "Delete Users", "Remove user accounts", "users", "delete"),
    ("users.import", "Import Users", "Bulk import user accounts", "users", "import"),

    # Access control administration
    ("roles.manage", "Manage Roles", "Create, edit and assign custom roles", "roles", "manage"),
    ("audit.read", "View Audit Logs", "Inspect the authorization audit trail", "audit", "read"),

    # Content
    ("content.create", "Create Content", "Create learning content and pages", "content", "create"),
    ("content.read", "View Content", "Read learning content and pages", "content", "read"),
    ("content.update", "Update Content", "Edit learning content and pages", "content", "update"),
    ("content.delete", "Delete Content", "Remove learning content and pages", "content", "delete"),

    # Academic
    ("academic.grades", "Manage Grades", "Record and edit student grades", "academic", "grade"),
    ("academic.attendance", "Manage Attendance", "Record student attendance", "academic", "attendance"),
    ("academic.schedule", "Manage Schedule", "Edit class schedules", "academic", "schedule"),
    ("academic.classes", "Manage Classes", "Manage class rosters", "academic", "classes"),
    ("academic.discipline", "Manage Discipline", "Record disciplinary notes", "academic", "discipline"),
    ("academic.oversight", "Academic Oversight", "Supervise curriculum and teaching quality", "academic", "oversight"),
    ("academic.reports", "Academic Reports", "View consolidated academic reports", "academic", "reports"),

    # Student self-service
    ("student.library", "Access Library", "Browse the digital library", "student", "library"),
    ("student.materials", "Access Learning Materials", "Open shared learning materials", "student", "materials"),
    ("student.assignments", "Submit Assignments", "Submit assignment work", "student", "assignments"),
    ("student.grades", "View Own Grades", "View personal grades and report cards", "student", "grades"),

    # Quizzes
    ("quizzes.create", "Create Quizzes", "Author and publish quizzes", "quizzes", "create"),
    ("quizzes.take", "Take Quizzes", "Attempt published quizzes", "quizzes", "take"),
    ("quizzes.view_results", "View Quiz Results", "View results for all participants", "quizzes", "view_results"),
    ("quizzes.view_history", "View Quiz History", "View past quiz attempts", "quizzes", "view_history"),

    # Inventory
    ("inventory.manage", "Manage Inventory", "Track and update school assets", "inventory", "manage"),
    ("inventory.read", "View Inventory", "View school assets", "inventory", "read"),

    # Payments
    ("payments.create", "Create Payments", "Record tuition and fee payments", "payments", "create"),
    ("payments.read", "View Payments", "View payment records", "payments", "read"),
    ("payments.update", "Update Payments", "Edit payment records", "payments", "update"),

    # School-wide
    ("school.reports", "School Reports", "Generate school-wide reports", "school", "reports"),

    # Parents
    ("parent.monitor", "Monitor Children", "Follow children's grades and attendance", "parent", "monitor"),
    ("parent.communication", "Parent Communication", "Message parents and guardians", "parent", "communication"),

    # Student council
    ("osis.events", "Manage OSIS Events", "Organise student council events", "osis", "events"),

    # Admissions
    ("ppdb.manage", "Manage PPDB", "Process new student admissions", "ppdb", "manage"),

    # Announcements
    ("announcements.view", "View Announcements", "Read school announcements", "announcements", "view"),
    ("announcements.manage", "Manage Announcements", "Publish and retract announcements", "announcements", "manage"),
]

PERMISSIONS: MappingProxyType[str, Permission] = MappingProxyType({
    pid: Permission(id=pid, name=name, description=desc, resource=resource, action=action)
    for pid, name, desc, resource, action in _CATALOG
})

ALL_PERMISSION_IDS: tuple[str, ...] = tuple(PERMISSIONS)


# ── Role → default permissions ──────────────────────────────

ROLE_PERMISSION_MATRIX: MappingProxyType[str, tuple[str, ...]] = MappingProxyType({
    "admin": ALL_PERMISSION_IDS,

    "teacher": (
        "content.create", "content.read", "content.update",
        "academic.grades", "academic.attendance", "academic.schedule",
        "academic.classes", "academic.discipline",
        "student.library", "student.materials",
        "quizzes.create", "quizzes.view_results", "quizzes.view_history",
        "parent.communication",
        "announcements.view", "announcements.manage",
    ),

    "student": (
        "content.read",
        "student.library", "student.materials",
        "student.assignments", "student.grades",
        "quizzes.take", "quizzes.view_history",
        "announcements.view",
    ),

    "parent": (
        "content.read",
        "parent.monitor", "parent.communication",
        "payments.read",
        "announcements.view",
    ),
})


# ── Extra role → additional permissions ─────────────────────

EXTRA_ROLE_PERMISSIONS: MappingProxyType[str, tuple[str, ...]] = MappingProxyType({
    "staff": (
        "inventory.manage", "inventory.read",
        "payments.read", "school.reports", "users.read",
    ),
    "osis": (
        "osis.events", "announcements.manage",
    ),
    "wakasek": (
        "academic.oversight", "academic.reports",
        "school.reports", "users.read",
    ),
    "kepsek": (
        "academic.oversight", "academic.reports",
        "school.reports", "users.read",
        "audit.read", "ppdb.manage", "system.stats",
    ),
})


# ── Lookups ─────────────────────────────────────────────────

def role_value(role: Any) -> Any:
    """Collapse enum members to their plain string value."""
    if isinstance(role, enum.Enum):
        return role.value
    return role


def is_blocked_key(key: str) -> bool:
    return any(fragment in key for fragment in BLOCKED_KEY_FRAGMENTS)


def get_permission(permission_id: Any) -> Permission | None:
    """Return the catalog entry for an id, or None if it is unknown."""
    if not permission_id or not isinstance(permission_id, str):
        return None
    if is_blocked_key(permission_id):
        logger.warning(
            "Potential injection attempt in permission lookup",
            extra={"permission_id": permission_id},
        )
        return None
    return PERMISSIONS.get(permission_id)


def list_all_permissions() -> list[Permission]:
    return list(PERMISSIONS.values())


def list_categories() -> list[str]:
    return sorted({p.resource for p in PERMISSIONS.values()})


def list_by_category(resource: str) -> list[Permission]:
    return [p for p in PERMISSIONS.values() if p.resource == resource]


# ── Combination rules ───────────────────────────────────────

def is_valid_combination(role: Any, extra_role: Any) -> bool:
    """Decide whether a base role may carry the given extra role."""
    role = role_value(role)
    extra_role = role_value(extra_role)

    if not role or not isinstance(role, str) or role not in BASE_ROLES:
        return False
    if extra_role is not None and (
        not isinstance(extra_role, str) or extra_role not in EXTRA_ROLES
    ):
        return False

    if role == "admin":
        return extra_role is None
    if role == "teacher" and extra_role == "osis":
        return False
    if role == "student" and extra_role == "staff":
        return False
    if role == "parent" and extra_role is not None:
        return False

    # Academic leadership is reserved for teachers
    if extra_role in ("wakasek", "kepsek") and role != "teacher":
        return False

    return True


# ── Resolution ──────────────────────────────────────────────

def effective_permission_ids(role: Any, extra_role: Any = None) -> list[str]:
    """Union of the role defaults and the extra-role overlay, first-seen order.

    Callers are expected to have checked `is_valid_combination` first.
    """
    role = role_value(role)
    extra_role = role_value(extra_role)

    ids: list[str] = list(ROLE_PERMISSION_MATRIX.get(role, ()))
    if extra_role:
        ids.extend(EXTRA_ROLE_PERMISSIONS.get(extra_role, ()))
    return list(dict.fromkeys(ids))


def validate_catalog(extra_references: dict[str, list[str]] | None = None) -> None:
    """Fail fast if the static catalog contradicts itself.

    `extra_references` maps a label (e.g. a template id) to permission ids
    that must exist in the catalog.
    """
    for pid, permission in PERMISSIONS.items():
        if pid != permission.id or not pid.startswith(f"{permission.resource}."):
            raise CatalogError(f"Permission id '{pid}' does not match resource '{permission.resource}'")

    if set(ROLE_PERMISSION_MATRIX) != BASE_ROLES:
        raise CatalogError("Role matrix keys must match the base roles exactly")
    if set(EXTRA_ROLE_PERMISSIONS) != EXTRA_ROLES:
        raise CatalogError("Extra-role overlay keys must match the extra roles exactly")

    references: dict[str, list[str]] = {}
    references.update({f"role:{k}": list(v) for k, v in ROLE_PERMISSION_MATRIX.items()})
    references.update({f"extra_role:{k}": list(v) for k, v in EXTRA_ROLE_PERMISSIONS.items()})
    if extra_references:
        references.update(extra_references)

    for label, ids in references.items():
        unknown = [pid for pid in ids if pid not in PERMISSIONS]
        if unknown:
            raise CatalogError(f"{label} references unknown permissions: {', '.join(unknown)}")
