"""Management CLI for inspecting the permission catalog and matrix.

Usage:
    python -m sekolah_rbac.cli permissions                       # List every catalog permission
    python -m sekolah_rbac.cli matrix ROLE [EXTRA]               # Effective permissions of a role combination
    python -m sekolah_rbac.cli check ROLE EXTRA PERMISSION       # Decide one permission ("-" = no extra role)
"""

import sys

from sekolah_rbac.auth.audit import AuditTrail
from sekolah_rbac.auth.engine import PermissionEngine
from sekolah_rbac.auth.permissions import list_all_permissions, list_categories

USAGE = "Usage: python -m sekolah_rbac.cli [permissions|matrix ROLE [EXTRA]|check ROLE EXTRA PERMISSION]"


def _extra(value: str | None) -> str | None:
    return None if value in (None, "", "-") else value


def list_permissions() -> int:
    permissions = list_all_permissions()
    for category in list_categories():
        print(f"{category}:")
        for p in permissions:
            if p.resource == category:
                print(f"  {p.id:<28} {p.name}")
    print(f"\n{len(permissions)} permission(s)")
    return 0


def show_matrix(role: str, extra_role: str | None = None) -> int:
    engine = PermissionEngine(audit=AuditTrail(max_entries=1))
    extra_role = _extra(extra_role)
    if not engine.is_valid_role_combination(role, extra_role):
        print(f"Invalid role combination: {role} + {extra_role or 'none'}")
        return 1

    permissions = engine.get_user_permissions(role, extra_role)
    for p in permissions:
        print(f"  {p.id}")
    print(f"\n{len(permissions)} permission(s)")
    return 0


def check(role: str, extra_role: str, permission_id: str) -> int:
    engine = PermissionEngine(audit=AuditTrail(max_entries=1))
    result = engine.has_permission(role, _extra(extra_role), permission_id)
    if result.granted:
        print("GRANTED")
        return 0
    print(f"DENIED: {result.reason}")
    return 1


def main(argv: list[str]) -> int:
    cmd = argv[0] if argv else ""
    args = argv[1:]
    if cmd == "permissions":
        return list_permissions()
    if cmd == "matrix" and 1 <= len(args) <= 2:
        return show_matrix(*args)
    if cmd == "check" and len(args) == 3:
        return check(*args)
    print(USAGE)
    return 2


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
