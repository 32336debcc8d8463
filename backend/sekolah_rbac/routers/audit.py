"""Audit trail access. Reading requires `audit.read`; clearing requires `system.admin`."""

from datetime import datetime

from fastapi import APIRouter, Depends, Query, Response, status

from sekolah_rbac.auth.deps import Caller, get_engine, require_permission
from sekolah_rbac.auth.engine import PermissionEngine
from sekolah_rbac.schemas.access import AuditListResponse

router = APIRouter()


@router.get("/", response_model=AuditListResponse)
async def list_audit_logs(
    user_id: str | None = None,
    role: str | None = None,
    granted: bool | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    limit: int = Query(100, ge=1, le=1000),
    engine: PermissionEngine = Depends(get_engine),
    _caller: Caller = Depends(require_permission("audit.read")),
):
    """Newest entries first; `total` counts matches before the limit is applied."""
    logs = engine.get_audit_logs(
        user_id=user_id or None,
        role=role or None,
        granted=granted,
        start=start,
        end=end,
    )
    return AuditListResponse(items=logs[:limit], total=len(logs))


@router.delete("/", status_code=status.HTTP_204_NO_CONTENT)
async def clear_audit_logs(
    engine: PermissionEngine = Depends(get_engine),
    _caller: Caller = Depends(require_permission("system.admin")),
):
    engine.clear_audit_logs()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
