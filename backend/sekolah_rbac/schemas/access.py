"""Pydantic schemas for authorization decisions, audit records and routes."""

from datetime import datetime, timezone

from pydantic import BaseModel, Field, field_validator


class Permission(BaseModel):
    id: str
    name: str
    description: str
    resource: str
    action: str

    model_config = {"frozen": True}


class AccessContext(BaseModel):
    """Optional request metadata recorded alongside a decision."""
    user_id: str | None = None
    ip: str | None = None
    user_agent: str | None = None


class AccessResult(BaseModel):
    granted: bool
    reason: str | None = None
    required_permission: str | None = None


class AuditLogEntry(BaseModel):
    user_id: str = "unknown"
    role: str | None = None
    extra_role: str | None = None
    resource: str
    action: str
    granted: bool
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    ip: str | None = None
    user_agent: str | None = None

    @field_validator("timestamp")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        # restored blobs may carry naive times; comparisons need aware ones
        return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


class RouteConfig(BaseModel):
    path: str
    required_permission: str | None = None
    required_role: str | None = None
    is_public: bool = False


# ── Request bodies ────────────────────────────────────────────

class CheckPermissionRequest(BaseModel):
    role: str | None = None
    extra_role: str | None = None
    permission_id: str | None = None
    context: AccessContext | None = None


class CheckAnyPermissionRequest(BaseModel):
    role: str | None = None
    extra_role: str | None = None
    permission_ids: list[str | None] | None = None
    context: AccessContext | None = None


class CheckResourceRequest(BaseModel):
    role: str | None = None
    extra_role: str | None = None
    resource: str | None = None
    action: str | None = None
    context: AccessContext | None = None


class CheckRouteRequest(BaseModel):
    role: str | None = None
    extra_role: str | None = None
    path: str
    context: AccessContext | None = None


class CombinationResponse(BaseModel):
    role: str | None = None
    extra_role: str | None = None
    valid: bool


class AuditListResponse(BaseModel):
    items: list[AuditLogEntry]
    total: int
