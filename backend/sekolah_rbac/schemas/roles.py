"""Pydantic schemas for custom roles, role templates and assignments."""

from datetime import datetime

from pydantic import BaseModel, Field


class CustomRole(BaseModel):
    id: str
    name: str
    description: str = ""
    base_role_id: str | None = None
    permissions: list[str] = Field(default_factory=list)
    inherits_from: list[str] = Field(default_factory=list)
    is_custom: bool = True
    created_at: datetime
    updated_at: datetime
    created_by: str = "admin"


class CustomRoleCreate(BaseModel):
    id: str | None = None
    name: str = Field(min_length=1)
    description: str = ""
    base_role_id: str | None = None
    permissions: list[str] = Field(default_factory=list)
    inherits_from: list[str] = Field(default_factory=list)
    created_by: str = "admin"


class CustomRoleUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    description: str | None = None
    base_role_id: str | None = None
    permissions: list[str] | None = None
    inherits_from: list[str] | None = None


class RoleTemplate(BaseModel):
    id: str
    name: str
    description: str = ""
    base_role_id: str
    permissions: list[str] = Field(default_factory=list)
    is_system: bool = False

    model_config = {"frozen": True}


class RoleTemplateCreate(BaseModel):
    name: str = Field(min_length=1)
    description: str = ""
    base_role_id: str
    permissions: list[str] = Field(default_factory=list)


class InstantiateTemplateRequest(BaseModel):
    created_by: str = "admin"


class EffectivePermissionsResponse(BaseModel):
    role_id: str
    permissions: list[str]


class UserRolesResponse(BaseModel):
    user_id: str
    role_ids: list[str]
    roles: list[CustomRole]
