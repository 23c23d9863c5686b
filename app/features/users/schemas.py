"""
Pydantic schemas for user-related requests and responses.
"""
from datetime import datetime
from pydantic import BaseModel, EmailStr, Field

from app.features.permissions.schemas import RoleResponse


class UserResponse(BaseModel):
    """Schema for the current user's profile."""
    id: str
    email: str
    name: str
    is_active: bool
    last_login_at: datetime | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class UserWithRole(BaseModel):
    """User list entry with the resolved role (fallback when unassigned)."""
    id: str
    email: str
    name: str
    is_active: bool
    role: RoleResponse
    assigned_at: datetime | None = None
    created_at: datetime


class UserDetail(UserWithRole):
    role_permission_ids: list[str] = []


class UpdateUserRole(BaseModel):
    role_id: str = Field(..., min_length=1, description="Role to assign")


class InviteUser(BaseModel):
    email: EmailStr
    role_id: str = Field(..., min_length=1, description="Role assigned on creation")
    name: str = Field("", max_length=255)


class InviteUserResponse(BaseModel):
    success: bool = True
    user_id: str
