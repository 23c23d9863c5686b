"""
Pydantic schemas for the permission catalog, resolution and overrides.
"""
from typing import List, Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator


# ============================================================================
# Catalog Schemas
# ============================================================================

class PermissionResponse(BaseModel):
    """Catalog permission."""
    id: str
    app: str
    action: str
    resource: Optional[str] = None
    display_name: str
    description: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class RoleResponse(BaseModel):
    """Catalog role. The fallback role is reported with id ''."""
    id: str
    name: str
    display_name: str
    description: Optional[str] = None
    hierarchy_level: int
    is_system: bool = False
    is_super: bool = False

    model_config = ConfigDict(from_attributes=True)


class RolePermissionsResponse(BaseModel):
    role_id: str
    permission_ids: List[str]


class AppSummaryResponse(BaseModel):
    """Per-app permission count and number of users."""
    app: str
    total_permissions: int
    users_with_access: int


# ============================================================================
# Resolution Schemas
# ============================================================================

class EffectivePermissionsResponse(BaseModel):
    """Role plus effective permission set of one user."""
    user_id: str
    role: RoleResponse
    bypasses_checks: bool = Field(False, description="True for the super role, which passes every check")
    effective_permissions: List[PermissionResponse] = []
    granted_permission_ids: List[str] = []
    revoked_permission_ids: List[str] = []


# ============================================================================
# Override Schemas
# ============================================================================

class OverrideResponse(BaseModel):
    permission_id: str
    granted: bool


class UpdateOverridesRequest(BaseModel):
    """Full replacement of a user's overrides."""
    grants: List[str] = Field(default_factory=list, description="Permission ids to add on top of the role")
    revokes: List[str] = Field(default_factory=list, description="Permission ids to remove from the role")

    @field_validator("grants", "revokes")
    @classmethod
    def ids_not_blank(cls, v: List[str]) -> List[str]:
        """Reject empty permission ids."""
        if any(not pid.strip() for pid in v):
            raise ValueError("Permission ids must not be empty")
        return v
