"""
Pydantic schemas for role catalog and role grant endpoints.
"""
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field, ConfigDict


# ============================================================================
# Catalog Schemas
# ============================================================================

class RoleDefinitionResponse(BaseModel):
    """A role from the static catalog."""
    name: str
    display_name: str
    priority: int = Field(..., description="Lower is more elevated")
    is_primary: bool
    is_global: bool
    owner_kinds: List[str]
    target_kinds: List[Optional[str]]


# ============================================================================
# Grant Schemas
# ============================================================================

class RoleGrantCreate(BaseModel):
    """Grant a role to a user within an organization."""
    role: str = Field(..., min_length=1, max_length=64, description="Catalog role name")


class RoleGrantResponse(BaseModel):
    """A single role grant."""
    id: str
    name: str
    display_name: Optional[str] = None
    owner_kind: str
    owner_id: str
    target_kind: Optional[str] = None
    target_id: Optional[str] = None
    created_at: datetime
    
    model_config = ConfigDict(from_attributes=True)


class UserRolesResponse(BaseModel):
    """Roles a user holds for an organization, global grants included."""
    user_id: str
    organization_id: str
    roles: List[str] = Field(default_factory=list)
    display_names: List[str] = Field(default_factory=list)
    primary_role: Optional[str] = None
    grants: List[RoleGrantResponse] = Field(default_factory=list)


class RoleRevokeResponse(BaseModel):
    revoked: int
    roles: List[str] = Field(default_factory=list)
