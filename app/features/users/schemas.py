"""
Pydantic schemas for user-related requests and responses.
"""
from datetime import datetime
from pydantic import BaseModel, EmailStr, Field

from app.features.organizations.schemas import OrganizationPublic


class UserBase(BaseModel):
    """Base user schema with common fields."""
    email: EmailStr
    name: str | None = Field(None, max_length=255)


class UserUpdate(BaseModel):
    """Schema for updating user information."""
    name: str | None = Field(None, min_length=1, max_length=255)


class UserResponse(UserBase):
    """Schema for the current user's profile."""
    id: str
    is_active: bool
    last_login_at: datetime | None = None
    created_at: datetime
    updated_at: datetime
    
    organizations: list[OrganizationPublic] = []
    
    # Filled in for the organization the request targets, if any
    organization_id: str | None = None
    roles: list[str] = []
    role_display_names: list[str] = []
    tags: list[str] = []
    
    model_config = {"from_attributes": True}


class UserPublic(BaseModel):
    """User information visible to other members of an organization."""
    id: str
    name: str | None = None
    organization_id: str | None = None
    roles: list[str] = []
    tags: list[str] = []
    
    model_config = {"from_attributes": True}
