"""
Pydantic schemas for organization-related requests and responses.
"""
from datetime import datetime
from pydantic import BaseModel, Field, EmailStr


# Organization Schemas
class OrganizationBase(BaseModel):
    """Base organization schema."""
    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr | None = None
    website: str | None = Field(None, max_length=255)


class OrganizationCreate(OrganizationBase):
    """Schema for creating a new organization (support staff only)."""
    superadmin_user_id: str | None = Field(None, description="Optional user to make superadmin of the new organization")


class OrganizationUpdate(BaseModel):
    """Schema for updating organization information."""
    name: str | None = Field(None, min_length=1, max_length=255)
    email: EmailStr | None = None
    website: str | None = Field(None, max_length=255)
    is_active: bool | None = None


class OrganizationResponse(OrganizationBase):
    """Schema for organization responses."""
    id: str
    is_active: bool
    created_at: datetime
    updated_at: datetime
    member_count: int | None = Field(None, description="Number of users in this organization")
    
    model_config = {"from_attributes": True}


class OrganizationPublic(BaseModel):
    """Public organization information (limited fields)."""
    id: str
    name: str
    
    model_config = {"from_attributes": True}


# Membership Schemas
class AddUserToOrganization(BaseModel):
    """Schema for adding an existing user to an organization."""
    user_id: str = Field(..., description="ID of the user to add")
    role: str = Field(default="member", min_length=1, max_length=64, description="Catalog role to grant in the organization")


class MembershipResponse(BaseModel):
    """A user's membership and roles in an organization."""
    user_id: str
    organization_id: str
    roles: list[str] = Field(default_factory=list)
