"""
Pydantic schemas for tag endpoints.
"""
from pydantic import BaseModel, Field


class TagsUpdate(BaseModel):
    """Tag names to attach. Names are lower-cased and stripped of anything but letters, digits, "_" and "-"."""
    tags: list[str] = Field(..., min_length=1, description="Tag names")


class UserTagsResponse(BaseModel):
    """Tags a user has within an organization."""
    user_id: str
    organization_id: str
    tags: list[str] = Field(default_factory=list)
    added: list[str] | None = Field(None, description="Names added by this request")
