"""
User feature routes.
"""
from typing import Annotated
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.scope import ORGANIZATION, USER
from app.features.organizations.models import Organization, is_member_of_organization
from app.features.permissions.dependencies import authorize_request
from app.features.roles import catalog
from app.features.roles.service import roles_for
from app.features.sessions.service import SessionPrincipal
from app.features.tags.service import get_tag_names
from app.features.users.models import User
from app.features.users.schemas import UserResponse, UserPublic, UserUpdate


router = APIRouter(tags=["users"])


async def _get_organization(db: AsyncSession, organization_id: str | None) -> Organization | None:
    if not organization_id:
        return None
    return await db.get(Organization, organization_id)


async def _build_profile(db: AsyncSession, user: User, organization_id: str | None) -> UserResponse:
    # The collection may be unloaded when the row came in through Organization.users
    await db.refresh(user, ["organizations"])
    response = UserResponse.model_validate(user)
    organization = await _get_organization(db, organization_id)
    
    # Global roles are always reported; organization roles only for a known organization
    roles = await roles_for(db, user, organization)
    response.organization_id = organization.id if organization else None
    response.roles = roles
    response.role_display_names = catalog.display_names(
        roles, [USER], [catalog.GLOBAL, ORGANIZATION if organization else catalog.GLOBAL]
    )
    response.tags = await get_tag_names(db, user, organization) if organization else []
    return response


@router.get("/me", response_model=UserResponse)
async def get_current_user_profile(
    principal: Annotated[SessionPrincipal, Depends(authorize_request(requires_org_id=False))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Get current authenticated user's profile, with roles and tags for the requested organization."""
    return await _build_profile(db, principal.user, principal.organization_id)


@router.patch("/me", response_model=UserResponse)
async def update_current_user_profile(
    update_data: UserUpdate,
    principal: Annotated[SessionPrincipal, Depends(authorize_request(requires_org_id=False))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Update current user's profile."""
    user = principal.user
    if update_data.name is not None:
        user.name = update_data.name
    
    await db.commit()
    await db.refresh(user)
    return await _build_profile(db, user, principal.organization_id)


@router.get("/{user_id}", response_model=UserPublic)
async def get_user_by_id(
    user_id: str,
    principal: Annotated[SessionPrincipal, Depends(authorize_request())],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """
    Get a user's profile within the requested organization.
    
    Outside the admin and system scopes the user must belong to that organization.
    """
    user = await db.get(User, user_id)
    organization_id = principal.organization_id
    
    if user is None or (
        principal.requires_membership_check
        and not await is_member_of_organization(db, user.id, organization_id)
    ):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )
    
    organization = await _get_organization(db, organization_id)
    return UserPublic(
        id=user.id,
        name=user.name,
        organization_id=organization.id if organization else None,
        roles=await roles_for(db, user, organization),
        tags=await get_tag_names(db, user, organization) if organization else []
    )
