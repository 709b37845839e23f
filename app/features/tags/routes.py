"""
Tag routes.

Tags are free-form labels a user carries within an organization.
"""
from typing import Annotated
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.scope import EntityRef
from app.features.organizations.dependencies import get_organization_by_id
from app.features.permissions.dependencies import (
    authorize_request,
    ensure_can_act_on,
    require_permission
)
from app.features.sessions.service import SessionPrincipal
from app.features.tags.schemas import TagsUpdate, UserTagsResponse
from app.features.tags.service import add_tags, get_tag_names, remove_tags
from app.features.users.models import User


router = APIRouter(tags=["tags"])


async def _get_user_or_404(db: AsyncSession, user_id: str) -> User:
    user = await db.get(User, user_id)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )
    return user


@router.get("/organizations/{organization_id}/users/{user_id}", response_model=UserTagsResponse)
async def get_user_tags(
    organization_id: str,
    user_id: str,
    principal: Annotated[SessionPrincipal, Depends(authorize_request())],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """List the user's tags for the organization."""
    organization = await get_organization_by_id(organization_id, db)
    user = await _get_user_or_404(db, user_id)
    return UserTagsResponse(
        user_id=user.id,
        organization_id=organization.id,
        tags=await get_tag_names(db, user, organization)
    )


@router.post("/organizations/{organization_id}/users/{user_id}", response_model=UserTagsResponse)
async def add_user_tags(
    organization_id: str,
    user_id: str,
    tag_data: TagsUpdate,
    principal: Annotated[SessionPrincipal, Depends(require_permission("update-user:Organization"))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Attach tags to the user. Tags the user already has are left alone."""
    organization = await get_organization_by_id(organization_id, db)
    user = await _get_user_or_404(db, user_id)
    await ensure_can_act_on(db, principal, user.id, organization.id)

    # Plain references: a lost insert race rolls back and expires loaded rows
    user_ref, organization_ref = EntityRef.of(user), EntityRef.of(organization)
    added = await add_tags(db, user_ref, organization_ref, tag_data.tags)
    return UserTagsResponse(
        user_id=user_ref.id,
        organization_id=organization_ref.id,
        tags=await get_tag_names(db, user_ref, organization_ref),
        added=added
    )


@router.delete("/organizations/{organization_id}/users/{user_id}", response_model=UserTagsResponse)
async def remove_user_tags(
    organization_id: str,
    user_id: str,
    principal: Annotated[SessionPrincipal, Depends(require_permission("update-user:Organization"))],
    db: Annotated[AsyncSession, Depends(get_db)],
    tag: list[str] = Query(..., description="Tag names to remove")
):
    """Detach tags from the user and return the tags that remain."""
    organization = await get_organization_by_id(organization_id, db)
    user = await _get_user_or_404(db, user_id)
    await ensure_can_act_on(db, principal, user.id, organization.id)
    
    remaining = await remove_tags(db, user, organization, tag)
    return UserTagsResponse(
        user_id=user.id,
        organization_id=organization.id,
        tags=remaining
    )
