"""
Organization feature routes.
"""
from typing import Annotated
from datetime import datetime
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.scope import EntityRef, purge_references
from app.features.users.models import User
from app.features.organizations.models import (
    Organization,
    count_members,
    is_member_of_organization,
    user_organizations
)
from app.features.organizations.schemas import (
    OrganizationCreate,
    OrganizationUpdate,
    OrganizationResponse,
    AddUserToOrganization,
    MembershipResponse
)
from app.features.organizations.dependencies import get_organization_by_id
from app.features.permissions.dependencies import (
    authorize_request,
    ensure_allowed,
    ensure_can_act_on,
    evaluator,
    require_permission
)
from app.features.roles.service import create_for, revoke, roles_for
from app.features.sessions.service import SessionPrincipal
from app.features.tags.service import get_tag_names, remove_tags
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter(tags=["organizations"])


async def _organization_response(db: AsyncSession, organization: Organization) -> OrganizationResponse:
    response = OrganizationResponse.model_validate(organization)
    # Counted in SQL: the users collection may not be loaded on an identity-mapped row
    response.member_count = await count_members(db, organization.id)
    return response


async def _get_user_or_404(db: AsyncSession, user_id: str) -> User:
    user = await db.get(User, user_id)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )
    return user


async def _add_member(db: AsyncSession, user: User, organization: Organization) -> None:
    if await is_member_of_organization(db, user.id, organization.id):
        return
    
    stmt = user_organizations.insert().values(
        user_id=user.id,
        organization_id=organization.id,
        joined_at=datetime.now()
    )
    await db.execute(stmt)


# Organization CRUD endpoints
@router.put("/", response_model=OrganizationResponse, status_code=status.HTTP_201_CREATED)
async def create_organization(
    org_data: OrganizationCreate,
    principal: Annotated[SessionPrincipal, Depends(require_permission("create:Organization", requires_org_id=False))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Create a new organization (support staff only), optionally with a superadmin."""
    superadmin = None
    if org_data.superadmin_user_id:
        superadmin = await _get_user_or_404(db, org_data.superadmin_user_id)
    
    new_org = Organization(**org_data.model_dump(exclude={"superadmin_user_id"}))
    db.add(new_org)
    await db.commit()
    await db.refresh(new_org)
    
    if superadmin is not None:
        await _add_member(db, superadmin, new_org)
        # Commits the membership along with the grant
        await create_for(db, superadmin, "superadmin", new_org)
        await db.refresh(new_org)
    
    log.info("Organization %s created by %s", new_org.id, principal.user.id)
    return await _organization_response(db, new_org)


@router.get("/{organization_id}", response_model=OrganizationResponse)
async def get_organization(
    organization_id: str,
    principal: Annotated[SessionPrincipal, Depends(authorize_request())],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Get organization details (members and staff only)."""
    organization = await get_organization_by_id(organization_id, db)
    return await _organization_response(db, organization)


@router.patch("/{organization_id}", response_model=OrganizationResponse)
async def update_organization(
    organization_id: str,
    update_data: OrganizationUpdate,
    principal: Annotated[SessionPrincipal, Depends(require_permission("update:Organization"))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Update organization information (superadmin and above)."""
    organization = await get_organization_by_id(organization_id, db)
    
    # Update only provided fields
    update_dict = update_data.model_dump(exclude_unset=True)
    for field, value in update_dict.items():
        setattr(organization, field, value)
    
    await db.commit()
    await db.refresh(organization)
    return await _organization_response(db, organization)


@router.delete("/{organization_id}")
async def delete_organization(
    organization_id: str,
    principal: Annotated[SessionPrincipal, Depends(require_permission("delete:Organization"))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Delete an organization along with every role grant and tag that references it."""
    organization = await get_organization_by_id(organization_id, db)
    
    await purge_references(db, EntityRef.of(organization))
    await db.delete(organization)
    await db.commit()
    
    log.info("Organization %s deleted by %s", organization_id, principal.user.id)
    return {"message": "Organization deleted successfully"}


# Membership endpoints
@router.post(
    "/{organization_id}/members",
    response_model=MembershipResponse,
    status_code=status.HTTP_201_CREATED
)
async def add_user_to_organization(
    organization_id: str,
    member_data: AddUserToOrganization,
    principal: Annotated[SessionPrincipal, Depends(require_permission("invite-user:Organization"))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """
    Add an existing user to the organization with a role.
    
    The caller may not hand out a role above their own. Changing the role of
    someone who already has one also requires outranking them.
    """
    organization = await get_organization_by_id(organization_id, db)
    user = await _get_user_or_404(db, member_data.user_id)
    
    ensure_allowed(await evaluator.can_grant(db, principal.user, member_data.role, organization))
    if await roles_for(db, user, organization):
        await ensure_can_act_on(db, principal, user.id, organization.id)
    
    await _add_member(db, user, organization)
    await create_for(db, user, member_data.role, organization)
    
    return MembershipResponse(
        user_id=user.id,
        organization_id=organization.id,
        roles=await roles_for(db, user, organization)
    )


@router.delete("/{organization_id}/members/{user_id}")
async def remove_user_from_organization(
    organization_id: str,
    user_id: str,
    principal: Annotated[SessionPrincipal, Depends(require_permission("remove-user:Organization"))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Remove a user from the organization, dropping their roles and tags there."""
    organization = await get_organization_by_id(organization_id, db)
    user = await _get_user_or_404(db, user_id)
    
    if user.id == principal.user.id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot remove yourself from an organization"
        )
    
    await ensure_can_act_on(db, principal, user.id, organization.id)
    
    if not await is_member_of_organization(db, user.id, organization.id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User is not a member of this organization"
        )
    
    await db.execute(
        delete(user_organizations).where(
            user_organizations.c.user_id == user.id,
            user_organizations.c.organization_id == organization.id
        )
    )
    # Commits the membership removal along with the grants
    await revoke(db, user, organization)
    await remove_tags(db, user, organization, await get_tag_names(db, user, organization))
    
    return {"message": "User removed from organization successfully"}
