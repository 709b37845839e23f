"""
Role catalog and role grant routes.

Grants are made against an organization. Global roles (masteradmin,
support) ignore the organization and apply everywhere.
"""
from typing import Annotated, Optional
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.scope import ORGANIZATION, USER
from app.features.permissions.dependencies import (
    authorize_request,
    ensure_allowed,
    ensure_can_act_on,
    evaluator,
    require_permission,
)
from app.features.roles import catalog
from app.features.roles.schemas import (
    RoleDefinitionResponse,
    RoleGrantCreate,
    RoleGrantResponse,
    RoleRevokeResponse,
    UserRolesResponse,
)
from app.features.roles.service import create_for, grants_for, revoke, roles_for
from app.features.sessions.dependencies import get_current_principal
from app.features.sessions.service import SessionPrincipal
from app.features.users.models import User
from app.features.organizations.dependencies import get_organization_by_id
from app.features.organizations.models import Organization


router = APIRouter(tags=["roles"])

USER_SCOPE = [USER]
ORGANIZATION_SCOPE = [catalog.GLOBAL, ORGANIZATION]


async def _get_user_or_404(db: AsyncSession, user_id: str) -> User:
    user = await db.get(User, user_id)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )
    return user


async def _user_roles(db: AsyncSession, user: User, organization: Organization) -> UserRolesResponse:
    grants = await grants_for(db, user, organization)
    names = sorted({grant.name for grant in grants})
    return UserRolesResponse(
        user_id=user.id,
        organization_id=organization.id,
        roles=names,
        display_names=catalog.display_names(names, USER_SCOPE, ORGANIZATION_SCOPE),
        primary_role=catalog.highest_elevated(names, USER_SCOPE, ORGANIZATION_SCOPE, primary_only=True),
        grants=[RoleGrantResponse.model_validate(grant) for grant in grants],
    )


@router.get("/catalog", response_model=list[RoleDefinitionResponse])
async def list_role_catalog(
    principal: Annotated[SessionPrincipal, Depends(get_current_principal)],
    primary_only: bool = False
):
    """List every role in the catalog, most elevated first."""
    return [
        RoleDefinitionResponse(
            name=definition.name,
            display_name=definition.display_name,
            priority=definition.priority,
            is_primary=definition.is_primary,
            is_global=definition.is_global,
            owner_kinds=sorted(definition.owner_kinds),
            target_kinds=sorted(definition.target_kinds, key=lambda kind: kind or ""),
        )
        for definition in catalog.APPLICATION_ROLES
        if definition.is_primary or not primary_only
    ]


@router.get("/organizations/{organization_id}/users/{user_id}", response_model=UserRolesResponse)
async def get_user_roles(
    organization_id: str,
    user_id: str,
    principal: Annotated[SessionPrincipal, Depends(authorize_request())],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Roles the user holds for the organization."""
    organization = await get_organization_by_id(organization_id, db)
    user = await _get_user_or_404(db, user_id)
    return await _user_roles(db, user, organization)


@router.post(
    "/organizations/{organization_id}/users/{user_id}",
    response_model=UserRolesResponse,
    status_code=status.HTTP_201_CREATED
)
async def grant_user_role(
    organization_id: str,
    user_id: str,
    grant_data: RoleGrantCreate,
    principal: Annotated[SessionPrincipal, Depends(require_permission("assign-role:Organization"))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """
    Grant a role to the user for the organization.
    
    Granting a primary role replaces the user's current primary role.
    The caller must outrank the user and may not grant above their own rank.
    """
    organization = await get_organization_by_id(organization_id, db)
    user = await _get_user_or_404(db, user_id)
    
    await ensure_can_act_on(db, principal, user.id, organization.id)
    ensure_allowed(await evaluator.can_grant(db, principal.user, grant_data.role, organization))
    
    await create_for(db, user, grant_data.role, organization)
    return await _user_roles(db, user, organization)


@router.delete("/organizations/{organization_id}/users/{user_id}", response_model=RoleRevokeResponse)
async def revoke_user_role(
    organization_id: str,
    user_id: str,
    principal: Annotated[SessionPrincipal, Depends(require_permission("assign-role:Organization"))],
    db: Annotated[AsyncSession, Depends(get_db)],
    role: Optional[str] = Query(None, description="Role to revoke; all organization roles when omitted")
):
    """Revoke one role, or every role, the user holds for the organization."""
    organization = await get_organization_by_id(organization_id, db)
    user = await _get_user_or_404(db, user_id)
    
    await ensure_can_act_on(db, principal, user.id, organization.id)
    
    revoked = await revoke(db, user, organization, role)
    return RoleRevokeResponse(
        revoked=revoked,
        roles=await roles_for(db, user, organization),
    )
