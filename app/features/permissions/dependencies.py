"""
Request authorization boundary.

Implements:
- The action requirement table used by every route
- FastAPI dependencies that authenticate the caller and check the target organization
- FastAPI dependencies for per-action permission checks
"""
from typing import Annotated, Optional
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.database.engine import get_db
from app.core.errors import BadRequest, Forbidden
from app.core.scope import ORGANIZATION, USER, EntityRef
from app.features.permissions.evaluator import ActionRequirement, Decision, PermissionEvaluator
from app.features.sessions.dependencies import get_current_principal, resolve_organization_id
from app.features.sessions.service import SessionPrincipal
from app.utils import get_logger


log = get_logger(__name__)


ACTION_REQUIREMENTS: dict[str, ActionRequirement] = {
    "create:Organization": ActionRequirement("support"),
    "update:Organization": ActionRequirement("superadmin"),
    "delete:Organization": ActionRequirement("support"),
    "view:Organization": ActionRequirement("member", members_allowed=True),
    "invite-user:Organization": ActionRequirement("superadmin", also_granted_by=("invite-to-organization",)),
    "remove-user:Organization": ActionRequirement("admin"),
    "assign-role:Organization": ActionRequirement("admin"),
    "update-user:Organization": ActionRequirement("member", members_allowed=True),
}

evaluator = PermissionEvaluator(ACTION_REQUIREMENTS, comparison_scope=config.ROLE_COMPARISON_SCOPE)


def _organization_ref(organization_id: Optional[str]) -> Optional[EntityRef]:
    return EntityRef(ORGANIZATION, organization_id) if organization_id else None


def ensure_allowed(decision: Decision) -> Decision:
    """Raise Forbidden for any denial; the reason is only logged."""
    if not decision.allowed:
        log.debug("Permission denied: %s", decision.reason)
        raise Forbidden(decision.reason)
    return decision


def authorize_request(requires_org_id: bool = True):
    """
    FastAPI dependency factory authenticating the caller.

    For scopes other than "system" and "admin" the caller must be allowed to
    view the target organization, which must be supplied with the request
    (X-Organization-ID header, organizationID query param, or path).

    Usage:
        @router.get("/{organization_id}")
        async def get_organization(
            principal: SessionPrincipal = Depends(authorize_request())
        ):
            ...

    Raises:
        Unauthorized: invalid credential
        BadRequest: no organization id where one is required
        Forbidden: caller may not view the organization
    """
    async def authorization_dependency(
        request: Request,
        db: Annotated[AsyncSession, Depends(get_db)],
        principal: Annotated[SessionPrincipal, Depends(get_current_principal)]
    ) -> SessionPrincipal:
        organization_id = resolve_organization_id(request)

        if principal.requires_membership_check and requires_org_id:
            if not organization_id:
                raise BadRequest('"organizationID" is required')

            decision = await evaluator.permissible(
                db, principal.user, "view:Organization", _organization_ref(organization_id)
            )
            ensure_allowed(decision)

        return principal

    return authorization_dependency


def require_permission(action: str, requires_org_id: bool = True):
    """
    FastAPI dependency factory requiring ``action`` on the request's organization.

    Usage:
        @router.put("/")
        async def create_organization(
            principal: SessionPrincipal = Depends(require_permission("create:Organization", requires_org_id=False))
        ):
            ...

    Raises:
        Forbidden: 403 if the caller's roles do not satisfy the action
    """
    evaluator.requirement_for(action)

    async def permission_dependency(
        request: Request,
        db: Annotated[AsyncSession, Depends(get_db)],
        principal: Annotated[SessionPrincipal, Depends(authorize_request(requires_org_id))]
    ) -> SessionPrincipal:
        organization = _organization_ref(resolve_organization_id(request))
        ensure_allowed(await evaluator.permissible(db, principal.user, action, organization))
        return principal

    return permission_dependency


async def ensure_can_act_on(
    db: AsyncSession,
    principal: SessionPrincipal,
    subject_id: str,
    organization_id: str,
) -> None:
    """Users may always act on themselves; otherwise the caller must outrank the subject."""
    if principal.user.id == subject_id:
        return

    ensure_allowed(
        await evaluator.outranks(
            db,
            principal.user,
            EntityRef(USER, subject_id),
            _organization_ref(organization_id),
        )
    )
