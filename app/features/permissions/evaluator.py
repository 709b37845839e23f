"""
Permission evaluator.

Maps an (actor, action, target) triple to an Allowed or Denied decision using
the actor's role grants, the role catalog ranking, and organization
membership. The evaluator only knows how to rank roles; which role an action
needs is supplied by the caller as a table of ActionRequirement entries.

Denials are values, not exceptions. Exceptions raised from here are caller
input errors (UnknownRole) or evaluator faults (misconfiguration or store
failure) and must not be treated as a denial.
"""
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import PermissionConfigError, UnknownRole
from app.core.scope import ORGANIZATION, USER, EntityRef
from app.features.organizations.models import is_member_of_organization
from app.features.roles import catalog
from app.features.roles.service import roles_for
from app.utils import get_logger


log = get_logger(__name__)


@dataclass(frozen=True)
class Allowed:
    """Permission granted. ``roles`` are the actor's applicable role names."""
    roles: tuple[str, ...] = ()
    allowed: bool = field(default=True, init=False)

    def __bool__(self) -> bool:
        return True


@dataclass(frozen=True)
class Denied:
    """Permission denied. ``reason`` is diagnostic only and never shown to clients."""
    reason: Optional[str] = None
    allowed: bool = field(default=False, init=False)

    def __bool__(self) -> bool:
        return False


Decision = Union[Allowed, Denied]


@dataclass(frozen=True)
class ActionRequirement:
    """
    What an action needs.

    - minimum_role: least elevated role that is sufficient
    - members_allowed: organization membership alone is sufficient
    - also_granted_by: extra (usually non-primary) roles that are sufficient
    """
    minimum_role: str
    members_allowed: bool = False
    also_granted_by: tuple[str, ...] = ()


def parse_action(action: str) -> tuple[str, str]:
    """Split "operation:Kind" into its parts."""
    operation, separator, kind = (action or "").partition(":")
    if not separator or not operation or not kind:
        raise PermissionConfigError(f'Malformed action "{action}", expected "operation:Kind"')
    return operation, kind


def _definition(name: str) -> catalog.RoleDefinition:
    for definition in catalog.APPLICATION_ROLES:
        if definition.name == name:
            return definition
    raise PermissionConfigError(f'Role "{name}" referenced by an action requirement is not in the catalog')


class PermissionEvaluator:
    """
    Decides whether an actor may perform an action.

    Usage:
        evaluator = PermissionEvaluator({"view:Organization": ActionRequirement("member")})
        decision = await evaluator.permissible(db, user, "view:Organization", organization)
        if not decision.allowed:
            ...
    """

    def __init__(
        self,
        requirements: Mapping[str, ActionRequirement],
        comparison_scope: Optional[str] = None,
    ):
        for action, requirement in requirements.items():
            parse_action(action)
            _definition(requirement.minimum_role)
            for name in requirement.also_granted_by:
                _definition(name)

        self.requirements = dict(requirements)
        self.comparison_scope = comparison_scope

    def requirement_for(self, action: str) -> ActionRequirement:
        requirement = self.requirements.get(action)
        if requirement is None:
            raise PermissionConfigError(f'No requirement configured for action "{action}"')
        return requirement

    async def permissible(
        self,
        db: AsyncSession,
        actor: Any,
        action: str,
        target: Any = None,
    ) -> Decision:
        requirement = self.requirement_for(action)
        actor_ref = EntityRef.of(actor)
        target_ref = EntityRef.of(target)

        held = await roles_for(db, actor_ref, target_ref)
        owner_kinds = [actor_ref.kind]
        target_kinds = [catalog.GLOBAL, target_ref.kind if target_ref else catalog.GLOBAL]

        highest = catalog.highest_elevated_definition(
            held, owner_kinds, target_kinds, comparison_scope=self.comparison_scope
        )
        minimum = _definition(requirement.minimum_role)
        if highest is not None and highest.priority <= minimum.priority:
            log.debug("%s allowed %s on %s via %s", actor_ref, action, target_ref or "global", highest.name)
            return Allowed(tuple(held))

        alternatives = sorted(set(held) & set(requirement.also_granted_by))
        if alternatives:
            log.debug("%s allowed %s on %s via %s", actor_ref, action, target_ref or "global", alternatives[0])
            return Allowed(tuple(held))

        if (
            requirement.members_allowed
            and target_ref is not None
            and target_ref.kind == ORGANIZATION
            and await is_member_of_organization(db, actor_ref.id, target_ref.id)
        ):
            log.debug("%s allowed %s on %s via membership", actor_ref, action, target_ref)
            return Allowed(tuple(held))

        if not held:
            return Denied(f"{actor_ref} has no role for {target_ref or 'global'}")

        return Denied(
            f"{actor_ref} holds {highest.name if highest else 'no ranked role'}, "
            f"{action} requires {requirement.minimum_role}"
        )

    async def outranks(
        self,
        db: AsyncSession,
        actor: Any,
        subject: Any,
        organization: Any,
    ) -> Decision:
        """
        Whether ``actor`` may act on another user ``subject`` within ``organization``.

        - masteradmin may act on anyone
        - support may act on anyone except masteradmin and support users
        - otherwise the actor's most elevated primary role must be strictly
          more elevated than the subject's
        """
        actor_ref = EntityRef.of(actor)
        subject_ref = EntityRef.of(subject)
        organization_ref = EntityRef.of(organization)
        owner_kinds = [USER]
        target_kinds = [catalog.GLOBAL, ORGANIZATION]

        primary_names = catalog.primary_names_for(owner_kinds, target_kinds)
        actor_roles = await roles_for(db, actor_ref, organization_ref, primary_names)
        if not actor_roles:
            return Denied(f"{actor_ref} has no primary role for {organization_ref or 'global'}")

        if "masteradmin" in actor_roles:
            return Allowed(tuple(actor_roles))

        subject_roles = await roles_for(db, subject_ref, organization_ref)

        if "support" in actor_roles:
            if "masteradmin" in subject_roles or "support" in subject_roles:
                return Denied(f"{actor_ref} (support) cannot act on {subject_ref}")
            return Allowed(tuple(actor_roles))

        if not subject_roles:
            return Denied(f"{subject_ref} has no role for {organization_ref or 'global'}")

        subject_highest = catalog.highest_elevated(
            subject_roles, owner_kinds, target_kinds, primary_only=True,
            comparison_scope=self.comparison_scope,
        )
        if subject_highest is None:
            return Allowed(tuple(actor_roles))

        comparison = catalog.compare_all_roles(
            actor_roles, subject_roles, owner_kinds, target_kinds,
            primary_only=True, comparison_scope=self.comparison_scope,
        )
        if comparison > 0:
            return Allowed(tuple(actor_roles))

        return Denied(f"{actor_ref} does not outrank {subject_ref}")

    async def can_grant(
        self,
        db: AsyncSession,
        actor: Any,
        role_name: str,
        organization: Any,
    ) -> Decision:
        """
        Whether ``actor`` may hand out ``role_name``: nobody grants above their own rank.

        Raises UnknownRole for names users cannot hold at all.
        """
        actor_ref = EntityRef.of(actor)
        organization_ref = EntityRef.of(organization)
        owner_kinds = [USER]
        target_kinds = [catalog.GLOBAL, ORGANIZATION]

        held = await roles_for(db, actor_ref, organization_ref)
        highest = catalog.highest_elevated_definition(
            held, owner_kinds, target_kinds, primary_only=True,
            comparison_scope=self.comparison_scope,
        )
        requested = catalog.definition_by_name(role_name, owner_kinds, target_kinds)

        if requested is None:
            raise UnknownRole(role_name, USER)
        if highest is None:
            return Denied(f"{actor_ref} has no primary role for {organization_ref or 'global'}")
        if highest.priority > requested.priority:
            return Denied(f"{actor_ref} ({highest.name}) cannot grant {role_name}")

        return Allowed(tuple(held))
