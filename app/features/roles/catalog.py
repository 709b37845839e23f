"""
Static catalog of application roles.

Every role a user can hold is declared here. The role grant store refuses to
create a grant whose name has no definition applicable to the owner's kind,
and the permission evaluator ranks grants using the priorities below
(lower priority = more elevated).

The catalog is a read-only tuple built once at import time.
"""
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

from app.core import config
from app.core.errors import PermissionConfigError, UnknownRole
from app.core.scope import ORGANIZATION, USER

# Target kind used by roles that are not scoped to any specific entity
GLOBAL = None

ScopeKinds = Optional[Iterable[Optional[str]]]


@dataclass(frozen=True)
class RoleDefinition:
    """A compiled-in role."""
    name: str
    owner_kinds: frozenset[str]
    target_kinds: frozenset[Optional[str]]
    priority: int
    is_primary: bool
    display_name: str

    @property
    def is_global(self) -> bool:
        return GLOBAL in self.target_kinds

    def applies_to(self, owner_kinds: ScopeKinds, target_kinds: ScopeKinds) -> bool:
        """Check whether this definition is visible for the given owner/target scopes."""
        return (
            not self.owner_kinds.isdisjoint(_normalize(owner_kinds))
            and not self.target_kinds.isdisjoint(_normalize(target_kinds))
        )


def _normalize(kinds: ScopeKinds) -> frozenset[Optional[str]]:
    # None or an empty collection means "no kind", which only matches GLOBAL
    if kinds is None or isinstance(kinds, str):
        return frozenset([kinds])
    normalized = frozenset(kinds)
    return normalized or frozenset([GLOBAL])


GLOBAL_ROLES = (
    # root level user, can do anything, for any organization
    RoleDefinition(
        name="masteradmin",
        owner_kinds=frozenset([USER]),
        target_kinds=frozenset([GLOBAL]),
        priority=0,
        is_primary=True,
        display_name="Master Admin",
    ),
    # near-root level user, can do almost anything, for any organization
    RoleDefinition(
        name="support",
        owner_kinds=frozenset([USER]),
        target_kinds=frozenset([GLOBAL]),
        priority=1,
        is_primary=True,
        display_name="Support Staff",
    ),
)

ORGANIZATION_ROLES = (
    # highest level admin for an organization
    RoleDefinition(
        name="superadmin",
        owner_kinds=frozenset([USER]),
        target_kinds=frozenset([ORGANIZATION]),
        priority=2,
        is_primary=True,
        display_name="Super Admin",
    ),
    RoleDefinition(
        name="admin",
        owner_kinds=frozenset([USER]),
        target_kinds=frozenset([ORGANIZATION]),
        priority=3,
        is_primary=True,
        display_name="Admin",
    ),
    RoleDefinition(
        name="member",
        owner_kinds=frozenset([USER]),
        target_kinds=frozenset([ORGANIZATION]),
        priority=4,
        is_primary=True,
        display_name="Member",
    ),
    # lets a user invite other users to the organization, held alongside a primary role
    RoleDefinition(
        name="invite-to-organization",
        owner_kinds=frozenset([USER]),
        target_kinds=frozenset([ORGANIZATION]),
        priority=5,
        is_primary=False,
        display_name="Invite User to Organization",
    ),
)


def _build_catalog(*groups: Sequence[RoleDefinition]) -> tuple[RoleDefinition, ...]:
    definitions = [definition for group in groups for definition in group]

    priorities = [definition.priority for definition in definitions]
    if len(set(priorities)) != len(priorities):
        raise PermissionConfigError("Role priorities must be unique across the catalog")

    # Stable sort: declaration order is kept for anything not ordered by priority
    return tuple(sorted(definitions, key=lambda definition: definition.priority))


APPLICATION_ROLES: tuple[RoleDefinition, ...] = _build_catalog(GLOBAL_ROLES, ORGANIZATION_ROLES)


# ============================================================================
# Lookups
# ============================================================================

def definitions_for(
    owner_kinds: ScopeKinds,
    target_kinds: ScopeKinds,
    primary_only: bool = False,
) -> list[RoleDefinition]:
    """Catalog definitions applicable to the given scopes, in catalog order."""
    return [
        definition
        for definition in APPLICATION_ROLES
        if definition.applies_to(owner_kinds, target_kinds)
        and (definition.is_primary or not primary_only)
    ]


def definitions_for_owner(owner_kinds: ScopeKinds, primary_only: bool = False) -> list[RoleDefinition]:
    """Catalog definitions an owner kind may hold, whatever their target kinds."""
    owner_kinds = _normalize(owner_kinds)
    return [
        definition
        for definition in APPLICATION_ROLES
        if not definition.owner_kinds.isdisjoint(owner_kinds)
        and (definition.is_primary or not primary_only)
    ]


def primary_definitions_for(owner_kinds: ScopeKinds, target_kinds: ScopeKinds) -> list[RoleDefinition]:
    return definitions_for(owner_kinds, target_kinds, primary_only=True)


def primary_names_for(owner_kinds: ScopeKinds, target_kinds: ScopeKinds) -> list[str]:
    return [definition.name for definition in primary_definitions_for(owner_kinds, target_kinds)]


def definition_by_name(
    name: Optional[str],
    owner_kinds: ScopeKinds,
    target_kinds: ScopeKinds,
) -> Optional[RoleDefinition]:
    if not name:
        return None

    for definition in definitions_for(owner_kinds, target_kinds):
        if definition.name == name:
            return definition

    return None


def display_name(name: str, owner_kind: Optional[str], target_kind: Optional[str]) -> Optional[str]:
    """
    Human readable label for a role held by ``owner_kind`` against ``target_kind``.

    Returns None when no definition matches this exact combination, for example
    "superadmin" without a target kind. Callers must treat None as "no label".
    """
    definition = definition_by_name(name, [owner_kind], [target_kind])
    if definition is None:
        return None
    return definition.display_name


def display_names(names: Iterable[str], owner_kinds: ScopeKinds, target_kinds: ScopeKinds) -> list[str]:
    wanted = set(names or [])
    return [
        definition.display_name
        for definition in definitions_for(owner_kinds, target_kinds)
        if definition.name in wanted
    ]


# ============================================================================
# Elevation
# ============================================================================

def _visible(
    owner_kinds: ScopeKinds,
    target_kinds: ScopeKinds,
    primary_only: bool,
    comparison_scope: Optional[str] = None,
) -> list[RoleDefinition]:
    if comparison_scope == "global":
        return [
            definition
            for definition in APPLICATION_ROLES
            if definition.is_primary or not primary_only
        ]
    return definitions_for(owner_kinds, target_kinds, primary_only=primary_only)


def highest_elevated_definition(
    names: Optional[Iterable[str]],
    owner_kinds: ScopeKinds,
    target_kinds: ScopeKinds,
    primary_only: bool = False,
    comparison_scope: Optional[str] = None,
) -> Optional[RoleDefinition]:
    wanted = set(names or [])
    if not wanted:
        return None

    for definition in _visible(owner_kinds, target_kinds, primary_only, comparison_scope):
        if definition.name in wanted:
            return definition

    return None


def highest_elevated(
    names: Optional[Iterable[str]],
    owner_kinds: ScopeKinds,
    target_kinds: ScopeKinds,
    primary_only: bool = False,
    comparison_scope: Optional[str] = None,
) -> Optional[str]:
    """
    The most elevated of ``names`` that has a definition in scope.

    Input order does not matter. Returns None for empty or fully unmatched input.
    """
    definition = highest_elevated_definition(
        names, owner_kinds, target_kinds, primary_only, comparison_scope
    )
    return definition.name if definition else None


def more_elevated_than(
    name: Optional[str],
    owner_kinds: ScopeKinds,
    target_kinds: ScopeKinds,
    primary_only: bool = False,
    comparison_scope: Optional[str] = None,
) -> list[str]:
    """Names of visible roles strictly more elevated than ``name``, most elevated first."""
    scope = comparison_scope or config.ROLE_COMPARISON_SCOPE
    visible = _visible(owner_kinds, target_kinds, primary_only, scope)
    reference = next((definition for definition in visible if definition.name == name), None)
    if reference is None:
        return []

    return [definition.name for definition in visible if definition.priority < reference.priority]


def less_elevated_than(
    name: Optional[str],
    owner_kinds: ScopeKinds,
    target_kinds: ScopeKinds,
    primary_only: bool = False,
    comparison_scope: Optional[str] = None,
) -> list[str]:
    """Names of visible roles strictly less elevated than ``name``, nearest first."""
    scope = comparison_scope or config.ROLE_COMPARISON_SCOPE
    visible = _visible(owner_kinds, target_kinds, primary_only, scope)
    reference = next((definition for definition in visible if definition.name == name), None)
    if reference is None:
        return []

    return [definition.name for definition in visible if definition.priority > reference.priority]


def compare_roles(
    first: str,
    second: str,
    owner_kinds: ScopeKinds,
    target_kinds: ScopeKinds,
    comparison_scope: Optional[str] = None,
) -> int:
    """
    Compare two role names by elevation.

    Returns 1 if ``first`` is more elevated, -1 if less, 0 if they are equal.
    Raises UnknownRole if either role has no definition in scope.
    """
    scope = comparison_scope or config.ROLE_COMPARISON_SCOPE
    visible = {definition.name: definition for definition in _visible(owner_kinds, target_kinds, False, scope)}
    owner_label = ",".join(sorted(str(kind) for kind in _normalize(owner_kinds)))

    if first not in visible:
        raise UnknownRole(first, owner_label)
    if second not in visible:
        raise UnknownRole(second, owner_label)

    difference = visible[second].priority - visible[first].priority
    return (difference > 0) - (difference < 0)


def compare_all_roles(
    first_names: Iterable[str],
    second_names: Iterable[str],
    owner_kinds: ScopeKinds,
    target_kinds: ScopeKinds,
    primary_only: bool = False,
    comparison_scope: Optional[str] = None,
) -> int:
    """Compare the most elevated role of each set, like ``compare_roles``."""
    first_names = list(first_names or [])
    second_names = list(second_names or [])
    scope = comparison_scope or config.ROLE_COMPARISON_SCOPE
    first = highest_elevated(first_names, owner_kinds, target_kinds, primary_only, scope)
    second = highest_elevated(second_names, owner_kinds, target_kinds, primary_only, scope)
    owner_label = ",".join(sorted(str(kind) for kind in _normalize(owner_kinds)))

    if first is None:
        raise UnknownRole(",".join(sorted(first_names)), owner_label)
    if second is None:
        raise UnknownRole(",".join(sorted(second_names)), owner_label)

    return compare_roles(first, second, owner_kinds, target_kinds, scope)
