"""
Permission evaluator decisions.
"""
import pytest

from app.core.errors import PermissionConfigError, UnknownRole
from app.features.permissions.dependencies import ACTION_REQUIREMENTS, evaluator
from app.features.permissions.evaluator import (
    ActionRequirement,
    Allowed,
    Denied,
    PermissionEvaluator,
    parse_action,
)
from app.features.roles.service import create_for


def test_decisions_are_truthy_and_falsy():
    assert Allowed(("admin",)).allowed is True
    assert bool(Allowed()) is True
    assert Denied("nope").allowed is False
    assert bool(Denied()) is False


def test_parse_action():
    assert parse_action("view:Organization") == ("view", "Organization")
    with pytest.raises(PermissionConfigError):
        parse_action("view")
    with pytest.raises(PermissionConfigError):
        parse_action(":Organization")


def test_misconfigured_requirements_are_rejected():
    with pytest.raises(PermissionConfigError):
        PermissionEvaluator({"view:Organization": ActionRequirement("emperor")})
    with pytest.raises(PermissionConfigError):
        PermissionEvaluator({"view:Organization": ActionRequirement("member", also_granted_by=("bogus",))})
    with pytest.raises(PermissionConfigError):
        PermissionEvaluator({"viewOrganization": ActionRequirement("member")})


@pytest.mark.asyncio
async def test_unknown_action_is_a_fault_not_a_denial(db, make_user):
    user = await make_user()
    with pytest.raises(PermissionConfigError):
        await evaluator.permissible(db, user, "launch:Rocket")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "role, allowed",
    [
        ("masteradmin", True),
        ("support", True),
        ("superadmin", True),
        ("admin", False),
        ("member", False),
    ],
)
async def test_update_organization_by_role(db, make_member, make_organization, role, allowed):
    organization = await make_organization()
    user = await make_member(organization, role)

    decision = await evaluator.permissible(db, user, "update:Organization", organization)

    assert decision.allowed is allowed
    assert isinstance(decision, Allowed if allowed else Denied)


@pytest.mark.asyncio
async def test_role_in_another_organization_does_not_apply(db, make_member, make_organization):
    organization = await make_organization()
    other = await make_organization(name="Other")
    user = await make_member(other, "superadmin")

    decision = await evaluator.permissible(db, user, "update:Organization", organization)

    assert isinstance(decision, Denied)
    assert decision.reason


@pytest.mark.asyncio
async def test_no_grant_and_insufficient_elevation_are_both_denied(db, make_user, make_member, make_organization):
    organization = await make_organization()
    stranger = await make_user()
    member = await make_member(organization, "member")

    no_grant = await evaluator.permissible(db, stranger, "remove-user:Organization", organization)
    too_low = await evaluator.permissible(db, member, "remove-user:Organization", organization)

    assert type(no_grant) is type(too_low) is Denied
    assert no_grant.reason != too_low.reason


@pytest.mark.asyncio
async def test_membership_grants_view(db, make_member, make_user, make_organization):
    organization = await make_organization()
    member = await make_member(organization, role=None)
    outsider = await make_user()

    assert (await evaluator.permissible(db, member, "view:Organization", organization)).allowed
    assert not (await evaluator.permissible(db, outsider, "view:Organization", organization)).allowed


@pytest.mark.asyncio
async def test_alternative_role_grants_action(db, make_member, make_organization):
    organization = await make_organization()
    user = await make_member(organization, "member")

    assert not (await evaluator.permissible(db, user, "invite-user:Organization", organization)).allowed

    await create_for(db, user, "invite-to-organization", organization)

    decision = await evaluator.permissible(db, user, "invite-user:Organization", organization)
    assert decision.allowed
    assert "invite-to-organization" in decision.roles


@pytest.mark.asyncio
async def test_global_action_without_target(db, make_user):
    support = await make_user()
    await create_for(db, support, "support")
    plain = await make_user()

    assert (await evaluator.permissible(db, support, "create:Organization")).allowed
    assert not (await evaluator.permissible(db, plain, "create:Organization")).allowed


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "actor_role, subject_role, allowed",
    [
        ("masteradmin", "masteradmin", True),
        ("masteradmin", "support", True),
        ("support", "superadmin", True),
        ("support", "support", False),
        ("support", "masteradmin", False),
        ("superadmin", "admin", True),
        ("superadmin", "superadmin", False),
        ("admin", "member", True),
        ("admin", "superadmin", False),
        ("member", "member", False),
    ],
)
async def test_outranks(db, make_member, make_organization, actor_role, subject_role, allowed):
    organization = await make_organization()
    actor = await make_member(organization, actor_role)
    subject = await make_member(organization, subject_role)

    decision = await evaluator.outranks(db, actor, subject, organization)

    assert decision.allowed is allowed


@pytest.mark.asyncio
async def test_outranks_subject_without_roles(db, make_member, make_user, make_organization):
    organization = await make_organization()
    actor = await make_member(organization, "admin")
    nobody = await make_user()
    invite_only = await make_member(organization, "invite-to-organization")

    assert not (await evaluator.outranks(db, actor, nobody, organization)).allowed
    # Only a non-primary role: nothing to outrank
    assert (await evaluator.outranks(db, actor, invite_only, organization)).allowed


@pytest.mark.asyncio
async def test_outranks_requires_actor_primary_role(db, make_member, make_user, make_organization):
    organization = await make_organization()
    actor = await make_user()
    subject = await make_member(organization, "member")

    assert not (await evaluator.outranks(db, actor, subject, organization)).allowed


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "actor_role, requested, allowed",
    [
        ("admin", "member", True),
        ("admin", "admin", True),
        ("admin", "superadmin", False),
        ("superadmin", "superadmin", True),
        ("member", "invite-to-organization", True),
        ("support", "masteradmin", False),
        ("masteradmin", "support", True),
    ],
)
async def test_can_grant(db, make_member, make_organization, actor_role, requested, allowed):
    organization = await make_organization()
    actor = await make_member(organization, actor_role)

    decision = await evaluator.can_grant(db, actor, requested, organization)

    assert decision.allowed is allowed


def test_requirement_table_is_valid():
    for action in ACTION_REQUIREMENTS:
        assert evaluator.requirement_for(action) is ACTION_REQUIREMENTS[action]


@pytest.mark.asyncio
async def test_can_grant_unknown_role(db, make_member, make_organization):
    organization = await make_organization()
    actor = await make_member(organization, "masteradmin")

    with pytest.raises(UnknownRole):
        await evaluator.can_grant(db, actor, "emperor", organization)
