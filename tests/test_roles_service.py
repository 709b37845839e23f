"""
Role grant store and primary-role exclusivity.
"""
import asyncio

import pytest
from sqlalchemy import select

from app.core.database.engine import AsyncSessionLocal
from app.core.errors import StoreFault, UnknownRole
from app.core.scope import ORGANIZATION, USER, EntityRef, purge_references, resolve_entity
from app.features.roles.models import Role
from app.features.roles.service import (
    create_for,
    grants_for,
    has_roles_for,
    resolve_owner,
    resolve_target,
    revoke,
    roles_for,
)


PRIMARY_NAMES = {"masteradmin", "support", "superadmin", "admin", "member"}


async def _all_grants(db, user):
    result = await db.execute(select(Role).where(Role.owner_id == user.id).execution_options(populate_existing=True))
    return list(result.scalars().all())


@pytest.mark.asyncio
async def test_create_for_with_organization_target(db, make_user, make_organization):
    user = await make_user()
    organization = await make_organization()

    role = await create_for(db, user, "admin", organization)

    assert role.name == "admin"
    assert role.owner == EntityRef(USER, user.id)
    assert role.target == EntityRef(ORGANIZATION, organization.id)
    assert role.display_name == "Admin"
    assert await roles_for(db, user, organization) == ["admin"]


@pytest.mark.asyncio
async def test_global_role_ignores_target(db, make_user, make_organization):
    user = await make_user()
    organization = await make_organization()

    role = await create_for(db, user, "masteradmin", organization)

    assert role.target is None
    assert await roles_for(db, user, organization) == ["masteradmin"]
    assert await roles_for(db, user) == ["masteradmin"]


@pytest.mark.asyncio
async def test_global_grants_always_apply(db, make_user, make_organization):
    user = await make_user()
    organization = await make_organization()
    other = await make_organization(name="Other")

    await create_for(db, user, "support")
    await create_for(db, user, "member", organization)

    assert await roles_for(db, user, organization) == ["member", "support"]
    assert await roles_for(db, user, other) == ["support"]
    assert await roles_for(db, user) == ["support"]


@pytest.mark.asyncio
async def test_primary_grant_replaces_previous_primary(db, make_user):
    user = await make_user()

    await create_for(db, user, "masteradmin")
    await create_for(db, user, "superadmin")

    grants = await _all_grants(db, user)
    assert [grant.name for grant in grants] == ["superadmin"]
    assert grants[0].target is None
    # superadmin has no label without an organization target
    assert grants[0].display_name is None


@pytest.mark.asyncio
async def test_primary_grants_are_exclusive_per_target(db, make_user, make_organization):
    user = await make_user()
    first = await make_organization(name="First")
    second = await make_organization(name="Second")

    await create_for(db, user, "member", first)
    await create_for(db, user, "admin", second)
    await create_for(db, user, "superadmin", first)

    assert await roles_for(db, user, first) == ["superadmin"]
    assert await roles_for(db, user, second) == ["admin"]


@pytest.mark.asyncio
async def test_non_primary_roles_coexist(db, make_user, make_organization):
    user = await make_user()
    organization = await make_organization()

    await create_for(db, user, "member", organization)
    await create_for(db, user, "invite-to-organization", organization)
    await create_for(db, user, "admin", organization)

    assert await roles_for(db, user, organization) == ["admin", "invite-to-organization"]


@pytest.mark.asyncio
async def test_unknown_role_names_role_and_owner_kind(db, make_user):
    user = await make_user()

    with pytest.raises(UnknownRole) as excinfo:
        await create_for(db, user, "emperor")

    assert excinfo.value.role_name == "emperor"
    assert excinfo.value.owner_kind == USER
    assert '"emperor"' in str(excinfo.value)
    assert '"User"' in str(excinfo.value)
    assert await _all_grants(db, user) == []


@pytest.mark.asyncio
async def test_unknown_role_for_owner_kind(db, make_user, make_organization):
    organization = await make_organization()

    with pytest.raises(UnknownRole) as excinfo:
        await create_for(db, organization, "admin")

    assert excinfo.value.owner_kind == ORGANIZATION


@pytest.mark.asyncio
async def test_organization_role_rejected_for_foreign_target_kind(db, make_user):
    user = await make_user()
    other = await make_user()

    with pytest.raises(UnknownRole):
        await create_for(db, user, "admin", other)


@pytest.mark.asyncio
async def test_concurrent_primary_grants_leave_one_primary(db, make_user, make_organization):
    user = await make_user()
    organization = await make_organization()
    names = ["member", "admin", "superadmin", "member", "admin", "superadmin"]

    async def grant(name):
        async with AsyncSessionLocal() as session:
            return await create_for(session, EntityRef.of(user), name, EntityRef.of(organization))

    results = await asyncio.gather(*(grant(name) for name in names), return_exceptions=True)

    # Losing writers surface as StoreFault, never as a second primary grant
    assert any(isinstance(result, Role) for result in results)
    assert all(isinstance(result, (Role, StoreFault)) for result in results)

    primaries = [name for name in await roles_for(db, user, organization) if name in PRIMARY_NAMES]
    assert len(primaries) == 1


@pytest.mark.asyncio
async def test_has_roles_for(db, make_user, make_organization):
    user = await make_user()
    organization = await make_organization()
    await create_for(db, user, "admin", organization)
    await create_for(db, user, "invite-to-organization", organization)

    assert await has_roles_for(db, user, organization, ["admin", "member"]) == ["admin"]
    assert await has_roles_for(db, user, organization, ["admin", "member"], exact=True) == []
    assert await has_roles_for(
        db, user, organization, ["admin", "invite-to-organization"], exact=True
    ) == ["admin", "invite-to-organization"]
    assert await has_roles_for(db, user, organization, []) == []


@pytest.mark.asyncio
async def test_grants_for_filters_by_name(db, make_user, make_organization):
    user = await make_user()
    organization = await make_organization()
    await create_for(db, user, "admin", organization)
    await create_for(db, user, "invite-to-organization", organization)

    grants = await grants_for(db, user, organization, ["invite-to-organization"])
    assert [grant.name for grant in grants] == ["invite-to-organization"]


@pytest.mark.asyncio
async def test_revoke(db, make_user, make_organization):
    user = await make_user()
    organization = await make_organization()
    await create_for(db, user, "support")
    await create_for(db, user, "admin", organization)
    await create_for(db, user, "invite-to-organization", organization)

    assert await revoke(db, user, organization, "invite-to-organization") == 1
    assert await roles_for(db, user, organization) == ["admin", "support"]

    # Revoking for an organization never touches global grants
    assert await revoke(db, user, organization) == 1
    assert await roles_for(db, user, organization) == ["support"]

    assert await revoke(db, user) == 1
    assert await roles_for(db, user) == []


@pytest.mark.asyncio
async def test_resolve_owner_and_target(db, make_user, make_organization):
    user = await make_user()
    organization = await make_organization()
    role = await create_for(db, user, "member", organization)

    assert (await resolve_owner(db, role)).id == user.id
    assert (await resolve_target(db, role)).id == organization.id

    global_role = await create_for(db, user, "support")
    assert await resolve_target(db, global_role) is None


@pytest.mark.asyncio
async def test_resolution_fails_soft_after_deletion(db, make_user, make_organization):
    user = await make_user()
    organization = await make_organization()
    role = await create_for(db, user, "member", organization)

    await db.delete(organization)
    await db.commit()

    # The grant row outlives its target until purged
    assert await resolve_target(db, role) is None
    assert await resolve_entity(db, EntityRef("Unregistered", "x")) is None


@pytest.mark.asyncio
async def test_purge_references(db, make_user, make_organization):
    user = await make_user()
    organization = await make_organization()
    await create_for(db, user, "member", organization)
    await create_for(db, user, "support")

    await purge_references(db, EntityRef.of(organization))
    await db.commit()

    assert await roles_for(db, user, organization) == ["support"]

    await purge_references(db, EntityRef.of(user))
    await db.commit()

    assert await _all_grants(db, user) == []
