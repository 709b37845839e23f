"""
Tag store.
"""
import asyncio

import pytest
from sqlalchemy import select

from app.core.database.engine import AsyncSessionLocal
from app.core.errors import StoreFault
from app.core.scope import EntityRef
from app.features.tags.models import Tag
from app.features.tags.service import (
    add_tags,
    count_tags,
    get_tag_names,
    get_tags,
    prepare_tag_names,
    remove_tags,
    resolve_source,
    resolve_target,
    sanitize_tag_name,
)


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("vip", "vip"),
        ("On-Call", "on-call"),
        ("billing_team", "billing_team"),
        ("hello world!", "helloworld"),
        ("café", "caf"),
        ("!!!", None),
        ("", None),
        (None, None),
        (42, None),
    ],
)
def test_sanitize_tag_name(raw, expected):
    assert sanitize_tag_name(raw) == expected


def test_prepare_tag_names_dedupes_after_sanitizing():
    assert prepare_tag_names(["VIP", "vip", "v i p", "", "#", "ops"]) == ["vip", "ops"]
    assert prepare_tag_names("Single") == ["single"]
    assert prepare_tag_names(None) == []


@pytest.mark.asyncio
async def test_add_tags_is_idempotent(db, make_user, make_organization):
    user = await make_user()
    organization = await make_organization()

    assert await add_tags(db, user, organization, ["vip", "ops"]) == ["vip", "ops"]
    assert await add_tags(db, user, organization, ["VIP", "billing"]) == ["billing"]
    assert await add_tags(db, user, organization, ["vip"]) == []

    result = await db.execute(select(Tag).where(Tag.source_id == user.id, Tag.name == "vip"))
    assert len(result.scalars().all()) == 1
    assert await get_tag_names(db, user, organization) == ["billing", "ops", "vip"]
    assert await count_tags(db, user, organization) == 3


@pytest.mark.asyncio
async def test_tag_rows_get_ulid_ids_and_dedupe_keys(db, make_user, make_organization):
    user = await make_user()
    organization = await make_organization()
    await add_tags(db, user, organization, ["vip"])
    await add_tags(db, user, None, ["vip"])

    scoped = (await get_tags(db, user, organization))[0]
    unscoped = (await get_tags(db, user))[0]

    assert isinstance(scoped.id, str) and len(scoped.id) == 26
    assert scoped.id != unscoped.id
    assert scoped.dedupe_key == f"User:{user.id}@Organization:{organization.id}#vip"
    assert unscoped.dedupe_key == f"User:{user.id}@*#vip"


@pytest.mark.asyncio
async def test_concurrent_adds_store_one_tag(db, make_user, make_organization):
    user_ref = EntityRef.of(await make_user())
    organization_ref = EntityRef.of(await make_organization())

    async def add():
        async with AsyncSessionLocal() as session:
            return await add_tags(session, user_ref, organization_ref, ["vip"])

    results = await asyncio.gather(*(add() for _ in range(6)), return_exceptions=True)

    assert all(isinstance(result, (list, StoreFault)) for result in results)
    assert sum(len(result) for result in results if isinstance(result, list)) == 1
    assert await count_tags(db, user_ref, organization_ref) == 1


@pytest.mark.asyncio
async def test_tags_are_scoped_to_exact_target(db, make_user, make_organization):
    user = await make_user()
    organization = await make_organization()

    await add_tags(db, user, None, ["global-tag"])
    await add_tags(db, user, organization, ["org-tag"])

    assert await get_tag_names(db, user) == ["global-tag"]
    assert await get_tag_names(db, user, organization) == ["org-tag"]


@pytest.mark.asyncio
async def test_get_tags_filters_by_sanitized_names(db, make_user, make_organization):
    user = await make_user()
    organization = await make_organization()
    await add_tags(db, user, organization, ["vip", "ops"])

    tags = await get_tags(db, user, organization, ["VIP!"])
    assert [tag.name for tag in tags] == ["vip"]
    assert await get_tags(db, user, organization, ["???"]) == []


@pytest.mark.asyncio
async def test_remove_tags_returns_remaining(db, make_user, make_organization):
    user = await make_user()
    organization = await make_organization()
    await add_tags(db, user, organization, ["vip", "ops", "billing"])

    assert await remove_tags(db, user, organization, ["OPS", "unknown"]) == ["billing", "vip"]
    assert await remove_tags(db, user, organization, []) == ["billing", "vip"]
    assert await remove_tags(db, user, organization, ["vip", "billing"]) == []


@pytest.mark.asyncio
async def test_resolve_tag_source_and_target(db, make_user, make_organization):
    user = await make_user()
    organization = await make_organization()
    await add_tags(db, user, organization, ["vip"])
    await add_tags(db, user, None, ["everywhere"])

    tag = (await get_tags(db, user, organization))[0]
    assert tag.source == EntityRef.of(user)
    assert (await resolve_source(db, tag)).id == user.id
    assert (await resolve_target(db, tag)).id == organization.id

    global_tag = (await get_tags(db, user))[0]
    assert await resolve_target(db, global_tag) is None
