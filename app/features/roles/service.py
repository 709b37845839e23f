"""
Role grant store.

Grants are read and written through these functions rather than through the
ORM directly, so that the primary-role exclusivity rule is always applied:
for any owner/target pair at most one grant of a primary role exists.
"""
from typing import Any, Iterable, Optional

from sqlalchemy import select, delete, and_, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import StoreFault, UnknownRole
from app.core.scope import EntityRef, get_entity_model, resolve_entity
from app.features.roles import catalog
from app.features.roles.models import Role, exclusivity_key
from app.utils import get_logger


log = get_logger(__name__)


def _owner_clause(owner: EntityRef):
    return and_(Role.owner_kind == owner.kind, Role.owner_id == owner.id)


def _exact_target_clause(target: Optional[EntityRef]):
    if target is None:
        return and_(Role.target_kind.is_(None), Role.target_id.is_(None))
    return and_(Role.target_kind == target.kind, Role.target_id == target.id)


def _applicable_target_clause(target: Optional[EntityRef]):
    # Global grants always apply, whatever the target
    if target is None:
        return _exact_target_clause(None)
    return or_(_exact_target_clause(None), _exact_target_clause(target))


async def grants_for(
    db: AsyncSession,
    owner: Any,
    target: Any = None,
    names: Optional[Iterable[str]] = None,
) -> list[Role]:
    """
    Grants held by ``owner`` that apply to ``target``.

    Global grants are always included. With no target only global grants
    are returned.
    """
    owner_ref = EntityRef.of(owner)
    target_ref = EntityRef.of(target)

    stmt = (
        select(Role)
        .where(_owner_clause(owner_ref), _applicable_target_clause(target_ref))
        .order_by(Role.name)
    )

    wanted = [name for name in (names or []) if name]
    if wanted:
        stmt = stmt.where(Role.name.in_(wanted))

    try:
        result = await db.execute(stmt)
    except SQLAlchemyError as exc:
        raise StoreFault("grants_for", exc) from exc

    return list(result.scalars().all())


async def roles_for(
    db: AsyncSession,
    owner: Any,
    target: Any = None,
    names: Optional[Iterable[str]] = None,
) -> list[str]:
    """Distinct, sorted role names ``owner`` holds for ``target`` (global grants included)."""
    grants = await grants_for(db, owner, target, names)
    return sorted({grant.name for grant in grants})


async def has_roles_for(
    db: AsyncSession,
    owner: Any,
    target: Any,
    names: Iterable[str],
    exact: bool = False,
) -> list[str]:
    """
    Which of ``names`` the owner holds for ``target``.

    Returns an empty list when the owner holds none of them, or, with
    ``exact``, when the owner does not hold every one of them.
    """
    wanted = sorted({name for name in names if name})
    if not wanted:
        return []

    held = await roles_for(db, owner, target, wanted)
    if exact and held != wanted:
        return []

    return held


async def _lock_owner(db: AsyncSession, owner: EntityRef) -> None:
    # Serializes concurrent grant mutations for the same owner on backends
    # with row locks; SQLite serializes writers on its own.
    model = get_entity_model(owner.kind)
    if model is None:
        return
    await db.execute(select(model.id).where(model.id == owner.id).with_for_update())


async def create_for(
    db: AsyncSession,
    owner: Any,
    role_name: str,
    target: Any = None,
) -> Role:
    """
    Grant ``role_name`` to ``owner``, optionally against ``target``.

    If the role is primary, every other primary grant of the same owner/target
    pair is deleted in the same transaction as the insert, so no reader ever
    observes two primary grants. Global roles ignore ``target``.

    Commits the session.

    Raises:
        UnknownRole: the owner's kind cannot hold the role (against the
            target's kind, when a target is given)
        StoreFault: the store failed or a concurrent writer won the race
    """
    owner_ref = EntityRef.of(owner)
    target_ref = EntityRef.of(target)

    if target_ref is None:
        definition = next(
            (d for d in catalog.definitions_for_owner([owner_ref.kind]) if d.name == role_name),
            None,
        )
    else:
        definition = catalog.definition_by_name(role_name, [owner_ref.kind], [catalog.GLOBAL, target_ref.kind])
    if definition is None:
        raise UnknownRole(role_name, owner_ref.kind, owner_ref.id)

    grant_target = target_ref if target_ref and target_ref.kind in definition.target_kinds else None

    role = Role(
        name=definition.name,
        owner_kind=owner_ref.kind,
        owner_id=owner_ref.id,
        target_kind=grant_target.kind if grant_target else None,
        target_id=grant_target.id if grant_target else None,
        exclusivity_key=exclusivity_key(owner_ref, grant_target) if definition.is_primary else None,
    )

    try:
        if definition.is_primary:
            await _lock_owner(db, owner_ref)

            primary_names = [
                primary.name for primary in catalog.definitions_for_owner([owner_ref.kind], primary_only=True)
            ]
            await db.execute(
                delete(Role).where(
                    _owner_clause(owner_ref),
                    _exact_target_clause(grant_target),
                    Role.name.in_(primary_names),
                )
            )

        db.add(role)
        await db.flush()
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        log.warning("Concurrent primary grant for %s on %s lost the race", owner_ref, grant_target or "global")
        raise StoreFault("create_for", exc) from exc
    except SQLAlchemyError as exc:
        await db.rollback()
        raise StoreFault("create_for", exc) from exc

    log.info("Granted role %s to %s on %s", role.name, owner_ref, grant_target or "global")
    return role


async def revoke(
    db: AsyncSession,
    owner: Any,
    target: Any = None,
    role_name: Optional[str] = None,
) -> int:
    """
    Delete grants of ``owner`` for exactly ``target`` (None = global grants).

    With no ``role_name`` every grant for the pair is removed. Commits the
    session and returns the number of grants deleted.
    """
    owner_ref = EntityRef.of(owner)
    target_ref = EntityRef.of(target)

    stmt = delete(Role).where(_owner_clause(owner_ref), _exact_target_clause(target_ref))
    if role_name:
        stmt = stmt.where(Role.name == role_name)

    try:
        result = await db.execute(stmt)
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        raise StoreFault("revoke", exc) from exc

    log.info("Revoked %d role grant(s) %s from %s on %s", result.rowcount, role_name or "(all)", owner_ref, target_ref or "global")
    return result.rowcount


async def resolve_owner(db: AsyncSession, grant: Role) -> Any | None:
    """Owner row of a grant, or None if it has been deleted."""
    return await resolve_entity(db, grant.owner)


async def resolve_target(db: AsyncSession, grant: Role) -> Any | None:
    """Target row of a grant, or None for global grants and deleted targets."""
    return await resolve_entity(db, grant.target)
