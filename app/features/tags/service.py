"""
Tag store.

Structurally the same owner/target pattern as role grants, without any
elevation semantics. Adding is idempotent and names are sanitized rather
than rejected.
"""
import re
from typing import Any, Iterable, Optional

from sqlalchemy import select, delete, func, and_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import StoreFault
from app.core.scope import EntityRef, resolve_entity
from app.features.tags.models import Tag, dedupe_key
from app.utils import get_logger


log = get_logger(__name__)

_INVALID_TAG_CHARS = re.compile(r"[^\w-]", re.ASCII)


def sanitize_tag_name(name: Any) -> Optional[str]:
    """Lower-case ``name`` and strip every character outside [A-Za-z0-9_-]."""
    if not isinstance(name, str) or not name:
        return None
    return _INVALID_TAG_CHARS.sub("", name.lower()) or None


def prepare_tag_names(names: Iterable[Any] | str | None) -> list[str]:
    """Sanitize, drop empties, and de-duplicate while keeping first-seen order."""
    if names is None:
        return []
    if isinstance(names, str):
        names = [names]

    prepared: list[str] = []
    for name in names:
        sanitized = sanitize_tag_name(name)
        if sanitized and sanitized not in prepared:
            prepared.append(sanitized)
    return prepared


def _tag_query_clause(source: EntityRef, target: Optional[EntityRef]):
    clause = and_(Tag.source_kind == source.kind, Tag.source_id == source.id)
    if target is None:
        return and_(clause, Tag.target_kind.is_(None), Tag.target_id.is_(None))
    return and_(clause, Tag.target_kind == target.kind, Tag.target_id == target.id)


async def get_tags(
    db: AsyncSession,
    source: Any,
    target: Any = None,
    names: Optional[Iterable[str]] = None,
) -> list[Tag]:
    """Tags ``source`` has for exactly ``target`` (None = global), ordered by name."""
    stmt = select(Tag).where(_tag_query_clause(EntityRef.of(source), EntityRef.of(target))).order_by(Tag.name)

    if names is not None:
        prepared = prepare_tag_names(names)
        if not prepared:
            return []
        stmt = stmt.where(Tag.name.in_(prepared))

    try:
        result = await db.execute(stmt)
    except SQLAlchemyError as exc:
        raise StoreFault("get_tags", exc) from exc

    return list(result.scalars().all())


async def get_tag_names(db: AsyncSession, source: Any, target: Any = None) -> list[str]:
    return [tag.name for tag in await get_tags(db, source, target)]


async def count_tags(db: AsyncSession, source: Any, target: Any = None) -> int:
    stmt = select(func.count(Tag.id)).where(_tag_query_clause(EntityRef.of(source), EntityRef.of(target)))
    try:
        result = await db.execute(stmt)
    except SQLAlchemyError as exc:
        raise StoreFault("count_tags", exc) from exc
    return result.scalar_one()


async def add_tags(
    db: AsyncSession,
    source: Any,
    target: Any,
    names: Iterable[Any] | str | None,
) -> list[str]:
    """
    Attach tags to ``source`` for ``target``.

    Names already present are skipped, including names a concurrent writer
    stored first. Each name is committed on its own; returns the names that
    were actually added.
    """
    source_ref = EntityRef.of(source)
    target_ref = EntityRef.of(target)

    prepared = prepare_tag_names(names)
    if not prepared:
        return []

    current = set(await get_tag_names(db, source_ref, target_ref))

    added: list[str] = []
    for name in prepared:
        if name in current:
            continue

        db.add(
            Tag(
                source_kind=source_ref.kind,
                source_id=source_ref.id,
                target_kind=target_ref.kind if target_ref else None,
                target_id=target_ref.id if target_ref else None,
                name=name,
                dedupe_key=dedupe_key(source_ref, target_ref, name),
            )
        )

        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            log.debug("Tag %s already present on %s for %s", name, source_ref, target_ref or "global")
            continue
        except SQLAlchemyError as exc:
            await db.rollback()
            raise StoreFault("add_tags", exc) from exc

        added.append(name)

    if added:
        log.debug("Added tags %s to %s on %s", added, source_ref, target_ref or "global")
    return added


async def remove_tags(
    db: AsyncSession,
    source: Any,
    target: Any,
    names: Iterable[Any] | str | None,
) -> list[str]:
    """
    Detach tags from ``source`` for ``target``.

    Unknown names are ignored. Commits the session and returns the names
    that remain afterwards.
    """
    source_ref = EntityRef.of(source)
    target_ref = EntityRef.of(target)

    prepared = prepare_tag_names(names)
    if prepared:
        try:
            await db.execute(
                delete(Tag).where(_tag_query_clause(source_ref, target_ref), Tag.name.in_(prepared))
            )
            await db.commit()
        except SQLAlchemyError as exc:
            await db.rollback()
            raise StoreFault("remove_tags", exc) from exc

    return await get_tag_names(db, source_ref, target_ref)


async def resolve_source(db: AsyncSession, tag: Tag) -> Any | None:
    return await resolve_entity(db, tag.source)


async def resolve_target(db: AsyncSession, tag: Tag) -> Any | None:
    return await resolve_entity(db, tag.target)
