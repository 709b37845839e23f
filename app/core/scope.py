"""
Polymorphic owner/target references.

Role grants and tags point at their owner and (optional) target through a
``(kind, id)`` pair instead of a foreign key. Kinds are resolved back to rows
through a single registry, filled in by ``register_entity_kind`` on the models
that can be referenced.
"""
from dataclasses import dataclass
from typing import Any, Callable, Optional, TypeVar

from sqlalchemy import delete, or_, and_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import StoreFault
from app.utils import get_logger


log = get_logger(__name__)

# Entity kinds
USER = "User"
ORGANIZATION = "Organization"

T = TypeVar("T")

_ENTITY_MODELS: dict[str, type] = {}


@dataclass(frozen=True)
class EntityRef:
    """Reference to a persisted entity by kind and id."""
    kind: str
    id: str

    @classmethod
    def of(cls, value: Any) -> Optional["EntityRef"]:
        """
        Build a reference from a model instance, an existing reference, or None.

        None stays None and means "global" when used as a target.
        """
        if value is None:
            return None
        if isinstance(value, EntityRef):
            return value
        return cls(kind=value.entity_kind, id=value.id)

    def __str__(self) -> str:
        return f"{self.kind}:{self.id}"


def register_entity_kind(kind: str) -> Callable[[type[T]], type[T]]:
    """
    Class decorator registering a model as resolvable for ``kind``.

    Usage:
        @register_entity_kind("User")
        class User(Base):
            ...
    """
    def decorator(model: type[T]) -> type[T]:
        if kind in _ENTITY_MODELS and _ENTITY_MODELS[kind] is not model:
            raise ValueError(f'Entity kind "{kind}" is already registered')
        setattr(model, "entity_kind", kind)
        _ENTITY_MODELS[kind] = model
        return model

    return decorator


def get_entity_model(kind: str) -> type | None:
    return _ENTITY_MODELS.get(kind)


async def resolve_entity(db: AsyncSession, ref: Optional[EntityRef]) -> Any | None:
    """
    Look up the row a reference points at.

    Returns None when the reference is None, the kind is unknown, or the row
    is gone (deleted but its grants/tags not yet purged).
    """
    if ref is None:
        return None

    model = get_entity_model(ref.kind)
    if model is None:
        log.warning("No entity model registered for kind %s", ref.kind)
        return None

    try:
        return await db.get(model, ref.id)
    except SQLAlchemyError as exc:
        raise StoreFault("resolve_entity", exc) from exc


async def purge_references(db: AsyncSession, ref: EntityRef) -> None:
    """
    Delete every role grant and tag that references ``ref`` as owner or target.

    Call alongside deleting the entity itself, in the same transaction.
    """
    from app.features.roles.models import Role
    from app.features.tags.models import Tag

    try:
        await db.execute(
            delete(Role).where(
                or_(
                    and_(Role.owner_kind == ref.kind, Role.owner_id == ref.id),
                    and_(Role.target_kind == ref.kind, Role.target_id == ref.id),
                )
            )
        )
        await db.execute(
            delete(Tag).where(
                or_(
                    and_(Tag.source_kind == ref.kind, Tag.source_id == ref.id),
                    and_(Tag.target_kind == ref.kind, Tag.target_id == ref.id),
                )
            )
        )
    except SQLAlchemyError as exc:
        raise StoreFault("purge_references", exc) from exc

    log.info("Purged role grants and tags referencing %s", ref)
