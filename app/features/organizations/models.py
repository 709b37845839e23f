"""
Organization models.

Organizations are the usual target of role grants and tags.
Users can belong to multiple organizations; membership is recorded in
the user_organizations link table.
"""
from datetime import datetime
from sqlalchemy import String, ForeignKey, Table, Column, Boolean, DateTime, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column, relationship
import ulid

from app.core.database.base import Base, TimestampMixin
from app.core.errors import StoreFault
from app.core.scope import ORGANIZATION, register_entity_kind


def generate_ulid() -> str:
    """Generate a new ULID string."""
    return ulid.ulid()


# Association table for many-to-many relationship between users and organizations
user_organizations = Table(
    "user_organizations",
    Base.metadata,
    Column("user_id", String(26), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("organization_id", String(26), ForeignKey("organizations.id", ondelete="CASCADE"), primary_key=True),
    Column("joined_at", DateTime(timezone=True), nullable=False, default=datetime.now),
)


@register_entity_kind(ORGANIZATION)
class Organization(Base, TimestampMixin):
    """
    Organization model.
    
    Users can belong to multiple organizations.
    """
    __tablename__ = "organizations"
    
    # Primary key using ULID
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    website: Mapped[str | None] = mapped_column(String(255), nullable=True)
    
    # Organization settings
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    
    # Relationships
    users: Mapped[list["User"]] = relationship(  # type: ignore
        "User",
        secondary=user_organizations,
        back_populates="organizations",
        lazy="selectin"
    )
    
    def __repr__(self) -> str:
        return f"<Organization(id={self.id}, name={self.name!r})>"


async def is_member_of_organization(db: AsyncSession, user_id: str, organization_id: str | None) -> bool:
    """
    Check whether a membership link exists for the user/organization pair.

    A missing organization id or a missing link is simply "not a member".
    """
    if not organization_id:
        return False

    try:
        result = await db.execute(
            select(user_organizations.c.user_id).where(
                user_organizations.c.user_id == user_id,
                user_organizations.c.organization_id == organization_id,
            )
        )
    except SQLAlchemyError as exc:
        raise StoreFault("is_member_of_organization", exc) from exc

    return result.first() is not None


async def count_members(db: AsyncSession, organization_id: str) -> int:
    """Number of membership links for the organization, read from the link table."""
    try:
        result = await db.execute(
            select(func.count())
            .select_from(user_organizations)
            .where(user_organizations.c.organization_id == organization_id)
        )
    except SQLAlchemyError as exc:
        raise StoreFault("count_members", exc) from exc

    return result.scalar_one()
