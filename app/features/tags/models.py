"""
Tag model for labelling users, organizations, and user/organization pairs.
"""
from typing import Optional
from sqlalchemy import String, Index
from sqlalchemy.orm import Mapped, mapped_column
import ulid

from app.core.database.base import Base, TimestampMixin
from app.core.scope import EntityRef


def generate_ulid() -> str:
    """Generate a new ULID string."""
    return ulid.ulid()


def dedupe_key(source: EntityRef, target: Optional[EntityRef], name: str) -> str:
    """Key shared by every copy of one tag name on one source/target pair."""
    return f"{source}@{target if target else '*'}#{name}"


class Tag(Base, TimestampMixin):
    """
    Free-form label attached by a source to an optional target.
    
    Tags for a user within an organization have the user as source and the
    organization as target. Examples: "vip", "billing", "on-call".
    """
    __tablename__ = "tags"
    __table_args__ = (
        Index("ix_tags_source_target", "source_kind", "source_id", "target_kind", "target_id"),
    )
    
    # Primary key using ULID
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    
    # Polymorphic source
    source_kind: Mapped[str] = mapped_column(String(64), nullable=False)
    source_id: Mapped[str] = mapped_column(String(26), nullable=False)
    
    # Polymorphic target (both NULL = global tag)
    target_kind: Mapped[str | None] = mapped_column(String(64), nullable=True, default=None)
    target_id: Mapped[str | None] = mapped_column(String(26), nullable=True, default=None)
    
    # Sanitized: lower case, [a-z0-9_-] only
    name: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    
    # Unique so concurrent adds of the same name store one row
    dedupe_key: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    
    @property
    def source(self) -> EntityRef:
        return EntityRef(self.source_kind, self.source_id)
    
    @property
    def target(self) -> Optional[EntityRef]:
        if self.target_kind is None or self.target_id is None:
            return None
        return EntityRef(self.target_kind, self.target_id)
    
    def __repr__(self) -> str:
        return f"<Tag(id={self.id}, name={self.name!r}, source={self.source}, target={self.target})>"
