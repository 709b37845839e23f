"""
Role grant model.

A grant gives an owner (usually a User) a named role, either against a
specific target (usually an Organization) or globally when the target
columns are NULL. Role names must exist in the static role catalog.
"""
from typing import Optional
from sqlalchemy import String, Index
from sqlalchemy.orm import Mapped, mapped_column
import ulid

from app.core.database.base import Base, TimestampMixin
from app.core.scope import EntityRef
from app.features.roles import catalog


def generate_ulid() -> str:
    """Generate a new ULID string."""
    return ulid.ulid()


def exclusivity_key(owner: EntityRef, target: Optional[EntityRef]) -> str:
    """Key shared by every primary grant of one owner/target pair."""
    return f"{owner}@{target if target else '*'}"


class Role(Base, TimestampMixin):
    """
    Role grant held by an owner, optionally scoped to a target.
    
    Examples:
    - User X is "masteradmin" (no target)
    - User X is "admin" of Organization Y
    """
    __tablename__ = "roles"
    __table_args__ = (
        Index("ix_roles_owner_target", "owner_kind", "owner_id", "target_kind", "target_id"),
    )
    
    # Primary key using ULID
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    
    name: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    
    # Polymorphic owner
    owner_kind: Mapped[str] = mapped_column(String(64), nullable=False)
    owner_id: Mapped[str] = mapped_column(String(26), nullable=False)
    
    # Polymorphic target (both NULL = global grant)
    target_kind: Mapped[str | None] = mapped_column(String(64), nullable=True, default=None)
    target_id: Mapped[str | None] = mapped_column(String(26), nullable=True, default=None)
    
    # Set only on primary grants; unique so two primaries can never coexist
    exclusivity_key: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True)
    
    @property
    def owner(self) -> EntityRef:
        return EntityRef(self.owner_kind, self.owner_id)
    
    @property
    def target(self) -> Optional[EntityRef]:
        if self.target_kind is None or self.target_id is None:
            return None
        return EntityRef(self.target_kind, self.target_id)
    
    @property
    def display_name(self) -> Optional[str]:
        """Human readable role name, or None when the catalog has no label for this scope."""
        return catalog.display_name(self.name, self.owner_kind, self.target_kind)
    
    def __repr__(self) -> str:
        return f"<Role(id={self.id}, name={self.name!r}, owner={self.owner}, target={self.target})>"
