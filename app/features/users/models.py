"""
User model with ULID primary keys.
"""
from datetime import datetime
from sqlalchemy import String, Boolean
from sqlalchemy.orm import Mapped, mapped_column, relationship
import ulid

from app.core.database.base import Base, TimestampMixin
from app.core.scope import USER, register_entity_kind


def generate_ulid() -> str:
    """Generate a new ULID string."""
    return ulid.ulid()


@register_entity_kind(USER)
class User(Base, TimestampMixin):
    """
    User model representing authenticated users.
    
    Users are the owners of role grants and tags. What a user may do is
    decided entirely by those grants and by organization membership.
    """
    __tablename__ = "users"
    
    # Primary key using ULID (Universally Unique Lexicographically Sortable Identifier)
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    
    # User information
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    
    # Status flags
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    
    # Track last login
    last_login_at: Mapped[datetime | None] = mapped_column(nullable=True)
    
    # Relationships
    organizations: Mapped[list["Organization"]] = relationship(  # type: ignore
        "Organization",
        secondary="user_organizations",
        back_populates="users",
        lazy="selectin"
    )
    
    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email!r})>"
