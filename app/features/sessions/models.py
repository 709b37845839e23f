"""
Revoked session tokens.

A token listed here is no longer valid even though its signature and expiry
still check out. Rows are kept until ``purge_at`` (the token's own expiry
plus a grace period) and purged lazily whenever a new token is revoked.
"""
from datetime import datetime
from sqlalchemy import String, DateTime
from sqlalchemy.orm import Mapped, mapped_column
import ulid

from app.core.database.base import Base, TimestampMixin


def generate_ulid() -> str:
    """Generate a new ULID string."""
    return ulid.ulid()


class InvalidToken(Base, TimestampMixin):
    __tablename__ = "invalid_tokens"
    
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    
    # SHA-256 hex digest of the raw token
    token_hash: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    purge_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    
    def __repr__(self) -> str:
        return f"<InvalidToken(id={self.id}, purge_at={self.purge_at})>"
