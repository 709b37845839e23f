"""
Pydantic schemas for session requests and responses.
"""
from datetime import datetime
from pydantic import BaseModel, Field


class LoginRequest(BaseModel):
    """Exchange a magic link token for a session token."""
    magic_token: str = Field(..., min_length=1, alias="magicToken")
    
    model_config = {"populate_by_name": True}


class LoginResponse(BaseModel):
    session_token: str | None = None
    needs_mfa: bool = False


class SessionResponse(BaseModel):
    """Claims of the current session."""
    user_id: str
    scope: str
    organization_id: str | None = None
    is_mfa_required: bool
    is_seed_token: bool
    issued_at: datetime
    expires_at: datetime
