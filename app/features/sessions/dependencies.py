"""
FastAPI dependencies for session authentication.
"""
import re
from typing import Annotated, Optional
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.database.engine import get_db
from app.features.sessions.codec import InvalidSession
from app.features.sessions.service import SessionPrincipal, validate_session
from app.utils import get_logger


log = get_logger(__name__)

_BEARER_PATTERN = re.compile(r"^Bearer ([0-9a-zA-Z+/=_.-]+)$")


def extract_credential(request: Request) -> Optional[str]:
    """
    Pull the session token from the request.

    The Authorization header ("Bearer <token>") wins when present, even if
    malformed; otherwise the auth cookie is used.
    """
    auth_header = (request.headers.get("Authorization") or "").strip()
    if auth_header:
        match = _BEARER_PATTERN.match(auth_header)
        return match.group(1) if match else None

    return request.cookies.get(config.AUTH_COOKIE_NAME) or None


def resolve_organization_id(request: Request) -> Optional[str]:
    """Target organization from the X-Organization-ID header, query string, or path."""
    return (
        request.headers.get("X-Organization-ID")
        or request.query_params.get("organizationID")
        or request.path_params.get("organization_id")
        or None
    )


async def get_current_principal(
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)]
) -> SessionPrincipal:
    """
    Authenticate the request without any organization check.

    Usage:
        @router.get("/session")
        async def get_session(principal: SessionPrincipal = Depends(get_current_principal)):
            return principal.claims.as_dict()
    """
    try:
        principal = await validate_session(db, extract_credential(request))
    except InvalidSession as exc:
        log.debug("Rejected credential: %s", exc.reason)
        raise

    principal = principal.for_organization(resolve_organization_id(request))
    request.state.principal = principal
    return principal


def get_authorization_header(request) -> str:
    """
    Extract authorization header for rate limiting.
    Used with slowapi Limiter.
    """
    auth = request.headers.get("Authorization", "")
    return auth or "anonymous"
