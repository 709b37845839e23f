"""
Session (login/logout) routes.
"""
from typing import Annotated
from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.database.engine import get_db
from app.features.sessions.dependencies import extract_credential, get_current_principal
from app.features.sessions.schemas import LoginRequest, LoginResponse, SessionResponse
from app.features.sessions.service import SessionPrincipal, invalidate_token, login
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter(tags=["auth"])


def _set_auth_cookie(response: Response, token: str, max_age: int) -> None:
    response.set_cookie(
        config.AUTH_COOKIE_NAME,
        token,
        max_age=max_age,
        secure=True,
        httponly=True,
        samesite="strict",
        path="/",
    )


@router.post("/login", response_model=LoginResponse)
async def login_with_magic_token(
    body: LoginRequest,
    response: Response,
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Exchange a magic link (seed) token for a session token."""
    result = await login(db, body.magic_token)
    
    if result.needs_mfa:
        return LoginResponse(needs_mfa=True)
    
    response.headers["X-Session-Token"] = result.session_token
    _set_auth_cookie(response, result.session_token, result.claims.expires_in)
    return LoginResponse(session_token=result.session_token)


@router.post("/logout", status_code=status.HTTP_200_OK)
async def logout(
    request: Request,
    response: Response,
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Revoke the header and cookie credentials and clear the cookie."""
    header_token = extract_credential(request) if request.headers.get("Authorization") else None
    cookie_token = request.cookies.get(config.AUTH_COOKIE_NAME)
    
    if not header_token and not cookie_token:
        return {"message": "Not logged in"}
    
    if header_token:
        await invalidate_token(db, header_token)
        log.debug("Revoked header session token")
    if cookie_token and cookie_token != header_token:
        await invalidate_token(db, cookie_token)
    
    response.delete_cookie(config.AUTH_COOKIE_NAME, path="/", secure=True, httponly=True, samesite="strict")
    return {"message": "Logged out"}


@router.get("/session", response_model=SessionResponse)
async def get_session(
    principal: Annotated[SessionPrincipal, Depends(get_current_principal)]
):
    """Claims of the current session token."""
    claims = principal.claims
    return SessionResponse(
        user_id=principal.user.id,
        scope=principal.scope,
        organization_id=principal.organization_id,
        is_mfa_required=claims.is_mfa_required,
        is_seed_token=claims.is_seed_token,
        issued_at=claims.issued_at,
        expires_at=claims.expires_at,
    )
