"""
Session validation, issuance, and revocation.

``validate_session`` turns an opaque credential into an authenticated
principal. Every failure is reported as InvalidSession, whatever the cause;
the cause is kept on the exception for logging only.

Validation is stateless apart from store reads and is safe to run
concurrently.
"""
import hashlib
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from sqlalchemy import select, delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.errors import StoreFault
from app.core.scope import EntityRef
from app.features.roles.service import has_roles_for
from app.features.sessions.codec import (
    InvalidSession,
    SessionClaims,
    SessionCodec,
    scope_code_for,
)
from app.features.sessions.models import InvalidToken
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)

Clock = Callable[[], datetime]

# Scopes for which organization permission checks are skipped
SHORT_CIRCUIT_SCOPES = frozenset({"system", "admin"})


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def get_codec() -> SessionCodec:
    return SessionCodec(config.SESSION_SECRET)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass(frozen=True)
class SessionPrincipal:
    """Authenticated caller."""
    user: User
    scope: str
    claims: SessionClaims
    organization_id: Optional[str] = None

    @property
    def identity(self) -> EntityRef:
        return EntityRef.of(self.user)

    @property
    def expires_at(self) -> datetime:
        return self.claims.expires_at

    @property
    def requires_membership_check(self) -> bool:
        return self.scope not in SHORT_CIRCUIT_SCOPES

    def for_organization(self, organization_id: Optional[str]) -> "SessionPrincipal":
        if not organization_id:
            return self
        return replace(self, organization_id=organization_id)


async def is_token_revoked(db: AsyncSession, token: str) -> bool:
    try:
        result = await db.execute(
            select(InvalidToken.id).where(InvalidToken.token_hash == hash_token(token)).limit(1)
        )
    except SQLAlchemyError as exc:
        raise StoreFault("is_token_revoked", exc) from exc
    return result.first() is not None


async def validate_session(
    db: AsyncSession,
    credential: Optional[str],
    *,
    skip_mfa_check: bool = False,
    skip_seed_check: bool = False,
    codec: Optional[SessionCodec] = None,
    clock: Clock = utc_now,
) -> SessionPrincipal:
    """
    Validate a bearer or cookie credential.

    Raises:
        InvalidSession: missing, malformed, badly signed, not yet valid,
            expired, MFA-pending, seed-only, unknown scope, revoked,
            or for an unknown or deactivated user
        StoreFault: the store could not be read
    """
    if not credential:
        raise InvalidSession("Empty credential")

    claims = (codec or get_codec()).decode(credential)

    now = clock()
    if now < claims.not_before:
        raise InvalidSession("Token not yet valid")
    if now >= claims.expires_at:
        raise InvalidSession("Token expired")

    if not skip_mfa_check and claims.is_mfa_required:
        raise InvalidSession("MFA required")

    # Seed tokens can only be exchanged for a session token
    if not skip_seed_check and claims.is_seed_token:
        raise InvalidSession("Seed token not valid for authentication")

    if claims.scope is None:
        raise InvalidSession(f'Unknown scope code "{claims.scope_code}"')

    if await is_token_revoked(db, credential):
        raise InvalidSession("Token has been revoked")

    try:
        user = await db.get(User, claims.user_id)
    except SQLAlchemyError as exc:
        raise StoreFault("validate_session", exc) from exc

    if user is None:
        raise InvalidSession("User not found")
    if not user.is_active:
        raise InvalidSession("User deactivated")

    return SessionPrincipal(
        user=user,
        scope=claims.scope,
        claims=claims,
        organization_id=claims.organization_id,
    )


async def issue_session_token(
    db: AsyncSession,
    user: User,
    *,
    scope: Optional[str] = None,
    organization_id: Optional[str] = None,
    is_seed_token: bool = False,
    is_mfa_required: bool = False,
    ttl: Optional[int] = None,
    codec: Optional[SessionCodec] = None,
    clock: Clock = utc_now,
) -> str:
    """
    Sign a token for ``user``.

    Without an explicit scope, users holding masteradmin or support get the
    admin scope and everyone else the user scope.
    """
    if scope is None:
        elevated = await has_roles_for(db, user, None, ["masteradmin", "support"])
        scope = "admin" if elevated else "user"

    if ttl is None:
        ttl = config.SEED_TOKEN_TTL if is_seed_token else config.SESSION_TOKEN_TTL

    issued_at = clock()
    return (codec or get_codec()).encode(
        scope_code=scope_code_for(scope),
        user_id=user.id,
        organization_id=organization_id,
        is_mfa_required=is_mfa_required,
        is_seed_token=is_seed_token,
        issued_at=issued_at,
        expires_at=issued_at + timedelta(seconds=ttl),
    )


async def invalidate_token(
    db: AsyncSession,
    token: str,
    *,
    codec: Optional[SessionCodec] = None,
    clock: Clock = utc_now,
) -> bool:
    """
    Revoke ``token`` and purge revocations that are past their purge time.

    Tokens that do not decode are ignored, since they can never validate.
    Commits the session and returns whether the token was recorded.
    """
    now = clock()
    try:
        await db.execute(delete(InvalidToken).where(InvalidToken.purge_at < now))
    except SQLAlchemyError as exc:
        await db.rollback()
        raise StoreFault("invalidate_token", exc) from exc

    recorded = False
    try:
        claims = (codec or get_codec()).decode(token)
    except InvalidSession as exc:
        log.debug("Not recording undecodable token: %s", exc.reason)
    else:
        purge_at = _as_utc(claims.expires_at) + timedelta(seconds=config.INVALID_TOKEN_PURGE_GRACE)
        db.add(InvalidToken(token_hash=hash_token(token), purge_at=purge_at))
        recorded = True

    try:
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        raise StoreFault("invalidate_token", exc) from exc

    return recorded


@dataclass(frozen=True)
class LoginResult:
    session_token: str
    claims: SessionClaims
    needs_mfa: bool = False


async def login(
    db: AsyncSession,
    magic_token: str,
    *,
    codec: Optional[SessionCodec] = None,
    clock: Clock = utc_now,
) -> LoginResult:
    """
    Exchange a seed (magic link) token for a session token.

    The seed token is revoked once exchanged. A token that is already a
    session token is returned unchanged.
    """
    codec = codec or get_codec()
    principal = await validate_session(
        db, magic_token, skip_mfa_check=True, skip_seed_check=True, codec=codec, clock=clock
    )
    claims = principal.claims

    if claims.is_mfa_required:
        return LoginResult(session_token=magic_token, claims=claims, needs_mfa=True)

    if not claims.is_seed_token:
        return LoginResult(session_token=magic_token, claims=claims)

    session_token = await issue_session_token(
        db,
        principal.user,
        scope=principal.scope,
        organization_id=claims.organization_id,
        codec=codec,
        clock=clock,
    )
    await invalidate_token(db, magic_token, codec=codec, clock=clock)

    principal.user.last_login_at = clock()
    try:
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        raise StoreFault("login", exc) from exc

    log.info("User %s logged in", principal.user.id)
    return LoginResult(session_token=session_token, claims=codec.decode(session_token))
