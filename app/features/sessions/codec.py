"""
Session token codec.

Tokens are HS256-signed JWTs with compact claim names:

    s    scope code (a = admin, s = system, u = user)
    u    user id
    o    organization id (optional)
    mfa  1 if the holder still has to complete MFA
    st   1 for seed ("magic link") tokens, which can only be exchanged for a session token
    iat, nbf, exp  issuance window (unix seconds)

Expiry and not-before are NOT checked here; the validator checks them
against its own clock.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

import jwt

from app.core.errors import Unauthorized


SCOPE_CODES: dict[str, str] = {
    "a": "admin",
    "s": "system",
    "u": "user",
}


class InvalidSession(Unauthorized):
    """Raised for every reason a credential is rejected."""


def scope_code_for(scope: str) -> str:
    """Map a scope name ("admin") or code ("a") to its code."""
    if scope in SCOPE_CODES:
        return scope
    for code, name in SCOPE_CODES.items():
        if name == scope:
            return code
    raise ValueError(f'Unknown scope "{scope}"')


def _to_datetime(value: Any) -> datetime:
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


@dataclass(frozen=True)
class SessionClaims:
    scope_code: str
    user_id: str
    organization_id: Optional[str]
    is_mfa_required: bool
    is_seed_token: bool
    issued_at: datetime
    not_before: datetime
    expires_at: datetime

    @property
    def scope(self) -> Optional[str]:
        return SCOPE_CODES.get(self.scope_code)

    @property
    def expires_in(self) -> int:
        return int((self.expires_at - self.issued_at).total_seconds())

    def as_dict(self) -> dict[str, Any]:
        return {
            "scope": self.scope,
            "user_id": self.user_id,
            "organization_id": self.organization_id,
            "is_mfa_required": self.is_mfa_required,
            "is_seed_token": self.is_seed_token,
            "issued_at": self.issued_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
        }


class SessionCodec:
    """Encode and decode signed session tokens."""

    algorithm = "HS256"

    def __init__(self, secret: str):
        if not secret:
            raise ValueError("A signing secret is required")
        self._secret = secret

    def encode(
        self,
        *,
        scope_code: str,
        user_id: str,
        issued_at: datetime,
        expires_at: datetime,
        organization_id: Optional[str] = None,
        is_mfa_required: bool = False,
        is_seed_token: bool = False,
        not_before: Optional[datetime] = None,
    ) -> str:
        payload: dict[str, Any] = {
            "s": scope_code,
            "u": user_id,
            "mfa": 1 if is_mfa_required else 0,
            "st": 1 if is_seed_token else 0,
            "iat": int(issued_at.timestamp()),
            "nbf": int((not_before or issued_at).timestamp()),
            "exp": int(expires_at.timestamp()),
        }
        if organization_id:
            payload["o"] = organization_id

        return jwt.encode(payload, self._secret, algorithm=self.algorithm)

    def decode(self, token: str) -> SessionClaims:
        """
        Verify the signature and parse the claims.

        Raises:
            InvalidSession: malformed token, bad signature, or missing/invalid claims
        """
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self.algorithm],
                options={
                    "verify_exp": False,
                    "verify_nbf": False,
                    "verify_iat": False,
                    "require": ["s", "u", "iat", "exp"],
                },
            )
        except jwt.InvalidTokenError as exc:
            raise InvalidSession(f"Undecodable token: {exc}") from exc

        try:
            issued_at = _to_datetime(payload["iat"])
            return SessionClaims(
                scope_code=str(payload["s"]),
                user_id=str(payload["u"]),
                organization_id=payload.get("o") or None,
                is_mfa_required=bool(payload.get("mfa")),
                is_seed_token=bool(payload.get("st")),
                issued_at=issued_at,
                not_before=_to_datetime(payload["nbf"]) if payload.get("nbf") is not None else issued_at,
                expires_at=_to_datetime(payload["exp"]),
            )
        except (TypeError, ValueError, OverflowError) as exc:
            raise InvalidSession(f"Invalid claims: {exc}") from exc
