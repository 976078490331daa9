from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

import jwt

from learnportal.core.settings import get_settings
from learnportal.core.time import utcnow

_REQUIRED_CLAIMS = ["sub", "typ", "sid", "iat", "exp"]


class CredentialError(RuntimeError):
    """Signature, expiry or shape failure. Deliberately carries no detail."""


@dataclass(frozen=True)
class CredentialClaims:
    principal_id: str
    principal_type: str
    session_token: str
    issued_at: datetime
    expires_at: datetime


def encode_credential(claims: CredentialClaims) -> str:
    settings = get_settings()
    payload = {
        "sub": claims.principal_id,
        "typ": claims.principal_type,
        "sid": claims.session_token,
        "iat": int(claims.issued_at.timestamp()),
        "exp": int(claims.expires_at.timestamp()),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_credential(
    raw: str,
    *,
    verify_exp: bool = True,
    now: datetime | None = None,
) -> CredentialClaims:
    """Verify the signature and return the claims.

    Expiry is checked here against `now` (wall clock by default) rather than by
    PyJWT, so callers with their own clock see the same time at issue and check.
    """
    settings = get_settings()
    try:
        payload = jwt.decode(
            raw,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            options={"require": _REQUIRED_CLAIMS, "verify_exp": False, "verify_iat": False},
        )
    except jwt.InvalidTokenError as e:
        raise CredentialError("invalid credential") from e

    sub, typ, sid = payload.get("sub"), payload.get("typ"), payload.get("sid")
    if not all(isinstance(v, str) and v for v in (sub, typ, sid)):
        raise CredentialError("invalid credential")

    try:
        issued_at = datetime.fromtimestamp(int(payload["iat"]), tz=timezone.utc)
        expires_at = datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError) as e:
        raise CredentialError("invalid credential") from e

    if verify_exp and expires_at <= (now or utcnow()):
        raise CredentialError("invalid credential")

    return CredentialClaims(
        principal_id=sub,
        principal_type=typ,
        session_token=sid,
        issued_at=issued_at,
        expires_at=expires_at,
    )
