from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from functools import partial

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from learnportal.core.cookies import STAFF_COOKIE_NAME, STUDENT_COOKIE_NAME, read_credential
from learnportal.core.settings import get_settings
from learnportal.db.session import get_db
from learnportal.models.principal import Principal, PrincipalType
from learnportal.providers.google_identity import OAuthIdentity, verify_id_token
from learnportal.repos.principals import get_principal_by_id
from learnportal.services.credential_store import SqlCredentialStore
from learnportal.services.otp import OtpStore, get_otp_store
from learnportal.services.sessions import PrincipalDisabled, SessionError, SessionIdentity, SessionManager


@dataclass(frozen=True)
class AuthContext:
    principal: Principal
    identity: SessionIdentity


def get_session_manager(db: Session = Depends(get_db)) -> SessionManager:
    return SessionManager(SqlCredentialStore(db))


def get_otp() -> OtpStore:
    return get_otp_store()


def get_identity_verifier() -> Callable[[str], OAuthIdentity]:
    settings = get_settings()
    if not settings.google_client_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="OAuth is not configured")
    return partial(verify_id_token, client_id=settings.google_client_id)


def client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded and get_settings().trust_forwarded_for:
        return forwarded.split(",")[0].strip() or None
    return request.client.host if request.client else None


def session_http_error(err: SessionError) -> HTTPException:
    # All kinds mean "log in again"; the message and header tell the client why.
    code = status.HTTP_403_FORBIDDEN if isinstance(err, PrincipalDisabled) else status.HTTP_401_UNAUTHORIZED
    return HTTPException(status_code=code, detail=err.message, headers={"X-Session-Error": err.kind})


def _resolve(request: Request, db: Session, manager: SessionManager, cookie_name: str) -> AuthContext:
    raw = read_credential(request, cookie_name)
    try:
        identity = manager.validate_session(raw)
    except SessionError as e:
        raise session_http_error(e) from e

    principal = get_principal_by_id(db, identity.principal_id)
    if principal is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated. Please log in.")
    return AuthContext(principal=principal, identity=identity)


def get_current_student(
    request: Request,
    db: Session = Depends(get_db),
    manager: SessionManager = Depends(get_session_manager),
) -> AuthContext:
    auth = _resolve(request, db, manager, STUDENT_COOKIE_NAME)
    if auth.identity.principal_type != PrincipalType.STUDENT:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions.")
    return auth


def get_current_staff(
    request: Request,
    db: Session = Depends(get_db),
    manager: SessionManager = Depends(get_session_manager),
) -> AuthContext:
    auth = _resolve(request, db, manager, STAFF_COOKIE_NAME)
    if not auth.identity.principal_type.is_staff:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions.")
    return auth


def require_admin(auth: AuthContext = Depends(get_current_staff)) -> AuthContext:
    if auth.identity.principal_type != PrincipalType.ADMIN:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return auth
