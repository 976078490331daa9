from __future__ import annotations

import logging
import uuid
from typing import Literal

from sqlalchemy.orm import Session

from learnportal.core.security import hash_password, verify_password
from learnportal.models.principal import Principal, PrincipalType
from learnportal.providers.google_identity import OAuthIdentity
from learnportal.repos.principals import (
    clear_session_token,
    create_principal,
    get_principal_by_email,
    get_principal_by_id,
    set_blocked,
    set_password_hash,
)
from learnportal.services.sessions import BLOCKED_MESSAGE, IssuedSession, PrincipalDisabled, SessionManager

logger = logging.getLogger(__name__)

Audience = Literal["student", "staff"]


class AuthError(RuntimeError):
    pass


class InvalidCredentials(AuthError):
    pass


class PrincipalNotFound(AuthError):
    pass


class AlreadyRegistered(AuthError):
    pass


def _matches_audience(row: Principal, audience: Audience) -> bool:
    if audience == "student":
        return row.principal_type == PrincipalType.STUDENT
    return row.is_staff


def login_with_password(
    db: Session,
    manager: SessionManager,
    *,
    email: str,
    password: str,
    client_ip: str | None,
    audience: Audience,
) -> tuple[Principal, IssuedSession]:
    row = get_principal_by_email(db, email)
    if row is None or not _matches_audience(row, audience):
        raise InvalidCredentials("Invalid email or password")

    if row.is_blocked:
        logger.warning("login refused for blocked principal=%s", row.id)
        raise PrincipalDisabled(BLOCKED_MESSAGE)
    if not row.password_hash:
        raise InvalidCredentials("This account uses social login. Please sign in with Google.")
    if not verify_password(password, row.password_hash):
        raise InvalidCredentials("Invalid email or password")
    if not row.is_active:
        logger.warning("login refused for deactivated principal=%s", row.id)
        raise PrincipalDisabled()

    issued = manager.issue_session(row.id, row.principal_type, client_ip)
    return row, issued


def login_with_oauth(
    db: Session,
    manager: SessionManager,
    *,
    identity: OAuthIdentity,
    client_ip: str | None,
) -> tuple[Principal, IssuedSession]:
    row = get_principal_by_email(db, identity.email)
    if row is None or row.principal_type != PrincipalType.STUDENT:
        raise PrincipalNotFound("Account not found. Please register first.")

    issued = manager.issue_session(row.id, row.principal_type, client_ip)
    logger.info("oauth login provider=%s principal=%s", identity.provider, row.id)
    return row, issued


def register_student(
    db: Session,
    manager: SessionManager,
    *,
    email: str,
    password_hash: str,
    first_name: str,
    last_name: str,
    client_ip: str | None,
) -> tuple[Principal, IssuedSession]:
    if get_principal_by_email(db, email) is not None:
        raise AlreadyRegistered("An account with this email already exists")

    row = create_principal(
        db,
        principal_type=PrincipalType.STUDENT,
        email=email,
        password_hash=password_hash,
        first_name=first_name,
        last_name=last_name,
        is_verified=True,
    )
    issued = manager.issue_session(row.id, row.principal_type, client_ip)
    db.refresh(row)
    return row, issued


def register_oauth_student(
    db: Session,
    manager: SessionManager,
    *,
    identity: OAuthIdentity,
    client_ip: str | None,
) -> tuple[Principal, IssuedSession]:
    if not identity.email_verified:
        raise InvalidCredentials("The identity provider has not verified this email address")
    if get_principal_by_email(db, identity.email) is not None:
        raise AlreadyRegistered("An account with this email already exists")

    row = create_principal(
        db,
        principal_type=PrincipalType.STUDENT,
        email=identity.email,
        password_hash=None,
        first_name=identity.first_name,
        last_name=identity.last_name,
        is_verified=True,
    )
    issued = manager.issue_session(row.id, row.principal_type, client_ip)
    db.refresh(row)
    logger.info("oauth registration provider=%s principal=%s", identity.provider, row.id)
    return row, issued


def reset_password(db: Session, *, email: str, new_password: str) -> Principal:
    row = get_principal_by_email(db, email)
    if row is None or row.principal_type != PrincipalType.STUDENT:
        raise PrincipalNotFound("Account not found")

    set_password_hash(db, row.id, hash_password(new_password))
    # A reset logs the account out everywhere.
    clear_session_token(db, row.id)
    db.refresh(row)
    return row


def set_student_blocked(db: Session, student_id: uuid.UUID, blocked: bool) -> Principal:
    row = get_principal_by_id(db, student_id)
    if row is None or row.principal_type != PrincipalType.STUDENT:
        raise PrincipalNotFound("Student not found")

    set_blocked(db, row.id, blocked)
    db.refresh(row)
    logger.info("student %s principal=%s", "blocked" if blocked else "unblocked", row.id)
    return row
