from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from learnportal.models.principal import Principal, PrincipalType


def get_principal_by_email(db: Session, email: str) -> Principal | None:
    stmt = select(Principal).where(Principal.email == email.strip().lower())
    return db.execute(stmt).scalars().first()


def get_principal_by_id(db: Session, principal_id: uuid.UUID) -> Principal | None:
    return db.get(Principal, principal_id)


def create_principal(
    db: Session,
    *,
    principal_type: PrincipalType,
    email: str,
    password_hash: str | None,
    first_name: str = "",
    last_name: str = "",
    is_active: bool = True,
    is_verified: bool = False,
) -> Principal:
    row = Principal(
        principal_type=principal_type,
        email=email.strip().lower(),
        password_hash=password_hash,
        first_name=first_name,
        last_name=last_name,
        is_active=is_active,
        is_verified=is_verified,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def update_session_token(
    db: Session,
    principal_id: uuid.UUID,
    *,
    token: str,
    login_at: datetime,
    login_ip: str | None,
) -> None:
    # Single-row overwrite; concurrent logins race here and the last write wins.
    stmt = (
        update(Principal)
        .where(Principal.id == principal_id)
        .values(active_session_token=token, last_login_at=login_at, last_login_ip=login_ip)
    )
    db.execute(stmt)
    db.commit()


def clear_session_token(db: Session, principal_id: uuid.UUID) -> None:
    stmt = update(Principal).where(Principal.id == principal_id).values(active_session_token=None)
    db.execute(stmt)
    db.commit()


def set_password_hash(db: Session, principal_id: uuid.UUID, password_hash: str) -> None:
    stmt = update(Principal).where(Principal.id == principal_id).values(password_hash=password_hash)
    db.execute(stmt)
    db.commit()


def set_blocked(db: Session, principal_id: uuid.UUID, blocked: bool) -> None:
    values: dict = {"is_blocked": blocked}
    if blocked:
        values["active_session_token"] = None
    db.execute(update(Principal).where(Principal.id == principal_id).values(**values))
    db.commit()
