from __future__ import annotations

import uuid
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Protocol

from sqlalchemy.orm import Session

from learnportal.models.principal import Principal, PrincipalType
from learnportal.repos.principals import clear_session_token, get_principal_by_id, update_session_token


@dataclass(frozen=True)
class PrincipalRecord:
    id: uuid.UUID
    principal_type: PrincipalType
    active_session_token: str | None = None
    is_active: bool = True
    is_blocked: bool = False
    last_login_at: datetime | None = None
    last_login_ip: str | None = None

    @classmethod
    def from_row(cls, row: Principal) -> "PrincipalRecord":
        return cls(
            id=row.id,
            principal_type=row.principal_type,
            active_session_token=row.active_session_token,
            is_active=row.is_active,
            is_blocked=row.is_blocked,
            last_login_at=row.last_login_at,
            last_login_ip=row.last_login_ip,
        )


class CredentialStore(Protocol):
    def find_by_id(self, principal_id: uuid.UUID) -> PrincipalRecord | None: ...

    def update_session_token(
        self,
        principal_id: uuid.UUID,
        token: str,
        *,
        ip: str | None,
        at: datetime,
    ) -> None: ...

    def clear_session_token(self, principal_id: uuid.UUID) -> None: ...


class SqlCredentialStore:
    """Credential store backed by the principals table.

    Database errors are not caught here; callers see them as infrastructure
    failures, separate from the session error kinds.
    """

    def __init__(self, db: Session):
        self.db = db

    def find_by_id(self, principal_id: uuid.UUID) -> PrincipalRecord | None:
        row = get_principal_by_id(self.db, principal_id)
        if row is None:
            return None
        return PrincipalRecord.from_row(row)

    def update_session_token(
        self,
        principal_id: uuid.UUID,
        token: str,
        *,
        ip: str | None,
        at: datetime,
    ) -> None:
        update_session_token(self.db, principal_id, token=token, login_at=at, login_ip=ip)

    def clear_session_token(self, principal_id: uuid.UUID) -> None:
        clear_session_token(self.db, principal_id)


class InMemoryCredentialStore:
    """Dict-backed store for unit tests and local experiments."""

    def __init__(self) -> None:
        self._rows: dict[uuid.UUID, PrincipalRecord] = {}
        self.writes = 0

    def add(self, record: PrincipalRecord) -> PrincipalRecord:
        self._rows[record.id] = record
        return record

    def get(self, principal_id: uuid.UUID) -> PrincipalRecord | None:
        return self._rows.get(principal_id)

    def find_by_id(self, principal_id: uuid.UUID) -> PrincipalRecord | None:
        return self._rows.get(principal_id)

    def update_session_token(
        self,
        principal_id: uuid.UUID,
        token: str,
        *,
        ip: str | None,
        at: datetime,
    ) -> None:
        row = self._rows.get(principal_id)
        if row is None:
            return
        self._rows[principal_id] = replace(row, active_session_token=token, last_login_at=at, last_login_ip=ip)
        self.writes += 1

    def clear_session_token(self, principal_id: uuid.UUID) -> None:
        row = self._rows.get(principal_id)
        if row is None:
            return
        self._rows[principal_id] = replace(row, active_session_token=None)
        self.writes += 1
