"""Single-active-session enforcement.

A principal row holds at most one live session token. Issuing a session
overwrites it, terminating clears it, and a signed credential is accepted only
while the token embedded in it equals the stored one.
"""

from __future__ import annotations

import hmac
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from learnportal.core.credentials import CredentialClaims, CredentialError, decode_credential, encode_credential
from learnportal.core.security import new_session_token
from learnportal.core.settings import get_settings
from learnportal.core.time import utcnow
from learnportal.models.principal import PrincipalType
from learnportal.services.credential_store import CredentialStore, PrincipalRecord

logger = logging.getLogger(__name__)


class SessionError(RuntimeError):
    kind = "session_error"
    message = "Authentication required."

    def __init__(self, message: str | None = None):
        if message is not None:
            self.message = message
        super().__init__(self.message)


class Unauthenticated(SessionError):
    kind = "unauthenticated"
    message = "Not authenticated. Please log in."


class InvalidToken(SessionError):
    kind = "invalid_token"
    message = "Invalid or expired session. Please log in again."


class SessionSuperseded(SessionError):
    kind = "session_superseded"
    message = "Session expired. You have been logged in from another device."


class PrincipalDisabled(SessionError):
    kind = "principal_disabled"
    message = "Account is deactivated."


BLOCKED_MESSAGE = (
    "Your account has been blocked by the administrator. Please contact support for assistance."
)


@dataclass(frozen=True)
class SessionIdentity:
    principal_id: uuid.UUID
    principal_type: PrincipalType


@dataclass(frozen=True)
class IssuedSession:
    credential: str
    session_token: str
    principal_id: uuid.UUID
    principal_type: PrincipalType
    expires_at: datetime
    max_age: int


def ensure_can_login(record: PrincipalRecord) -> None:
    if record.is_blocked:
        raise PrincipalDisabled(BLOCKED_MESSAGE)
    if not record.is_active:
        raise PrincipalDisabled()


class SessionManager:
    """Issues, validates and terminates sessions against a credential store.

    `clock` stamps iat/exp at issue and is the "now" that expiry is checked
    against during validation.
    """

    def __init__(
        self,
        store: CredentialStore,
        *,
        ttl: timedelta | None = None,
        clock: Callable[[], datetime] = utcnow,
        token_factory: Callable[[], str] = new_session_token,
    ):
        self.store = store
        self.ttl = ttl if ttl is not None else timedelta(days=get_settings().session_ttl_days)
        self.clock = clock
        self.token_factory = token_factory

    def issue_session(
        self,
        principal_id: uuid.UUID,
        principal_type: PrincipalType,
        client_ip: str | None,
    ) -> IssuedSession:
        """Mint a new session and make it the only live one for the principal.

        There is no reuse path: every call overwrites the stored token, so the
        most recent login wins and earlier credentials become superseded.
        Nothing is written when the principal is missing, of another type,
        blocked or deactivated.
        """
        record = self.store.find_by_id(principal_id)
        if record is None or record.principal_type != principal_type:
            raise Unauthenticated()
        ensure_can_login(record)

        now = self.clock()
        expires_at = now + self.ttl
        token = self.token_factory()
        credential = encode_credential(
            CredentialClaims(
                principal_id=str(principal_id),
                principal_type=principal_type.value,
                session_token=token,
                issued_at=now,
                expires_at=expires_at,
            )
        )

        self.store.update_session_token(principal_id, token, ip=client_ip, at=now)
        logger.info("session issued principal=%s type=%s", principal_id, principal_type.value)

        return IssuedSession(
            credential=credential,
            session_token=token,
            principal_id=principal_id,
            principal_type=principal_type,
            expires_at=expires_at,
            max_age=max(0, int(self.ttl.total_seconds())),
        )

    def validate_session(self, credential: str | None) -> SessionIdentity:
        """Resolve a credential to its principal. Never writes to the store."""
        if not credential:
            raise Unauthenticated()

        try:
            claims = decode_credential(credential, now=self.clock())
            principal_id = uuid.UUID(claims.principal_id)
            claimed_type = PrincipalType(claims.principal_type)
        except (CredentialError, ValueError) as e:
            raise InvalidToken() from e

        record = self.store.find_by_id(principal_id)
        if record is None:
            raise Unauthenticated()
        if record.principal_type != claimed_type:
            raise InvalidToken()

        stored = record.active_session_token
        if not stored or not hmac.compare_digest(stored.encode("utf-8"), claims.session_token.encode("utf-8")):
            logger.info("session superseded principal=%s", principal_id)
            raise SessionSuperseded()

        ensure_can_login(record)
        return SessionIdentity(principal_id=record.id, principal_type=record.principal_type)

    def terminate_session(self, credential: str | None) -> None:
        """Clear the principal's live session. Never raises."""
        if not credential:
            return

        # Expired credentials still identify who is logging out.
        try:
            claims = decode_credential(credential, verify_exp=False)
            principal_id = uuid.UUID(claims.principal_id)
        except (CredentialError, ValueError):
            logger.debug("logout with unreadable credential ignored")
            return

        try:
            self.store.clear_session_token(principal_id)
        except Exception:
            logger.exception("failed to clear session for principal=%s", principal_id)
            return
        logger.info("session terminated principal=%s", principal_id)
