"""Short-lived email verification codes.

Each entry expires on its own after ``otp_ttl_seconds``; nothing depends on a
periodic sweep. Codes live in process memory only, so a restart drops pending
registrations and resets.
"""

from __future__ import annotations

import hmac
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any

from cachetools import TTLCache

from learnportal.core.security import new_otp_code
from learnportal.core.settings import get_settings

logger = logging.getLogger(__name__)

REGISTRATION = "registration"
PASSWORD_RESET = "password_reset"


@dataclass(frozen=True)
class OtpResult:
    valid: bool
    message: str
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class _Entry:
    code: str
    payload: dict[str, Any]


class OtpStore:
    def __init__(
        self,
        *,
        ttl: int,
        maxsize: int = 10000,
        timer: Callable[[], float] = time.monotonic,
        code_factory: Callable[[], str] = new_otp_code,
    ):
        self._cache: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl, timer=timer)
        self._lock = threading.RLock()
        self._code_factory = code_factory

    @staticmethod
    def _key(purpose: str, email: str) -> tuple[str, str]:
        return purpose, email.strip().lower()

    def issue(self, purpose: str, email: str, payload: dict[str, Any] | None = None) -> str:
        """Store a fresh code for (purpose, email), replacing any earlier one."""
        code = self._code_factory()
        with self._lock:
            self._cache[self._key(purpose, email)] = _Entry(code=code, payload=dict(payload or {}))
        logger.info("otp issued purpose=%s", purpose)
        return code

    def verify(self, purpose: str, email: str, code: str, *, consume: bool = True) -> OtpResult:
        key = self._key(purpose, email)
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                return OtpResult(valid=False, message="No valid code found. Please request a new one.")
            if not hmac.compare_digest(entry.code.encode("utf-8"), code.strip().encode("utf-8")):
                return OtpResult(valid=False, message="Invalid code. Please try again.")
            if consume:
                self._cache.pop(key, None)
        return OtpResult(valid=True, message="Code verified successfully.", payload=dict(entry.payload))

    def discard(self, purpose: str, email: str) -> None:
        with self._lock:
            self._cache.pop(self._key(purpose, email), None)

    def __len__(self) -> int:
        with self._lock:
            self._cache.expire()
            return len(self._cache)


@lru_cache
def get_otp_store() -> OtpStore:
    settings = get_settings()
    return OtpStore(ttl=settings.otp_ttl_seconds, maxsize=settings.otp_max_entries)
