from __future__ import annotations

from fastapi import Request, Response

from learnportal.core.settings import get_settings


STUDENT_COOKIE_NAME = "student_token"
STAFF_COOKIE_NAME = "admin_token"


def _samesite() -> str:
    settings = get_settings()
    # The portals live on other origins in production; "none" requires Secure.
    if settings.app_env == "prod" and settings.cookie_secure:
        return "none"
    return "lax"


def set_session_cookie(resp: Response, cookie_name: str, credential: str, *, max_age: int) -> None:
    settings = get_settings()
    resp.set_cookie(
        key=cookie_name,
        value=credential,
        max_age=max_age,
        httponly=True,
        secure=settings.cookie_secure,
        samesite=_samesite(),
        path="/",
    )


def clear_session_cookie(resp: Response, cookie_name: str) -> None:
    settings = get_settings()
    resp.delete_cookie(
        key=cookie_name,
        path="/",
        httponly=True,
        samesite=_samesite(),
        secure=settings.cookie_secure,
    )


def read_credential(request: Request, cookie_name: str) -> str | None:
    raw = request.cookies.get(cookie_name)
    if raw:
        return raw
    header = request.headers.get("authorization") or ""
    scheme, _, value = header.partition(" ")
    if scheme.lower() == "bearer" and value.strip():
        return value.strip()
    return None
