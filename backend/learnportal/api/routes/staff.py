from __future__ import annotations

import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.orm import Session

from learnportal.api.deps import (
    AuthContext,
    client_ip,
    get_current_staff,
    get_session_manager,
    require_admin,
    session_http_error,
)
from learnportal.core.cookies import STAFF_COOKIE_NAME, clear_session_cookie, read_credential, set_session_cookie
from learnportal.db.session import get_db
from learnportal.models.principal import Principal
from learnportal.services.auth import InvalidCredentials, PrincipalNotFound, login_with_password, set_student_blocked
from learnportal.services.sessions import SessionError, SessionManager

router = APIRouter(prefix="/staff", tags=["staff"])


class StaffResponse(BaseModel):
    id: str
    email: EmailStr
    first_name: str
    last_name: str
    role: str
    created_at: datetime
    last_login_at: datetime | None = None


class StaffSessionResponse(BaseModel):
    user: StaffResponse
    token: str
    expires_at: datetime


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1, max_length=128)


class StudentStatusResponse(BaseModel):
    id: str
    email: EmailStr
    is_blocked: bool


def _staff_response(row: Principal) -> StaffResponse:
    return StaffResponse(
        id=str(row.id),
        email=row.email,
        first_name=row.first_name,
        last_name=row.last_name,
        role=row.principal_type.value,
        created_at=row.created_at,
        last_login_at=row.last_login_at,
    )


@router.post("/login", response_model=StaffSessionResponse)
def login(
    payload: LoginRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    manager: SessionManager = Depends(get_session_manager),
) -> StaffSessionResponse:
    try:
        row, issued = login_with_password(
            db,
            manager,
            email=payload.email,
            password=payload.password,
            client_ip=client_ip(request),
            audience="staff",
        )
    except InvalidCredentials as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e)) from e
    except SessionError as e:
        raise session_http_error(e) from e

    set_session_cookie(response, STAFF_COOKIE_NAME, issued.credential, max_age=issued.max_age)
    return StaffSessionResponse(user=_staff_response(row), token=issued.credential, expires_at=issued.expires_at)


@router.post("/logout")
def logout(
    request: Request,
    response: Response,
    manager: SessionManager = Depends(get_session_manager),
) -> dict:
    manager.terminate_session(read_credential(request, STAFF_COOKIE_NAME))
    clear_session_cookie(response, STAFF_COOKIE_NAME)
    return {"ok": True}


@router.get("/me", response_model=StaffResponse)
def me(auth: AuthContext = Depends(get_current_staff)) -> StaffResponse:
    return _staff_response(auth.principal)


def _set_blocked(db: Session, student_id: uuid.UUID, blocked: bool) -> StudentStatusResponse:
    try:
        row = set_student_blocked(db, student_id, blocked)
    except PrincipalNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    return StudentStatusResponse(id=str(row.id), email=row.email, is_blocked=row.is_blocked)


@router.post("/students/{student_id}/block", response_model=StudentStatusResponse)
def block_student(
    student_id: uuid.UUID,
    db: Session = Depends(get_db),
    _: AuthContext = Depends(require_admin),
) -> StudentStatusResponse:
    return _set_blocked(db, student_id, True)


@router.post("/students/{student_id}/unblock", response_model=StudentStatusResponse)
def unblock_student(
    student_id: uuid.UUID,
    db: Session = Depends(get_db),
    _: AuthContext = Depends(require_admin),
) -> StudentStatusResponse:
    return _set_blocked(db, student_id, False)
