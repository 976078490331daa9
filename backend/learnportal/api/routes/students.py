from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

import requests
from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from pydantic import BaseModel, EmailStr, Field, field_validator
from sqlalchemy.orm import Session

from learnportal.api.deps import (
    AuthContext,
    client_ip,
    get_current_student,
    get_identity_verifier,
    get_otp,
    get_session_manager,
    session_http_error,
)
from learnportal.core.cookies import STUDENT_COOKIE_NAME, clear_session_cookie, read_credential, set_session_cookie
from learnportal.core.security import MAX_PASSWORD_BYTES, hash_password, password_fits
from learnportal.db.session import get_db
from learnportal.models.principal import Principal
from learnportal.providers.brevo_mail import MailError
from learnportal.providers.google_identity import OAuthIdentity
from learnportal.repos.principals import get_principal_by_email
from learnportal.services import mail
from learnportal.services.auth import (
    AlreadyRegistered,
    InvalidCredentials,
    PrincipalNotFound,
    login_with_oauth,
    login_with_password,
    register_oauth_student,
    register_student,
    reset_password,
)
from learnportal.services.otp import PASSWORD_RESET, REGISTRATION, OtpStore
from learnportal.services.sessions import IssuedSession, SessionError, SessionManager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/students", tags=["students"])


class StudentResponse(BaseModel):
    id: str
    email: EmailStr
    first_name: str
    last_name: str
    is_verified: bool
    has_password: bool
    created_at: datetime
    last_login_at: datetime | None = None


class SessionResponse(BaseModel):
    user: StudentResponse
    token: str
    expires_at: datetime


def _check_password_bytes(v: str) -> str:
    # Multi-byte characters count against the limit, not just the length.
    if not password_fits(v):
        raise ValueError(f"password must be at most {MAX_PASSWORD_BYTES} bytes")
    return v


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8, max_length=MAX_PASSWORD_BYTES)
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, v: str) -> str:
        return _check_password_bytes(v)


class OtpRequest(BaseModel):
    email: EmailStr
    otp: str = Field(min_length=6, max_length=6)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1, max_length=128)


class OAuthRequest(BaseModel):
    id_token: str = Field(min_length=1)


class EmailRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    email: EmailStr
    otp: str = Field(min_length=6, max_length=6)
    new_password: str = Field(min_length=8, max_length=MAX_PASSWORD_BYTES)

    @field_validator("new_password")
    @classmethod
    def password_fits_bcrypt(cls, v: str) -> str:
        return _check_password_bytes(v)


def _student_response(row: Principal) -> StudentResponse:
    return StudentResponse(
        id=str(row.id),
        email=row.email,
        first_name=row.first_name,
        last_name=row.last_name,
        is_verified=row.is_verified,
        has_password=bool(row.password_hash),
        created_at=row.created_at,
        last_login_at=row.last_login_at,
    )


def _start_session(response: Response, row: Principal, issued: IssuedSession) -> SessionResponse:
    set_session_cookie(response, STUDENT_COOKIE_NAME, issued.credential, max_age=issued.max_age)
    return SessionResponse(user=_student_response(row), token=issued.credential, expires_at=issued.expires_at)


def _verify_oauth(verifier: Callable[[str], OAuthIdentity], id_token: str) -> OAuthIdentity:
    try:
        return verifier(id_token)
    except (ValueError, requests.RequestException) as e:
        logger.warning("oauth token verification failed: %s", type(e).__name__)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="OAuth token verification failed") from e


@router.post("/register/request-otp")
def request_registration_otp(
    payload: RegisterRequest,
    db: Session = Depends(get_db),
    otp: OtpStore = Depends(get_otp),
) -> dict:
    if get_principal_by_email(db, payload.email) is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="An account with this email already exists")

    code = otp.issue(
        REGISTRATION,
        payload.email,
        {
            "email": payload.email,
            "password_hash": hash_password(payload.password),
            "first_name": payload.first_name,
            "last_name": payload.last_name,
        },
    )
    try:
        mail.send_verification_code(payload.email, code)
    except MailError as e:
        otp.discard(REGISTRATION, payload.email)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Failed to send verification email. Please try again.",
        ) from e
    return {"ok": True, "email": payload.email}


@router.post("/register/verify", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
def verify_registration(
    payload: OtpRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    manager: SessionManager = Depends(get_session_manager),
    otp: OtpStore = Depends(get_otp),
) -> SessionResponse:
    result = otp.verify(REGISTRATION, payload.email, payload.otp)
    if not result.valid:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=result.message)

    pending = result.payload
    try:
        row, issued = register_student(
            db,
            manager,
            email=pending["email"],
            password_hash=pending["password_hash"],
            first_name=pending["first_name"],
            last_name=pending["last_name"],
            client_ip=client_ip(request),
        )
    except AlreadyRegistered as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    return _start_session(response, row, issued)


@router.post("/login", response_model=SessionResponse)
def login(
    payload: LoginRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    manager: SessionManager = Depends(get_session_manager),
) -> SessionResponse:
    try:
        row, issued = login_with_password(
            db,
            manager,
            email=payload.email,
            password=payload.password,
            client_ip=client_ip(request),
            audience="student",
        )
    except InvalidCredentials as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e)) from e
    except SessionError as e:
        raise session_http_error(e) from e
    return _start_session(response, row, issued)


@router.post("/oauth/login", response_model=SessionResponse)
def oauth_login(
    payload: OAuthRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    manager: SessionManager = Depends(get_session_manager),
    verifier: Callable[[str], OAuthIdentity] = Depends(get_identity_verifier),
) -> SessionResponse:
    identity = _verify_oauth(verifier, payload.id_token)
    try:
        row, issued = login_with_oauth(db, manager, identity=identity, client_ip=client_ip(request))
    except PrincipalNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except SessionError as e:
        raise session_http_error(e) from e
    return _start_session(response, row, issued)


@router.post("/oauth/register", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
def oauth_register(
    payload: OAuthRequest,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    manager: SessionManager = Depends(get_session_manager),
    verifier: Callable[[str], OAuthIdentity] = Depends(get_identity_verifier),
) -> SessionResponse:
    identity = _verify_oauth(verifier, payload.id_token)
    try:
        row, issued = register_oauth_student(db, manager, identity=identity, client_ip=client_ip(request))
    except AlreadyRegistered as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    except InvalidCredentials as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e)) from e
    return _start_session(response, row, issued)


@router.post("/logout")
def logout(
    request: Request,
    response: Response,
    manager: SessionManager = Depends(get_session_manager),
) -> dict:
    manager.terminate_session(read_credential(request, STUDENT_COOKIE_NAME))
    clear_session_cookie(response, STUDENT_COOKIE_NAME)
    return {"ok": True}


@router.get("/me", response_model=StudentResponse)
def me(auth: AuthContext = Depends(get_current_student)) -> StudentResponse:
    return _student_response(auth.principal)


@router.post("/password/forgot")
def forgot_password(
    payload: EmailRequest,
    db: Session = Depends(get_db),
    otp: OtpStore = Depends(get_otp),
) -> dict:
    row = get_principal_by_email(db, payload.email)
    # Same answer whether or not the account exists.
    if row is not None and not row.is_staff:
        code = otp.issue(PASSWORD_RESET, payload.email)
        try:
            mail.send_password_reset_code(payload.email, code)
        except MailError as e:
            otp.discard(PASSWORD_RESET, payload.email)
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail="Failed to send password reset email. Please try again.",
            ) from e
    return {"ok": True, "message": "If an account exists with this email, you will receive a password reset code."}


@router.post("/password/verify-otp")
def verify_password_otp(payload: OtpRequest, otp: OtpStore = Depends(get_otp)) -> dict:
    result = otp.verify(PASSWORD_RESET, payload.email, payload.otp, consume=False)
    if not result.valid:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=result.message)
    return {"ok": True, "email": payload.email}


@router.post("/password/reset")
def reset_password_route(
    payload: ResetPasswordRequest,
    response: Response,
    db: Session = Depends(get_db),
    otp: OtpStore = Depends(get_otp),
) -> dict:
    result = otp.verify(PASSWORD_RESET, payload.email, payload.otp)
    if not result.valid:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=result.message)

    try:
        reset_password(db, email=payload.email, new_password=payload.new_password)
    except PrincipalNotFound as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid or expired code.") from e
    clear_session_cookie(response, STUDENT_COOKIE_NAME)
    return {"ok": True}
