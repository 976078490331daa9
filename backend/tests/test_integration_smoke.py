import uuid

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool


def _app(monkeypatch, **env):
    monkeypatch.setenv("DATABASE_URL", "sqlite+pysqlite:///:memory:")
    monkeypatch.setenv("JWT_SECRET", "integration-secret-0123456789abcdef0123456789")
    monkeypatch.setenv("BCRYPT_ROUNDS", "4")
    for k, v in env.items():
        monkeypatch.setenv(k, v)

    from learnportal.core.settings import get_settings

    get_settings.cache_clear()

    from learnportal.db.base import Base
    from learnportal.db.session import get_db
    from learnportal.main import create_app
    from learnportal.services.otp import get_otp_store

    get_otp_store.cache_clear()

    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    app = create_app()

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    return app, TestingSessionLocal


def _create(SessionLocal, *, email, password="password123", role="student", blocked=False, active=True):
    from learnportal.core.security import hash_password
    from learnportal.models.principal import PrincipalType
    from learnportal.repos.principals import create_principal, set_blocked

    with SessionLocal() as db:
        row = create_principal(
            db,
            principal_type=PrincipalType(role),
            email=email,
            password_hash=hash_password(password) if password else None,
            first_name="Test",
            last_name="User",
            is_active=active,
        )
        if blocked:
            set_blocked(db, row.id, True)
        return row.id


def _stored_token(SessionLocal, principal_id):
    from learnportal.repos.principals import get_principal_by_id

    with SessionLocal() as db:
        return get_principal_by_id(db, principal_id).active_session_token


def test_health(monkeypatch):
    app, _ = _app(monkeypatch)
    client = TestClient(app)
    r = client.get("/api/health")
    assert r.status_code == 200
    assert r.headers.get("x-content-type-options") == "nosniff"


def test_login_sets_httponly_cookie_and_me_works(monkeypatch):
    app, SessionLocal = _app(monkeypatch, TRUST_FORWARDED_FOR="true")
    student_id = _create(SessionLocal, email="a@example.com")

    client = TestClient(app)
    r = client.post(
        "/api/students/login",
        json={"email": "A@example.com", "password": "password123"},
        headers={"X-Forwarded-For": "203.0.113.7, 10.0.0.1"},
    )
    assert r.status_code == 200
    set_cookie = (r.headers.get("set-cookie") or "").lower()
    assert "student_token=" in set_cookie
    assert "httponly" in set_cookie
    assert "samesite=lax" in set_cookie
    assert "max-age=604800" in set_cookie
    body = r.json()
    assert body["user"]["id"] == str(student_id)
    assert body["user"]["has_password"] is True
    assert "active_session_token" not in body["user"]
    assert "password_hash" not in body["user"]

    me = client.get("/api/students/me")
    assert me.status_code == 200
    assert me.json()["email"] == "a@example.com"

    from learnportal.repos.principals import get_principal_by_id

    with SessionLocal() as db:
        assert get_principal_by_id(db, student_id).last_login_ip == "203.0.113.7"


def test_forwarded_for_is_ignored_without_a_trusted_proxy(monkeypatch):
    app, SessionLocal = _app(monkeypatch)
    student_id = _create(SessionLocal, email="direct@example.com")

    client = TestClient(app)
    r = client.post(
        "/api/students/login",
        json={"email": "direct@example.com", "password": "password123"},
        headers={"X-Forwarded-For": "198.51.100.9"},
    )
    assert r.status_code == 200

    from learnportal.repos.principals import get_principal_by_id

    with SessionLocal() as db:
        assert get_principal_by_id(db, student_id).last_login_ip == "testclient"


def test_login_on_second_device_kicks_first(monkeypatch):
    app, SessionLocal = _app(monkeypatch)
    _create(SessionLocal, email="u1@example.com")

    device_a = TestClient(app)
    device_b = TestClient(app)
    creds = {"email": "u1@example.com", "password": "password123"}

    assert device_a.post("/api/students/login", json=creds).status_code == 200
    assert device_a.get("/api/students/me").status_code == 200

    assert device_b.post("/api/students/login", json=creds).status_code == 200

    stale = device_a.get("/api/students/me")
    assert stale.status_code == 401
    assert stale.headers.get("x-session-error") == "session_superseded"
    assert "another device" in stale.json()["detail"]

    fresh = device_b.get("/api/students/me")
    assert fresh.status_code == 200
    assert fresh.json()["email"] == "u1@example.com"


def test_bearer_header_is_accepted(monkeypatch):
    app, SessionLocal = _app(monkeypatch)
    _create(SessionLocal, email="bearer@example.com")

    token = TestClient(app).post(
        "/api/students/login", json={"email": "bearer@example.com", "password": "password123"}
    ).json()["token"]

    r = TestClient(app).get("/api/students/me", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 200


def test_missing_and_invalid_credentials_are_distinguished(monkeypatch):
    app, _ = _app(monkeypatch)
    client = TestClient(app)

    r = client.get("/api/students/me")
    assert r.status_code == 401
    assert r.headers.get("x-session-error") == "unauthenticated"

    r2 = client.get("/api/students/me", headers={"Authorization": "Bearer not.a.jwt"})
    assert r2.status_code == 401
    assert r2.headers.get("x-session-error") == "invalid_token"


def test_wrong_password_and_unknown_email_look_the_same(monkeypatch):
    app, SessionLocal = _app(monkeypatch)
    student_id = _create(SessionLocal, email="b@example.com")
    client = TestClient(app)

    r1 = client.post("/api/students/login", json={"email": "b@example.com", "password": "wrong-password"})
    r2 = client.post("/api/students/login", json={"email": "nobody@example.com", "password": "password123"})
    assert r1.status_code == r2.status_code == 401
    assert r1.json()["detail"] == r2.json()["detail"]
    assert _stored_token(SessionLocal, student_id) is None


def test_blocked_student_cannot_log_in_and_nothing_is_written(monkeypatch):
    app, SessionLocal = _app(monkeypatch)
    u2 = _create(SessionLocal, email="u2@example.com", blocked=True)

    r = TestClient(app).post("/api/students/login", json={"email": "u2@example.com", "password": "password123"})
    assert r.status_code == 403
    assert "blocked" in r.json()["detail"]
    assert "set-cookie" not in r.headers

    from learnportal.repos.principals import get_principal_by_id

    with SessionLocal() as db:
        row = get_principal_by_id(db, u2)
        assert row.active_session_token is None
        assert row.last_login_at is None


def test_deactivated_student_cannot_log_in(monkeypatch):
    app, SessionLocal = _app(monkeypatch)
    _create(SessionLocal, email="inactive@example.com", active=False)

    r = TestClient(app).post("/api/students/login", json={"email": "inactive@example.com", "password": "password123"})
    assert r.status_code == 403
    assert r.json()["detail"] == "Account is deactivated."


def test_oauth_only_account_is_told_to_use_social_login(monkeypatch):
    app, SessionLocal = _app(monkeypatch)
    _create(SessionLocal, email="social@example.com", password=None)

    r = TestClient(app).post("/api/students/login", json={"email": "social@example.com", "password": "password123"})
    assert r.status_code == 401
    assert "social login" in r.json()["detail"]


def test_logout_clears_session_and_always_succeeds(monkeypatch):
    app, SessionLocal = _app(monkeypatch)
    student_id = _create(SessionLocal, email="c@example.com")

    client = TestClient(app)
    login = client.post("/api/students/login", json={"email": "c@example.com", "password": "password123"})
    token = login.json()["token"]

    out = client.post("/api/students/logout")
    assert out.status_code == 200
    assert out.json() == {"ok": True}
    assert 'student_token=""' in (out.headers.get("set-cookie") or "") or "max-age=0" in (
        out.headers.get("set-cookie") or ""
    ).lower()
    assert _stored_token(SessionLocal, student_id) is None

    replay = TestClient(app).get("/api/students/me", headers={"Authorization": f"Bearer {token}"})
    assert replay.status_code == 401
    assert replay.headers.get("x-session-error") == "session_superseded"

    # No cookie, garbage cookie: still fine.
    assert TestClient(app).post("/api/students/logout").status_code == 200
    garbage = TestClient(app, cookies={"student_token": "garbage"})
    assert garbage.post("/api/students/logout").status_code == 200


def test_validation_does_not_write(monkeypatch):
    app, SessionLocal = _app(monkeypatch)
    student_id = _create(SessionLocal, email="pure@example.com")
    client = TestClient(app)
    client.post("/api/students/login", json={"email": "pure@example.com", "password": "password123"})

    from learnportal.repos.principals import get_principal_by_id

    def snapshot():
        with SessionLocal() as db:
            row = get_principal_by_id(db, student_id)
            return (row.active_session_token, row.last_login_at, row.last_login_ip, row.is_active, row.is_blocked)

    before = snapshot()
    for _ in range(50):
        assert client.get("/api/students/me").status_code == 200
    assert snapshot() == before


def test_registration_with_email_code(monkeypatch):
    app, SessionLocal = _app(monkeypatch)

    sent: dict[str, str] = {}

    from learnportal.services import mail

    monkeypatch.setattr(mail, "send_verification_code", lambda to, code: sent.__setitem__(to, code))

    client = TestClient(app)
    payload = {"email": "new@example.com", "password": "password123", "first_name": "Ada", "last_name": "Lovelace"}
    r = client.post("/api/students/register/request-otp", json=payload)
    assert r.status_code == 200
    code = sent["new@example.com"]

    bad = client.post("/api/students/register/verify", json={"email": "new@example.com", "otp": "000000" if code != "000000" else "111111"})
    assert bad.status_code == 400

    ok = client.post("/api/students/register/verify", json={"email": "new@example.com", "otp": code})
    assert ok.status_code == 201
    assert ok.json()["user"]["first_name"] == "Ada"
    assert ok.json()["user"]["is_verified"] is True
    assert client.get("/api/students/me").status_code == 200

    student_id = uuid.UUID(ok.json()["user"]["id"])
    assert _stored_token(SessionLocal, student_id) is not None

    # The code is single use and the email is now taken.
    assert client.post("/api/students/register/verify", json={"email": "new@example.com", "otp": code}).status_code == 400
    assert client.post("/api/students/register/request-otp", json=payload).status_code == 409


def test_registration_mail_failure_is_reported(monkeypatch):
    app, _ = _app(monkeypatch)
    client = TestClient(app)

    # No BREVO_API_KEY configured.
    r = client.post(
        "/api/students/register/request-otp",
        json={"email": "nomail@example.com", "password": "password123", "first_name": "A", "last_name": "B"},
    )
    assert r.status_code == 502


def test_overlong_passwords_are_rejected_before_hashing(monkeypatch):
    app, SessionLocal = _app(monkeypatch)
    _create(SessionLocal, email="long@example.com")
    client = TestClient(app)

    def register(password):
        return client.post(
            "/api/students/register/request-otp",
            json={"email": "fresh@example.com", "password": password, "first_name": "A", "last_name": "B"},
        )

    assert register("x" * 100).status_code == 422
    # 40 characters but 80 bytes in UTF-8.
    assert register("\u00e9" * 40).status_code == 422

    for password in ("x" * 100, "\u00e9" * 40):
        r = client.post(
            "/api/students/password/reset",
            json={"email": "long@example.com", "otp": "123456", "new_password": password},
        )
        assert r.status_code == 422


def test_password_reset_logs_out_everywhere(monkeypatch):
    app, SessionLocal = _app(monkeypatch)
    student_id = _create(SessionLocal, email="reset@example.com")

    sent: dict[str, str] = {}

    from learnportal.services import mail

    monkeypatch.setattr(mail, "send_password_reset_code", lambda to, code: sent.__setitem__(to, code))

    device = TestClient(app)
    device.post("/api/students/login", json={"email": "reset@example.com", "password": "password123"})
    assert device.get("/api/students/me").status_code == 200

    client = TestClient(app)
    unknown = client.post("/api/students/password/forgot", json={"email": "ghost@example.com"})
    known = client.post("/api/students/password/forgot", json={"email": "reset@example.com"})
    assert unknown.status_code == known.status_code == 200
    assert unknown.json() == known.json()
    assert "ghost@example.com" not in sent
    code = sent["reset@example.com"]

    assert client.post("/api/students/password/verify-otp", json={"email": "reset@example.com", "otp": code}).status_code == 200
    r = client.post(
        "/api/students/password/reset",
        json={"email": "reset@example.com", "otp": code, "new_password": "new-password-456"},
    )
    assert r.status_code == 200
    assert _stored_token(SessionLocal, student_id) is None

    stale = device.get("/api/students/me")
    assert stale.status_code == 401
    assert stale.headers.get("x-session-error") == "session_superseded"

    old = client.post("/api/students/login", json={"email": "reset@example.com", "password": "password123"})
    assert old.status_code == 401
    new = client.post("/api/students/login", json={"email": "reset@example.com", "password": "new-password-456"})
    assert new.status_code == 200


def test_oauth_not_configured(monkeypatch):
    app, _ = _app(monkeypatch)
    r = TestClient(app).post("/api/students/oauth/login", json={"id_token": "x"})
    assert r.status_code == 400
    assert r.json()["detail"] == "OAuth is not configured"


def test_oauth_register_then_login_supersedes(monkeypatch):
    app, SessionLocal = _app(monkeypatch)

    from learnportal.api.deps import get_identity_verifier
    from learnportal.providers.google_identity import OAuthIdentity

    def fake_verifier(id_token: str) -> OAuthIdentity:
        if id_token != "good-token":
            raise ValueError("rejected")
        return OAuthIdentity(provider="google", email="oauth@example.com", email_verified=True, first_name="O", last_name="Auth")

    app.dependency_overrides[get_identity_verifier] = lambda: fake_verifier

    first = TestClient(app)
    unknown = first.post("/api/students/oauth/login", json={"id_token": "good-token"})
    assert unknown.status_code == 404

    reg = first.post("/api/students/oauth/register", json={"id_token": "good-token"})
    assert reg.status_code == 201
    assert reg.json()["user"]["has_password"] is False
    assert first.get("/api/students/me").status_code == 200

    assert first.post("/api/students/oauth/register", json={"id_token": "good-token"}).status_code == 409
    assert first.post("/api/students/oauth/login", json={"id_token": "bad-token"}).status_code == 401

    second = TestClient(app)
    assert second.post("/api/students/oauth/login", json={"id_token": "good-token"}).status_code == 200
    assert first.get("/api/students/me").status_code == 401
    assert second.get("/api/students/me").status_code == 200


def test_staff_login_and_role_separation(monkeypatch):
    app, SessionLocal = _app(monkeypatch)
    _create(SessionLocal, email="admin@example.com", role="admin")
    _create(SessionLocal, email="tutor@example.com", role="tutor")
    _create(SessionLocal, email="stu@example.com")

    admin = TestClient(app)
    r = admin.post("/api/staff/login", json={"email": "admin@example.com", "password": "password123"})
    assert r.status_code == 200
    assert "admin_token=" in (r.headers.get("set-cookie") or "")
    assert r.json()["user"]["role"] == "admin"
    assert admin.get("/api/staff/me").json()["role"] == "admin"

    # A student cannot use the staff login, and a staff credential is not a student session.
    assert TestClient(app).post(
        "/api/staff/login", json={"email": "stu@example.com", "password": "password123"}
    ).status_code == 401
    assert TestClient(app).post(
        "/api/students/login", json={"email": "admin@example.com", "password": "password123"}
    ).status_code == 401
    staff_token = r.json()["token"]
    as_student = TestClient(app).get("/api/students/me", headers={"Authorization": f"Bearer {staff_token}"})
    assert as_student.status_code == 403

    tutor = TestClient(app)
    assert tutor.post("/api/staff/login", json={"email": "tutor@example.com", "password": "password123"}).status_code == 200
    assert tutor.get("/api/staff/me").json()["role"] == "tutor"

    assert admin.post("/api/staff/logout").status_code == 200
    assert admin.get("/api/staff/me").status_code == 401


def test_admin_blocks_student_and_kicks_live_session(monkeypatch):
    app, SessionLocal = _app(monkeypatch)
    _create(SessionLocal, email="boss@example.com", role="admin")
    _create(SessionLocal, email="helper@example.com", role="tutor")
    student_id = _create(SessionLocal, email="kid@example.com")

    student = TestClient(app)
    student.post("/api/students/login", json={"email": "kid@example.com", "password": "password123"})
    assert student.get("/api/students/me").status_code == 200

    tutor = TestClient(app)
    tutor.post("/api/staff/login", json={"email": "helper@example.com", "password": "password123"})
    assert tutor.post(f"/api/staff/students/{student_id}/block").status_code == 403

    admin = TestClient(app)
    admin.post("/api/staff/login", json={"email": "boss@example.com", "password": "password123"})
    r = admin.post(f"/api/staff/students/{student_id}/block")
    assert r.status_code == 200
    assert r.json()["is_blocked"] is True

    assert student.get("/api/students/me").status_code == 401
    relogin = student.post("/api/students/login", json={"email": "kid@example.com", "password": "password123"})
    assert relogin.status_code == 403

    assert admin.post(f"/api/staff/students/{uuid.uuid4()}/block").status_code == 404

    assert admin.post(f"/api/staff/students/{student_id}/unblock").json()["is_blocked"] is False
    assert student.post("/api/students/login", json={"email": "kid@example.com", "password": "password123"}).status_code == 200


def test_settings_rejects_wildcard_allowed_origins(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "sqlite+pysqlite:///:memory:")
    monkeypatch.setenv("JWT_SECRET", "integration-secret-0123456789abcdef0123456789")
    monkeypatch.setenv("ALLOWED_ORIGINS", "*")

    from learnportal.core.settings import get_settings, parse_allowed_origins

    get_settings.cache_clear()
    settings = get_settings()

    with pytest.raises(ValueError):
        parse_allowed_origins(settings)
