from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_env: str = "dev"
    web_base_url: str = "http://localhost:3000"
    admin_base_url: str = "http://localhost:3001"
    allowed_origins: str = ""
    allowed_hosts: str = ""

    cookie_secure: bool = False
    # Only honour X-Forwarded-For when a reverse proxy sets it.
    trust_forwarded_for: bool = False

    database_url: str

    jwt_secret: str
    jwt_algorithm: str = "HS256"
    session_ttl_days: int = 7

    otp_ttl_seconds: int = 600
    otp_max_entries: int = 10000

    bcrypt_rounds: int = 12

    log_level: str = "INFO"

    google_client_id: str = ""

    brevo_api_key: str = ""
    mail_sender_name: str = "Codiin"
    mail_sender_email: str = "no-reply@codiin.local"


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]


def parse_allowed_origins(settings: Settings) -> list[str]:
    if settings.allowed_origins.strip():
        origins = [o.strip() for o in settings.allowed_origins.split(",") if o.strip()]
        # Cookies are sent cross-origin, so a wildcard would be rejected by browsers anyway.
        if "*" in origins:
            raise ValueError("ALLOWED_ORIGINS must list explicit origins when credentials are allowed")
        return origins
    # Student portal and admin portal in local dev.
    return list(dict.fromkeys([settings.web_base_url, settings.admin_base_url]))


def parse_allowed_hosts(settings: Settings) -> list[str]:
    if settings.allowed_hosts.strip():
        return [h.strip() for h in settings.allowed_hosts.split(",") if h.strip()]
    # Default for local dev + tests.
    return ["localhost", "127.0.0.1", "testserver"]
