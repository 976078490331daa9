from __future__ import annotations

from dataclasses import dataclass

import requests

TOKENINFO_URL = "https://oauth2.googleapis.com/tokeninfo"
_ISSUERS = {"accounts.google.com", "https://accounts.google.com"}


@dataclass(frozen=True)
class OAuthIdentity:
    provider: str
    email: str
    email_verified: bool
    first_name: str = ""
    last_name: str = ""
    picture: str | None = None


def verify_id_token(id_token: str, *, client_id: str) -> OAuthIdentity:
    resp = requests.get(TOKENINFO_URL, params={"id_token": id_token}, timeout=15)
    if resp.status_code != 200:
        raise ValueError("Google rejected the ID token")
    data = resp.json()

    if data.get("aud") != client_id:
        raise ValueError("ID token was issued for another client")
    if data.get("iss") not in _ISSUERS:
        raise ValueError("ID token has an unexpected issuer")

    email = (data.get("email") or "").strip().lower()
    if not email:
        raise ValueError("ID token carries no email")

    return OAuthIdentity(
        provider="google",
        email=email,
        # tokeninfo returns booleans as strings.
        email_verified=str(data.get("email_verified")).lower() == "true",
        first_name=data.get("given_name") or "",
        last_name=data.get("family_name") or "",
        picture=data.get("picture"),
    )
