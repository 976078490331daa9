from __future__ import annotations

import requests

SEND_URL = "https://api.brevo.com/v3/smtp/email"


class MailError(RuntimeError):
    pass


def send_email(
    *,
    api_key: str,
    sender_name: str,
    sender_email: str,
    to_email: str,
    subject: str,
    html: str,
) -> str:
    if not api_key:
        raise MailError("Email service not configured")

    try:
        resp = requests.post(
            SEND_URL,
            headers={"api-key": api_key, "Accept": "application/json"},
            json={
                "sender": {"name": sender_name, "email": sender_email},
                "to": [{"email": to_email}],
                "subject": subject,
                "htmlContent": html,
            },
            timeout=15,
        )
        resp.raise_for_status()
    except requests.RequestException as e:
        raise MailError("Email delivery failed") from e

    data = resp.json() if resp.content else {}
    return str(data.get("messageId") or "")
