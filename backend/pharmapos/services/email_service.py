# Overview: Outbound e-mail through the SendGrid v3 HTTP API.

"""
E-mail dispatch for OTP codes.

Configuration (see Config):
- SENDGRID_API_KEY / SENDGRID_FROM_EMAIL: both required to send
- SENDGRID_API_URL: override for tests or a relay
- EMAIL_TIMEOUT_SECONDS: request timeout

When e-mail is not configured, send_* returns False and nothing is sent.
Transport or API failures raise EmailDispatchError; they are not retried.
"""

from __future__ import annotations

import requests
from flask import current_app
from markupsafe import escape


class EmailDispatchError(Exception):
    """The e-mail provider rejected the message or could not be reached."""


def is_configured() -> bool:
    cfg = current_app.config
    return bool(cfg.get("SENDGRID_API_KEY") and cfg.get("SENDGRID_FROM_EMAIL"))


def send_email(*, to_email: str, subject: str, text: str, html: str | None = None) -> bool:
    """
    Send a single message. Returns True when accepted by the provider,
    False when e-mail is not configured.
    """
    if not is_configured():
        return False

    cfg = current_app.config
    content = [{"type": "text/plain", "value": text}]
    if html:
        content.append({"type": "text/html", "value": html})

    payload = {
        "personalizations": [{"to": [{"email": to_email}]}],
        "from": {"email": cfg["SENDGRID_FROM_EMAIL"], "name": cfg.get("PHARMACY_NAME") or None},
        "subject": subject,
        "content": content,
    }

    try:
        resp = requests.post(
            cfg["SENDGRID_API_URL"],
            headers={
                "Authorization": f"Bearer {cfg['SENDGRID_API_KEY']}",
                "Content-Type": "application/json",
            },
            json=payload,
            timeout=cfg.get("EMAIL_TIMEOUT_SECONDS", 20),
        )
        resp.raise_for_status()
    except requests.RequestException as exc:
        current_app.logger.warning("E-mail dispatch to %s failed: %s", to_email, exc)
        raise EmailDispatchError("Failed to send verification email. Please try again.") from exc

    return True


def send_otp_email(*, to_email: str, recipient_name: str, code: str, ttl_minutes: int) -> bool:
    pharmacy = current_app.config.get("PHARMACY_NAME") or "Pharmacy"
    subject = f"{pharmacy} - Your verification code"
    text = (
        f"Hello {recipient_name},\n\n"
        f"Your verification code is: {code}\n\n"
        f"This code expires in {ttl_minutes} minutes. "
        "If you did not try to sign in, you can ignore this e-mail.\n\n"
        f"{pharmacy}"
    )
    html = (
        f"<p>Hello {escape(recipient_name)},</p>"
        f"<p>Your verification code is:</p>"
        f"<p style=\"font-size:28px;letter-spacing:6px;font-weight:bold\">{code}</p>"
        f"<p>This code expires in {ttl_minutes} minutes. "
        "If you did not try to sign in, you can ignore this e-mail.</p>"
        f"<p>{escape(pharmacy)}</p>"
    )
    return send_email(to_email=to_email, subject=subject, text=text, html=html)
