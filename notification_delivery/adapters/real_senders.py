"""Real provider adapters for production-like sending.

Mental model refresher:
- This module is an outbound adapter.
- It integrates with external providers using injected `EmailSettings`.
- Channels only see a simple callable sender; `build_email_sender` picks the
  provider from `EMAIL_BACKEND`.
- Every failure surfaces as `RuntimeError`; the email channel turns that into
  a `ChannelDeliveryError`. Timeouts keep their `TimeoutError` cause so the
  front door can report DEADLINE_EXCEEDED.
"""

from __future__ import annotations

import base64
import smtplib
import urllib.error
import urllib.parse
import urllib.request
from email.message import EmailMessage
from functools import partial

from ..config import EmailSettings
from ..types import SendEmailFn
from .fake_senders import send_email_via_console


def build_email_sender(settings: EmailSettings) -> SendEmailFn:
    if settings.backend == "smtp":
        return partial(send_email_via_smtp, settings=settings)
    if settings.backend == "mailgun":
        return partial(send_email_via_mailgun, settings=settings)
    return send_email_via_console


def send_email_via_smtp(
    *,
    settings: EmailSettings,
    to_email: str,
    subject: str,
    body: str,
    timeout: float | None = None,
) -> None:
    """Send one HTML email over SMTP (STARTTLS + login when configured)."""
    message = EmailMessage()
    message["From"] = settings.from_email or settings.username
    message["To"] = to_email
    message["Subject"] = subject
    message.set_content(body, subtype="html", charset="utf-8")

    timeout_seconds = _effective_timeout(timeout, settings.timeout_seconds)
    try:
        with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=timeout_seconds) as client:
            if settings.smtp_starttls:
                client.starttls()
            if settings.username:
                client.login(settings.username, settings.password)
            client.send_message(message)
    except TimeoutError as exc:
        raise RuntimeError(f"SMTP email send timed out after {timeout_seconds}s") from exc
    except (smtplib.SMTPException, OSError) as exc:
        raise RuntimeError(f"SMTP email send failed: {exc}") from exc


def send_email_via_mailgun(
    *,
    settings: EmailSettings,
    to_email: str,
    subject: str,
    body: str,
    timeout: float | None = None,
) -> None:
    """Send email via Mailgun REST API."""
    if not settings.mailgun_api_key or not settings.mailgun_domain:
        raise RuntimeError("Mailgun backend requires MAILGUN_API_KEY and MAILGUN_DOMAIN")
    base_url = settings.mailgun_api_base_url.rstrip("/")
    timeout_seconds = _effective_timeout(timeout, settings.timeout_seconds)

    encoded_domain = urllib.parse.quote(settings.mailgun_domain, safe="")
    endpoint = f"{base_url}/v3/{encoded_domain}/messages"
    payload = urllib.parse.urlencode(
        {"from": settings.from_email, "to": to_email, "subject": subject, "html": body}
    ).encode("utf-8")

    request = urllib.request.Request(endpoint, data=payload, method="POST")
    request.add_header("Authorization", _basic_auth_header("api", settings.mailgun_api_key))
    request.add_header("Content-Type", "application/x-www-form-urlencoded")

    try:
        with urllib.request.urlopen(request, timeout=timeout_seconds) as response:
            status = int(response.getcode())
            if status < 200 or status >= 300:
                raise RuntimeError(f"Mailgun email send failed with status {status}")
            response.read()
    except urllib.error.HTTPError as exc:
        details = exc.read().decode("utf-8", errors="replace")
        raise RuntimeError(
            f"Mailgun email send failed HTTP {exc.code}: {details[:300]}"
        ) from exc
    except urllib.error.URLError as exc:
        if isinstance(exc.reason, TimeoutError):
            raise RuntimeError(f"Mailgun email send timed out after {timeout_seconds}s") from exc.reason
        raise RuntimeError(f"Mailgun email send failed: {exc.reason}") from exc
    except TimeoutError as exc:
        raise RuntimeError(f"Mailgun email send timed out after {timeout_seconds}s") from exc


def _effective_timeout(deadline: float | None, configured: float) -> float:
    if deadline is None:
        return configured
    return max(0.001, min(deadline, configured))


def _basic_auth_header(username: str, password: str) -> str:
    token = f"{username}:{password}".encode("utf-8")
    encoded = base64.b64encode(token).decode("ascii")
    return f"Basic {encoded}"
