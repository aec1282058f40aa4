"""Fake sender adapters for local smoke tests.

Mental model refresher:
- This is outbound adapter code.
- In production, this is where provider SDK/API calls live (SMTP, Mailgun).
- Channels call these through injected functions; they do not know which
  provider implementation is underneath.
"""

from __future__ import annotations

from typing import Mapping


def send_email_via_console(
    *, to_email: str, subject: str, body: str, timeout: float | None = None
) -> None:
    _ = timeout
    print("[EMAIL]")
    print(f"to={to_email}")
    print(f"subject={subject}")
    print(f"body={body}")


def send_push_via_console(
    *,
    device_token: str,
    title: str,
    body: str,
    data: Mapping[str, str] | None = None,
    timeout: float | None = None,
) -> None:
    _ = timeout
    print("[PUSH]")
    print(f"to={device_token}")
    print(f"title={title}")
    print(f"body={body}")
    print(f"data={dict(data or {})}")
