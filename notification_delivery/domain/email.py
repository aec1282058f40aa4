"""Email channel variant.

Mental model refresher:
- Domain modules hold channel/business rules.
- They decide what should happen for this channel:
  - is required data present?
  - what subject/body should be sent?
- They do not know which provider is underneath (SMTP, Mailgun, console);
  that is the injected `send_email` function.
"""

from __future__ import annotations

from dataclasses import dataclass
from string import Template

from ..errors import ChannelDeliveryError, ValidationError
from ..types import SendEmailFn
from .models import NotificationKind, NotificationRequest

EMAIL_TYPE_REGISTER = "REGISTER"
EMAIL_TYPE_FORGET_PASSWORD = "FORGET_PASSWORD"
EMAIL_TYPE_RESET_PASSWORD = "RESET_PASSWORD"


@dataclass(frozen=True)
class EmailTemplate:
    subject: str
    body: str
    required_fields: tuple[str, ...]


EMAIL_TEMPLATES: dict[str, EmailTemplate] = {
    EMAIL_TYPE_REGISTER: EmailTemplate(
        subject="Welcome to Our Service - Complete Registration",
        body=(
            "<p>Hi ${name},</p>\n"
            "<p>Use the code <strong>${otp}</strong> to complete your registration.</p>"
        ),
        required_fields=("name", "otp"),
    ),
    EMAIL_TYPE_FORGET_PASSWORD: EmailTemplate(
        subject="Password Reset Request",
        body=(
            "<p>Hi ${name},</p>\n"
            "<p>Use the code <strong>${otp}</strong> to reset your password. "
            "If you did not ask for this, ignore this email.</p>"
        ),
        required_fields=("name", "otp"),
    ),
    EMAIL_TYPE_RESET_PASSWORD: EmailTemplate(
        subject="Your Password Has Been Reset",
        body=(
            "<p>Hi ${name},</p>\n"
            "<p>Your password was changed. Contact support if this was not you.</p>"
        ),
        required_fields=("name",),
    ),
}


def render_email(request: NotificationRequest) -> tuple[str, str]:
    """Return `(subject, body)` for an email request.

    Raw subject/body win over templates so callers can send one-off messages.
    """
    if request.subject and request.body:
        return request.subject, request.body

    template = _template_for(request)
    missing = [name for name in template.required_fields if not request.data.get(name)]
    if missing:
        raise ValidationError(
            f"missing template data for {request.template}",
            {name: "required" for name in missing},
        )
    body = Template(template.body).safe_substitute(dict(request.data))
    return template.subject, body


class EmailChannel:
    kind = NotificationKind.EMAIL

    def __init__(self, send_email: SendEmailFn) -> None:
        self._send_email = send_email

    def validate(self, request: NotificationRequest) -> None:
        if "@" not in request.recipient:
            raise ValidationError("invalid email request", {"to": "must be an email address"})
        render_email(request)

    def send(self, request: NotificationRequest, *, timeout: float | None = None) -> None:
        subject, body = render_email(request)
        try:
            self._send_email(
                to_email=request.recipient,
                subject=subject,
                body=body,
                timeout=timeout,
            )
        except Exception as exc:
            raise ChannelDeliveryError(self.kind.value, str(exc)) from exc


def _template_for(request: NotificationRequest) -> EmailTemplate:
    key = (request.template or "").strip().upper()
    template = EMAIL_TEMPLATES.get(key)
    if template is None:
        raise ValidationError(
            "unknown email type",
            {"email_type": "must be one of: " + ", ".join(sorted(EMAIL_TEMPLATES))},
        )
    return template
