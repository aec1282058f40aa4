from __future__ import annotations

import io
import smtplib
import unittest
import urllib.error
import urllib.parse
from dataclasses import replace
from functools import partial
from unittest import mock

from notification_delivery.adapters.fake_senders import send_email_via_console
from notification_delivery.adapters.real_senders import (
    build_email_sender,
    send_email_via_mailgun,
    send_email_via_smtp,
)
from notification_delivery.config import EmailSettings

SETTINGS = EmailSettings(
    backend="mailgun",
    from_email="No Reply <no-reply@sandbox.example.com>",
    smtp_host="smtp.example.com",
    smtp_port=587,
    smtp_starttls=True,
    username="mailer",
    password="secret",
    timeout_seconds=5.0,
    mailgun_api_key="key-123",
    mailgun_domain="sandbox.example.com",
    mailgun_api_base_url="https://api.mailgun.net",
)


class MailgunAdapterTests(unittest.TestCase):
    @mock.patch("notification_delivery.adapters.real_senders.urllib.request.urlopen")
    def test_send_email_via_mailgun_posts_html_message(self, urlopen_mock: mock.Mock) -> None:
        response = urlopen_mock.return_value.__enter__.return_value
        response.getcode.return_value = 200
        response.read.return_value = b'{"id":"<msg-id>","message":"Queued"}'

        send_email_via_mailgun(
            settings=SETTINGS,
            to_email="user@example.com",
            subject="Hello",
            body="<p>World</p>",
        )

        self.assertTrue(urlopen_mock.called)
        request_obj = urlopen_mock.call_args.args[0]
        self.assertIn("/v3/sandbox.example.com/messages", request_obj.full_url)
        self.assertTrue((request_obj.get_header("Authorization") or "").startswith("Basic "))
        self.assertEqual(urlopen_mock.call_args.kwargs["timeout"], 5.0)

        payload = urllib.parse.parse_qs((request_obj.data or b"").decode("utf-8"))
        self.assertEqual(payload["to"][0], "user@example.com")
        self.assertEqual(payload["subject"][0], "Hello")
        self.assertEqual(payload["html"][0], "<p>World</p>")
        self.assertIn("no-reply@sandbox.example.com", payload["from"][0])

    @mock.patch("notification_delivery.adapters.real_senders.urllib.request.urlopen")
    def test_caller_deadline_shortens_timeout(self, urlopen_mock: mock.Mock) -> None:
        urlopen_mock.return_value.__enter__.return_value.getcode.return_value = 200

        send_email_via_mailgun(
            settings=SETTINGS, to_email="user@example.com", subject="x", body="y", timeout=1.5
        )

        self.assertEqual(urlopen_mock.call_args.kwargs["timeout"], 1.5)

    def test_send_email_via_mailgun_requires_config(self) -> None:
        with self.assertRaises(RuntimeError):
            send_email_via_mailgun(
                settings=replace(SETTINGS, mailgun_api_key=None),
                to_email="user@example.com",
                subject="x",
                body="y",
            )

    @mock.patch("notification_delivery.adapters.real_senders.urllib.request.urlopen")
    def test_send_email_via_mailgun_surfaces_http_error(self, urlopen_mock: mock.Mock) -> None:
        urlopen_mock.side_effect = urllib.error.HTTPError(
            url="https://api.mailgun.net/v3/sandbox.example.com/messages",
            code=401,
            msg="Unauthorized",
            hdrs=None,
            fp=io.BytesIO(b'{"message":"Forbidden"}'),
        )

        with self.assertRaises(RuntimeError) as exc:
            send_email_via_mailgun(
                settings=SETTINGS, to_email="user@example.com", subject="x", body="y"
            )

        self.assertIn("HTTP 401", str(exc.exception))

    @mock.patch("notification_delivery.adapters.real_senders.urllib.request.urlopen")
    def test_timeout_keeps_timeout_cause(self, urlopen_mock: mock.Mock) -> None:
        urlopen_mock.side_effect = urllib.error.URLError(TimeoutError("timed out"))

        with self.assertRaises(RuntimeError) as exc:
            send_email_via_mailgun(
                settings=SETTINGS, to_email="user@example.com", subject="x", body="y"
            )

        self.assertIn("timed out", str(exc.exception))
        self.assertIsInstance(exc.exception.__cause__, TimeoutError)


class SmtpAdapterTests(unittest.TestCase):
    @mock.patch("notification_delivery.adapters.real_senders.smtplib.SMTP")
    def test_send_email_via_smtp_starttls_login_and_send(self, smtp_mock: mock.Mock) -> None:
        client = smtp_mock.return_value.__enter__.return_value

        send_email_via_smtp(
            settings=SETTINGS,
            to_email="user@example.com",
            subject="Hello",
            body="<p>World</p>",
            timeout=2.0,
        )

        smtp_mock.assert_called_once_with("smtp.example.com", 587, timeout=2.0)
        client.starttls.assert_called_once_with()
        client.login.assert_called_once_with("mailer", "secret")
        message = client.send_message.call_args.args[0]
        self.assertEqual(message["To"], "user@example.com")
        self.assertEqual(message["Subject"], "Hello")
        self.assertEqual(message.get_content_subtype(), "html")

    @mock.patch("notification_delivery.adapters.real_senders.smtplib.SMTP")
    def test_plain_smtp_without_credentials(self, smtp_mock: mock.Mock) -> None:
        client = smtp_mock.return_value.__enter__.return_value

        send_email_via_smtp(
            settings=replace(SETTINGS, smtp_starttls=False, username=""),
            to_email="user@example.com",
            subject="Hello",
            body="World",
        )

        client.starttls.assert_not_called()
        client.login.assert_not_called()
        client.send_message.assert_called_once()

    @mock.patch("notification_delivery.adapters.real_senders.smtplib.SMTP")
    def test_smtp_timeout_keeps_timeout_cause(self, smtp_mock: mock.Mock) -> None:
        smtp_mock.side_effect = TimeoutError("timed out")

        with self.assertRaises(RuntimeError) as exc:
            send_email_via_smtp(
                settings=SETTINGS, to_email="user@example.com", subject="x", body="y"
            )

        self.assertIn("timed out after 5.0s", str(exc.exception))
        self.assertIsInstance(exc.exception.__cause__, TimeoutError)

    @mock.patch("notification_delivery.adapters.real_senders.smtplib.SMTP")
    def test_smtp_refusal_is_runtime_error(self, smtp_mock: mock.Mock) -> None:
        client = smtp_mock.return_value.__enter__.return_value
        client.login.side_effect = smtplib.SMTPAuthenticationError(535, b"bad auth")

        with self.assertRaises(RuntimeError) as exc:
            send_email_via_smtp(
                settings=SETTINGS, to_email="user@example.com", subject="x", body="y"
            )

        self.assertIn("SMTP email send failed", str(exc.exception))


class BuildEmailSenderTests(unittest.TestCase):
    def test_backend_selects_sender(self) -> None:
        smtp_sender = build_email_sender(replace(SETTINGS, backend="smtp"))
        mailgun_sender = build_email_sender(SETTINGS)

        self.assertIsInstance(smtp_sender, partial)
        self.assertIs(smtp_sender.func, send_email_via_smtp)
        self.assertIs(mailgun_sender.func, send_email_via_mailgun)
        self.assertIs(build_email_sender(replace(SETTINGS, backend="console")), send_email_via_console)


if __name__ == "__main__":
    unittest.main()
