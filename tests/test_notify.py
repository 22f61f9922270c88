"""
tests/test_notify.py -- Unit tests for accounts/notify.py.

No real network traffic: requests.post and smtplib.SMTP are patched.

Covers:
  - render() subjects and bodies per kind
  - WebhookNotifier payload, bearer header, HTTP errors raise
  - SmtpNotifier builds and sends one message over STARTTLS
  - BackgroundNotifier logs delivery failures instead of raising
  - build_notifier() backend selection and log fallback
"""

from __future__ import annotations

import logging
from unittest.mock import MagicMock, patch

import pytest
import requests

from accounts.notify import (
    BackgroundNotifier,
    LogNotifier,
    NotificationKind,
    SmtpNotifier,
    WebhookNotifier,
    build_notifier,
    render,
)
from core.config import Settings

KEY = "notify-test-secret-key-at-least-32-chars"


def test_render_otp_contains_code_and_ttl() -> None:
    subject, body = render(NotificationKind.otp, {"code": "012345", "ttl_minutes": 5})
    assert subject == "Your password reset code"
    assert "012345" in body
    assert "5 minutes" in body


def test_render_verification_contains_link() -> None:
    _, body = render(NotificationKind.verification, {"name": "Ann", "link": "http://h/confirm/t"})
    assert "http://h/confirm/t" in body
    assert "Ann" in body


def test_log_notifier_never_logs_payload(caplog) -> None:
    with caplog.at_level(logging.INFO, logger="workbridge.notify"):
        LogNotifier().send("a@x.com", NotificationKind.otp, {"code": "987654"})
    assert "a@x.com" in caplog.text
    assert "987654" not in caplog.text


class TestWebhook:
    def test_posts_json_with_bearer(self) -> None:
        with patch("accounts.notify.requests.post") as post:
            post.return_value = MagicMock(status_code=200)
            WebhookNotifier("https://hooks.example.com/mail", bearer="tkn").send(
                "a@x.com", NotificationKind.welcome, {"name": "Ann"}
            )
        _, kwargs = post.call_args
        assert post.call_args.args[0] == "https://hooks.example.com/mail"
        assert kwargs["json"]["to"] == "a@x.com"
        assert kwargs["json"]["kind"] == "welcome"
        assert kwargs["headers"]["Authorization"] == "Bearer tkn"
        assert kwargs["timeout"] > 0

    def test_http_error_raises(self) -> None:
        response = MagicMock()
        response.raise_for_status.side_effect = requests.HTTPError("502")
        with patch("accounts.notify.requests.post", return_value=response):
            with pytest.raises(requests.HTTPError):
                WebhookNotifier("https://hooks.example.com/mail").send("a@x.com", NotificationKind.welcome, {})


def test_smtp_sends_one_message() -> None:
    with patch("accounts.notify.smtplib.SMTP") as smtp_cls:
        server = smtp_cls.return_value.__enter__.return_value
        SmtpNotifier("mail.example.com", 587, "noreply@example.com", "user", "pw").send(
            "a@x.com", NotificationKind.otp, {"code": "123456"}
        )
    server.starttls.assert_called_once()
    server.login.assert_called_once_with("user", "pw")
    msg = server.send_message.call_args.args[0]
    assert msg["To"] == "a@x.com"
    assert msg["From"] == "noreply@example.com"
    assert "123456" in msg.get_content()


def test_background_notifier_swallows_and_logs(caplog) -> None:
    class Broken:
        def send(self, address, kind, payload):
            raise ConnectionError("down")

    background = BackgroundNotifier(Broken())
    with caplog.at_level(logging.ERROR, logger="workbridge.notify"):
        background.send("a@x.com", NotificationKind.welcome, {})
        background.close()
    assert "Delivery of welcome notification" in caplog.text


def test_background_notifier_delivers() -> None:
    inner = MagicMock()
    background = BackgroundNotifier(inner)
    background.send("a@x.com", NotificationKind.welcome, {"name": "Ann"})
    background.close()
    inner.send.assert_called_once_with("a@x.com", NotificationKind.welcome, {"name": "Ann"})


class TestBuildNotifier:
    def test_default_is_log(self) -> None:
        notifier = build_notifier(Settings(secret_key=KEY))
        assert isinstance(notifier._inner, LogNotifier)
        notifier.close()

    def test_webhook(self) -> None:
        notifier = build_notifier(
            Settings(secret_key=KEY, notifier_backend="webhook", notify_webhook_url="https://h.example.com")
        )
        assert isinstance(notifier._inner, WebhookNotifier)
        notifier.close()

    def test_smtp_without_host_falls_back(self) -> None:
        notifier = build_notifier(Settings(secret_key=KEY, notifier_backend="smtp"))
        assert isinstance(notifier._inner, LogNotifier)
        notifier.close()
