"""
accounts/notify.py -- Outbound notification collaborator (email / webhook).

The lifecycle only knows the Notifier protocol: send(address, kind, payload).
Delivery is fire-and-forget -- the core never observes success or failure.

Backends (NOTIFIER_BACKEND):
  log      default; records that a message would be sent. Never logs the
           payload, which carries tokens and codes.
  smtp     smtplib + EmailMessage with STARTTLS and optional login.
  webhook  JSON POST to NOTIFY_WEBHOOK_URL (transactional mail provider,
           chat bot, ...) via requests with a bounded timeout.

build_notifier() wraps the chosen backend in BackgroundNotifier so slow or
failing delivery never holds up, or fails, the request that triggered it.
"""

from __future__ import annotations

import logging
import smtplib
from concurrent.futures import ThreadPoolExecutor
from email.message import EmailMessage
from enum import Enum
from typing import Protocol

import requests

from core.config import Settings

logger = logging.getLogger("workbridge.notify")

_SEND_TIMEOUT = 10  # seconds


class NotificationKind(str, Enum):
    verification = "verification"
    welcome = "welcome"
    otp = "otp"
    account_cancelled = "account_cancelled"


class Notifier(Protocol):
    def send(self, address: str, kind: NotificationKind, payload: dict) -> None: ...


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------

_SUBJECTS: dict[NotificationKind, str] = {
    NotificationKind.verification: "Please confirm your email address",
    NotificationKind.welcome: "Welcome to WorkBridge",
    NotificationKind.otp: "Your password reset code",
    NotificationKind.account_cancelled: "Your WorkBridge account has been deleted",
}


def render(kind: NotificationKind, payload: dict) -> tuple[str, str]:
    """Return (subject, plain-text body) for a notification."""
    name = payload.get("name") or "there"
    if kind is NotificationKind.verification:
        body = f"Hello {name},\n\nPlease confirm your email address by opening this link:\n\n{payload['link']}\n"
    elif kind is NotificationKind.welcome:
        body = f"Welcome to WorkBridge, {name}. Let us know how you get along with the app."
    elif kind is NotificationKind.otp:
        body = (
            f"Your password reset code is {payload['code']}.\n\n"
            f"It expires in {payload.get('ttl_minutes', 5)} minutes. "
            "If you did not ask for it, you can ignore this email."
        )
    else:
        body = f"Goodbye, {name}. We hope to see you back sometime soon."
    return _SUBJECTS[kind], body


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------


class LogNotifier:
    def send(self, address: str, kind: NotificationKind, payload: dict) -> None:
        logger.info("Notification %s queued for %s (log backend, not delivered)", kind.value, address)


class SmtpNotifier:
    def __init__(self, host: str, port: int, sender: str, user: str = "", password: str = "") -> None:
        self._host = host
        self._port = port
        self._sender = sender
        self._user = user
        self._password = password

    def send(self, address: str, kind: NotificationKind, payload: dict) -> None:
        subject, body = render(kind, payload)
        msg = EmailMessage()
        msg["From"] = self._sender
        msg["To"] = address
        msg["Subject"] = subject
        msg.set_content(body)

        with smtplib.SMTP(self._host, self._port, timeout=_SEND_TIMEOUT) as s:
            s.starttls()
            if self._user and self._password:
                s.login(self._user, self._password)
            s.send_message(msg)


class WebhookNotifier:
    def __init__(self, url: str, bearer: str = "") -> None:
        self._url = url
        self._bearer = bearer

    def send(self, address: str, kind: NotificationKind, payload: dict) -> None:
        subject, body = render(kind, payload)
        headers = {"Content-Type": "application/json"}
        if self._bearer:
            headers["Authorization"] = f"Bearer {self._bearer}"
        resp = requests.post(
            self._url,
            json={"to": address, "kind": kind.value, "subject": subject, "body": body},
            headers=headers,
            timeout=_SEND_TIMEOUT,
        )
        resp.raise_for_status()


class BackgroundNotifier:
    """Run another notifier on a small thread pool and log (never raise) its failures."""

    def __init__(self, inner: Notifier, max_workers: int = 2) -> None:
        self._inner = inner
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="notify")

    def send(self, address: str, kind: NotificationKind, payload: dict) -> None:
        self._pool.submit(self._deliver, address, kind, payload)

    def _deliver(self, address: str, kind: NotificationKind, payload: dict) -> None:
        try:
            self._inner.send(address, kind, payload)
        except Exception:
            logger.exception("Delivery of %s notification to %s failed", kind.value, address)

    def close(self) -> None:
        self._pool.shutdown(wait=True)


def build_notifier(settings: Settings) -> BackgroundNotifier:
    """Select the backend from settings. Missing backend config falls back to logging."""
    backend: Notifier
    if settings.notifier_backend == "smtp" and settings.smtp_host and settings.smtp_from:
        backend = SmtpNotifier(
            settings.smtp_host,
            settings.smtp_port,
            settings.smtp_from,
            settings.smtp_user,
            settings.smtp_password,
        )
    elif settings.notifier_backend == "webhook" and settings.notify_webhook_url:
        backend = WebhookNotifier(settings.notify_webhook_url, settings.notify_webhook_token)
    else:
        if settings.notifier_backend != "log":
            logger.warning("Notifier backend %r is not fully configured; using log backend", settings.notifier_backend)
        backend = LogNotifier()
    return BackgroundNotifier(backend)
