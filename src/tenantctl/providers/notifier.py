"""Notification senders."""
from __future__ import annotations

import smtplib
import threading
from dataclasses import dataclass, field
from email.message import EmailMessage
from typing import Protocol


class NotificationError(RuntimeError):
    """Raised when a notification cannot be delivered."""


class Notifier(Protocol):
    """Anything able to deliver a message to one recipient."""

    def send(self, subject: str, body: str, recipient: str) -> None:
        """Deliver *body* with *subject* to *recipient*."""
        ...


@dataclass(frozen=True, slots=True)
class Notification:
    """A message captured by :class:`RecordingNotifier`."""

    subject: str
    body: str
    recipient: str


@dataclass(slots=True)
class RecordingNotifier:
    """Keep messages in memory instead of delivering them.

    Used when no SMTP host is configured so commands still succeed and the
    operation log shows what would have been sent.
    """

    messages: list[Notification] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def send(self, subject: str, body: str, recipient: str) -> None:
        """Record the message."""
        with self._lock:
            self.messages.append(Notification(subject=subject, body=body, recipient=recipient))


@dataclass(slots=True)
class SmtpNotifier:
    """Deliver notifications through an SMTP relay."""

    host: str
    port: int = 25
    from_address: str = "noreply@localhost"
    username: str = ""
    password: str = ""
    use_tls: bool = False
    timeout: float = 30.0

    def send(self, subject: str, body: str, recipient: str) -> None:
        """Send a plain-text message to *recipient*."""
        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = self.from_address
        message["To"] = recipient
        message.set_content(body)
        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as connection:
                if self.use_tls:
                    connection.starttls()
                if self.username:
                    connection.login(self.username, self.password)
                connection.send_message(message)
        except (OSError, smtplib.SMTPException) as exc:
            raise NotificationError(f"Failed to send '{subject}' to {recipient}: {exc}") from exc


__all__ = ["Notification", "NotificationError", "Notifier", "RecordingNotifier", "SmtpNotifier"]
