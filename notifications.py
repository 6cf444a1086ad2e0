import logging
import smtplib
from email.message import EmailMessage
from typing import Protocol

from config import get_settings

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def send(self, to: str, subject: str, body: str) -> None: ...


class LogNotifier:
    """Used when no SMTP host is configured; records what would be sent."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []

    def send(self, to: str, subject: str, body: str) -> None:
        self.sent.append((to, subject, body))
        logger.info(f"email_logged: to={to} subject={subject!r}")


class SMTPNotifier:
    def __init__(self, host: str, port: int, sender: str) -> None:
        self.host = host
        self.port = port
        self.sender = sender

    def send(self, to: str, subject: str, body: str) -> None:
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = to
        message["Subject"] = subject
        message.set_content(body)
        with smtplib.SMTP(self.host, self.port, timeout=10) as smtp:
            smtp.send_message(message)
        logger.info(f"email_sent: to={to} subject={subject!r}")


def get_notifier() -> Notifier:
    settings = get_settings()
    if settings.smtp_host:
        return SMTPNotifier(settings.smtp_host, settings.smtp_port, settings.smtp_sender)
    return LogNotifier()


def reset_password_message(username: str, link: str, ttl_minutes: int) -> str:
    return (
        f"Hello {username},\n\n"
        "We received a request to reset your Personal Finance Tracker password.\n"
        f"Open the link below to choose a new one:\n\n{link}\n\n"
        f"The link expires in {ttl_minutes} minutes. If you did not request "
        "this, you can ignore this email.\n"
    )
