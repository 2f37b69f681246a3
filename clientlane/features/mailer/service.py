"""
Outbound email seam.

Defines the Mailer protocol the auth and portal flows send through, plus
the default LogMailer which records messages in the structured log instead
of calling a provider. Swap the implementation via ``create_app(mailer=...)``.
"""
import logging
from dataclasses import dataclass, field
from typing import List, Protocol

from fastapi import Request

from clientlane.core.config import settings

logger = logging.getLogger("clientlane")


@dataclass(frozen=True)
class EmailMessage:
    to: str
    subject: str
    html: str
    sender: str = field(default_factory=lambda: settings.EMAIL_FROM)


class Mailer(Protocol):
    """Anything that can deliver an EmailMessage."""

    def send(self, message: EmailMessage) -> None:
        ...


class MailerError(Exception):
    """Delivery failed."""
    pass


class LogMailer:
    """Writes each message to the log; the default when no provider is wired."""

    def send(self, message: EmailMessage) -> None:
        logger.info(
            "[mailer] email queued",
            extra={"to": message.to, "subject": message.subject, "sender": message.sender},
        )


class RecordingMailer:
    """Keeps sent messages in memory; used by tests and local tooling."""

    def __init__(self) -> None:
        self.sent: List[EmailMessage] = []

    def send(self, message: EmailMessage) -> None:
        self.sent.append(message)

    def last_to(self, address: str) -> EmailMessage:
        for message in reversed(self.sent):
            if message.to == address:
                return message
        raise LookupError(f"No email sent to {address}")


def get_mailer(request: Request) -> Mailer:
    """FastAPI dependency returning the mailer configured on the app."""
    return request.app.state.mailer


def deliver(mailer: Mailer, message: EmailMessage) -> bool:
    """
    Send without failing the caller's request.

    Email is sent after the database work has committed, so a delivery
    failure is logged and reported back as False rather than raised.
    """
    try:
        mailer.send(message)
        return True
    except MailerError as e:
        logger.error("[mailer] delivery failed", extra={"to": message.to, "error_message": str(e)})
        return False
