"""Outbound notifications emitted by the token request workflow."""

import enum
import logging
import smtplib
from dataclasses import dataclass, field
from email.message import EmailMessage
from typing import Protocol

from coctelera.core.config import Settings

logger = logging.getLogger(__name__)


class EventKind(str, enum.Enum):
    requested = "requested"
    validated = "validated"
    enabled = "enabled"


@dataclass(frozen=True)
class NotificationEvent:
    account_id: str
    email: str
    kind: EventKind
    payload: dict = field(default_factory=dict)


class Notifier(Protocol):
    def send(self, event: NotificationEvent) -> None: ...


class LogNotifier:
    """Records events in the log only. Used when no mail server is configured."""

    def send(self, event: NotificationEvent) -> None:
        logger.info(
            "Notification %s for %s",
            event.kind.value,
            event.email,
            extra={"account_id": event.account_id, "event_kind": event.kind.value},
        )


SUBJECTS = {
    EventKind.requested: "Confirm your API token request",
    EventKind.validated: "New API client awaiting evaluation",
    EventKind.enabled: "Your API access has been enabled",
}


def render_body(event: NotificationEvent) -> str:
    if event.kind == EventKind.requested:
        return (
            "We received a request for an API token for this address.\n\n"
            f"Confirm it by visiting:\n{event.payload.get('confirmation_link', '')}\n\n"
            "If you did not make this request, ignore this message."
        )
    if event.kind == EventKind.validated:
        return (
            f"A new client ({event.account_id}, {event.payload.get('requester', '')}) has confirmed "
            "the request. Proceed to the evaluation of the request."
        )
    if "api_token" not in event.payload:
        return (
            "Your access to the restricted endpoints has been enabled again.\n\n"
            "The tokens you already hold work until their original expiry."
        )
    return (
        "Your access to the restricted endpoints has been enabled.\n\n"
        f"API token: {event.payload.get('api_token', '')}\n"
        f"Valid until: {event.payload.get('valid_until', '')} (UTC)\n\n"
        "Send it in the Authorization header as: Bearer <token>"
    )


class SmtpNotifier:
    """Sends each event as a plain-text email."""

    def __init__(self, host: str, port: int, sender: str, timeout: float = 10.0):
        self.host = host
        self.port = port
        self.sender = sender
        self.timeout = timeout

    def send(self, event: NotificationEvent) -> None:
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = event.email
        message["Subject"] = SUBJECTS[event.kind]
        message.set_content(render_body(event))

        with smtplib.SMTP(host=self.host, port=self.port, timeout=self.timeout) as conn:
            conn.send_message(message)
        logger.info(
            "Email sent",
            extra={"account_id": event.account_id, "event_kind": event.kind.value},
        )


def build_notifier(settings: Settings) -> Notifier:
    if settings.SMTP_HOST:
        return SmtpNotifier(settings.SMTP_HOST, settings.SMTP_PORT, settings.SMTP_SENDER)
    return LogNotifier()
