"""
Helpdesk Mail Transports

Render a template key + params into a plain-text e-mail and deliver it.
LoggingTransport is the default; SmtpTransport is used when SMTP is
configured.
"""

import asyncio
import logging
import smtplib
from email.message import EmailMessage
from typing import Any, Dict, Optional, Protocol, Tuple

logger = logging.getLogger(__name__)


class NotificationTransport(Protocol):

    async def send(self, recipient: str, template_key: str, params: Dict[str, Any]) -> None:
        ...


# =============================================================================
# TEMPLATES
# =============================================================================

TEMPLATES: Dict[str, Tuple[str, str]] = {
    "closed": (
        "IT Helpdesk - {kind} {status} [#{number}]",
        "Your {kind_lower} #{number} \"{title}\" has been {status_lower}.\n\n"
        "Resolution:\n{resolution}\n",
    ),
    "in_progress": (
        "IT Helpdesk - {kind} In Progress [#{number}]",
        "Your {kind_lower} #{number} \"{title}\" is now being worked on "
        "by {assigned_staff_name}.\n",
    ),
    "assigned": (
        "IT Helpdesk - {kind} Assigned to You [#{number}]",
        "Hello {assignee_name},\n\n"
        "{kind} #{number} \"{title}\" has been assigned to you.\n",
    ),
}


class _Blank(dict):

    def __missing__(self, key):
        return ""


def render(
    template_key: str,
    params: Dict[str, Any],
    portal_url: Optional[str] = None
) -> Tuple[str, str]:
    """Subject and body for a template; unknown keys raise KeyError."""
    subject, body = TEMPLATES[template_key]
    values = _Blank(params)
    values["kind_lower"] = str(params.get("kind", "")).lower()
    values["status_lower"] = str(params.get("status", "")).lower()
    subject = subject.format_map(values)
    body = body.format_map(values)
    if portal_url:
        body += f"\nView it in the portal: {portal_url.rstrip('/')}\n"
    body += "\n-- \nIT Helpdesk\n"
    return subject, body


# =============================================================================
# TRANSPORTS
# =============================================================================

class LoggingTransport:
    """Logs what would have been sent."""

    def __init__(self, portal_url: Optional[str] = None):
        self.portal_url = portal_url

    async def send(self, recipient: str, template_key: str, params: Dict[str, Any]) -> None:
        subject, _ = render(template_key, params, self.portal_url)
        logger.info("E-mail to %s (not sent, SMTP disabled): %s", recipient, subject)


class SmtpTransport:
    """
    Plain SMTP delivery.

    smtplib blocks, so each message is sent from a worker thread.
    """

    def __init__(
        self,
        host: str,
        port: int = 25,
        sender: str = "helpdesk@localhost",
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_tls: bool = False,
        timeout: float = 30.0,
        portal_url: Optional[str] = None
    ):
        self.host = host
        self.port = port
        self.sender = sender
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout
        self.portal_url = portal_url

    def build_message(
        self, recipient: str, template_key: str, params: Dict[str, Any]
    ) -> EmailMessage:
        subject, body = render(template_key, params, self.portal_url)
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = recipient
        message["Subject"] = subject
        message.set_content(body)
        return message

    async def send(self, recipient: str, template_key: str, params: Dict[str, Any]) -> None:
        message = self.build_message(recipient, template_key, params)
        await asyncio.to_thread(self._send_message, message)

    def _send_message(self, message: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            if self.use_tls:
                smtp.starttls()
            if self.username and self.password:
                smtp.login(self.username, self.password)
            smtp.send_message(message)
