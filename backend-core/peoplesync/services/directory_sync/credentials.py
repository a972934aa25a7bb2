"""Out-of-band delivery of temporary credentials for newly created accounts."""

from __future__ import annotations

import asyncio
import logging
import smtplib
from email.message import EmailMessage
from typing import Optional, Protocol

logger = logging.getLogger(__name__)

CREDENTIAL_SUBJECT = "Your Mattermost Account"

CREDENTIAL_TEMPLATE = """Hello,

An account has been created for you on Mattermost. Here are your login details:

Site: {site_url}
Username: {username}
Password: {password}

Please log in and change your password at your earliest convenience.

This is an automated message."""


class CredentialNotifier(Protocol):
    async def deliver(self, recipient: str, username: str, password: str) -> None:
        """Send credentials to ``recipient``; raise on failure."""
        ...


def render_credential_message(site_url: Optional[str], username: str, password: str) -> str:
    return CREDENTIAL_TEMPLATE.format(site_url=site_url or "(not configured)", username=username, password=password)


class EmailCredentialNotifier:
    """Mails credentials to the employee's company address over SMTP.

    ``smtplib`` is blocking, so each send runs in a worker thread.
    """

    def __init__(
        self,
        host: str,
        port: int,
        sender: str,
        *,
        site_url: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        starttls: bool = True,
        timeout_s: float = 30.0,
    ) -> None:
        self.host = host
        self.port = port
        self.sender = sender
        self.site_url = site_url
        self.username = username
        self.password = password
        self.starttls = starttls
        self.timeout_s = timeout_s

    def build_message(self, recipient: str, username: str, password: str) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = CREDENTIAL_SUBJECT
        msg["From"] = self.sender
        msg["To"] = recipient
        msg.set_content(render_credential_message(self.site_url, username, password))
        return msg

    def _send(self, msg: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout_s) as server:
            if self.starttls:
                server.starttls()
            if self.username:
                server.login(self.username, self.password or "")
            server.send_message(msg)

    async def deliver(self, recipient: str, username: str, password: str) -> None:
        await asyncio.to_thread(self._send, self.build_message(recipient, username, password))
        logger.info("Credential email sent to %s", recipient)
