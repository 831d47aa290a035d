"""
Email Notification Adapter

Architectural Intent:
- Delivers user notices by e-mail
- Uses stdlib smtplib for the mail layer (no external dependencies)
- Blocking SMTP calls run on the default thread pool

Design Decisions:
- Without an SMTP host the adapter runs in stub mode: messages are kept in
  an in-memory store and logged, never sent
- Message IDs are generated for every message so stub deliveries can be inspected
"""

import asyncio
import logging
import smtplib
import uuid
from email.message import EmailMessage
from typing import Optional

logger = logging.getLogger(__name__)


class EmailAdapter:
    """E-mail adapter; stub mode when no SMTP host is configured."""

    def __init__(
        self,
        smtp_host: str = "",
        smtp_port: int = 587,
        sender: str = "",
        timeout_seconds: float = 30.0,
    ) -> None:
        """Initialize email adapter.

        Args:
            smtp_host: SMTP server hostname; empty selects stub mode
            smtp_port: SMTP server port (default 587 for TLS)
            sender: From address
            timeout_seconds: SMTP connection timeout
        """
        self._smtp_host = smtp_host
        self._smtp_port = smtp_port
        self._sender = sender or "vigil@localhost"
        self._timeout_seconds = timeout_seconds
        self._messages: dict[str, dict] = {}

    @property
    def stub_mode(self) -> bool:
        return not self._smtp_host

    def _build_message(
        self, address: str, subject: str, body: str, reply_to: str
    ) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self._sender
        message["To"] = address
        message["Subject"] = subject
        if reply_to:
            message["Reply-To"] = reply_to
        message.set_content(body)
        return message

    def _deliver(self, message: EmailMessage) -> None:
        with smtplib.SMTP(self._smtp_host, self._smtp_port, timeout=self._timeout_seconds) as smtp:
            if self._smtp_port == 587:
                smtp.starttls()
            smtp.send_message(message)

    async def send_email(
        self, address: str, subject: str, body: str, reply_to: str = ""
    ) -> bool:
        """Send an e-mail.

        Returns:
            True if the message was handed to the SMTP server (or stored in stub mode)
        """
        if not address:
            logger.warning("Not sending %r: no recipient address", subject)
            return False

        message_id = f"EMAIL-{uuid.uuid4().hex[:8].upper()}"
        self._messages[message_id] = {
            "message_id": message_id,
            "to": address,
            "subject": subject,
            "body": body,
            "reply_to": reply_to,
        }

        if self.stub_mode:
            logger.info("Email send_email (stub): %s - %s [to=%s]", message_id, subject, address)
            return True

        message = self._build_message(address, subject, body, reply_to)
        try:
            loop = asyncio.get_event_loop()
            await loop.run_in_executor(None, lambda: self._deliver(message))
        except (smtplib.SMTPException, OSError) as e:
            logger.warning("Failed to send %s to %s: %s", message_id, address, e)
            return False

        logger.info("Sent %s - %s to %s", message_id, subject, address)
        return True

    def get_message(self, message_id: str) -> Optional[dict]:
        """Retrieve a sent message by ID (for testing)."""
        return self._messages.get(message_id)

    @property
    def messages(self) -> list[dict]:
        return list(self._messages.values())
