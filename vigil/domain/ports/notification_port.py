"""
User Notification Port

Architectural Intent:
- Abstract interface for telling a user about their reservation
- Two channels: e-mail and instant message
- Delivery is best-effort; methods return bool and never raise by contract
"""

from typing import Protocol, runtime_checkable


@runtime_checkable
class UserNotificationPort(Protocol):
    """Port for delivering user-facing reservation notices."""

    async def send_email(
        self, address: str, subject: str, body: str, reply_to: str = ""
    ) -> bool:
        """Send an e-mail.

        Args:
            address: Recipient address
            subject: Subject line
            body: Plain-text body
            reply_to: Optional Reply-To address

        Returns:
            True if the message was handed to the mail system
        """
        ...

    async def send_instant_message(self, provider: str, user_id: str, body: str) -> bool:
        """Send an instant message through the user's configured provider."""
        ...
