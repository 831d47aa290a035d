"""
User Notifier

Architectural Intent:
- Implements UserNotificationPort by routing each channel to its adapter
"""

from vigil.infrastructure.adapters.email_adapter import EmailAdapter
from vigil.infrastructure.adapters.im_adapter import InstantMessageAdapter


class UserNotifier:
    def __init__(self, email: EmailAdapter, instant_messages: InstantMessageAdapter):
        self.email = email
        self.instant_messages = instant_messages

    async def send_email(
        self, address: str, subject: str, body: str, reply_to: str = ""
    ) -> bool:
        return await self.email.send_email(address, subject, body, reply_to)

    async def send_instant_message(self, provider: str, user_id: str, body: str) -> bool:
        return await self.instant_messages.send_instant_message(provider, user_id, body)
