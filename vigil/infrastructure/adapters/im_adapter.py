"""
Instant Message Adapter

Architectural Intent:
- Delivers user notices through an instant-message gateway webhook
- Uses httpx.AsyncClient for the HTTP layer

Design Decisions:
- The webhook receives JSON {provider, user_id, text}; the gateway owns the
  per-provider delivery
- Without a webhook URL the adapter runs in stub mode and only records messages
"""

import logging
import uuid
from typing import Optional

import httpx

logger = logging.getLogger(__name__)


class InstantMessageAdapter:
    """Instant message adapter; stub mode when no webhook is configured."""

    def __init__(
        self,
        webhook_url: str = "",
        timeout_seconds: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._webhook_url = webhook_url
        self._timeout_seconds = timeout_seconds
        self._transport = transport
        self._messages: dict[str, dict] = {}

    @property
    def stub_mode(self) -> bool:
        return not self._webhook_url

    async def send_instant_message(self, provider: str, user_id: str, body: str) -> bool:
        if not user_id:
            logger.warning("Not sending %s message: no user id", provider)
            return False

        message_id = f"IM-{uuid.uuid4().hex[:8].upper()}"
        payload = {"provider": provider, "user_id": user_id, "text": body}
        self._messages[message_id] = {"message_id": message_id, **payload}

        if self.stub_mode:
            logger.info(
                "IM send_instant_message (stub): %s [provider=%s, user=%s]",
                message_id, provider, user_id,
            )
            return True

        try:
            async with httpx.AsyncClient(
                timeout=self._timeout_seconds, transport=self._transport
            ) as client:
                response = await client.post(self._webhook_url, json=payload)
                response.raise_for_status()
        except httpx.RequestError as e:
            logger.warning("Failed to send %s via %s: %s", message_id, provider, e)
            return False
        except httpx.HTTPStatusError as e:
            logger.warning(
                "IM gateway answered %s for %s", e.response.status_code, message_id
            )
            return False

        logger.info("Sent %s via %s to %s", message_id, provider, user_id)
        return True

    def get_message(self, message_id: str) -> Optional[dict]:
        """Retrieve a sent message by ID (for testing)."""
        return self._messages.get(message_id)

    @property
    def messages(self) -> list[dict]:
        return list(self._messages.values())
