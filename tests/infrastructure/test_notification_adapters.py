"""Tests for user notification adapters (e-mail, instant message)."""

import json
import smtplib
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from vigil.domain.ports.notification_port import UserNotificationPort
from vigil.infrastructure.adapters.email_adapter import EmailAdapter
from vigil.infrastructure.adapters.im_adapter import InstantMessageAdapter
from vigil.infrastructure.adapters.user_notifier import UserNotifier


class TestEmailAdapter:
    @pytest.mark.asyncio
    async def test_stub_mode_records_message(self):
        adapter = EmailAdapter()
        assert adapter.stub_mode
        assert await adapter.send_email(
            "alice@example.edu", "Reservation Timeout", "body", "help@example.edu"
        )
        assert len(adapter.messages) == 1
        message = adapter.messages[0]
        assert message["message_id"].startswith("EMAIL-")
        assert message["reply_to"] == "help@example.edu"
        assert adapter.get_message(message["message_id"]) == message

    @pytest.mark.asyncio
    async def test_missing_address(self):
        adapter = EmailAdapter()
        assert not await adapter.send_email("", "subject", "body")
        assert adapter.messages == []

    @pytest.mark.asyncio
    async def test_sends_through_smtp_with_starttls(self):
        adapter = EmailAdapter(smtp_host="smtp.example.edu", sender="vigil@example.edu")
        with patch("smtplib.SMTP") as smtp_cls:
            assert await adapter.send_email(
                "alice@example.edu", "Reservation Timeout", "body", "help@example.edu"
            )
        smtp_cls.assert_called_once_with("smtp.example.edu", 587, timeout=30.0)
        smtp = smtp_cls.return_value.__enter__.return_value
        smtp.starttls.assert_called_once()
        sent = smtp.send_message.call_args[0][0]
        assert sent["To"] == "alice@example.edu"
        assert sent["From"] == "vigil@example.edu"
        assert sent["Reply-To"] == "help@example.edu"

    @pytest.mark.asyncio
    async def test_plain_port_skips_starttls(self):
        adapter = EmailAdapter(smtp_host="smtp.example.edu", smtp_port=25)
        with patch("smtplib.SMTP") as smtp_cls:
            assert await adapter.send_email("alice@example.edu", "s", "b")
        smtp_cls.return_value.__enter__.return_value.starttls.assert_not_called()

    @pytest.mark.asyncio
    async def test_smtp_failure(self):
        adapter = EmailAdapter(smtp_host="smtp.example.edu")
        with patch("smtplib.SMTP", side_effect=smtplib.SMTPConnectError(421, "busy")):
            assert not await adapter.send_email("alice@example.edu", "s", "b")


class TestInstantMessageAdapter:
    @pytest.mark.asyncio
    async def test_stub_mode_records_message(self):
        adapter = InstantMessageAdapter()
        assert await adapter.send_instant_message("jabber", "bob@jabber.example.edu", "hi")
        message = adapter.messages[0]
        assert message["message_id"].startswith("IM-")
        assert message["provider"] == "jabber"
        assert message["text"] == "hi"

    @pytest.mark.asyncio
    async def test_missing_user(self):
        adapter = InstantMessageAdapter()
        assert not await adapter.send_instant_message("jabber", "", "hi")

    @pytest.mark.asyncio
    async def test_posts_to_webhook(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200)

        adapter = InstantMessageAdapter(
            webhook_url="https://im.example.edu/send", transport=httpx.MockTransport(handler)
        )
        assert await adapter.send_instant_message("jabber", "bob", "hi")
        [request] = requests
        assert request.method == "POST"
        assert str(request.url) == "https://im.example.edu/send"
        assert json.loads(request.content) == {"provider": "jabber", "user_id": "bob", "text": "hi"}

    @pytest.mark.asyncio
    async def test_gateway_error_status(self):
        adapter = InstantMessageAdapter(
            webhook_url="https://im.example.edu/send",
            transport=httpx.MockTransport(lambda request: httpx.Response(502)),
        )
        assert not await adapter.send_instant_message("jabber", "bob", "hi")

    @pytest.mark.asyncio
    async def test_unreachable_gateway(self):
        def refuse(request):
            raise httpx.ConnectError("refused", request=request)

        adapter = InstantMessageAdapter(
            webhook_url="https://im.example.edu/send", transport=httpx.MockTransport(refuse)
        )
        assert not await adapter.send_instant_message("jabber", "bob", "hi")

class TestUserNotifier:
    def test_satisfies_port(self):
        assert isinstance(UserNotifier(EmailAdapter(), InstantMessageAdapter()), UserNotificationPort)

    @pytest.mark.asyncio
    async def test_routes_channels(self):
        email = MagicMock(send_email=AsyncMock(return_value=True))
        im = MagicMock(send_instant_message=AsyncMock(return_value=False))
        notifier = UserNotifier(email, im)
        assert await notifier.send_email("a@example.edu", "s", "b", "r@example.edu")
        assert not await notifier.send_instant_message("jabber", "bob", "b")
        email.send_email.assert_awaited_once_with("a@example.edu", "s", "b", "r@example.edu")
        im.send_instant_message.assert_awaited_once_with("jabber", "bob", "b")
