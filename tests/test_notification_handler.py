"""
Unit tests for notification routing by channel scheme.
"""

from unittest.mock import AsyncMock, patch

import pytest

from pod_monitor.models import OFFLINE, ONLINE, TransitionEvent
from pod_monitor.notification_handler import NotificationHandler, format_transition_message, parse_channel


@pytest.fixture
def event():
    return TransitionEvent(
        pubkey="PubKeyAAAA1111PubKeyAAAA1111PubKeyAAAA1111",
        previous_status=ONLINE,
        current_status=OFFLINE,
        network="mainnet1",
        address="10.0.0.1:9001",
    )


@pytest.fixture
def handler():
    return NotificationHandler(telegram_token="123:abc")


def test_parse_channel():
    assert parse_channel("telegram:42") == ("telegram", "42")
    assert parse_channel("webhook:https://hooks.test/a") == ("webhook", "https://hooks.test/a")
    with pytest.raises(ValueError):
        parse_channel("carrier-pigeon:1")
    with pytest.raises(ValueError):
        parse_channel("email")


def test_format_transition_message(event):
    title, text = format_transition_message(event)
    assert "Node Status Alert" in title
    assert "OFFLINE" in text
    assert "mainnet1" in text
    assert "10.0.0.1:9001" in text
    assert event.pubkey not in text  # long keys are shortened


@pytest.mark.asyncio
async def test_deliver_telegram(handler, event):
    with patch("pod_monitor.notification_handler.send_telegram_message", new_callable=AsyncMock) as mock_send:
        mock_send.return_value = True
        assert await handler.deliver("telegram:42", event) is True

    token, chat_id, text = mock_send.await_args.args
    assert token == "123:abc"
    assert chat_id == "42"
    assert "OFFLINE" in text


@pytest.mark.asyncio
async def test_deliver_telegram_without_token(event):
    handler = NotificationHandler(telegram_token="")
    with patch("pod_monitor.notification_handler.send_telegram_message", new_callable=AsyncMock) as mock_send:
        assert await handler.deliver("telegram:42", event) is False
    mock_send.assert_not_awaited()


@pytest.mark.asyncio
@pytest.mark.parametrize("channel,platform,url", [
    ("discord:https://discord.test/hook", "discord", "https://discord.test/hook"),
    ("slack:https://slack.test/hook", "slack", "https://slack.test/hook"),
    ("webhook:https://hooks.test/x", "custom", "https://hooks.test/x"),
])
async def test_deliver_webhooks(handler, event, channel, platform, url):
    with patch("pod_monitor.notification_handler.send_webhook_notification", new_callable=AsyncMock) as mock_send:
        mock_send.return_value = True
        assert await handler.deliver(channel, event) is True

    kwargs = mock_send.await_args.kwargs
    assert kwargs["url"] == url
    assert kwargs["platform"] == platform
    assert kwargs["details"]["current_status"] == OFFLINE


@pytest.mark.asyncio
async def test_deliver_email(handler, event):
    with patch("pod_monitor.notification_handler.send_email_notification", new_callable=AsyncMock) as mock_send:
        mock_send.return_value = True
        assert await handler.deliver("email:ops@example.com", event) is True

    kwargs = mock_send.await_args.kwargs
    assert kwargs["recipients"] == ["ops@example.com"]
    assert "OFFLINE" in kwargs["subject"]
    assert "<html>" in kwargs["html_content"]


@pytest.mark.asyncio
async def test_deliver_rejects_unknown_scheme(handler, event):
    with pytest.raises(ValueError):
        await handler.deliver("fax:555", event)
