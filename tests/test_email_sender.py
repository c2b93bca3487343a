"""
Unit tests for the SMTP e-mail channel.
"""

from unittest.mock import MagicMock, patch

import pytest

from pod_monitor.email_sender import _send_smtp_email, send_email_notification


@pytest.mark.asyncio
async def test_send_email_notification_success():
    with (
        patch("pod_monitor.email_sender.EMAIL_USERNAME", "monitor@example.com"),
        patch("pod_monitor.email_sender.EMAIL_PASSWORD", "secret"),
        patch("pod_monitor.email_sender._send_smtp_email") as mock_smtp,
    ):
        ok = await send_email_notification(["ops@example.com"], "Subject", "<html></html>")

    assert ok is True
    message, recipients = mock_smtp.call_args.args
    assert recipients == ["ops@example.com"]
    assert message["Subject"] == "Subject"
    assert message["From"] == "monitor@example.com"


@pytest.mark.asyncio
async def test_send_email_without_credentials():
    with (
        patch("pod_monitor.email_sender.EMAIL_USERNAME", ""),
        patch("pod_monitor.email_sender.EMAIL_PASSWORD", ""),
        patch("pod_monitor.email_sender._send_smtp_email") as mock_smtp,
    ):
        assert await send_email_notification(["ops@example.com"], "Subject", "<p/>") is False
    mock_smtp.assert_not_called()


@pytest.mark.asyncio
async def test_send_email_without_recipients():
    with patch("pod_monitor.email_sender._send_smtp_email") as mock_smtp:
        assert await send_email_notification([], "Subject", "<p/>") is False
    mock_smtp.assert_not_called()


@pytest.mark.asyncio
async def test_send_email_smtp_failure_is_reported():
    with (
        patch("pod_monitor.email_sender.EMAIL_USERNAME", "monitor@example.com"),
        patch("pod_monitor.email_sender.EMAIL_PASSWORD", "secret"),
        patch("pod_monitor.email_sender._send_smtp_email", side_effect=OSError("connection refused")),
    ):
        assert await send_email_notification(["ops@example.com"], "Subject", "<p/>") is False


def test_send_smtp_email_uses_starttls():
    server = MagicMock()
    with (
        patch("pod_monitor.email_sender.EMAIL_USE_TLS", True),
        patch("pod_monitor.email_sender.EMAIL_USERNAME", "monitor@example.com"),
        patch("pod_monitor.email_sender.EMAIL_PASSWORD", "secret"),
        patch("smtplib.SMTP", return_value=server) as smtp_cls,
    ):
        message = MagicMock()
        message.as_string.return_value = "raw"
        _send_smtp_email(message, ["ops@example.com"])

    smtp_cls.assert_called_once()
    server.starttls.assert_called_once()
    server.login.assert_called_once_with("monitor@example.com", "secret")
    server.sendmail.assert_called_once_with("monitor@example.com", ["ops@example.com"], "raw")
    server.quit.assert_called_once()
