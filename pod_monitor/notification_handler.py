import logging
from typing import Any, Dict, Tuple

from .config import TELEGRAM_BOT_TOKEN
from .email_sender import send_email_notification
from .models import ONLINE, TransitionEvent
from .telegram_bot import send_telegram_message
from .webhook_sender import send_webhook_notification

log = logging.getLogger("PodMonitor.NotificationHandler")

SUPPORTED_SCHEMES = ('telegram', 'discord', 'slack', 'webhook', 'email')


def parse_channel(channel: str) -> Tuple[str, str]:
    """Split a ``scheme:target`` channel identity. Raises ValueError if unusable."""
    scheme, sep, target = (channel or '').partition(':')
    if not sep or not target:
        raise ValueError(f"Invalid channel '{channel}'. Expected 'scheme:target'.")
    if scheme not in SUPPORTED_SCHEMES:
        raise ValueError(f"Unsupported channel scheme '{scheme}'. Supported: {', '.join(SUPPORTED_SCHEMES)}")
    return scheme, target


def short_pubkey(pubkey: str, length: int = 30) -> str:
    return pubkey if len(pubkey) <= length else f"{pubkey[:length]}..."


def format_transition_message(event: TransitionEvent) -> Tuple[str, str]:
    emoji = '🟢' if event.current_status == ONLINE else '🔴'
    title = f"{emoji} Node Status Alert"
    text = (
        f"Node {short_pubkey(event.pubkey)} is now {event.current_status.upper()}\n\n"
        f"Network: {event.network}\n"
        f"Address: {event.address}\n\n"
        f"{event.timestamp.isoformat()}"
    )
    return title, text


class NotificationHandler:
    """Delivers transition events to one channel at a time."""

    def __init__(self, telegram_token: str = TELEGRAM_BOT_TOKEN):
        self.telegram_token = telegram_token

    async def deliver(self, channel: str, event: TransitionEvent) -> bool:
        scheme, target = parse_channel(channel)
        title, text = format_transition_message(event)
        details: Dict[str, Any] = event.to_dict()
        log.info(f"Dispatching {event.current_status} alert for {short_pubkey(event.pubkey, 12)} to {scheme}")

        if scheme == 'telegram':
            if not self.telegram_token:
                log.warning(f"Telegram bot token not configured, dropping alert for {channel}")
                return False
            return await send_telegram_message(self.telegram_token, target, f"{title}\n\n{text}")
        if scheme == 'email':
            return await send_email_notification(
                recipients=[target],
                subject=f"Pod Monitor: node is {event.current_status.upper()}",
                html_content=self._format_email_content(title, text, details),
            )
        platform = 'custom' if scheme == 'webhook' else scheme
        return await send_webhook_notification(url=target, platform=platform, title=title,
                                               message=text, details=details)

    def _format_email_content(self, title: str, text: str, details: Dict[str, Any]) -> str:
        color = "#2ECC71" if details.get("current_status") == ONLINE else "#E74C3C"
        rows = "".join(f"<p><strong>{k}:</strong> {v}</p>" for k, v in details.items())
        body = text.replace("\n", "<br>")
        return f"""
        <!DOCTYPE html>
        <html>
        <body style="font-family: Arial, sans-serif; margin: 20px; color: #333;">
            <div style="background-color: {color}; color: white; padding: 10px 20px; border-radius: 5px;">
                <h2 style="margin: 0;">{title}</h2>
            </div>
            <p>{body}</p>
            <div style="background-color: #eee; padding: 15px; border-radius: 5px;">{rows}</div>
            <p>This notification was sent by Pod Monitor.</p>
        </body>
        </html>
        """
