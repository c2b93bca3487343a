import asyncio
import logging
import time
from typing import Any

import aiohttp

from .config import WEBHOOK_TIMEOUT_SECONDS

log = logging.getLogger("PodMonitor.WebhookSender")

STATUS_COLORS = {
    "online": (0x2ECC71, "#2ECC71"),
    "offline": (0xE74C3C, "#E74C3C"),
}


async def send_webhook_notification(
    url: str, platform: str, title: str, message: str, details: dict[str, Any],
    timeout: float = WEBHOOK_TIMEOUT_SECONDS,
) -> bool:
    if not url:
        log.warning(f"No webhook URL provided for platform {platform}. Skipping webhook notification.")
        return False

    if platform == "discord":
        payload = _format_discord_webhook(title, message, details)
    elif platform == "slack":
        payload = _format_slack_webhook(title, message, details)
    else:
        payload = _format_custom_webhook(title, message, details)

    try:
        async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=timeout)) as session:
            async with session.post(url, json=payload) as response:
                response.raise_for_status()
                log.info(f"Sent {platform} webhook notification: {title}")
                return True
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        log.error(f"Failed to send {platform} webhook notification to {url}: {e}")
    except Exception as e:
        log.error(f"Unexpected error while sending {platform} webhook: {e}", exc_info=True)
    return False


def _status_color(details: dict[str, Any], index: int):
    return STATUS_COLORS.get(details.get("current_status"), (0x95A5A6, "#95A5A6"))[index]


def _format_discord_webhook(title: str, message: str, details: dict[str, Any]) -> dict[str, Any]:
    fields = [{"name": k, "value": str(v), "inline": True} for k, v in details.items()]
    embed = {
        "title": title,
        "description": message,
        "color": _status_color(details, 0),
        "fields": fields,
        "timestamp": details.get("timestamp"),
    }
    return {
        "username": "Pod Monitor",
        "embeds": [embed],
    }


def _format_slack_webhook(title: str, message: str, details: dict[str, Any]) -> dict[str, Any]:
    fields = [{"title": k, "value": str(v), "short": True} for k, v in details.items()]
    attachment = {
        "fallback": f"{title} - {message}",
        "color": _status_color(details, 1),
        "title": title,
        "text": message,
        "fields": fields,
        "ts": time.time(),
    }
    return {"attachments": [attachment]}


def _format_custom_webhook(title: str, message: str, details: dict[str, Any]) -> dict[str, Any]:
    return {
        "title": title,
        "message": message,
        "details": details,
        "timestamp": time.time(),
    }
