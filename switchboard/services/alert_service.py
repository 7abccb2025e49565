"""Operational alerts delivered to a Telegram chat.

Alerts are best effort: a missing configuration or a failing Telegram call
is logged and reported as False, never raised into the routing core.
"""

from enum import Enum
from typing import Optional

import httpx

from switchboard.config import settings
from switchboard.logging_config import get_logger

logger = get_logger("alert_service")

ALERT_BOT_TOKEN = settings.alert_bot_token
ALERT_CHAT_ID = settings.alert_chat_id

TELEGRAM_API_URL = "https://api.telegram.org"
MAX_DETAIL_LINES = 5


class AlertLevel(str, Enum):
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


_LEVEL_MARKS = {
    AlertLevel.INFO: "ℹ️",
    AlertLevel.WARNING: "⚠️",
    AlertLevel.ERROR: "❌",
    AlertLevel.CRITICAL: "🔥",
}


def format_alert(level: str, message: str, context: Optional[dict] = None) -> str:
    """Render a Markdown alert body: level badge, message, then context as a code block."""
    try:
        mark = _LEVEL_MARKS[AlertLevel(level)]
    except ValueError:
        mark = "📢"
    lines = [f"{mark} *switchboard {level}*", "", message]
    if context:
        lines += ["", "```"] + [f"  {key}: {value}" for key, value in context.items()] + ["```"]
    return "\n".join(lines)


async def send_alert(level: str, message: str, context: Optional[dict] = None) -> bool:
    """Post an alert to the configured chat. Returns True when Telegram accepted it."""
    if not ALERT_BOT_TOKEN or not ALERT_CHAT_ID:
        logger.warning(f"Alert not configured: {level} - {message}")
        return False

    payload = {"chat_id": ALERT_CHAT_ID, "text": format_alert(level, message, context), "parse_mode": "Markdown"}
    try:
        async with httpx.AsyncClient(timeout=10) as client:
            response = await client.post(f"{TELEGRAM_API_URL}/bot{ALERT_BOT_TOKEN}/sendMessage", json=payload)
    except httpx.HTTPError as e:
        logger.error(f"Failed to send alert: {e}", extra={"context": {"level": level}})
        return False

    if response.status_code != 200:
        logger.error("Alert rejected by Telegram", extra={"context": {"status_code": response.status_code}})
        return False
    return True


async def alert_warning(message: str, context: Optional[dict] = None) -> bool:
    return await send_alert(AlertLevel.WARNING.value, message, context)


async def alert_critical(message: str, context: Optional[dict] = None) -> bool:
    return await send_alert(AlertLevel.CRITICAL.value, message, context)


async def alert_transport_logged_out(bound_address: Optional[str] = None) -> bool:
    return await alert_critical(
        "WhatsApp transport logged out. Reconnection is stopped until credentials are renewed.",
        {"bound_address": bound_address or "unknown"},
    )


async def alert_heal_report(report: dict, source: str) -> bool:
    """Warn about invariant repairs. Nothing is sent for a clean report."""
    healed = report.get("healed_count", 0)
    if not healed:
        return False
    context = {"source": source}
    for index, detail in enumerate(report.get("details", [])[:MAX_DETAIL_LINES], start=1):
        context[f"fix_{index}"] = detail
    return await alert_warning(f"Healed {healed} conversation invariant violations", context)
