"""
Telegram Bot API notifier.
"""

import time
from typing import Any

import requests

from coinwatch.database.models import AlertKind
from coinwatch.rules.types import DefaultSignal
from .base import NotificationEvent, NotificationResult, Notifier


class TelegramNotifier(Notifier):
    """Sends notifications via a Telegram bot."""

    channel = "telegram"

    API_URL = "https://api.telegram.org/bot{token}/sendMessage"

    KIND_EMOJI = {
        AlertKind.PRICE_AT_OR_ABOVE.value: "📈",
        AlertKind.PRICE_AT_OR_BELOW.value: "📉",
        AlertKind.VOLUME_AT_OR_ABOVE.value: "🔊",
        AlertKind.PERCENT_CHANGE_ABS.value: "⚡",
        AlertKind.MARKET_CAP_AT_OR_ABOVE.value: "🏦",
        DefaultSignal.BUY_SIGNAL.value: "🟢",
        DefaultSignal.SELL_SIGNAL.value: "🔴",
        DefaultSignal.EXTREME_VOLATILITY.value: "🌪️",
    }

    def __init__(self, bot_token: str, chat_id: str):
        """
        Initialize Telegram notifier.

        Args:
            bot_token: Bot API token
            chat_id: Chat receiving the messages
        """
        self.bot_token = bot_token
        self.chat_id = chat_id

    def send(self, event: NotificationEvent) -> NotificationResult:
        """Send event to Telegram."""
        try:
            payload = self._create_payload(event)
            response = self._post(payload)

            if response.ok:
                return NotificationResult(success=True, channel=self.channel)
            else:
                return NotificationResult(
                    success=False,
                    channel=self.channel,
                    error=f"HTTP {response.status_code}: {response.text}",
                )

        except requests.exceptions.ConnectionError as e:
            return NotificationResult(
                success=False,
                channel=self.channel,
                error=f"Connection error: {str(e)}",
            )
        except Exception as e:
            return NotificationResult(
                success=False,
                channel=self.channel,
                error=str(e),
            )

    def _post(self, payload: dict[str, Any]) -> requests.Response:
        """Post message with rate limit handling."""
        url = self.API_URL.format(token=self.bot_token)
        response = requests.post(url, json=payload, timeout=10)

        # Handle rate limiting
        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After", "1")
            time.sleep(float(retry_after))
            response = requests.post(url, json=payload, timeout=10)

        return response

    def _create_payload(self, event: NotificationEvent) -> dict[str, Any]:
        """Create sendMessage payload."""
        return {
            "chat_id": self.chat_id,
            "text": self._create_text(event),
            "parse_mode": "Markdown",
        }

    def _create_text(self, event: NotificationEvent) -> str:
        """Create Markdown message text."""
        emoji = self.KIND_EMOJI.get(event.alert_kind, "🔔")
        return (
            f"{emoji} *{event.kind_label.upper()}*\n"
            f"\n"
            f"💰 *{event.name} ({event.symbol})*\n"
            f"💵 Price: `{event.current_price}`\n"
            f"📈 24h: `{event.change_percentage}`\n"
            f"{event.message}\n"
            f"🕐 {event.triggered_at.strftime('%d/%m %H:%M')}"
        )
