"""
Base notifier classes.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from coinwatch.rules.types import FiredRule, format_change, format_price


@dataclass(frozen=True)
class NotificationEvent:
    """Outbound message for one firing."""

    symbol: str
    name: str
    current_price: str
    change_percentage: str
    alert_kind: str
    message: str
    recipient: Optional[str] = None
    triggered_at: datetime = field(default_factory=datetime.now)

    @classmethod
    def from_fired(cls, fired: FiredRule, recipient: Optional[str]) -> "NotificationEvent":
        """Build an event from a fired rule and its triggering snapshot."""
        snapshot = fired.snapshot
        return cls(
            symbol=snapshot.symbol,
            name=snapshot.name,
            current_price=format_price(snapshot.current_price),
            change_percentage=format_change(snapshot.price_change_24h),
            alert_kind=fired.kind.value,
            message=fired.message,
            recipient=recipient,
            triggered_at=snapshot.timestamp,
        )

    @property
    def kind_label(self) -> str:
        """Human-readable alert kind, e.g. "Price At Or Below"."""
        return self.alert_kind.replace("_", " ").title()


@dataclass
class NotificationResult:
    """Result of a notification attempt."""

    success: bool
    channel: str
    error: Optional[str] = None


class Notifier(ABC):
    """Abstract base class for notifiers."""

    channel = "unknown"

    @abstractmethod
    def send(self, event: NotificationEvent) -> NotificationResult:
        """
        Send a single notification.

        Args:
            event: Event to send

        Returns:
            NotificationResult indicating success or failure
        """
        pass


class NotifierFactory:
    """Factory for creating notifier instances."""

    @staticmethod
    def create(config: dict[str, Any]) -> Notifier:
        """
        Create a notifier from configuration.

        Args:
            config: Notifier configuration dict

        Returns:
            Appropriate Notifier instance

        Raises:
            ValueError: If notifier type is unknown
        """
        notifier_type = config.get("type")

        if notifier_type == "telegram":
            from .telegram import TelegramNotifier

            return TelegramNotifier(
                bot_token=config.get("bot_token", ""),
                chat_id=config.get("chat_id", ""),
            )

        elif notifier_type == "email":
            from .email import EmailNotifier

            return EmailNotifier(
                smtp_host=config.get("smtp_host", ""),
                smtp_port=config.get("smtp_port", 587),
                smtp_user=config.get("smtp_user", ""),
                smtp_password=config.get("smtp_password", ""),
                from_address=config.get("from_address", ""),
                default_to=config.get("default_to", []),
            )

        else:
            raise ValueError(f"Unknown notifier type: {notifier_type}")
