"""
Data models for CoinWatch.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Optional


class AlertKind(str, Enum):
    """Kinds of user-defined alert rules."""

    PRICE_AT_OR_ABOVE = "price_at_or_above"
    PRICE_AT_OR_BELOW = "price_at_or_below"
    VOLUME_AT_OR_ABOVE = "volume_at_or_above"
    PERCENT_CHANGE_ABS = "percent_change_abs"
    MARKET_CAP_AT_OR_ABOVE = "market_cap_at_or_above"


class TimeWindow(str, Enum):
    """Window a percent-change rule looks at."""

    ONE_HOUR = "1h"
    TWENTY_FOUR_HOURS = "24h"
    SEVEN_DAYS = "7d"


def to_decimal(value) -> Optional[Decimal]:
    """Convert a number or numeric string to Decimal, None stays None."""
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"Not a number: {value!r}")


@dataclass
class AlertRule:
    """Persisted alert condition.

    Only ``active`` changes after creation; everything else is fixed.
    """

    symbol: str
    kind: AlertKind
    threshold: Decimal
    recipient: Optional[str] = None
    owner: Optional[str] = None  # tenant key, None = unowned
    time_window: TimeWindow = TimeWindow.TWENTY_FOUR_HOURS
    active: bool = True
    id: Optional[int] = None
    created_at: Optional[datetime] = None

    def __post_init__(self):
        if not self.symbol or not self.symbol.strip():
            raise ValueError("Rule symbol is required")
        self.symbol = self.symbol.strip().upper()

        try:
            self.kind = AlertKind(self.kind)
        except ValueError:
            raise ValueError(f"Unknown alert kind: {self.kind}")

        try:
            self.time_window = TimeWindow(self.time_window)
        except ValueError:
            raise ValueError(f"Unknown time window: {self.time_window}")

        threshold = to_decimal(self.threshold)
        if threshold is None or not threshold.is_finite() or threshold <= 0:
            raise ValueError(
                f"Threshold must be a finite positive number: {self.threshold}"
            )
        self.threshold = threshold

    def applies_to(self, tenant_key: str, recipient: Optional[str] = None) -> bool:
        """Check if the rule is owned by or addressed to a tenant."""
        if self.owner is not None and self.owner == tenant_key:
            return True
        return recipient is not None and self.recipient == recipient
