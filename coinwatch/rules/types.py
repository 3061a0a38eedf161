"""
Alert kind predicates and firing results.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Callable, Optional, Union

from coinwatch.data.fetcher import MetricSnapshot
from coinwatch.database.models import AlertKind, AlertRule


class DefaultSignal(str, Enum):
    """Built-in signals evaluated for every snapshot."""

    BUY_SIGNAL = "buy_signal"
    SELL_SIGNAL = "sell_signal"
    EXTREME_VOLATILITY = "extreme_volatility"


@dataclass(frozen=True)
class FiredRule:
    """A rule or built-in signal whose predicate held for a snapshot."""

    kind: Union[AlertKind, DefaultSignal]
    snapshot: MetricSnapshot
    observed: Decimal
    threshold: Decimal
    message: str
    rule: Optional[AlertRule] = None

    @property
    def rule_id(self) -> Optional[int]:
        return self.rule.id if self.rule else None


# A predicate returns the observed value when the rule fires, None otherwise.
# None input fields mean "no data": the rule is skipped, never an error.
Predicate = Callable[[MetricSnapshot, AlertRule], Optional[Decimal]]


def _price_at_or_above(snapshot: MetricSnapshot, rule: AlertRule) -> Optional[Decimal]:
    price = snapshot.current_price
    if price is not None and price >= rule.threshold:
        return price
    return None


def _price_at_or_below(snapshot: MetricSnapshot, rule: AlertRule) -> Optional[Decimal]:
    price = snapshot.current_price
    if price is not None and price <= rule.threshold:
        return price
    return None


def _volume_at_or_above(snapshot: MetricSnapshot, rule: AlertRule) -> Optional[Decimal]:
    volume = snapshot.total_volume
    if volume is not None and volume >= rule.threshold:
        return volume
    return None


def _percent_change_abs(snapshot: MetricSnapshot, rule: AlertRule) -> Optional[Decimal]:
    change = snapshot.change_for(rule.time_window)
    if change is not None and abs(change) >= rule.threshold:
        return change
    return None


def _market_cap_at_or_above(snapshot: MetricSnapshot, rule: AlertRule) -> Optional[Decimal]:
    market_cap = snapshot.market_cap
    if market_cap is not None and market_cap >= rule.threshold:
        return market_cap
    return None


PREDICATES: dict[AlertKind, Predicate] = {
    AlertKind.PRICE_AT_OR_ABOVE: _price_at_or_above,
    AlertKind.PRICE_AT_OR_BELOW: _price_at_or_below,
    AlertKind.VOLUME_AT_OR_ABOVE: _volume_at_or_above,
    AlertKind.PERCENT_CHANGE_ABS: _percent_change_abs,
    AlertKind.MARKET_CAP_AT_OR_ABOVE: _market_cap_at_or_above,
}

_missing = set(AlertKind) - set(PREDICATES)
if _missing:
    raise ImportError(
        f"No predicate for alert kinds: {sorted(k.value for k in _missing)}"
    )


def format_amount(value: Optional[Decimal]) -> str:
    """Format a number with thousands separators and two decimals."""
    if value is None:
        return "N/A"
    return f"{value:,.2f}"


def format_price(value: Optional[Decimal]) -> str:
    if value is None:
        return "N/A"
    return f"${value:,.2f}"


def format_change(value: Optional[Decimal]) -> str:
    if value is None:
        return "N/A"
    return f"{value:.2f}%"


def build_rule_message(snapshot: MetricSnapshot, rule: AlertRule, observed: Decimal) -> str:
    """Build the human-readable message for a fired rule."""
    coin = f"{snapshot.name} ({snapshot.symbol})"
    change_24h = format_change(snapshot.price_change_24h)
    kind = rule.kind

    if kind == AlertKind.PRICE_AT_OR_ABOVE:
        return (
            f"🚀 {coin} reached {format_price(observed)} "
            f"(threshold {format_price(rule.threshold)}). 24h change: {change_24h}"
        )
    if kind == AlertKind.PRICE_AT_OR_BELOW:
        return (
            f"📉 {coin} fell to {format_price(observed)} "
            f"(threshold {format_price(rule.threshold)}). 24h change: {change_24h}"
        )
    if kind == AlertKind.VOLUME_AT_OR_ABOVE:
        return (
            f"📊 {coin} volume above {format_amount(rule.threshold)} "
            f"(current {format_amount(observed)})"
        )
    if kind == AlertKind.PERCENT_CHANGE_ABS:
        return (
            f"⚡ {coin} moved {format_change(observed)} in the last "
            f"{rule.time_window.value} (threshold {format_amount(rule.threshold)}%)"
        )
    if kind == AlertKind.MARKET_CAP_AT_OR_ABOVE:
        return (
            f"🏦 {coin} market cap above {format_amount(rule.threshold)} "
            f"(current {format_amount(observed)})"
        )
    return f"{coin} - alert triggered"
