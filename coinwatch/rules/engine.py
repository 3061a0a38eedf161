"""
Rule evaluation engine.
"""

import logging
from decimal import Decimal
from typing import Optional

from coinwatch.data.fetcher import MetricSnapshot
from coinwatch.database.models import AlertRule, to_decimal
from .types import (
    PREDICATES,
    DefaultSignal,
    FiredRule,
    build_rule_message,
    format_change,
    format_price,
)

# Re-export for convenience
__all__ = ["AlertEvaluator", "DefaultSignal", "FiredRule"]

logger = logging.getLogger(__name__)


class AlertEvaluator:
    """Evaluates alert rules and built-in signals against snapshots."""

    def __init__(
        self,
        buy_threshold: float = -5.0,
        sell_threshold: float = 10.0,
        volatility_threshold: float = 15.0,
    ):
        """
        Initialize evaluator.

        Args:
            buy_threshold: 24h change (negative) at or below which a buy signal fires
            sell_threshold: 24h change at or above which a sell signal fires
            volatility_threshold: Absolute 1h change that counts as extreme
        """
        self.buy_threshold = to_decimal(buy_threshold)
        self.sell_threshold = to_decimal(sell_threshold)
        self.volatility_threshold = to_decimal(volatility_threshold)

    def evaluate(
        self, snapshot: MetricSnapshot, rules: list[AlertRule]
    ) -> list[FiredRule]:
        """
        Evaluate rules against one snapshot.

        Inactive rules and rules for other symbols are ignored. An error in
        one rule is logged and the remaining rules still run.

        Args:
            snapshot: Current market snapshot
            rules: Candidate rules

        Returns:
            List of fired rules
        """
        fired = []

        for rule in rules:
            if not rule.active or rule.symbol != snapshot.symbol:
                continue

            try:
                observed = PREDICATES[rule.kind](snapshot, rule)
                if observed is None:
                    continue
                fired.append(
                    FiredRule(
                        kind=rule.kind,
                        snapshot=snapshot,
                        observed=observed,
                        threshold=rule.threshold,
                        message=build_rule_message(snapshot, rule, observed),
                        rule=rule,
                    )
                )
            except Exception as e:
                logger.error(
                    f"Error evaluating rule {rule.id} for {snapshot.symbol}: {e}"
                )

        return fired

    def evaluate_defaults(self, snapshot: MetricSnapshot) -> list[FiredRule]:
        """
        Evaluate the built-in buy, sell and volatility signals.

        Args:
            snapshot: Current market snapshot

        Returns:
            List of fired signals (not tied to any stored rule)
        """
        fired = []
        checks = (
            (DefaultSignal.BUY_SIGNAL, self._check_buy),
            (DefaultSignal.SELL_SIGNAL, self._check_sell),
            (DefaultSignal.EXTREME_VOLATILITY, self._check_volatility),
        )

        for signal, check in checks:
            try:
                result = check(snapshot)
            except Exception as e:
                logger.error(
                    f"Error evaluating {signal.value} for {snapshot.symbol}: {e}"
                )
                continue
            if result is not None:
                fired.append(result)

        return fired

    def _check_buy(self, snapshot: MetricSnapshot) -> Optional[FiredRule]:
        change = snapshot.price_change_24h
        if change is not None and change <= self.buy_threshold:
            return self._buy_signal(snapshot, change)
        return None

    def _check_sell(self, snapshot: MetricSnapshot) -> Optional[FiredRule]:
        change = snapshot.price_change_24h
        if change is not None and change >= self.sell_threshold:
            return self._sell_signal(snapshot, change)
        return None

    def _check_volatility(self, snapshot: MetricSnapshot) -> Optional[FiredRule]:
        change = snapshot.price_change_1h
        if change is not None and abs(change) >= self.volatility_threshold:
            return self._volatility_signal(snapshot, change)
        return None

    def _buy_signal(self, snapshot: MetricSnapshot, change: Decimal) -> FiredRule:
        message = (
            f"🟢 Buy opportunity: {snapshot.name} ({snapshot.symbol}) at "
            f"{format_price(snapshot.current_price)} changed {format_change(change)} "
            f"in 24h (threshold {format_change(self.buy_threshold)})"
        )
        return FiredRule(
            kind=DefaultSignal.BUY_SIGNAL,
            snapshot=snapshot,
            observed=change,
            threshold=self.buy_threshold,
            message=message,
        )

    def _sell_signal(self, snapshot: MetricSnapshot, change: Decimal) -> FiredRule:
        message = (
            f"🔴 Sell signal: {snapshot.name} ({snapshot.symbol}) at "
            f"{format_price(snapshot.current_price)} rose +{format_change(change)} "
            f"in 24h (threshold +{format_change(self.sell_threshold)})"
        )
        return FiredRule(
            kind=DefaultSignal.SELL_SIGNAL,
            snapshot=snapshot,
            observed=change,
            threshold=self.sell_threshold,
            message=message,
        )

    def _volatility_signal(
        self, snapshot: MetricSnapshot, change: Decimal
    ) -> FiredRule:
        message = (
            f"🌪️ Extreme volatility: {snapshot.name} ({snapshot.symbol}) moved "
            f"{format_change(change)} in 1h "
            f"(threshold ±{format_change(self.volatility_threshold)})"
        )
        return FiredRule(
            kind=DefaultSignal.EXTREME_VOLATILITY,
            snapshot=snapshot,
            observed=change,
            threshold=self.volatility_threshold,
            message=message,
        )

