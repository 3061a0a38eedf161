"""
CoinGecko market data fetcher.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Optional

import requests
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from coinwatch.database.models import TimeWindow, to_decimal

logger = logging.getLogger(__name__)


class TransientFetchError(Exception):
    """Raised when the market data source stays unavailable after retries."""

    pass


@dataclass(frozen=True)
class MetricSnapshot:
    """One coin's observed market values at a point in time."""

    coin_id: str
    symbol: str
    name: str
    current_price: Optional[Decimal]
    price_change_1h: Optional[Decimal]
    price_change_24h: Optional[Decimal]
    price_change_7d: Optional[Decimal]
    market_cap: Optional[Decimal]
    total_volume: Optional[Decimal]
    timestamp: datetime

    def change_for(self, window: TimeWindow) -> Optional[Decimal]:
        """Percent change over a time window, None when unknown."""
        if window == TimeWindow.ONE_HOUR:
            return self.price_change_1h
        if window == TimeWindow.TWENTY_FOUR_HOURS:
            return self.price_change_24h
        if window == TimeWindow.SEVEN_DAYS:
            return self.price_change_7d
        raise ValueError(f"Unknown time window: {window}")


class CoinGeckoFetcher:
    """Fetches market snapshots from the CoinGecko ``/coins/markets`` API."""

    DEFAULT_BASE_URL = "https://api.coingecko.com/api/v3"

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        vs_currency: str = "usd",
        max_retries: int = 3,
        retry_delay: float = 2.0,
        timeout: float = 10.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize fetcher.

        Args:
            base_url: API root URL
            vs_currency: Quote currency for prices
            max_retries: Total attempts before giving up
            retry_delay: Delay before the first retry, doubled on each retry
            timeout: HTTP timeout in seconds
            sleep: Sleep function, replaced in tests
        """
        self.base_url = base_url.rstrip("/")
        self.vs_currency = vs_currency
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self.timeout = timeout
        self._sleep = sleep

    def fetch_all(self, coin_ids: list[str]) -> list[MetricSnapshot]:
        """
        Fetch current snapshots for several coins.

        Args:
            coin_ids: CoinGecko coin ids (e.g. "bitcoin")

        Returns:
            List of MetricSnapshot, malformed entries skipped

        Raises:
            TransientFetchError: If every attempt failed
        """
        if not coin_ids:
            return []

        retrying = Retrying(
            retry=retry_if_exception_type((requests.RequestException, ValueError)),
            stop=stop_after_attempt(self.max_retries),
            wait=wait_exponential(multiplier=self.retry_delay),
            sleep=self._sleep,
            before_sleep=self._log_retry,
            reraise=True,
        )

        try:
            for attempt in retrying:
                with attempt:
                    items = self._request_markets(coin_ids)
        except (requests.RequestException, ValueError) as e:
            logger.warning(f"Market fetch failed after {self.max_retries} attempts: {e}")
            raise TransientFetchError(
                f"Market data unavailable after {self.max_retries} attempts: {e}"
            ) from e

        return self._parse_items(items)

    def get_by_coin_id(self, coin_id: str) -> Optional[MetricSnapshot]:
        """Fetch a single coin, None when unknown or unavailable."""
        try:
            snapshots = self.fetch_all([coin_id])
        except TransientFetchError as e:
            logger.error(f"Error fetching {coin_id}: {e}")
            return None
        return snapshots[0] if snapshots else None

    def _log_retry(self, retry_state: RetryCallState) -> None:
        logger.warning(
            f"Market fetch attempt {retry_state.attempt_number}/{self.max_retries} "
            f"failed: {retry_state.outcome.exception()}"
        )

    def _request_markets(self, coin_ids: list[str]) -> list[dict[str, Any]]:
        """Call the markets endpoint and return the decoded JSON list."""
        response = requests.get(
            f"{self.base_url}/coins/markets",
            params={
                "vs_currency": self.vs_currency,
                "ids": ",".join(coin_ids),
                "order": "market_cap_desc",
                "per_page": 250,
                "page": 1,
                "sparkline": "false",
                "price_change_percentage": "1h,24h,7d",
            },
            timeout=self.timeout,
        )
        response.raise_for_status()

        payload = response.json()
        if not isinstance(payload, list):
            raise ValueError(f"Unexpected markets payload: {type(payload).__name__}")
        return payload

    def _parse_items(self, items: list[dict[str, Any]]) -> list[MetricSnapshot]:
        """Parse API items, skipping malformed ones."""
        now = datetime.now()
        snapshots = []
        for item in items:
            try:
                snapshots.append(self.parse_snapshot(item, now))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed market item {item!r}: {e}")
        return snapshots

    @staticmethod
    def parse_snapshot(item: dict[str, Any], timestamp: datetime) -> MetricSnapshot:
        """Build a snapshot from one markets API item."""
        coin_id = item["id"]
        symbol = item["symbol"]
        if not coin_id or not symbol:
            raise ValueError("Missing coin id or symbol")

        return MetricSnapshot(
            coin_id=coin_id,
            symbol=symbol.upper(),
            name=item.get("name") or symbol.upper(),
            current_price=_metric(item.get("current_price")),
            price_change_1h=_metric(
                item.get("price_change_percentage_1h_in_currency")
            ),
            price_change_24h=_metric(
                item.get("price_change_percentage_24h_in_currency",
                         item.get("price_change_percentage_24h"))
            ),
            price_change_7d=_metric(
                item.get("price_change_percentage_7d_in_currency")
            ),
            market_cap=_metric(item.get("market_cap")),
            total_volume=_metric(item.get("total_volume")),
            timestamp=timestamp,
        )


def _metric(value) -> Optional[Decimal]:
    """Convert a provider value; NaN and infinities count as missing data."""
    number = to_decimal(value)
    if number is None or not number.is_finite():
        return None
    return number
