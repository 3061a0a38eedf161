"""
Pytest configuration and shared fixtures.
"""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from coinwatch.data.fetcher import MetricSnapshot
from coinwatch.database.connection import Database


class FakeClock:
    """Manually advanced clock for cooldown tests."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 1, 1, 12, 0, 0))


@pytest.fixture
def db():
    """Create in-memory database with schema."""
    db = Database(":memory:")
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def sample_market_item():
    """Sample CoinGecko /coins/markets item."""
    return {
        "id": "bitcoin",
        "symbol": "btc",
        "name": "Bitcoin",
        "current_price": 39500.0,
        "market_cap": 780_000_000_000,
        "total_volume": 25_000_000_000,
        "price_change_percentage_24h": -2.5,
        "price_change_percentage_1h_in_currency": -0.4,
        "price_change_percentage_24h_in_currency": -2.5,
        "price_change_percentage_7d_in_currency": 4.1,
    }


def make_snapshot(
    symbol="BTC",
    coin_id="bitcoin",
    name="Bitcoin",
    price="39500",
    change_1h="-0.4",
    change_24h="-2.5",
    change_7d="4.1",
    market_cap="780000000000",
    volume="25000000000",
    timestamp=None,
) -> MetricSnapshot:
    """Build a snapshot from string values, None meaning "no data"."""

    def dec(value):
        return None if value is None else Decimal(value)

    return MetricSnapshot(
        coin_id=coin_id,
        symbol=symbol,
        name=name,
        current_price=dec(price),
        price_change_1h=dec(change_1h),
        price_change_24h=dec(change_24h),
        price_change_7d=dec(change_7d),
        market_cap=dec(market_cap),
        total_volume=dec(volume),
        timestamp=timestamp or datetime(2024, 1, 1, 12, 0, 0),
    )


@pytest.fixture
def btc_snapshot():
    return make_snapshot()


@pytest.fixture
def sample_smtp_config():
    """Sample SMTP configuration for testing."""
    return {
        "smtp_host": "smtp.gmail.com",
        "smtp_port": 587,
        "smtp_user": "test@gmail.com",
        "smtp_password": "test-app-password",
        "from_address": "alerts@coinwatch.app",
        "default_to": ["recipient@example.com"],
    }
