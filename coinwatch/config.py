"""
Configuration loading and validation.
"""

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml


class ConfigValidationError(Exception):
    """Raised when configuration is invalid."""

    pass


@dataclass
class DatabaseConfig:
    """Database configuration."""

    path: str = "data/coinwatch.db"


@dataclass
class DataSourceConfig:
    """Market data source configuration."""

    base_url: str = "https://api.coingecko.com/api/v3"
    vs_currency: str = "usd"
    coins: list[str] = field(
        default_factory=lambda: ["bitcoin", "ethereum", "cardano", "polkadot", "chainlink"]
    )
    max_retries: int = 3
    retry_delay_seconds: float = 2.0
    timeout_seconds: float = 10.0


@dataclass
class TenantConfig:
    """A tenant whose monitoring starts with the service."""

    key: str
    recipient: str


@dataclass
class MonitorConfig:
    """Monitoring schedule configuration."""

    tick_interval_seconds: float = 300.0
    pool_size: int = 10
    shutdown_grace_seconds: float = 60.0
    tenants: list[TenantConfig] = field(default_factory=list)


@dataclass
class DefaultRulesConfig:
    """Built-in buy/sell/volatility signals."""

    enabled: bool = True
    buy_threshold: float = -5.0
    sell_threshold: float = 10.0
    volatility_threshold: float = 15.0


@dataclass
class DedupConfig:
    """Notification cooldown configuration."""

    cooldown_minutes: int = 30
    retention_hours: int = 2


@dataclass
class EmailNotificationConfig:
    """Email notification settings."""

    enabled: bool = False
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    from_address: str = "coinwatch@example.com"
    default_to: list[str] = field(default_factory=list)


@dataclass
class TelegramNotificationConfig:
    """Telegram notification settings."""

    enabled: bool = False
    bot_token: str = ""
    chat_id: str = ""


@dataclass
class NotificationsConfig:
    """Notifications configuration."""

    email: EmailNotificationConfig = field(default_factory=EmailNotificationConfig)
    telegram: TelegramNotificationConfig = field(
        default_factory=TelegramNotificationConfig
    )
    workers: int = 4
    max_pending: int = 100
    enqueue_timeout_seconds: float = 1.0


@dataclass
class AdvancedConfig:
    """Advanced configuration."""

    log_level: str = "INFO"


@dataclass
class AppConfig:
    """Main application configuration."""

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    data_source: DataSourceConfig = field(default_factory=DataSourceConfig)
    monitor: MonitorConfig = field(default_factory=MonitorConfig)
    default_rules: DefaultRulesConfig = field(default_factory=DefaultRulesConfig)
    dedup: DedupConfig = field(default_factory=DedupConfig)
    notifications: NotificationsConfig = field(default_factory=NotificationsConfig)
    advanced: AdvancedConfig = field(default_factory=AdvancedConfig)


def _substitute_env_vars(value: Any) -> Any:
    """Substitute environment variables in string values."""
    if isinstance(value, str):
        # Match ${VAR_NAME} pattern
        pattern = r"\$\{([^}]+)\}"
        matches = re.findall(pattern, value)
        for var_name in matches:
            env_value = os.environ.get(var_name, "")
            value = value.replace(f"${{{var_name}}}", env_value)
        return value
    elif isinstance(value, dict):
        return {k: _substitute_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [_substitute_env_vars(item) for item in value]
    return value


def _as_bool(value: Any) -> bool:
    """Interpret env-substituted strings like "true"/"0" as booleans."""
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def _validate_config(config_dict: dict[str, Any]) -> None:
    """Validate configuration values."""
    db_config = config_dict.get("database") or {}
    db_path = db_config.get("path")
    if not db_path:
        raise ConfigValidationError("Database path is required")

    if db_path != ":memory:":
        parent = Path(db_path).parent
        if parent.exists() and not os.access(parent, os.W_OK):
            raise ConfigValidationError(f"Database path not writable: {parent}")

    monitor = config_dict.get("monitor") or {}
    if float(monitor.get("tick_interval_seconds", 300)) <= 0:
        raise ConfigValidationError("Tick interval must be positive")
    if int(monitor.get("pool_size", 10)) <= 0:
        raise ConfigValidationError("Pool size must be positive")
    for tenant in monitor.get("tenants") or []:
        if not tenant.get("key") or not tenant.get("recipient"):
            raise ConfigValidationError("Every tenant needs a key and a recipient")

    defaults = config_dict.get("default_rules") or {}
    if float(defaults.get("buy_threshold", -5.0)) >= 0:
        raise ConfigValidationError("Buy threshold must be negative")
    if float(defaults.get("sell_threshold", 10.0)) <= 0:
        raise ConfigValidationError("Sell threshold must be positive")
    if float(defaults.get("volatility_threshold", 15.0)) <= 0:
        raise ConfigValidationError("Volatility threshold must be positive")

    dedup = config_dict.get("dedup") or {}
    cooldown_minutes = float(dedup.get("cooldown_minutes", 30))
    retention_hours = float(dedup.get("retention_hours", 2))
    if cooldown_minutes <= 0:
        raise ConfigValidationError("Cooldown must be positive")
    if retention_hours * 60 < cooldown_minutes:
        raise ConfigValidationError("Retention must not be shorter than cooldown")


def load_config(config_path: str) -> AppConfig:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to configuration file

    Returns:
        AppConfig instance

    Raises:
        ConfigValidationError: If configuration is invalid
        FileNotFoundError: If config file doesn't exist
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(path) as f:
        raw_config = yaml.safe_load(f) or {}

    # Substitute environment variables
    config_dict = _substitute_env_vars(raw_config)

    try:
        _validate_config(config_dict)
        return _build_config(config_dict)
    except (TypeError, ValueError) as e:
        raise ConfigValidationError(f"Invalid configuration: {e}") from e


def _build_config(config_dict: dict[str, Any]) -> AppConfig:
    """Build config objects from a validated dict."""
    database = DatabaseConfig(**(config_dict.get("database") or {}))
    data_source = DataSourceConfig(**(config_dict.get("data_source") or {}))

    # Monitor
    monitor_dict = dict(config_dict.get("monitor") or {})
    tenants = [TenantConfig(**t) for t in monitor_dict.pop("tenants", None) or []]
    monitor = MonitorConfig(tenants=tenants, **monitor_dict)

    defaults_dict = dict(config_dict.get("default_rules") or {})
    if "enabled" in defaults_dict:
        defaults_dict["enabled"] = _as_bool(defaults_dict["enabled"])
    default_rules = DefaultRulesConfig(**defaults_dict)

    dedup = DedupConfig(**(config_dict.get("dedup") or {}))

    # Notifications
    notif_dict = dict(config_dict.get("notifications") or {})
    email_dict = dict(notif_dict.pop("email", None) or {})
    telegram_dict = dict(notif_dict.pop("telegram", None) or {})
    for channel in (email_dict, telegram_dict):
        if "enabled" in channel:
            channel["enabled"] = _as_bool(channel["enabled"])
    if "smtp_port" in email_dict:
        email_dict["smtp_port"] = int(email_dict["smtp_port"])
    if isinstance(email_dict.get("default_to"), str):
        email_dict["default_to"] = [
            a.strip() for a in email_dict["default_to"].split(",") if a.strip()
        ]
    notifications = NotificationsConfig(
        email=EmailNotificationConfig(**email_dict),
        telegram=TelegramNotificationConfig(**telegram_dict),
        **notif_dict,
    )

    advanced = AdvancedConfig(**(config_dict.get("advanced") or {}))

    return AppConfig(
        database=database,
        data_source=data_source,
        monitor=monitor,
        default_rules=default_rules,
        dedup=dedup,
        notifications=notifications,
        advanced=advanced,
    )


def default_config(db_path: Optional[str] = None) -> AppConfig:
    """Configuration with defaults, used when no file is given."""
    config = AppConfig()
    if db_path:
        config.database.path = db_path
    return config
