"""
Main application entry point.
"""

import logging
import signal
import threading

from dotenv import load_dotenv

load_dotenv()

from coinwatch.app import CoinWatchApp
from coinwatch.config import load_config
from coinwatch.database.connection import Database
from coinwatch.notifiers.dispatcher import NotificationDispatcher

logger = logging.getLogger(__name__)


def setup_logging(level_name: str, debug: bool = False) -> None:
    """Configure root logging once for the process."""
    level = logging.DEBUG if debug else getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def main():
    """CLI entry point."""
    import argparse

    parser = argparse.ArgumentParser(description="CoinWatch Crypto Alert Service")
    parser.add_argument(
        "--config", default="config.yaml", help="Path to config file"
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug mode")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Run one check without sending notifications",
    )

    args = parser.parse_args()

    config = load_config(args.config)
    setup_logging(config.advanced.log_level, args.debug)

    # Initialize database
    db = Database(config.database.path)
    db.initialize()

    if args.dry_run:
        logger.info("Dry run mode - no notifications will be sent")
        app = CoinWatchApp(db, config, dispatcher=NotificationDispatcher([]))
        report = app.force_tick()
        logger.info(f"Dry run: {report}")
        app.shutdown()
        db.close()
        return

    app = CoinWatchApp(db, config)

    stop_event = threading.Event()

    def _handle_signal(signum, frame):
        logger.info(f"Received signal {signum}, shutting down")
        stop_event.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    for tenant in config.monitor.tenants:
        app.start_monitoring(tenant.key, tenant.recipient)

    if not config.monitor.tenants:
        logger.warning("No tenants configured; waiting for shutdown signal")

    stop_event.wait()

    app.shutdown()
    db.close()
    logger.info("CoinWatch stopped")


if __name__ == "__main__":
    main()
