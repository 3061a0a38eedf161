"""
Asynchronous fan-out of notification events to every configured channel.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Optional

from .base import NotificationEvent, NotificationResult, Notifier, NotifierFactory

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """Delivers events on a background pool so ticks never wait on SMTP/HTTP.

    ``send`` blocks for at most ``enqueue_timeout`` seconds, and only when
    ``max_pending`` deliveries are already queued. Delivery failures are
    logged and reported through the returned future, never raised.
    """

    def __init__(
        self,
        notifiers: list[Notifier],
        max_workers: int = 4,
        max_pending: int = 100,
        enqueue_timeout: float = 1.0,
    ):
        self.notifiers = notifiers
        self.enqueue_timeout = enqueue_timeout
        self._slots = threading.BoundedSemaphore(max_pending)
        self._pool = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="coinwatch-notify"
        )

    def send(self, event: NotificationEvent) -> "Future[list[NotificationResult]]":
        """
        Queue an event for delivery.

        Args:
            event: Event to deliver

        Returns:
            Future resolving to one NotificationResult per notifier
        """
        if not self._slots.acquire(timeout=self.enqueue_timeout):
            logger.error(
                f"Notification queue full, dropping {event.symbol} {event.alert_kind} "
                f"for {event.recipient}"
            )
            return self._failed("Notification queue full")

        try:
            future = self._pool.submit(self._deliver, event)
        except RuntimeError as e:
            self._slots.release()
            logger.error(f"Dispatcher unavailable, dropping {event.symbol}: {e}")
            return self._failed(str(e))

        future.add_done_callback(lambda _: self._slots.release())
        return future

    def send_test(self, recipient: Optional[str] = None) -> "Future[list[NotificationResult]]":
        """Send a synthetic event to check channel configuration."""
        event = NotificationEvent(
            symbol="BTC",
            name="Bitcoin",
            current_price="$45,000.00",
            change_percentage="5.25%",
            alert_kind="price_at_or_above",
            message="🧪 This is a test notification from CoinWatch!",
            recipient=recipient,
        )
        return self.send(event)

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting events; optionally wait for queued deliveries."""
        self._pool.shutdown(wait=wait)

    def _deliver(self, event: NotificationEvent) -> list[NotificationResult]:
        results = []
        for notifier in self.notifiers:
            try:
                result = notifier.send(event)
            except Exception as e:
                result = NotificationResult(
                    success=False, channel=notifier.channel, error=str(e)
                )

            if result.success:
                logger.info(
                    f"Notification sent via {result.channel}: "
                    f"{event.symbol} {event.alert_kind} -> {event.recipient}"
                )
            else:
                logger.error(
                    f"Notification via {result.channel} failed for "
                    f"{event.symbol} {event.alert_kind}: {result.error}"
                )
            results.append(result)
        return results

    @staticmethod
    def _failed(error: str) -> "Future[list[NotificationResult]]":
        future: Future = Future()
        future.set_result(
            [NotificationResult(success=False, channel="dispatcher", error=error)]
        )
        return future


def build_notifiers(config) -> list[Notifier]:
    """
    Create the notifiers enabled in a NotificationsConfig.

    Args:
        config: NotificationsConfig instance

    Returns:
        List of enabled notifiers (may be empty)
    """
    notifiers = []

    if config.email.enabled:
        notifiers.append(
            NotifierFactory.create({
                "type": "email",
                "smtp_host": config.email.smtp_host,
                "smtp_port": config.email.smtp_port,
                "smtp_user": config.email.smtp_user,
                "smtp_password": config.email.smtp_password,
                "from_address": config.email.from_address,
                "default_to": config.email.default_to,
            })
        )

    if config.telegram.enabled and config.telegram.bot_token:
        notifiers.append(
            NotifierFactory.create({
                "type": "telegram",
                "bot_token": config.telegram.bot_token,
                "chat_id": config.telegram.chat_id,
            })
        )

    return notifiers
