"""
Application service tying together fetching, evaluation, dedup and dispatch.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from typing import Optional, Union

from coinwatch.config import AppConfig
from coinwatch.data.fetcher import CoinGeckoFetcher, MetricSnapshot, TransientFetchError
from coinwatch.database.connection import Database
from coinwatch.database.models import AlertKind, AlertRule, TimeWindow
from coinwatch.database.repository import RuleRepository, SnapshotRepository
from coinwatch.dedup import DedupKey, NotificationDeduplicator
from coinwatch.monitor import MonitorSessionRegistry, StatusSnapshot
from coinwatch.notifiers.base import NotificationEvent
from coinwatch.notifiers.dispatcher import NotificationDispatcher, build_notifiers
from coinwatch.rules.engine import AlertEvaluator, FiredRule

logger = logging.getLogger(__name__)


@dataclass
class TickReport:
    """Outcome of one pipeline pass."""

    tenant_key: Optional[str]
    snapshots: int = 0
    rules_checked: int = 0
    fired: int = 0
    suppressed: int = 0
    dispatched: int = 0
    error: Optional[str] = None


class CoinWatchApp:
    """Main CoinWatch application.

    Owns every collaborator and runs the fetch, evaluate, dedup, dispatch
    pipeline. The session registry only knows the ``run_tick`` callable.
    """

    def __init__(
        self,
        db: Database,
        config: AppConfig,
        fetcher: Optional[CoinGeckoFetcher] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        deduplicator: Optional[NotificationDeduplicator] = None,
    ):
        """
        Initialize CoinWatch app.

        Args:
            db: Initialized database
            config: Application configuration
            fetcher: Market data source (built from config if omitted)
            dispatcher: Notification dispatcher (built from config if omitted)
            deduplicator: Cooldown cache (built from config if omitted)
        """
        self.db = db
        self.config = config

        # Repositories
        self.rule_repo = RuleRepository(db)
        self.snapshot_repo = SnapshotRepository(db)

        # Services
        if fetcher is None:
            ds = config.data_source
            fetcher = CoinGeckoFetcher(
                base_url=ds.base_url,
                vs_currency=ds.vs_currency,
                max_retries=ds.max_retries,
                retry_delay=ds.retry_delay_seconds,
                timeout=ds.timeout_seconds,
            )
        self.fetcher = fetcher

        defaults = config.default_rules
        self.evaluator = AlertEvaluator(
            buy_threshold=defaults.buy_threshold,
            sell_threshold=defaults.sell_threshold,
            volatility_threshold=defaults.volatility_threshold,
        )
        if deduplicator is None:
            deduplicator = NotificationDeduplicator(
                cooldown=timedelta(minutes=config.dedup.cooldown_minutes),
                retention=timedelta(hours=config.dedup.retention_hours),
            )
        self.deduplicator = deduplicator

        if dispatcher is None:
            notif = config.notifications
            dispatcher = NotificationDispatcher(
                build_notifiers(notif),
                max_workers=notif.workers,
                max_pending=notif.max_pending,
                enqueue_timeout=notif.enqueue_timeout_seconds,
            )
        self.dispatcher = dispatcher

        self.registry = MonitorSessionRegistry(
            tick=self.run_tick, pool_size=config.monitor.pool_size
        )

    # Monitoring control

    def start_monitoring(self, tenant_key: str, recipient: str) -> bool:
        """Start periodic monitoring for a tenant."""
        return self.registry.start(
            tenant_key, recipient, self.config.monitor.tick_interval_seconds
        )

    def stop_monitoring(self, tenant_key: str) -> bool:
        """Stop periodic monitoring for a tenant."""
        return self.registry.stop(tenant_key)

    def get_status(self, tenant_key: str) -> StatusSnapshot:
        return self.registry.status(tenant_key)

    def force_tick(
        self, tenant_key: Optional[str] = None, recipient: Optional[str] = None
    ) -> TickReport:
        """
        Run one pipeline pass immediately.

        Args:
            tenant_key: Tenant to run for; None runs a global pass over all
                active rules
            recipient: Tenant's recipient when it has no running session

        Returns:
            TickReport of the pass
        """
        if tenant_key is None:
            return self.run_global_tick()
        return self.registry.run_now(tenant_key, recipient or tenant_key)

    # Rule management

    def create_rule(
        self,
        symbol: str,
        kind: Union[AlertKind, str],
        threshold: Union[Decimal, float, str],
        recipient: Optional[str] = None,
        owner: Optional[str] = None,
        time_window: Union[TimeWindow, str] = TimeWindow.TWENTY_FOUR_HOURS,
    ) -> AlertRule:
        """
        Create an active alert rule.

        Raises:
            ValueError: If kind, window or threshold is invalid
        """
        rule = AlertRule(
            symbol=symbol,
            kind=kind,
            threshold=threshold,
            recipient=recipient,
            owner=owner,
            time_window=time_window,
            active=True,
        )
        saved = self.rule_repo.create(rule)
        logger.info(
            f"Created rule {saved.id}: {saved.symbol} {saved.kind.value} "
            f"{saved.threshold} -> {saved.recipient}"
        )
        return saved

    def list_active_rules(self, tenant_key: Optional[str] = None) -> list[AlertRule]:
        return self.rule_repo.list_active(tenant_key)

    def deactivate_rule(self, rule_id: int) -> bool:
        deactivated = self.rule_repo.deactivate(rule_id)
        if deactivated:
            logger.info(f"Rule {rule_id} deactivated")
        else:
            logger.warning(f"Rule {rule_id} not found")
        return deactivated

    def pause_rules(self, recipient: str) -> int:
        """Deactivate all of a recipient's active rules."""
        count = self.rule_repo.set_active_for_recipient(recipient, False)
        logger.info(f"{count} rule(s) deactivated for {recipient}")
        return count

    def resume_rules(self, recipient: str) -> int:
        """Reactivate all of a recipient's inactive rules."""
        count = self.rule_repo.set_active_for_recipient(recipient, True)
        logger.info(f"{count} rule(s) reactivated for {recipient}")
        return count

    def list_saved_snapshots(self) -> list[MetricSnapshot]:
        return self.snapshot_repo.list_all()

    def send_test_notification(self, recipient: Optional[str] = None):
        return self.dispatcher.send_test(recipient)

    # Pipeline

    def run_tick(self, tenant_key: str, recipient: str) -> TickReport:
        """
        Run the pipeline for one tenant.

        Only rules owned by or addressed to the tenant are evaluated. A
        failed fetch ends the tick without evaluating anything.
        """
        report = TickReport(tenant_key=tenant_key)

        snapshots = self._fetch(report)
        if snapshots is None:
            return report

        for snapshot in snapshots:
            try:
                rules = self.rule_repo.find_active_rules_for(
                    snapshot.symbol, tenant_key=tenant_key, recipient=recipient
                )
                report.rules_checked += len(rules)

                fired = self.evaluator.evaluate(snapshot, rules)
                if self.config.default_rules.enabled:
                    fired.extend(self.evaluator.evaluate_defaults(snapshot))
            except Exception as e:
                logger.error(
                    f"Error evaluating {snapshot.symbol} for {tenant_key}: {e}"
                )
                continue

            for item in fired:
                self._notify(report, item, tenant_key, recipient)

        logger.info(
            f"Tick for {tenant_key} done: {report.rules_checked} rules checked, "
            f"{report.fired} fired, {report.suppressed} suppressed, "
            f"{report.dispatched} dispatched"
        )
        return report

    def run_global_tick(self) -> TickReport:
        """
        Run the pipeline over every active rule.

        Each firing goes to the rule's recipient and is deduplicated under
        the rule's owner (or recipient when unowned).
        """
        report = TickReport(tenant_key=None)

        snapshots = self._fetch(report)
        if snapshots is None:
            return report

        for snapshot in snapshots:
            try:
                rules = self.rule_repo.find_active_rules_for(snapshot.symbol)
                report.rules_checked += len(rules)
                fired = self.evaluator.evaluate(snapshot, rules)
            except Exception as e:
                logger.error(f"Error evaluating {snapshot.symbol}: {e}")
                continue

            for item in fired:
                rule = item.rule
                scope = rule.owner or rule.recipient or "global"
                self._notify(report, item, scope, rule.recipient)

        logger.info(
            f"Global tick done: {report.snapshots} coins, {report.fired} fired, "
            f"{report.dispatched} dispatched"
        )
        return report

    def shutdown(self) -> None:
        """Stop all sessions, then drain notifications."""
        self.registry.shutdown(self.config.monitor.shutdown_grace_seconds)
        self.dispatcher.shutdown(wait=True)

    def _fetch(self, report: TickReport) -> Optional[list[MetricSnapshot]]:
        """Fetch and store snapshots; None when the source is unavailable."""
        try:
            snapshots = self.fetcher.fetch_all(self.config.data_source.coins)
        except TransientFetchError as e:
            report.error = str(e)
            logger.error(f"Skipping tick for {report.tenant_key or 'global'}: {e}")
            return None

        report.snapshots = len(snapshots)
        logger.info(f"Fetched {len(snapshots)} market snapshot(s)")

        try:
            self.snapshot_repo.bulk_upsert(snapshots)
        except Exception as e:
            logger.error(f"Error saving snapshots: {e}")

        return snapshots

    def _notify(
        self,
        report: TickReport,
        fired: FiredRule,
        scope: str,
        recipient: Optional[str],
    ) -> None:
        """Deduplicate one firing and hand it to the dispatcher."""
        report.fired += 1
        key = DedupKey(scope, fired.snapshot.symbol, fired.kind.value)

        if not self.deduplicator.try_fire(key):
            report.suppressed += 1
            return

        try:
            self.dispatcher.send(NotificationEvent.from_fired(fired, recipient))
            report.dispatched += 1
            logger.info(
                f"Alert fired: {fired.snapshot.symbol} {fired.kind.value} "
                f"(rule {fired.rule_id}) -> {recipient}"
            )
        except Exception as e:
            logger.error(
                f"Error dispatching {fired.snapshot.symbol} {fired.kind.value} "
                f"(rule {fired.rule_id}) for {scope}: {e}"
            )
