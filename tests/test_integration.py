"""
Integration tests.
End-to-end tests for the complete alert flow.
"""

import sys
from concurrent.futures import Future
from pathlib import Path
from unittest.mock import Mock, patch

import pytest

from coinwatch import cli
from coinwatch.app import CoinWatchApp, TickReport
from coinwatch.config import ConfigValidationError, default_config, load_config
from coinwatch.data.fetcher import CoinGeckoFetcher, TransientFetchError
from coinwatch.database.connection import Database
from coinwatch.database.models import AlertKind
from coinwatch.dedup import DedupKey, NotificationDeduplicator
from coinwatch.notifiers.dispatcher import NotificationDispatcher
from coinwatch.rules.engine import DefaultSignal
from conftest import make_snapshot


def done_future(result=None) -> Future:
    future = Future()
    future.set_result(result or [])
    return future


class TestFullAlertFlow:
    """Test complete alert flow from data fetch to notification."""

    @pytest.fixture
    def fetcher(self, btc_snapshot):
        fetcher = Mock(spec=CoinGeckoFetcher)
        fetcher.fetch_all.return_value = [btc_snapshot]
        return fetcher

    @pytest.fixture
    def dispatcher(self):
        dispatcher = Mock(spec=NotificationDispatcher)
        dispatcher.send.return_value = done_future()
        return dispatcher

    @pytest.fixture
    def app(self, db, fetcher, dispatcher, clock):
        config = default_config()
        dedup = NotificationDeduplicator(clock=clock)
        app = CoinWatchApp(
            db, config, fetcher=fetcher, dispatcher=dispatcher, deduplicator=dedup
        )
        yield app
        app.shutdown()

    def sent_events(self, dispatcher):
        return [c[0][0] for c in dispatcher.send.call_args_list]

    def test_tick_fires_and_dispatches(self, app, dispatcher):
        """Should notify the tenant when its rule fires."""
        app.create_rule(
            "btc", AlertKind.PRICE_AT_OR_BELOW, "40000",
            recipient="alice@example.com", owner="alice",
        )

        report = app.run_tick("alice", "alice@example.com")

        assert isinstance(report, TickReport)
        assert report.snapshots == 1
        assert report.rules_checked == 1
        assert report.fired == 1
        assert report.dispatched == 1
        assert report.error is None

        event = self.sent_events(dispatcher)[0]
        assert event.symbol == "BTC"
        assert event.alert_kind == "price_at_or_below"
        assert event.recipient == "alice@example.com"
        assert event.current_price == "$39,500.00"

    def test_repeat_within_cooldown_is_suppressed(self, app, dispatcher, clock):
        """Should not notify twice for the same condition within the cooldown."""
        app.create_rule("BTC", "price_at_or_below", 40000, owner="alice")

        app.run_tick("alice", "alice@example.com")
        clock.advance(minutes=5)
        report = app.run_tick("alice", "alice@example.com")

        assert report.fired == 1
        assert report.suppressed == 1
        assert report.dispatched == 0
        assert dispatcher.send.call_count == 1

        clock.advance(minutes=30)
        assert app.run_tick("alice", "alice@example.com").dispatched == 1

    def test_fetch_failure_skips_tick(self, app, fetcher, dispatcher):
        """Should evaluate and store nothing when the source is down."""
        app.create_rule("BTC", "price_at_or_below", 40000, owner="alice")
        fetcher.fetch_all.side_effect = TransientFetchError("down")

        report = app.run_tick("alice", "alice@example.com")

        assert report.error == "down"
        assert report.rules_checked == 0
        dispatcher.send.assert_not_called()
        assert app.list_saved_snapshots() == []

    def test_snapshots_are_saved(self, app, btc_snapshot):
        """Should keep the latest fetched snapshot of every coin."""
        app.run_tick("alice", "alice@example.com")
        assert app.list_saved_snapshots() == [btc_snapshot]

    def test_tenants_only_see_their_rules(self, app, dispatcher):
        """Should not evaluate another tenant's rules."""
        app.create_rule("BTC", "price_at_or_below", 40000, recipient="alice@example.com", owner="alice")

        report = app.run_tick("bob", "bob@example.com")

        assert report.rules_checked == 0
        dispatcher.send.assert_not_called()

    def test_tenants_have_separate_cooldowns(self, app, dispatcher):
        """Should let two tenants be notified of the same condition."""
        app.create_rule("BTC", "price_at_or_below", 40000, owner="alice")
        app.create_rule("BTC", "price_at_or_below", 40000, owner="bob")

        app.run_tick("alice", "alice@example.com")
        app.run_tick("bob", "bob@example.com")

        recipients = [e.recipient for e in self.sent_events(dispatcher)]
        assert recipients == ["alice@example.com", "bob@example.com"]

    def test_default_signals(self, app, fetcher, dispatcher):
        """Should send built-in buy signals to the tenant's recipient."""
        fetcher.fetch_all.return_value = [make_snapshot(change_24h="-8")]

        report = app.run_tick("alice", "alice@example.com")

        assert report.fired == 1
        event = self.sent_events(dispatcher)[0]
        assert event.alert_kind == DefaultSignal.BUY_SIGNAL.value
        assert event.recipient == "alice@example.com"

    def test_default_signals_disabled(self, app, fetcher, dispatcher):
        """Should skip built-in signals when disabled."""
        app.config.default_rules.enabled = False
        fetcher.fetch_all.return_value = [make_snapshot(change_24h="-8")]

        assert app.run_tick("alice", "alice@example.com").fired == 0
        dispatcher.send.assert_not_called()

    def test_dispatch_error_keeps_dedup_record(self, app, dispatcher, clock):
        """Should not retry a firing whose dispatch failed within the cooldown."""
        app.create_rule("BTC", "price_at_or_below", 40000, owner="alice")
        dispatcher.send.side_effect = RuntimeError("queue gone")

        first = app.run_tick("alice", "alice@example.com")
        clock.advance(minutes=1)
        second = app.run_tick("alice", "alice@example.com")

        assert first.dispatched == 0
        assert second.suppressed == 1
        assert DedupKey("alice", "BTC", "price_at_or_below") in app.deduplicator

    def test_global_tick(self, app, dispatcher):
        """Should evaluate every active rule and address each rule's recipient."""
        app.create_rule("BTC", "price_at_or_below", 40000, recipient="alice@example.com", owner="alice")
        app.create_rule("BTC", "volume_at_or_above", 1, recipient="bob@example.com")
        app.create_rule("BTC", "price_at_or_above", 100000, recipient="carol@example.com")

        report = app.force_tick()

        assert report.tenant_key is None
        assert report.rules_checked == 3
        assert report.dispatched == 2
        recipients = sorted(e.recipient for e in self.sent_events(dispatcher))
        assert recipients == ["alice@example.com", "bob@example.com"]
        assert DedupKey("alice", "BTC", "price_at_or_below") in app.deduplicator
        assert DedupKey("bob@example.com", "BTC", "volume_at_or_above") in app.deduplicator

    def test_force_tick_for_tenant(self, app, dispatcher):
        """Should run one tenant tick on demand."""
        app.create_rule("BTC", "price_at_or_below", 40000, owner="alice")

        report = app.force_tick("alice", "alice@example.com")

        assert report.tenant_key == "alice"
        assert report.dispatched == 1

    def test_monitoring_lifecycle(self, app, fetcher):
        """Should start, report and stop a tenant's monitoring."""
        assert app.start_monitoring("alice", "alice@example.com") is True
        assert app.start_monitoring("alice", "alice@example.com") is False
        assert app.get_status("alice").active is True

        assert app.stop_monitoring("alice") is True
        assert app.get_status("alice").active is False
        assert app.stop_monitoring("alice") is False

    def test_rule_management(self, app):
        """Should list, deactivate, pause and resume rules."""
        first = app.create_rule("BTC", "price_at_or_below", 40000, recipient="alice@example.com", owner="alice")
        app.create_rule("ETH", "price_at_or_above", 3000, recipient="alice@example.com", owner="alice")

        assert len(app.list_active_rules("alice")) == 2
        assert app.deactivate_rule(first.id) is True
        assert app.deactivate_rule(999) is False
        assert len(app.list_active_rules()) == 1

        assert app.pause_rules("alice@example.com") == 1
        assert app.list_active_rules() == []
        assert app.resume_rules("alice@example.com") == 2

    def test_invalid_rule_rejected(self, app):
        """Should reject invalid rule input before storing it."""
        with pytest.raises(ValueError):
            app.create_rule("BTC", "price_at_or_below", -1)
        assert app.list_active_rules() == []

    def test_send_test_notification(self, app, dispatcher):
        """Should delegate test notifications to the dispatcher."""
        app.send_test_notification("alice@example.com")
        dispatcher.send_test.assert_called_once_with("alice@example.com")

    def test_shutdown_drains_dispatcher(self, db, fetcher, dispatcher):
        """Should stop monitoring and wait for queued notifications."""
        app = CoinWatchApp(db, default_config(), fetcher=fetcher, dispatcher=dispatcher)
        app.start_monitoring("alice", "alice@example.com")

        app.shutdown()

        assert not app.get_status("alice").active
        dispatcher.shutdown.assert_called_once_with(wait=True)


class TestConfigLoading:
    """Test YAML configuration loading."""

    def write(self, tmp_path: Path, text: str) -> str:
        path = tmp_path / "config.yaml"
        path.write_text(text)
        return str(path)

    def test_load_full_config(self, tmp_path, monkeypatch):
        """Should load values and substitute environment variables."""
        monkeypatch.setenv("TG_TOKEN", "123:abc")
        monkeypatch.setenv("ALERT_EMAILS", "a@example.com, b@example.com")
        path = self.write(
            tmp_path,
            f"""
database:
  path: {tmp_path / "coinwatch.db"}
data_source:
  coins: [bitcoin, ethereum]
monitor:
  tick_interval_seconds: 60
  tenants:
    - key: alice
      recipient: alice@example.com
dedup:
  cooldown_minutes: 15
notifications:
  email:
    enabled: "true"
    default_to: ${{ALERT_EMAILS}}
  telegram:
    enabled: true
    bot_token: ${{TG_TOKEN}}
    chat_id: "42"
""",
        )

        config = load_config(path)

        assert config.data_source.coins == ["bitcoin", "ethereum"]
        assert config.monitor.tick_interval_seconds == 60
        assert config.monitor.tenants[0].key == "alice"
        assert config.dedup.cooldown_minutes == 15
        assert config.notifications.email.enabled is True
        assert config.notifications.email.default_to == ["a@example.com", "b@example.com"]
        assert config.notifications.telegram.bot_token == "123:abc"
        assert config.default_rules.buy_threshold == -5.0

    def test_missing_file(self, tmp_path):
        """Should raise FileNotFoundError for a missing file."""
        with pytest.raises(FileNotFoundError):
            load_config(str(tmp_path / "nope.yaml"))

    @pytest.mark.parametrize(
        "body",
        [
            "monitor:\n  tick_interval_seconds: 0\n",
            "monitor:\n  pool_size: -1\n",
            "monitor:\n  tenants:\n    - key: alice\n",
            "default_rules:\n  buy_threshold: 5\n",
            "default_rules:\n  sell_threshold: -1\n",
            "dedup:\n  cooldown_minutes: 180\n  retention_hours: 2\n",
            "database:\n  path: ''\n",
            "advanced:\n  colour: blue\n",
        ],
    )
    def test_invalid_config(self, tmp_path, body):
        """Should raise ConfigValidationError for invalid values."""
        if "database" not in body:
            body = f"database:\n  path: {tmp_path / 'x.db'}\n" + body
        path = self.write(tmp_path, body)

        with pytest.raises(ConfigValidationError):
            load_config(path)


class TestCli:
    """Test CLI commands."""

    def test_rule_commands(self, db):
        """Should add, list, deactivate, pause and resume rules."""
        rule = cli.add_rule(db, "eth", "price_at_or_above", "3000", recipient="bob@example.com", owner="bob")
        assert rule.id is not None
        assert [r.symbol for r in cli.list_rules(db, "bob")] == ["ETH"]

        assert cli.set_recipient_rules(db, "bob@example.com", False) == {
            "recipient": "bob@example.com",
            "changed": 1,
        }
        assert cli.set_recipient_rules(db, "bob@example.com", True)["changed"] == 1

        assert cli.deactivate_rule(db, rule.id) is True
        assert cli.list_rules(db) == []

    def test_add_rule_rejects_bad_kind(self, db):
        """Should surface validation errors."""
        with pytest.raises(ValueError):
            cli.add_rule(db, "BTC", "price_sideways", "1")

    def test_format_report(self):
        """Should summarize a tick report."""
        report = TickReport(tenant_key="alice", snapshots=5, rules_checked=3, fired=2, suppressed=1, dispatched=1)
        assert cli.format_report(report) == (
            "Tick (alice): 5 coins, 3 rules, 2 fired, 1 suppressed, 1 dispatched"
        )
        assert cli.format_report(TickReport(tenant_key=None, error="down")) == (
            "Tick (global) failed: down"
        )

    def test_main_rules_add_and_list(self, tmp_path, capsys):
        """Should run rule subcommands against the given database."""
        db_path = str(tmp_path / "cli.db")
        argv = ["coinwatch-cli", "--db", db_path, "rules", "add",
                "--symbol", "btc", "--kind", "price_at_or_below", "--threshold", "40000",
                "--recipient", "alice@example.com"]
        with patch.object(sys, "argv", argv):
            cli.main()
        with patch.object(sys, "argv", ["coinwatch-cli", "--db", db_path, "rules", "list"]):
            cli.main()

        out = capsys.readouterr().out
        assert "Created rule with ID: 1" in out
        assert "BTC price_at_or_below 40000" in out


class TestServiceEntryPoint:
    """Test the long-running service entry point."""

    def test_dry_run(self, tmp_path, sample_market_item):
        """Should run one global tick without notifying anyone."""
        from coinwatch import main as service

        config_path = tmp_path / "config.yaml"
        config_path.write_text(
            f"database:\n  path: {tmp_path / 'svc.db'}\n"
            "data_source:\n  coins: [bitcoin]\n"
        )
        response = Mock()
        response.json.return_value = [sample_market_item]

        argv = ["coinwatch", "--config", str(config_path), "--dry-run"]
        with patch.object(sys, "argv", argv), patch("requests.get", return_value=response):
            service.main()

        db = Database(str(tmp_path / "svc.db"))
        try:
            row = db.connection.execute("SELECT symbol FROM snapshots").fetchone()
        finally:
            db.close()
        assert row["symbol"] == "BTC"
