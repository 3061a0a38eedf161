"""
CLI commands for CoinWatch.
"""

import argparse
import logging
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

from coinwatch.app import CoinWatchApp, TickReport
from coinwatch.config import default_config, load_config
from coinwatch.database.connection import Database
from coinwatch.database.models import AlertKind, AlertRule, TimeWindow
from coinwatch.database.repository import RuleRepository


def add_rule(
    db: Database,
    symbol: str,
    kind: str,
    threshold: str,
    recipient: Optional[str] = None,
    owner: Optional[str] = None,
    window: str = "24h",
) -> AlertRule:
    """Add a new alert rule."""
    repo = RuleRepository(db)
    rule = AlertRule(
        symbol=symbol,
        kind=kind,
        threshold=threshold,
        recipient=recipient,
        owner=owner,
        time_window=window,
    )
    return repo.create(rule)


def list_rules(db: Database, owner: Optional[str] = None) -> list[AlertRule]:
    """List active rules, optionally for one owner."""
    return RuleRepository(db).list_active(owner)


def deactivate_rule(db: Database, rule_id: int) -> bool:
    """Deactivate a rule by ID."""
    return RuleRepository(db).deactivate(rule_id)


def set_recipient_rules(db: Database, recipient: str, active: bool) -> dict:
    """Pause or resume all of a recipient's rules."""
    changed = RuleRepository(db).set_active_for_recipient(recipient, active)
    return {"recipient": recipient, "changed": changed}


def format_report(report: TickReport) -> str:
    scope = report.tenant_key or "global"
    if report.error:
        return f"Tick ({scope}) failed: {report.error}"
    return (
        f"Tick ({scope}): {report.snapshots} coins, {report.rules_checked} rules, "
        f"{report.fired} fired, {report.suppressed} suppressed, "
        f"{report.dispatched} dispatched"
    )


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="CoinWatch CLI")
    parser.add_argument("--config", help="Path to config file")
    parser.add_argument("--db", help="Database path (overrides config)")

    subparsers = parser.add_subparsers(dest="command", help="Command")

    # Rules commands
    rules_parser = subparsers.add_parser("rules", help="Rules management")
    rules_subparsers = rules_parser.add_subparsers(dest="action")

    add_rule_parser = rules_subparsers.add_parser("add", help="Add rule")
    add_rule_parser.add_argument("--symbol", required=True, help="Coin symbol, e.g. BTC")
    add_rule_parser.add_argument(
        "--kind", required=True, choices=[k.value for k in AlertKind]
    )
    add_rule_parser.add_argument("--threshold", required=True, help="Threshold value")
    add_rule_parser.add_argument(
        "--window", default="24h", choices=[w.value for w in TimeWindow]
    )
    add_rule_parser.add_argument("--recipient", help="Notification recipient")
    add_rule_parser.add_argument("--owner", help="Owning tenant key")

    list_rules_parser = rules_subparsers.add_parser("list", help="List active rules")
    list_rules_parser.add_argument("--owner", help="Owning tenant key")

    deactivate_parser = rules_subparsers.add_parser("deactivate", help="Deactivate rule")
    deactivate_parser.add_argument("--id", type=int, required=True, help="Rule ID")

    for action, help_text in (("pause", "Deactivate"), ("resume", "Reactivate")):
        p = rules_subparsers.add_parser(action, help=f"{help_text} a recipient's rules")
        p.add_argument("--recipient", required=True, help="Notification recipient")

    # Monitoring commands
    tick_parser = subparsers.add_parser("tick", help="Run one check now")
    tick_parser.add_argument("--tenant", help="Tenant key (default: all rules)")
    tick_parser.add_argument("--recipient", help="Tenant's recipient")

    subparsers.add_parser("prices", help="Show latest saved prices")

    test_parser = subparsers.add_parser("notify-test", help="Send a test notification")
    test_parser.add_argument("--recipient", help="Recipient override")

    args = parser.parse_args()

    config = load_config(args.config) if args.config else default_config()
    if args.db:
        config.database.path = args.db

    logging.basicConfig(
        level=getattr(logging, config.advanced.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    # Initialize database
    db = Database(config.database.path)
    db.initialize()

    # Handle commands
    if args.command == "rules":
        if args.action == "add":
            try:
                rule = add_rule(
                    db,
                    symbol=args.symbol,
                    kind=args.kind,
                    threshold=args.threshold,
                    recipient=args.recipient,
                    owner=args.owner,
                    window=args.window,
                )
                print(f"Created rule with ID: {rule.id}")
            except ValueError as e:
                print(f"Invalid rule: {e}")
        elif args.action == "list":
            for r in list_rules(db, args.owner):
                print(
                    f"ID: {r.id}, {r.symbol} {r.kind.value} {r.threshold} "
                    f"({r.time_window.value}) -> {r.recipient or '-'} "
                    f"[owner: {r.owner or '-'}]"
                )
        elif args.action == "deactivate":
            if deactivate_rule(db, args.id):
                print(f"Rule {args.id} deactivated")
            else:
                print(f"Rule {args.id} not found")
        elif args.action in ("pause", "resume"):
            result = set_recipient_rules(db, args.recipient, args.action == "resume")
            print(f"{result['changed']} rule(s) updated for {args.recipient}")

    elif args.command in ("tick", "notify-test"):
        app = CoinWatchApp(db, config)
        try:
            if args.command == "tick":
                report = app.force_tick(args.tenant, args.recipient)
                print(format_report(report))
            else:
                results = app.send_test_notification(args.recipient).result()
                for result in results:
                    status = "ok" if result.success else f"failed ({result.error})"
                    print(f"{result.channel}: {status}")
                if not results:
                    print("No notification channels enabled")
        finally:
            app.shutdown()

    elif args.command == "prices":
        app = CoinWatchApp(db, config)
        try:
            for s in app.list_saved_snapshots():
                change = f"{s.price_change_24h:.2f}%" if s.price_change_24h is not None else "N/A"
                price = f"${s.current_price:,.2f}" if s.current_price is not None else "N/A"
                print(f"{s.symbol}: {price} ({change} 24h) - {s.name}")
        finally:
            app.shutdown()

    else:
        parser.print_help()

    db.close()


if __name__ == "__main__":
    main()
