"""
Repository classes for CRUD operations.
"""

from datetime import datetime
from typing import Optional

from coinwatch.data.fetcher import MetricSnapshot
from .connection import Database
from .models import AlertRule, to_decimal


class RuleRepository:
    """CRUD operations for alert rules.

    Rules are never updated or physically deleted; the only mutation is
    flipping the active flag.
    """

    def __init__(self, db: Database):
        self.db = db

    def create(self, rule: AlertRule) -> AlertRule:
        """Create a new rule."""
        created_at = rule.created_at or datetime.now()
        with self.db.lock:
            cursor = self.db.connection.cursor()
            cursor.execute(
                """
                INSERT INTO alert_rules
                (owner, symbol, kind, threshold, time_window, active, recipient, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    rule.owner,
                    rule.symbol,
                    rule.kind.value,
                    str(rule.threshold),
                    rule.time_window.value,
                    1 if rule.active else 0,
                    rule.recipient,
                    created_at.isoformat(),
                ),
            )
            self.db.connection.commit()
        rule.id = cursor.lastrowid
        rule.created_at = created_at
        return rule

    def get_by_id(self, rule_id: int) -> Optional[AlertRule]:
        """Get rule by ID."""
        with self.db.lock:
            cursor = self.db.connection.cursor()
            cursor.execute("SELECT * FROM alert_rules WHERE id = ?", (rule_id,))
            row = cursor.fetchone()
        if row is None:
            return None
        return self._row_to_rule(row)

    def find_active_rules_for(
        self,
        symbol: str,
        tenant_key: Optional[str] = None,
        recipient: Optional[str] = None,
    ) -> list[AlertRule]:
        """
        Get active rules for a symbol.

        Args:
            symbol: Coin symbol (case-insensitive)
            tenant_key: Only rules owned by this tenant...
            recipient: ...or addressed to this recipient

        Returns:
            Matching active rules, ordered by ID
        """
        query = "SELECT * FROM alert_rules WHERE symbol = ? AND active = 1"
        params: list = [symbol.upper()]

        if tenant_key is not None or recipient is not None:
            query += " AND (owner = ? OR recipient = ?)"
            params.extend([tenant_key, recipient])

        query += " ORDER BY id"
        with self.db.lock:
            cursor = self.db.connection.cursor()
            cursor.execute(query, params)
            rows = cursor.fetchall()
        return [self._row_to_rule(row) for row in rows]

    def list_active(self, tenant_key: Optional[str] = None) -> list[AlertRule]:
        """List active rules, optionally only a tenant's own."""
        with self.db.lock:
            cursor = self.db.connection.cursor()
            if tenant_key is None:
                cursor.execute(
                    "SELECT * FROM alert_rules WHERE active = 1 ORDER BY id"
                )
            else:
                cursor.execute(
                    """
                    SELECT * FROM alert_rules
                    WHERE active = 1 AND owner = ?
                    ORDER BY id
                    """,
                    (tenant_key,),
                )
            rows = cursor.fetchall()
        return [self._row_to_rule(row) for row in rows]

    def deactivate(self, rule_id: int) -> bool:
        """Deactivate a rule. Returns False if the rule doesn't exist."""
        with self.db.lock:
            cursor = self.db.connection.cursor()
            cursor.execute(
                "UPDATE alert_rules SET active = 0 WHERE id = ?", (rule_id,)
            )
            self.db.connection.commit()
        return cursor.rowcount > 0

    def set_active_for_recipient(self, recipient: str, active: bool) -> int:
        """Flip the active flag on all of a recipient's rules.

        Returns:
            Number of rules changed
        """
        with self.db.lock:
            cursor = self.db.connection.cursor()
            cursor.execute(
                """
                UPDATE alert_rules
                SET active = ?
                WHERE recipient = ? AND active = ?
                """,
                (1 if active else 0, recipient, 0 if active else 1),
            )
            self.db.connection.commit()
        return cursor.rowcount

    def _row_to_rule(self, row) -> AlertRule:
        """Convert database row to AlertRule."""
        return AlertRule(
            id=row["id"],
            owner=row["owner"],
            symbol=row["symbol"],
            kind=row["kind"],
            threshold=row["threshold"],
            time_window=row["time_window"],
            active=bool(row["active"]),
            recipient=row["recipient"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )


class SnapshotRepository:
    """Keeps the latest snapshot of every tracked coin."""

    def __init__(self, db: Database):
        self.db = db

    def upsert(self, snapshot: MetricSnapshot) -> None:
        """Store a snapshot, replacing the coin's previous one."""
        self.bulk_upsert([snapshot])

    def bulk_upsert(self, snapshots: list[MetricSnapshot]) -> None:
        """Store several snapshots in one transaction."""
        with self.db.lock:
            cursor = self.db.connection.cursor()
            cursor.executemany(
                """
                INSERT INTO snapshots
                (coin_id, symbol, name, current_price, price_change_1h,
                 price_change_24h, price_change_7d, market_cap, total_volume,
                 observed_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(coin_id) DO UPDATE SET
                    symbol = excluded.symbol,
                    name = excluded.name,
                    current_price = excluded.current_price,
                    price_change_1h = excluded.price_change_1h,
                    price_change_24h = excluded.price_change_24h,
                    price_change_7d = excluded.price_change_7d,
                    market_cap = excluded.market_cap,
                    total_volume = excluded.total_volume,
                    observed_at = excluded.observed_at
                """,
                [
                    (
                        s.coin_id,
                        s.symbol,
                        s.name,
                        _to_text(s.current_price),
                        _to_text(s.price_change_1h),
                        _to_text(s.price_change_24h),
                        _to_text(s.price_change_7d),
                        _to_text(s.market_cap),
                        _to_text(s.total_volume),
                        s.timestamp.isoformat(),
                    )
                    for s in snapshots
                ],
            )
            self.db.connection.commit()

    def get_by_coin_id(self, coin_id: str) -> Optional[MetricSnapshot]:
        """Get the latest snapshot of a coin."""
        with self.db.lock:
            cursor = self.db.connection.cursor()
            cursor.execute("SELECT * FROM snapshots WHERE coin_id = ?", (coin_id,))
            row = cursor.fetchone()
        if row is None:
            return None
        return self._row_to_snapshot(row)

    def list_all(self) -> list[MetricSnapshot]:
        """List latest snapshots, largest market cap first."""
        with self.db.lock:
            cursor = self.db.connection.cursor()
            cursor.execute("SELECT * FROM snapshots")
            rows = cursor.fetchall()
        snapshots = [self._row_to_snapshot(row) for row in rows]
        # market_cap is stored as text, so sort here rather than in SQL
        return sorted(
            snapshots,
            key=lambda s: s.market_cap if s.market_cap is not None else -1,
            reverse=True,
        )

    def _row_to_snapshot(self, row) -> MetricSnapshot:
        """Convert database row to MetricSnapshot."""
        return MetricSnapshot(
            coin_id=row["coin_id"],
            symbol=row["symbol"],
            name=row["name"],
            current_price=to_decimal(row["current_price"]),
            price_change_1h=to_decimal(row["price_change_1h"]),
            price_change_24h=to_decimal(row["price_change_24h"]),
            price_change_7d=to_decimal(row["price_change_7d"]),
            market_cap=to_decimal(row["market_cap"]),
            total_volume=to_decimal(row["total_volume"]),
            timestamp=datetime.fromisoformat(row["observed_at"]),
        )


def _to_text(value) -> Optional[str]:
    return None if value is None else str(value)
