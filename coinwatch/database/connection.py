"""
SQLite database connection and schema management.
"""

import sqlite3
import threading
from pathlib import Path
from typing import Optional


class Database:
    """SQLite database connection manager.

    One connection is shared by every monitor worker thread, so all
    statements must run while holding ``lock``.
    """

    def __init__(self, db_path: str):
        """
        Initialize database connection.

        Args:
            db_path: Path to SQLite database file, or ":memory:" for in-memory DB.
        """
        self.db_path = db_path
        self.lock = threading.RLock()
        self._connection: Optional[sqlite3.Connection] = None
        self._connect()

    def _connect(self) -> None:
        """Establish database connection."""
        if self.db_path != ":memory:":
            # Ensure parent directory exists
            path = Path(self.db_path)
            path.parent.mkdir(parents=True, exist_ok=True)

        self._connection = sqlite3.connect(self.db_path, check_same_thread=False)
        self._connection.row_factory = sqlite3.Row

    @property
    def connection(self) -> sqlite3.Connection:
        """Get the database connection."""
        if self._connection is None:
            raise sqlite3.ProgrammingError("Database connection is closed")
        return self._connection

    def initialize(self) -> None:
        """Create database schema if it doesn't exist."""
        with self.lock:
            cursor = self.connection.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS alert_rules (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    owner TEXT,
                    symbol TEXT NOT NULL,
                    kind TEXT NOT NULL,
                    threshold TEXT NOT NULL,
                    time_window TEXT NOT NULL DEFAULT '24h',
                    active INTEGER NOT NULL DEFAULT 1,
                    recipient TEXT,
                    created_at TIMESTAMP NOT NULL
                )
            """)

            # Latest snapshot per coin, overwritten every fetch
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS snapshots (
                    coin_id TEXT PRIMARY KEY,
                    symbol TEXT NOT NULL,
                    name TEXT NOT NULL,
                    current_price TEXT,
                    price_change_1h TEXT,
                    price_change_24h TEXT,
                    price_change_7d TEXT,
                    market_cap TEXT,
                    total_volume TEXT,
                    observed_at TIMESTAMP NOT NULL
                )
            """)

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_rules_symbol_active
                ON alert_rules(symbol, active)
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_rules_recipient
                ON alert_rules(recipient)
            """)

            self.connection.commit()

    def close(self) -> None:
        """Close the database connection."""
        with self.lock:
            if self._connection:
                self._connection.close()
                self._connection = None
