"""
SQLite Storage Layer.
Key-value persistence for the historical candle snapshot and bot state.
All prices stored as TEXT to preserve Decimal precision.
"""

from __future__ import annotations
import sqlite3
import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from exchange.errors import PersistenceError
import logging

logger = logging.getLogger(__name__)


class Database:
    """SQLite database manager with typed accessors."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None

    def connect(self):
        """Initialize database connection and create tables."""
        try:
            self._conn = sqlite3.connect(self.db_path)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._create_tables()
        except sqlite3.Error as e:
            raise PersistenceError(f"Cannot open {self.db_path}: {e}") from e
        logger.info(f"[DB] Connected to {self.db_path}")

    def close(self):
        if self._conn:
            self._conn.close()
            self._conn = None

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise PersistenceError("Database not connected")
        return self._conn

    def _create_tables(self):
        self.conn.executescript("""
            CREATE TABLE IF NOT EXISTS bot_state (
                key TEXT PRIMARY KEY,
                value TEXT,
                updated_at TEXT
            );
        """)
        self.conn.commit()

    # ==================== State Operations ====================

    def set_state(self, key: str, value: str):
        try:
            self.conn.execute(
                "INSERT OR REPLACE INTO bot_state (key, value, updated_at) VALUES (?, ?, ?)",
                (key, value, datetime.now(timezone.utc).isoformat()),
            )
            self.conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to write {key}: {e}") from e

    def get_state(self, key: str) -> Optional[str]:
        try:
            row = self.conn.execute("SELECT value FROM bot_state WHERE key = ?", (key,)).fetchone()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to read {key}: {e}") from e
        return row["value"] if row else None

    # ==================== Snapshot Operations ====================

    def save_snapshot(self, key: str, document: Dict[str, Any]):
        """Persist a {symbol: {timeframe: [candle, ...]}} document."""
        try:
            payload = json.dumps(document, separators=(",", ":"))
        except (TypeError, ValueError) as e:
            raise PersistenceError(f"Snapshot not serializable: {e}") from e
        self.set_state(key, payload)
        logger.info(f"[DB] Saved snapshot '{key}' ({len(payload)} bytes)")

    def load_snapshot(self, key: str) -> Optional[Dict[str, Any]]:
        """
        Load a snapshot document. Returns None if absent.
        Raises PersistenceError if stored but corrupt.
        """
        raw = self.get_state(key)
        if raw is None:
            return None

        try:
            document = json.loads(raw)
        except json.JSONDecodeError as e:
            raise PersistenceError(f"Corrupt snapshot '{key}': {e}") from e

        if not isinstance(document, dict):
            raise PersistenceError(f"Corrupt snapshot '{key}': expected object")
        return document
