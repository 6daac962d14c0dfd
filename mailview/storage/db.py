"""
SQLite key-value storage for settings that outlive a session.

This module provides a simple, synchronous interface to a ``settings`` table
with JSON-encoded values. Only small UI state is stored here; message content
is never persisted.
"""
import json
import logging
import sqlite3
from pathlib import Path
from typing import Any, Dict, Optional, Union

from mailview import config


logger = logging.getLogger(__name__)


def get_connection(db_path: Optional[Union[str, Path]] = None) -> sqlite3.Connection:
    """
    Open a SQLite connection, creating the parent directory if needed.

    Args:
        db_path: Database file (defaults to config.SETTINGS_DB_PATH);
            ``":memory:"`` opens a private in-memory database.

    Returns:
        A sqlite3.Connection with row_factory set to sqlite3.Row.
    """
    path = str(db_path) if db_path is not None else str(config.SETTINGS_DB_PATH)
    if path != ":memory:":
        Path(path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path)
    conn.row_factory = sqlite3.Row
    return conn


def init_db(conn: sqlite3.Connection) -> None:
    """Create the settings table if it doesn't exist."""
    conn.execute("""
        CREATE TABLE IF NOT EXISTS settings (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    """)
    conn.commit()


def get_settings(conn: sqlite3.Connection) -> Dict[str, Any]:
    """
    Get all stored settings.

    Values that are not valid JSON are returned as raw strings.
    """
    settings = {}
    for row in conn.execute("SELECT key, value FROM settings"):
        try:
            settings[row["key"]] = json.loads(row["value"])
        except (json.JSONDecodeError, TypeError):
            settings[row["key"]] = row["value"]
    return settings


def get_setting(conn: sqlite3.Connection, key: str, default: Any = None) -> Any:
    row = conn.execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
    if row is None:
        return default
    try:
        return json.loads(row["value"])
    except (json.JSONDecodeError, TypeError):
        return row["value"]


def save_setting(conn: sqlite3.Connection, key: str, value: Any) -> None:
    """Insert or replace one setting."""
    conn.execute(
        """
        INSERT OR REPLACE INTO settings (key, value, updated_at)
        VALUES (?, ?, CURRENT_TIMESTAMP)
        """,
        (key, json.dumps(value, default=str)),
    )
    conn.commit()
