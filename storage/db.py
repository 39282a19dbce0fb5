"""
storage/db.py

SQLite key/value backend for the department's collections.

Schema
------
kv_store   — one row per collection key, value stored as JSON text
audit_log  — append-only action log

Selected with ``MN_BACKEND=sqlite``; the JSON-file backend in
pipelines/storage.py is the default. Both expose the same methods.

Usage
-----
    from storage.db import SqliteBackend
    backend = SqliteBackend(settings.sqlite_path)
    backend.write("gestion_patient_mn_users", [...])
"""

import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from pipelines.schemas import AuditEntry

logger = logging.getLogger(__name__)

_DDL = """
CREATE TABLE IF NOT EXISTS kv_store (
    key        TEXT PRIMARY KEY,
    value      TEXT NOT NULL,              -- JSON, or a Fernet token string
    updated_at TEXT NOT NULL               -- ISO-8601 UTC
);

CREATE TABLE IF NOT EXISTS audit_log (
    id        INTEGER PRIMARY KEY AUTOINCREMENT,
    actor     TEXT    NOT NULL,
    action    TEXT    NOT NULL,
    target    TEXT,
    details   TEXT    NOT NULL DEFAULT '{}',
    timestamp TEXT    NOT NULL             -- ISO-8601 UTC
);
"""


def _now() -> str:
    """Return the current UTC time as an ISO-8601 string."""
    return datetime.now(tz=timezone.utc).isoformat()


class SqliteBackend:
    def __init__(self, path: Path):
        self.path = Path(path)
        self.init_db()

    def _connect(self) -> sqlite3.Connection:
        """
        Open (or create) the SQLite database and return a connection.

        :func:`sqlite3.Row` is set as the row_factory so rows behave like dicts.
        ``check_same_thread=False`` lets Streamlit's script threads share
        the backend.
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self.path), check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA foreign_keys=ON;")
        return conn

    def init_db(self) -> None:
        """Create the tables if they do not already exist (idempotent)."""
        with self._connect() as conn:
            conn.executescript(_DDL)
        logger.info("Database initialised at %s", self.path)

    # -----------------------------------------------------------------------
    # Key/value
    # -----------------------------------------------------------------------

    def read(self, key: str) -> Optional[Any]:
        with self._connect() as conn:
            row = conn.execute("SELECT value FROM kv_store WHERE key = ?", (key,)).fetchone()
        return json.loads(row["value"]) if row else None

    def write(self, key: str, value: Any) -> None:
        payload = json.dumps(value, ensure_ascii=False, default=str)
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO kv_store (key, value, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
                """,
                (key, payload, _now()),
            )
        logger.debug("Wrote key %s (%d bytes)", key, len(payload))

    # -----------------------------------------------------------------------
    # Audit log
    # -----------------------------------------------------------------------

    def append_audit(self, entry: AuditEntry) -> None:
        """Append *entry* to the append-only audit log."""
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO audit_log (actor, action, target, details, timestamp)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    entry.actor,
                    entry.action,
                    entry.target,
                    json.dumps(entry.details, ensure_ascii=False, default=str),
                    entry.timestamp.isoformat(),
                ),
            )
        logger.debug("Audit: actor=%s action=%s target=%s", entry.actor, entry.action, entry.target)

    def read_audit(self, limit: Optional[int] = None) -> list[AuditEntry]:
        """Most recent entries first."""
        sql = "SELECT * FROM audit_log ORDER BY id DESC"
        params: tuple = ()
        if limit is not None:
            sql += " LIMIT ?"
            params = (limit,)
        with self._connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [
            AuditEntry(
                timestamp=r["timestamp"],
                actor=r["actor"],
                action=r["action"],
                target=r["target"],
                details=json.loads(r["details"]),
            )
            for r in rows
        ]
