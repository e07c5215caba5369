"""Persistent vault backed by SQLite — survives process restarts.

Drop-in replacement for Vault when you need durability, e.g. when the CLI
masks a request in one process and unmasks the response in another.

Usage:
    vault = SqliteVault("session_abc", db_path="~/.pii-gateway/vault.db")
    secrets = SqliteVault("session_abc", namespace="secret",
                          token_format=SECRET_TOKEN_FORMAT)
"""

from __future__ import annotations
import sqlite3
from pathlib import Path

from .vault import PII_TOKEN_FORMAT, TokenFormat, Vault

_SCHEMA = """
CREATE TABLE IF NOT EXISTS mappings (
    session_id TEXT NOT NULL,
    namespace TEXT NOT NULL,
    entity_type TEXT NOT NULL,
    original TEXT NOT NULL,
    token TEXT NOT NULL,
    created_at REAL NOT NULL DEFAULT (julianday('now')),
    PRIMARY KEY (session_id, namespace, entity_type, original)
);
CREATE INDEX IF NOT EXISTS idx_mappings_token
    ON mappings(session_id, namespace, token);
CREATE TABLE IF NOT EXISTS counters (
    session_id TEXT NOT NULL,
    namespace TEXT NOT NULL,
    entity_type TEXT NOT NULL,
    count INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (session_id, namespace, entity_type)
);
"""


class SqliteVault(Vault):
    """Persistent bidirectional original ↔ token store."""

    __slots__ = ("_session_id", "_namespace", "_db")

    def __init__(
        self,
        session_id: str,
        *,
        db_path: str | Path = "vault.db",
        token_format: TokenFormat = PII_TOKEN_FORMAT,
        namespace: str = "pii",
    ) -> None:
        super().__init__(token_format)
        self._session_id = session_id
        self._namespace = namespace
        db_path = Path(db_path).expanduser()
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db = sqlite3.connect(str(db_path), check_same_thread=False)
        self._db.executescript(_SCHEMA)
        self._load()

    def _load(self) -> None:
        """Load existing mappings from DB into memory."""
        rows = self._db.execute(
            "SELECT entity_type, original, token FROM mappings"
            " WHERE session_id = ? AND namespace = ?",
            (self._session_id, self._namespace),
        ).fetchall()
        for etype, orig, token in rows:
            self._pii_to_token[f"{etype}::{orig}"] = token
            self._token_to_pii[token] = orig

        crows = self._db.execute(
            "SELECT entity_type, count FROM counters WHERE session_id = ? AND namespace = ?",
            (self._session_id, self._namespace),
        ).fetchall()
        for etype, count in crows:
            self._counters[etype] = count

    def _store(self, key: str, token: str, original: str) -> None:
        entity_type = key.split("::", 1)[0]
        self._db.execute(
            "INSERT OR REPLACE INTO counters (session_id, namespace, entity_type, count)"
            " VALUES (?, ?, ?, ?)",
            (self._session_id, self._namespace, entity_type, self._counters[entity_type]),
        )
        self._db.execute(
            "INSERT INTO mappings (session_id, namespace, entity_type, original, token)"
            " VALUES (?, ?, ?, ?, ?)",
            (self._session_id, self._namespace, entity_type, original, token),
        )
        self._db.commit()
        super()._store(key, token, original)

    def clear(self) -> None:
        self.delete_session(self._session_id)

    def close(self) -> None:
        self._db.close()

    def list_sessions(self) -> list[str]:
        """List all session IDs in the database."""
        rows = self._db.execute("SELECT DISTINCT session_id FROM mappings").fetchall()
        return [r[0] for r in rows]

    def delete_session(self, session_id: str) -> None:
        """Delete this vault's namespace for a session."""
        for table in ("mappings", "counters"):
            self._db.execute(
                f"DELETE FROM {table} WHERE session_id = ? AND namespace = ?",
                (session_id, self._namespace),
            )
        self._db.commit()
        if session_id == self._session_id:
            super().clear()
