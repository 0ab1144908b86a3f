"""Async SQLite audit log of permission decisions and their outcomes."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import aiosqlite

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger("warden.storage.db")

SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS audit_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    session_id TEXT NOT NULL,
    timestamp TEXT NOT NULL,
    request_id TEXT NOT NULL,
    category TEXT NOT NULL,
    arguments TEXT NOT NULL,
    verdict TEXT NOT NULL,
    matched_rule TEXT,
    outcome TEXT,
    detail TEXT
);

CREATE INDEX IF NOT EXISTS idx_audit_session_time
    ON audit_log(session_id, timestamp);
"""

_COLUMNS = (
    "id", "session_id", "timestamp", "request_id", "category",
    "arguments", "verdict", "matched_rule", "outcome", "detail",
)


class Database:
    """Async SQLite database wrapper for the decision audit log."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._conn: aiosqlite.Connection | None = None

    async def init(self) -> None:
        """Create parent directories, open connection, run schema."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        if self._conn is None:
            self._conn = await aiosqlite.connect(self._path)
        await self.connection.executescript(SCHEMA_SQL)
        await self.connection.commit()
        logger.info("Database initialized at %s", self._path)

    async def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    @property
    def connection(self) -> aiosqlite.Connection:
        """Return the active connection. Raises if not initialized."""
        if self._conn is None:
            raise RuntimeError("Database not initialized — call init() first")
        return self._conn

    async def log_decision(
        self,
        session_id: str,
        request_id: str,
        category: str,
        arguments: str,
        verdict: str,
        matched_rule: str | None = None,
        outcome: str | None = None,
        detail: str | None = None,
    ) -> None:
        """Insert one audit row."""
        await self.connection.execute(
            "INSERT INTO audit_log "
            "(session_id, timestamp, request_id, category, arguments, verdict, "
            "matched_rule, outcome, detail) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                session_id,
                datetime.now(UTC).isoformat(),
                request_id,
                category,
                arguments[:2000],
                verdict,
                matched_rule,
                outcome,
                detail[:2000] if detail else detail,
            ),
        )
        await self.connection.commit()

    async def list_decisions(
        self,
        limit: int = 50,
        session_id: str | None = None,
    ) -> list[dict[str, Any]]:
        """Most recent audit rows first, optionally for one session."""
        query = f"SELECT {', '.join(_COLUMNS)} FROM audit_log"  # noqa: S608
        params: tuple[object, ...]
        if session_id is not None:
            query += " WHERE session_id = ?"
            params = (session_id, limit)
        else:
            params = (limit,)
        query += " ORDER BY id DESC LIMIT ?"
        async with self.connection.execute(query, params) as cursor:
            rows = await cursor.fetchall()
        return [dict(zip(_COLUMNS, row, strict=True)) for row in rows]
