"""SQLite database connection manager with schema migration."""

from __future__ import annotations

from pathlib import Path

import aiosqlite

from devtrack.log import get_logger

logger = get_logger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS agent_runs (
    id              TEXT    PRIMARY KEY,
    name            TEXT    NOT NULL,
    trigger_type    TEXT    NOT NULL DEFAULT 'manual',
    status          TEXT    NOT NULL CHECK(status IN ('running','completed','failed')),
    model           TEXT    NOT NULL DEFAULT '',
    provider        TEXT    NOT NULL DEFAULT '',
    iterations      INTEGER NOT NULL DEFAULT 0,
    input_tokens    INTEGER NOT NULL DEFAULT 0,
    output_tokens   INTEGER NOT NULL DEFAULT 0,
    cost_usd        REAL    NOT NULL DEFAULT 0,
    summary         TEXT    NOT NULL DEFAULT '',
    changes_json    TEXT    NOT NULL DEFAULT '[]',
    errors_json     TEXT    NOT NULL DEFAULT '[]',
    started_at      TEXT    NOT NULL,
    ended_at        TEXT
);

CREATE INDEX IF NOT EXISTS idx_runs_started
    ON agent_runs(started_at);

CREATE TABLE IF NOT EXISTS agent_run_steps (
    run_id          TEXT    NOT NULL REFERENCES agent_runs(id) ON DELETE CASCADE,
    step_index      INTEGER NOT NULL,
    type            TEXT    NOT NULL CHECK(type IN ('thinking','tool_call','tool_result')),
    created_at      TEXT    NOT NULL,
    content         TEXT,
    tool_name       TEXT,
    tool_args_json  TEXT,
    tool_result     TEXT,
    input_tokens    INTEGER NOT NULL DEFAULT 0,
    output_tokens   INTEGER NOT NULL DEFAULT 0,
    cost_usd        REAL    NOT NULL DEFAULT 0,
    PRIMARY KEY (run_id, step_index)
);
"""


class Database:
    """Async SQLite database manager."""

    def __init__(self, db_path: str):
        self._db_path = db_path
        self._conn: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """Open connection and run migrations."""
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(self._db_path)
        self._conn.row_factory = aiosqlite.Row
        await self._conn.execute("PRAGMA journal_mode=WAL")
        await self._conn.execute("PRAGMA foreign_keys=ON")
        await self._conn.executescript(SCHEMA_SQL)
        await self._conn.commit()
        logger.info("database_initialized", path=self._db_path)

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("Database not initialized. Call initialize() first.")
        return self._conn

    async def close(self) -> None:
        if self._conn:
            await self._conn.close()
            self._conn = None
            logger.info("database_closed")
