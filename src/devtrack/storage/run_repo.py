"""Repository for audited headless agent runs."""

from __future__ import annotations

import json
from dataclasses import asdict
from datetime import datetime
from typing import Optional

from devtrack.log import get_logger
from devtrack.storage.database import Database
from devtrack.storage.models import AuditChange, AuditRun, AuditStep

logger = get_logger(__name__)


class RunRepository:
    """Persist and query AuditRun records."""

    def __init__(self, db: Database):
        self._db = db

    async def save_run(self, run: AuditRun) -> None:
        """Insert or replace a run together with all of its steps."""
        conn = self._db.conn
        await conn.execute(
            """INSERT OR REPLACE INTO agent_runs
               (id, name, trigger_type, status, model, provider, iterations,
                input_tokens, output_tokens, cost_usd, summary,
                changes_json, errors_json, started_at, ended_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                run.id,
                run.name,
                run.trigger,
                run.status,
                run.model,
                run.provider,
                run.iterations,
                run.input_tokens,
                run.output_tokens,
                run.cost_usd,
                run.summary,
                json.dumps([asdict(c) for c in run.changes]),
                json.dumps(run.errors),
                run.started_at.isoformat(),
                run.ended_at.isoformat() if run.ended_at else None,
            ),
        )
        await conn.execute("DELETE FROM agent_run_steps WHERE run_id = ?", (run.id,))
        await conn.executemany(
            """INSERT INTO agent_run_steps
               (run_id, step_index, type, created_at, content, tool_name,
                tool_args_json, tool_result, input_tokens, output_tokens, cost_usd)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            [
                (
                    run.id,
                    s.index,
                    s.type,
                    s.timestamp.isoformat(),
                    s.content,
                    s.tool_name,
                    json.dumps(s.tool_args) if s.tool_args is not None else None,
                    s.tool_result,
                    s.input_tokens,
                    s.output_tokens,
                    s.cost_usd,
                )
                for s in run.steps
            ],
        )
        await conn.commit()
        logger.info("run_saved", run_id=run.id, status=run.status, steps=len(run.steps))

    async def get_run(self, run_id: str) -> Optional[AuditRun]:
        cursor = await self._db.conn.execute("SELECT * FROM agent_runs WHERE id = ?", (run_id,))
        row = await cursor.fetchone()
        if row is None:
            return None
        run = self._row_to_run(row)
        cursor = await self._db.conn.execute(
            "SELECT * FROM agent_run_steps WHERE run_id = ? ORDER BY step_index ASC", (run_id,)
        )
        run.steps = [self._row_to_step(r) for r in await cursor.fetchall()]
        return run

    async def list_runs(self, limit: int = 20) -> list[AuditRun]:
        """Most recent runs first, without their steps."""
        cursor = await self._db.conn.execute(
            "SELECT * FROM agent_runs ORDER BY started_at DESC LIMIT ?", (limit,)
        )
        return [self._row_to_run(row) for row in await cursor.fetchall()]

    @staticmethod
    def _row_to_run(row) -> AuditRun:
        return AuditRun(
            id=row["id"],
            name=row["name"],
            trigger=row["trigger_type"],
            status=row["status"],
            model=row["model"],
            provider=row["provider"],
            iterations=row["iterations"],
            input_tokens=row["input_tokens"],
            output_tokens=row["output_tokens"],
            cost_usd=row["cost_usd"],
            summary=row["summary"],
            changes=[AuditChange(**c) for c in json.loads(row["changes_json"])],
            errors=json.loads(row["errors_json"]),
            started_at=datetime.fromisoformat(row["started_at"]),
            ended_at=datetime.fromisoformat(row["ended_at"]) if row["ended_at"] else None,
        )

    @staticmethod
    def _row_to_step(row) -> AuditStep:
        return AuditStep(
            index=row["step_index"],
            type=row["type"],
            timestamp=datetime.fromisoformat(row["created_at"]),
            content=row["content"],
            tool_name=row["tool_name"],
            tool_args=json.loads(row["tool_args_json"]) if row["tool_args_json"] else None,
            tool_result=row["tool_result"],
            input_tokens=row["input_tokens"],
            output_tokens=row["output_tokens"],
            cost_usd=row["cost_usd"],
        )
