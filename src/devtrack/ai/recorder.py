"""AuditRecorder: captures every step of a headless agent run.

Create one before ``AgentRunner.run``, pass it as ``AgentOptions.recorder``,
then call ``finalize`` (or ``fail``) once the run is over. Changes made by
mutating tools are detected from the tool call arguments and results.
"""

from __future__ import annotations

import json
from collections import Counter
from typing import Any, Optional

from devtrack.ai.messages import Usage, new_id, utc_now
from devtrack.log import get_logger
from devtrack.storage.models import AuditChange, AuditRun, AuditStep
from devtrack.storage.run_repo import RunRepository

logger = get_logger(__name__)

STORED_RESULT_CHARS = 5000
STORED_PREVIEW_CHARS = 200

# tool name -> (action, entity type)
MUTATING_TOOLS: dict[str, tuple[str, str]] = {
    "write_project_file": ("updated", "file"),
}


class AuditRecorder:
    def __init__(
        self,
        name: str,
        trigger: str = "manual",
        repository: Optional[RunRepository] = None,
    ):
        self._repo = repository
        self._run = AuditRun(id=new_id("run"), name=name, trigger=trigger)
        self._step_index = 0
        self._changes: list[AuditChange] = []
        self._last_args: dict[str, Any] = {}

    @property
    def run(self) -> AuditRun:
        return self._run

    def _add_step(self, step_type: str, **fields: Any) -> AuditStep:
        step = AuditStep(index=self._step_index, type=step_type, **fields)
        self._step_index += 1
        self._run.steps.append(step)
        return step

    def record_thinking(
        self, content: str, usage: Usage | None = None, cost: float = 0.0, model: str = "", provider: str = ""
    ) -> None:
        if not content and usage is None:
            return
        self._add_step(
            "thinking",
            content=content or None,
            input_tokens=usage.input_tokens if usage else 0,
            output_tokens=usage.output_tokens if usage else 0,
            cost_usd=cost,
        )
        if usage is not None:
            self._run.input_tokens += usage.input_tokens
            self._run.output_tokens += usage.output_tokens
        self._run.cost_usd += cost
        if model and not self._run.model:
            self._run.model = model
        if provider and not self._run.provider:
            self._run.provider = provider

    def record_tool_call(self, name: str, args: dict[str, Any]) -> None:
        self._last_args = args
        self._add_step("tool_call", tool_name=name, tool_args=args)

    def record_tool_result(self, name: str, result: str) -> None:
        stored = result if len(result) <= STORED_RESULT_CHARS else result[:STORED_RESULT_CHARS] + "...[truncated]"
        self._add_step(
            "tool_result",
            tool_name=name,
            tool_result=stored,
            tool_result_preview=result[:STORED_PREVIEW_CHARS],
        )
        self._detect_change(name, self._last_args, result)
        self._last_args = {}

    async def finalize(self, content: str, iterations: int) -> AuditRun:
        run = self._run
        run.ended_at = utc_now()
        run.status = "completed"
        run.iterations = iterations
        run.changes = list(self._changes)
        run.summary = self._summary(content)
        await self._persist()
        logger.info("audit_run_finalized", run_id=run.id, steps=len(run.steps), changes=len(run.changes))
        return run

    async def fail(self, error: str) -> AuditRun:
        run = self._run
        run.ended_at = utc_now()
        run.status = "failed"
        run.errors.append(error)
        run.changes = list(self._changes)
        run.summary = f"Failed: {error}"
        await self._persist()
        logger.warning("audit_run_failed", run_id=run.id, error=error)
        return run

    async def _persist(self) -> None:
        if self._repo is not None:
            await self._repo.save_run(self._run)

    def _detect_change(self, tool_name: str, args: dict[str, Any], result: str) -> None:
        mapping = MUTATING_TOOLS.get(tool_name)
        if mapping is None:
            return
        action, entity_type = mapping

        try:
            parsed = json.loads(result)
        except (json.JSONDecodeError, TypeError):
            parsed = None
        if isinstance(parsed, dict) and parsed.get("error"):
            return  # failed operations are not changes

        entity_id = str(args.get("id") or args.get("file_path") or "")
        if not entity_id and isinstance(parsed, dict):
            for key in ("created", "updated", "deleted", "written"):
                value = parsed.get(key)
                if isinstance(value, dict):
                    value = value.get("id")
                if value:
                    entity_id = str(value)
                    break

        description = f"{action} {entity_type}"
        if entity_id:
            description += f' "{entity_id}"'
        if args.get("title"):
            description += f": {args['title']}"

        self._changes.append(
            AuditChange(
                entity_type=entity_type,
                entity_id=entity_id,
                action=action,
                description=description,
                tool_name=tool_name,
            )
        )

    def _summary(self, content: str) -> str:
        if content and content.strip():
            return content
        counts = Counter(f"{c.action} {c.entity_type}" for c in self._changes)
        if not counts:
            return f"{self._run.name} completed with no detected changes."
        parts = ", ".join(f"{n}x {key}" for key, n in counts.items())
        return f"{self._run.name}: {parts}."
