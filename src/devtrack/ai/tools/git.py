"""Read-only git tools run as subprocesses in the project root."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

from devtrack.ai.tools.base import ProjectTool

GIT_TIMEOUT = 30
MAX_OUTPUT_CHARS = 20_000


async def run_git(cwd: Path, *args: str, timeout: int = GIT_TIMEOUT) -> str:
    """Run ``git <args>`` and return stdout; failures are returned as error text."""
    try:
        process = await asyncio.create_subprocess_exec(
            "git",
            *args,
            cwd=cwd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError:
        return "Error: git executable not found"

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        return f"Error: git {args[0]} timed out after {timeout} seconds"

    if process.returncode != 0:
        detail = stderr.decode("utf-8", errors="replace").strip()
        return f"Error: git {args[0]} exited with {process.returncode}: {detail}"

    output = stdout.decode("utf-8", errors="replace")
    if len(output) > MAX_OUTPUT_CHARS:
        output = output[:MAX_OUTPUT_CHARS] + "\n... (output truncated)"
    return output or "(no output)"


class GitStatusTool(ProjectTool):
    @property
    def name(self) -> str:
        return "git_status"

    @property
    def label(self) -> str:
        return "Checking git status"

    @property
    def description(self) -> str:
        return "Show the current branch and uncommitted changes (git status --short --branch)."

    @property
    def input_schema(self) -> dict[str, Any]:
        return {"type": "object", "properties": {}}

    async def execute(self, **kwargs: Any) -> str:
        return await run_git(self._root, "status", "--short", "--branch")


class GitLogTool(ProjectTool):
    @property
    def name(self) -> str:
        return "git_log"

    @property
    def label(self) -> str:
        return "Reading commit history"

    @property
    def description(self) -> str:
        return "List recent commits (hash, date, author, subject), optionally limited to one path."

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "limit": {"type": "integer", "description": "Number of commits (default 20, max 200)"},
                "path": {"type": "string", "description": "Only commits touching this project path"},
            },
        }

    async def execute(self, **kwargs: Any) -> str:
        limit = min(int(kwargs.get("limit") or 20), 200)
        args = ["log", f"-{limit}", "--date=short", "--pretty=format:%h %ad %an %s"]
        if kwargs.get("path"):
            args += ["--", self.relative(self.resolve(kwargs["path"]))]
        return await run_git(self._root, *args)


class GitDiffTool(ProjectTool):
    @property
    def name(self) -> str:
        return "git_diff"

    @property
    def label(self) -> str:
        return "Reading diff"

    @property
    def description(self) -> str:
        return "Show the diff of uncommitted changes, or of staged changes when staged=true."

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "staged": {"type": "boolean", "description": "Diff the index instead of the work tree"},
                "path": {"type": "string", "description": "Limit the diff to this project path"},
            },
        }

    async def execute(self, **kwargs: Any) -> str:
        args = ["diff"]
        if kwargs.get("staged"):
            args.append("--cached")
        if kwargs.get("path"):
            args += ["--", self.relative(self.resolve(kwargs["path"]))]
        return await run_git(self._root, *args)
