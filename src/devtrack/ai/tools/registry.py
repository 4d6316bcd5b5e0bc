"""Tool registry: the catalog exposed to the model and the single execution entry point."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from devtrack.ai.tools.base import Tool
from devtrack.log import get_logger

logger = get_logger(__name__)


def error_payload(message: str) -> str:
    return json.dumps({"error": message})


class ToolRegistry:
    """Registry of all available tools."""

    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        self._tools[tool.name] = tool
        logger.debug("tool_registered", tool_name=tool.name)

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools)

    def all_tools(self) -> list[Tool]:
        return list(self._tools.values())

    def definitions(self, names: list[str] | None = None) -> list[dict[str, Any]]:
        """Tool definitions in registration order, optionally restricted to ``names``."""
        if names is None:
            return [t.to_definition() for t in self._tools.values()]
        allowed = set(names)
        return [t.to_definition() for t in self._tools.values() if t.name in allowed]

    def label_for(self, name: str) -> str:
        tool = self._tools.get(name)
        return tool.label if tool is not None else name

    async def execute(self, name: str, args: dict[str, Any]) -> str:
        """Run a tool and return its result as a string.

        Errors are returned as a JSON ``{"error": ...}`` payload, never raised.
        """
        tool = self._tools.get(name)
        if tool is None:
            return error_payload(f"Unknown tool: {name}")

        logger.info("tool_execute", tool=name)
        try:
            result = await tool.execute(**args)
        except Exception as e:
            logger.error("tool_execution_error", tool=name, error=str(e))
            return error_payload(str(e) or f"{type(e).__name__} in {name}")

        if isinstance(result, str):
            return result
        return json.dumps(result, indent=2, default=str)

    def discover_and_register(self, project_root: str | Path) -> None:
        """Register the built-in project tools."""
        from devtrack.ai.tools.files import (
            ListDirectoryTool,
            ReadProjectFileTool,
            SearchFilesTool,
            WriteProjectFileTool,
        )
        from devtrack.ai.tools.git import GitDiffTool, GitLogTool, GitStatusTool

        for tool in (
            ReadProjectFileTool(project_root),
            WriteProjectFileTool(project_root),
            ListDirectoryTool(project_root),
            SearchFilesTool(project_root),
            GitStatusTool(project_root),
            GitLogTool(project_root),
            GitDiffTool(project_root),
        ):
            self.register(tool)
        logger.info("tools_registered", count=len(self._tools))
