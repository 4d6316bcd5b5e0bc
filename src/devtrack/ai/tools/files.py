"""Project file tools: read, write, list and search files under the project root."""

from __future__ import annotations

import fnmatch
import os
from pathlib import Path
from typing import Any

from devtrack.ai.tools.base import ProjectTool

MAX_READ_BYTES = 500_000
MAX_LIST_ENTRIES = 500
MAX_SEARCH_RESULTS = 50
DEFAULT_IGNORE = frozenset({"node_modules", ".git", "dist", ".next", "__pycache__", ".venv"})


class ReadProjectFileTool(ProjectTool):
    @property
    def name(self) -> str:
        return "read_project_file"

    @property
    def label(self) -> str:
        return "Reading file"

    @property
    def description(self) -> str:
        return (
            "Read a file from the project directory. Use for examining source code, "
            "configs, or any text file. Supports paging through long files."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "file_path": {"type": "string", "description": "Path relative to the project root"},
                "max_lines": {"type": "integer", "description": "Max lines to read (default 200)"},
                "offset": {"type": "integer", "description": "First line to read, 0-indexed (default 0)"},
            },
            "required": ["file_path"],
        }

    async def execute(self, **kwargs: Any) -> dict[str, Any]:
        rel_path = kwargs.get("file_path", "")
        if not rel_path:
            return {"error": "file_path is required"}
        path = self.resolve(rel_path)
        if not path.is_file():
            return {"error": f"File not found: {rel_path}"}

        size = path.stat().st_size
        if size > MAX_READ_BYTES:
            return {"error": f"File is too large ({_format_size(size)}). Max {_format_size(MAX_READ_BYTES)}."}
        try:
            content = path.read_text(encoding="utf-8")
        except UnicodeDecodeError:
            return {"error": f"'{rel_path}' is a binary file and cannot be read as text."}

        lines = content.split("\n")
        offset = max(int(kwargs.get("offset") or 0), 0)
        max_lines = max(int(kwargs.get("max_lines") or 200), 1)
        end = min(offset + max_lines, len(lines))
        return {
            "content": "\n".join(lines[offset:end]),
            "total_lines": len(lines),
            "showing": {"from": offset, "to": end},
            "truncated": len(lines) > end,
        }


class WriteProjectFileTool(ProjectTool):
    @property
    def name(self) -> str:
        return "write_project_file"

    @property
    def label(self) -> str:
        return "Writing file"

    @property
    def description(self) -> str:
        return "Write or create a file in the project directory. This modifies the codebase; use carefully."

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "file_path": {"type": "string", "description": "Path relative to the project root"},
                "content": {"type": "string", "description": "Full file content to write"},
                "create_dirs": {
                    "type": "boolean",
                    "description": "Create missing parent directories (default true)",
                },
            },
            "required": ["file_path", "content"],
        }

    async def execute(self, **kwargs: Any) -> dict[str, Any]:
        rel_path = kwargs.get("file_path", "")
        content = kwargs.get("content")
        if not rel_path or content is None:
            return {"error": "file_path and content are required"}
        path = self.resolve(rel_path)
        if kwargs.get("create_dirs", True):
            path.parent.mkdir(parents=True, exist_ok=True)
        elif not path.parent.is_dir():
            return {"error": f"Directory does not exist: {self.relative(path.parent)}"}
        path.write_text(str(content), encoding="utf-8")
        return {"written": self.relative(path), "size": len(str(content))}


class ListDirectoryTool(ProjectTool):
    @property
    def name(self) -> str:
        return "list_directory"

    @property
    def label(self) -> str:
        return "Listing directory"

    @property
    def description(self) -> str:
        return "List files and directories at a project path. Use to explore project structure."

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "dir_path": {"type": "string", "description": "Directory relative to the project root (default: root)"},
                "recursive": {"type": "boolean", "description": "List recursively, up to 4 levels (default false)"},
                "ignore": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Names to skip (default: node_modules, .git, dist, ...)",
                },
            },
        }

    async def execute(self, **kwargs: Any) -> dict[str, Any]:
        rel_dir = kwargs.get("dir_path") or "."
        path = self.resolve(rel_dir)
        if not path.is_dir():
            return {"error": f"Directory not found: {rel_dir}"}

        ignore = set(kwargs.get("ignore") or DEFAULT_IGNORE)
        recursive = bool(kwargs.get("recursive", False))
        entries: list[dict[str, Any]] = []

        def walk(directory: Path, depth: int) -> None:
            for item in sorted(directory.iterdir()):
                if len(entries) >= MAX_LIST_ENTRIES:
                    return
                if item.name in ignore or item.name.startswith("."):
                    continue
                if item.is_dir():
                    entries.append({"name": item.name, "type": "dir", "path": self.relative(item)})
                    if recursive and depth < 4:
                        walk(item, depth + 1)
                else:
                    entries.append(
                        {"name": item.name, "type": "file", "path": self.relative(item), "size": item.stat().st_size}
                    )

        walk(path, 0)
        return {"entries": entries, "total": len(entries), "truncated": len(entries) >= MAX_LIST_ENTRIES}


class SearchFilesTool(ProjectTool):
    @property
    def name(self) -> str:
        return "search_files"

    @property
    def label(self) -> str:
        return "Searching files"

    @property
    def description(self) -> str:
        return "Find project files whose name matches a glob pattern, e.g. '*.py' or 'test_*'."

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "pattern": {"type": "string", "description": "Glob pattern matched against file names"},
                "dir_path": {"type": "string", "description": "Directory to search (default: project root)"},
                "max_depth": {"type": "integer", "description": "Maximum directory depth (default 6)"},
            },
            "required": ["pattern"],
        }

    async def execute(self, **kwargs: Any) -> dict[str, Any]:
        pattern = kwargs.get("pattern") or "*"
        base = self.resolve(kwargs.get("dir_path") or ".")
        max_depth = int(kwargs.get("max_depth") or 6)
        if not base.is_dir():
            return {"error": f"Directory not found: {kwargs.get('dir_path')}"}

        matches: list[str] = []
        for root, dirs, files in os.walk(base):
            root_path = Path(root)
            dirs[:] = sorted(d for d in dirs if d not in DEFAULT_IGNORE and not d.startswith("."))
            if len(root_path.relative_to(base).parts) >= max_depth:
                dirs.clear()
            for f in sorted(files):
                if fnmatch.fnmatch(f, pattern):
                    matches.append(self.relative(root_path / f))
                    if len(matches) >= MAX_SEARCH_RESULTS:
                        return {"matches": matches, "truncated": True}

        return {"matches": matches, "truncated": False}


def _format_size(size: float) -> str:
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024:
            return f"{size:.1f}{unit}"
        size /= 1024
    return f"{size:.1f}TB"
