from __future__ import annotations

import json
import shutil

import pytest

from devtrack.ai.tools.files import ListDirectoryTool, ReadProjectFileTool, SearchFilesTool, WriteProjectFileTool
from devtrack.ai.tools.git import run_git
from devtrack.ai.tools.registry import ToolRegistry


@pytest.fixture()
def project(tmp_path):
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "app.py").write_text("line0\nline1\nline2\n", encoding="utf-8")
    (tmp_path / "src" / "util.py").write_text("x = 1\n", encoding="utf-8")
    (tmp_path / "README.md").write_text("# Demo\n", encoding="utf-8")
    (tmp_path / "node_modules").mkdir()
    (tmp_path / "node_modules" / "dep.py").write_text("", encoding="utf-8")
    return tmp_path


@pytest.fixture()
def project_registry(project) -> ToolRegistry:
    registry = ToolRegistry()
    registry.discover_and_register(project)
    return registry


def test_builtin_tools_are_registered(project_registry):
    assert project_registry.names() == [
        "read_project_file",
        "write_project_file",
        "list_directory",
        "search_files",
        "git_status",
        "git_log",
        "git_diff",
    ]
    assert project_registry.label_for("read_project_file") == "Reading file"
    assert project_registry.label_for("nope") == "nope"


def test_definitions_subset_keeps_registration_order(project_registry):
    definitions = project_registry.definitions(["search_files", "read_project_file"])
    assert [d["name"] for d in definitions] == ["read_project_file", "search_files"]
    assert set(definitions[0]) == {"name", "description", "input_schema"}


@pytest.mark.asyncio
async def test_unknown_tool_returns_error_payload(project_registry):
    result = json.loads(await project_registry.execute("drop_database", {}))
    assert result == {"error": "Unknown tool: drop_database"}


@pytest.mark.asyncio
async def test_tool_exception_becomes_error_payload(registry):
    result = await registry.execute("explode", {})
    assert json.loads(result) == {"error": "disk on fire"}


@pytest.mark.asyncio
async def test_read_file_with_paging(project_registry):
    result = json.loads(
        await project_registry.execute("read_project_file", {"file_path": "src/app.py", "offset": 1, "max_lines": 1})
    )
    assert result["content"] == "line1"
    assert result["showing"] == {"from": 1, "to": 2}
    assert result["truncated"] is True


@pytest.mark.asyncio
async def test_paths_outside_project_are_refused(project_registry):
    result = json.loads(await project_registry.execute("read_project_file", {"file_path": "../../etc/passwd"}))
    assert "outside the project root" in result["error"]


@pytest.mark.asyncio
async def test_write_then_read(project):
    written = await WriteProjectFileTool(project).execute(file_path="docs/notes.md", content="hello")
    assert written == {"written": "docs/notes.md", "size": 5}

    read = await ReadProjectFileTool(project).execute(file_path="docs/notes.md")
    assert read["content"] == "hello"


@pytest.mark.asyncio
async def test_list_directory_skips_ignored(project):
    result = await ListDirectoryTool(project).execute(recursive=True)
    paths = [e["path"] for e in result["entries"]]
    assert "src/app.py" in paths
    assert "README.md" in paths
    assert not any(p.startswith("node_modules") for p in paths)


@pytest.mark.asyncio
async def test_search_files_by_glob(project):
    result = await SearchFilesTool(project).execute(pattern="*.py")
    assert result == {"matches": ["src/app.py", "src/util.py"], "truncated": False}


@pytest.mark.asyncio
@pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")
async def test_git_errors_are_returned_as_text(tmp_path):
    output = await run_git(tmp_path, "log", "-1")
    assert output.startswith("Error: git log exited with")
