from __future__ import annotations

import json

import pytest
import pytest_asyncio

from conftest import FakeAIService, call, reply
from devtrack.ai.messages import Usage
from devtrack.ai.recorder import STORED_RESULT_CHARS, AuditRecorder
from devtrack.ai.runner import AgentOptions, AgentRunner
from devtrack.ai.tools.files import WriteProjectFileTool
from devtrack.ai.tools.registry import ToolRegistry
from devtrack.storage.database import Database
from devtrack.storage.run_repo import RunRepository


@pytest_asyncio.fixture()
async def repo():
    db = Database(":memory:")
    await db.initialize()
    yield RunRepository(db)
    await db.close()


@pytest.mark.asyncio
async def test_finalize_persists_steps_and_changes(repo):
    recorder = AuditRecorder("nightly-audit", trigger="schedule", repository=repo)
    usage = Usage(input_tokens=100, output_tokens=50, total_tokens=150)
    recorder.record_thinking("Let me update the readme", usage, 0.01, "claude-sonnet-4-5", "anthropic")
    recorder.record_tool_call("write_project_file", {"file_path": "README.md", "content": "# Demo"})
    recorder.record_tool_result("write_project_file", json.dumps({"written": "README.md", "size": 6}))

    run = await recorder.finalize("", iterations=2)

    assert run.status == "completed"
    assert run.iterations == 2
    assert run.input_tokens == 100 and run.output_tokens == 50
    assert run.model == "claude-sonnet-4-5"
    assert [c.description for c in run.changes] == ['updated file "README.md"']
    assert run.summary == "nightly-audit: 1x updated file."

    stored = await repo.get_run(run.id)
    assert stored is not None
    assert stored.trigger == "schedule"
    assert [s.type for s in stored.steps] == ["thinking", "tool_call", "tool_result"]
    assert stored.steps[1].tool_args == {"file_path": "README.md", "content": "# Demo"}
    assert stored.changes[0].entity_id == "README.md"
    assert stored.cost_usd == pytest.approx(0.01)


@pytest.mark.asyncio
async def test_failed_write_is_not_a_change():
    recorder = AuditRecorder("audit")
    recorder.record_tool_call("write_project_file", {"file_path": "x.txt", "content": "x"})
    recorder.record_tool_result("write_project_file", json.dumps({"error": "permission denied"}))
    recorder.record_tool_call("read_project_file", {"file_path": "x.txt"})
    recorder.record_tool_result("read_project_file", "contents")

    run = await recorder.finalize("Nothing to report.", iterations=1)
    assert run.changes == []
    assert run.summary == "Nothing to report."


@pytest.mark.asyncio
async def test_long_results_are_truncated_in_storage():
    recorder = AuditRecorder("audit")
    recorder.record_tool_result("read_project_file", "z" * (STORED_RESULT_CHARS + 10))
    step = recorder.run.steps[0]
    assert step.tool_result == "z" * STORED_RESULT_CHARS + "...[truncated]"
    assert step.tool_result_preview == "z" * 200


@pytest.mark.asyncio
async def test_fail_marks_run_failed(repo):
    recorder = AuditRecorder("audit", repository=repo)
    run = await recorder.fail("openai: rate limited")

    assert run.status == "failed"
    assert run.errors == ["openai: rate limited"]
    assert run.summary == "Failed: openai: rate limited"
    assert run.ended_at is not None

    runs = await repo.list_runs()
    assert [r.id for r in runs] == [run.id]
    assert runs[0].status == "failed"


@pytest.mark.asyncio
async def test_runner_reports_to_recorder(tmp_path, repo):
    registry = ToolRegistry()
    registry.register(WriteProjectFileTool(tmp_path))
    ai = FakeAIService(
        [
            reply("Writing notes", [call("write_project_file", json.dumps({"file_path": "notes.md", "content": "hi"}))]),
            reply("Wrote notes.md"),
        ]
    )
    recorder = AuditRecorder("notes", repository=repo)
    result = await AgentRunner(ai, registry).run("sys", "write notes", AgentOptions(recorder=recorder))
    run = await recorder.finalize(result.content, result.iterations)

    assert (tmp_path / "notes.md").read_text() == "hi"
    assert [s.type for s in run.steps] == ["thinking", "tool_call", "tool_result", "thinking"]
    assert run.summary == "Wrote notes.md"
    assert run.changes[0].entity_id == "notes.md"
    assert run.input_tokens == 20
