from __future__ import annotations

import json

import pytest

from devtrack.ai.loop import build_provider_messages, execute_tool_call, parse_tool_arguments, preview
from devtrack.ai.messages import AssistantMessage, SystemMessage, ToolCall, UserMessage


def test_preview_truncates_with_ellipsis():
    assert preview("short", 10) == "short"
    assert preview("abcdefghij", 4) == "abcd..."
    assert preview("abcdefghij", 4, ellipsis="") == "abcd"


@pytest.mark.parametrize(
    "arguments, expected",
    [
        ('{"path": "a"}', {"path": "a"}),
        ("", {}),
        ("{broken", {}),
        ("[1, 2]", {}),
        ('"text"', {}),
    ],
)
def test_parse_tool_arguments(arguments, expected):
    assert parse_tool_arguments(ToolCall(id="c", name="t", arguments=arguments)) == expected


def test_build_provider_messages_prepends_system_prompt():
    history = [UserMessage(content="hi"), AssistantMessage(content="hello")]
    messages = build_provider_messages("be brief", history)

    assert isinstance(messages[0], SystemMessage)
    assert messages[0].content == "be brief"
    assert messages[1:] == history
    assert build_provider_messages("", history) == history


@pytest.mark.asyncio
async def test_execute_tool_call_keeps_full_result(registry):
    execution = await execute_tool_call(registry, ToolCall(id="c1", name="echo", arguments='{"text": "hey"}'))

    assert execution.args == {"text": "hey"}
    assert json.loads(execution.result) == {"echo": {"text": "hey"}}
    message = execution.to_message()
    assert message.tool_call_id == "c1"
    assert message.tool_name == "echo"
    assert message.content == execution.result


@pytest.mark.asyncio
async def test_execute_tool_call_survives_registry_failure():
    class BrokenRegistry:
        async def execute(self, name, args):
            raise RuntimeError("registry crashed")

    execution = await execute_tool_call(BrokenRegistry(), ToolCall(id="c1", name="echo"))
    assert json.loads(execution.result) == {"error": "registry crashed"}
