"""Agent loop semantics shared by the chat (streaming) and headless runners.

One iteration: send the system prompt plus full history to the model; a reply
without tool calls ends the loop, otherwise every requested tool runs in the
order the model returned it and each full result is appended as a tool
message before the next model call. Tools never run concurrently: every
result must be visible to the model before its next call, and progress
events must stay in per-call order.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from devtrack.ai.messages import Message, SystemMessage, ToolCall, ToolMessage
from devtrack.ai.tools.registry import ToolRegistry
from devtrack.log import get_logger

logger = get_logger(__name__)

CANCELLED_MARKER = "[Agent run cancelled]"
CANCELLED_TOOL_RESULT = "[Cancelled]"


class StopReason(StrEnum):
    FINAL_ANSWER = "final_answer"
    MAX_ITERATIONS = "max_iterations"
    COST_CAP = "cost_cap"
    CANCELLED = "cancelled"
    PROVIDER_ERROR = "provider_error"


def max_iterations_marker(max_iterations: int) -> str:
    return f"[Agent hit max iterations ({max_iterations})]"


def cost_cap_marker(cost: float, max_cost: float) -> str:
    return f"[Agent stopped at cost cap: ${cost:.4f} spent, limit ${max_cost:.4f}]"


def is_cancelled(cancel_event: asyncio.Event | None) -> bool:
    return cancel_event is not None and cancel_event.is_set()


def preview(text: str, limit: int, ellipsis: str = "...") -> str:
    """Truncate a tool result for display; the full text stays in history."""
    if len(text) <= limit:
        return text
    return text[:limit] + ellipsis


def build_provider_messages(system_prompt: str, history: Sequence[Message]) -> list[Message]:
    """System prompt first, then the whole turn history including tool results."""
    messages: list[Message] = []
    if system_prompt:
        messages.append(SystemMessage(content=system_prompt))
    messages.extend(history)
    return messages


def parse_tool_arguments(call: ToolCall) -> dict[str, Any]:
    args = call.parse_arguments()
    if not args and call.arguments.strip() not in ("", "{}"):
        logger.warning("tool_arguments_malformed", tool=call.name, tool_call_id=call.id)
    return args


@dataclass
class ToolExecution:
    call: ToolCall
    args: dict[str, Any] = field(default_factory=dict)
    result: str = ""

    def to_message(self) -> ToolMessage:
        return ToolMessage(content=self.result, tool_call_id=self.call.id, tool_name=self.call.name)


async def execute_tool_call(registry: ToolRegistry, call: ToolCall) -> ToolExecution:
    """Run one tool call.

    Malformed argument JSON runs the tool with no arguments. An exception from
    the tool becomes an ``{"error": ...}`` result instead of ending the loop.
    """
    args = parse_tool_arguments(call)
    try:
        result = await registry.execute(call.name, args)
    except Exception as e:
        logger.error("tool_call_failed", tool=call.name, tool_call_id=call.id, error=str(e))
        result = json.dumps({"error": str(e) or "Tool execution failed"})
    return ToolExecution(call=call, args=args, result=result)
