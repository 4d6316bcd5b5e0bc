from __future__ import annotations

import asyncio
from collections.abc import Sequence
from typing import Any

import pytest

from devtrack.ai.client import CompletionResult, StreamEvent
from devtrack.ai.exceptions import ConfigurationError
from devtrack.ai.messages import Message, ToolCall, Usage, new_id
from devtrack.ai.tools.base import Tool
from devtrack.ai.tools.registry import ToolRegistry
from devtrack.storage.conversations import ConversationStore


def reply(
    content: str = "",
    tool_calls: list[ToolCall] | None = None,
    *,
    input_tokens: int = 10,
    output_tokens: int = 5,
    cost: float = 0.001,
    model: str = "fake-model",
) -> CompletionResult:
    return CompletionResult(
        content=content,
        tool_calls=tool_calls or [],
        usage=Usage(input_tokens=input_tokens, output_tokens=output_tokens, total_tokens=input_tokens + output_tokens),
        model=model,
        provider="anthropic",
        estimated_cost=cost,
    )


def call(name: str, arguments: str = "{}", id: str | None = None) -> ToolCall:
    return ToolCall(id=id or new_id("call"), name=name, arguments=arguments)


class FakeRouter:
    def __init__(self, model: str = "fake-model"):
        self.model = model
        self.tasks: list[str] = []

    def route(self, task: str) -> str:
        self.tasks.append(task)
        return self.model

    def route_tier(self, tier: str) -> str:
        return f"{tier}-model"


class FakeAIService:
    """Scripted provider facade: each model call consumes the next scripted reply.

    A scripted ``Exception`` is raised by ``complete`` and surfaces as an
    ``error`` event from ``stream``.
    """

    def __init__(self, turns: Sequence[CompletionResult | Exception] = (), *, repeat=None, ready: bool = True):
        self.turns = list(turns)
        self.repeat = repeat
        self.ready = ready
        self.router = FakeRouter()
        self.calls: list[dict[str, Any]] = []

    async def ensure_ready(self, timeout: float | None = None) -> None:
        if not self.ready:
            raise ConfigurationError("No AI providers configured. Add API keys to the configuration.")

    def resolve_model(self, task: str | None = None, model: str | None = None) -> str:
        return model or self.router.route(task)

    def _next(self, messages: Sequence[Message], **kwargs: Any) -> CompletionResult | Exception:
        self.calls.append({"messages": list(messages), **kwargs})
        if self.turns:
            return self.turns.pop(0)
        if self.repeat is not None:
            return self.repeat
        raise AssertionError("no scripted reply left")

    async def complete(self, messages, *, task=None, model=None, tools=None, max_tokens=4096):
        turn = self._next(messages, task=task, model=model, tools=tools)
        if isinstance(turn, Exception):
            raise turn
        return turn

    async def stream(self, messages, *, task=None, model=None, tools=None, max_tokens=4096):
        turn = self._next(messages, task=task, model=model, tools=tools)
        if isinstance(turn, Exception):
            yield StreamEvent(type="error", error=str(turn))
            return
        if turn.content:
            half = max(len(turn.content) // 2, 1)
            for chunk in (turn.content[:half], turn.content[half:]):
                if chunk:
                    yield StreamEvent(type="text_delta", content=chunk)
        for tc in turn.tool_calls:
            yield StreamEvent(type="tool_call_start", tool_call=ToolCall(id=tc.id, name=tc.name, arguments=""))
            yield StreamEvent(type="tool_call_end", tool_call=tc)
        yield StreamEvent(type="done", usage=turn.usage, model=turn.model or model, estimated_cost=turn.estimated_cost)

    def tool_names(self, index: int) -> list[str]:
        return [t["name"] for t in self.calls[index]["tools"] or []]


class EchoTool(Tool):
    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []

    @property
    def name(self) -> str:
        return "echo"

    @property
    def description(self) -> str:
        return "Echo the arguments back"

    @property
    def input_schema(self) -> dict[str, Any]:
        return {"type": "object", "properties": {"text": {"type": "string"}}}

    async def execute(self, **kwargs: Any) -> dict[str, Any]:
        self.calls.append(kwargs)
        return {"echo": kwargs}


class ExplodingTool(Tool):
    @property
    def name(self) -> str:
        return "explode"

    @property
    def description(self) -> str:
        return "Always fails"

    @property
    def input_schema(self) -> dict[str, Any]:
        return {"type": "object", "properties": {}}

    async def execute(self, **kwargs: Any) -> str:
        raise RuntimeError("disk on fire")


class CancelTool(Tool):
    """Sets the cancellation event while it runs."""

    def __init__(self, event: asyncio.Event):
        self.event = event

    @property
    def name(self) -> str:
        return "cancel"

    @property
    def description(self) -> str:
        return "Requests cancellation"

    @property
    def input_schema(self) -> dict[str, Any]:
        return {"type": "object", "properties": {}}

    async def execute(self, **kwargs: Any) -> str:
        self.event.set()
        return "cancel requested"


class BlockingTool(Tool):
    def __init__(self) -> None:
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    @property
    def name(self) -> str:
        return "block"

    @property
    def description(self) -> str:
        return "Waits until released"

    @property
    def input_schema(self) -> dict[str, Any]:
        return {"type": "object", "properties": {}}

    async def execute(self, **kwargs: Any) -> str:
        self.started.set()
        await self.release.wait()
        return "released"


@pytest.fixture()
def echo_tool() -> EchoTool:
    return EchoTool()


@pytest.fixture()
def cancel_event() -> asyncio.Event:
    return asyncio.Event()


@pytest.fixture()
def registry(echo_tool: EchoTool) -> ToolRegistry:
    reg = ToolRegistry()
    reg.register(echo_tool)
    reg.register(ExplodingTool())
    return reg


@pytest.fixture()
def store(tmp_path) -> ConversationStore:
    return ConversationStore(tmp_path / "conversations")


async def collect(events) -> list:
    return [event async for event in events]
