"""Interactive chat: the agent loop projected onto an ordered stream of typed events.

The loop writes ``ChatEvent`` objects into a bounded ``EventChannel``; the
transport (CLI, SSE handler, ...) drains the channel. Each request ends with
at most one terminal event, ``done`` or ``error``.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Literal, Optional

from pydantic import BaseModel

from devtrack.ai.exceptions import (
    AIError,
    ConversationBusyError,
    ConversationNotFoundError,
)
from devtrack.ai.loop import (
    CANCELLED_MARKER,
    CANCELLED_TOOL_RESULT,
    StopReason,
    build_provider_messages,
    execute_tool_call,
    is_cancelled,
    max_iterations_marker,
    preview,
)
from devtrack.ai.messages import AssistantMessage, ToolCall, ToolMessage, Usage, UserMessage
from devtrack.ai.service import AIService
from devtrack.ai.tools.registry import ToolRegistry
from devtrack.config import ChatConfig
from devtrack.core.types import TaskType
from devtrack.log import bind_context, clear_context, get_logger
from devtrack.storage.conversations import ConversationStore
from devtrack.storage.models import Conversation

logger = get_logger(__name__)

RESULT_PREVIEW_CHARS = 500

DEFAULT_SYSTEM_PROMPT = """\
You are the dev-track assistant for the project "{project}": a project copilot that \
helps plan, track and understand the codebase.

Tools available: {tools}.

- Be direct and specific. Use tools to gather context before answering questions about the project.
- Prefer reading the relevant files or git history over guessing.
- Format answers in markdown.
- When you change something with a tool, say what you changed."""

ChatEventType = Literal[
    "status", "text_delta", "tool_call_start", "tool_call_result", "message_complete", "error", "done"
]


class ToolCallInfo(BaseModel):
    id: str
    name: str
    friendly_name: str
    arguments: Optional[str] = None
    result: Optional[str] = None
    status: Literal["running", "complete", "error"] = "running"


class ChatEvent(BaseModel):
    type: ChatEventType
    content: Optional[str] = None
    conversation_id: Optional[str] = None
    tool_call: Optional[ToolCallInfo] = None
    message: Optional[AssistantMessage] = None
    usage: Optional[Usage] = None
    model: Optional[str] = None
    cost: Optional[float] = None
    stop_reason: Optional[StopReason] = None
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.type in ("done", "error")

    def to_sse(self) -> str:
        """Serialize as one server-sent-events frame."""
        return f"event: {self.type}\ndata: {self.model_dump_json(exclude_none=True)}\n\n"


class ChatRequest(BaseModel):
    message: str
    conversation_id: Optional[str] = None
    model_override: Optional[str] = None


_CLOSED = object()


class EventChannel:
    """Bounded single-producer, single-consumer queue of chat events."""

    def __init__(self, maxsize: int = 64):
        self._queue: asyncio.Queue[object] = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    async def send(self, event: ChatEvent) -> None:
        if self._closed:
            raise RuntimeError("event channel is closed")
        await self._queue.put(event)

    def close(self) -> None:
        """Mark the end of the stream. Never blocks."""
        if self._closed:
            return
        self._closed = True
        with contextlib.suppress(asyncio.QueueFull):
            # a full queue is drained first, then iteration ends on the flag
            self._queue.put_nowait(_CLOSED)

    def __aiter__(self) -> EventChannel:
        return self

    async def __anext__(self) -> ChatEvent:
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item  # type: ignore[return-value]


Emit = Callable[[ChatEvent], Awaitable[None]]


def _result_status(result: str) -> Literal["complete", "error"]:
    try:
        parsed = json.loads(result)
    except (json.JSONDecodeError, TypeError):
        return "complete"
    return "error" if isinstance(parsed, dict) and "error" in parsed else "complete"


class ChatService:
    """Runs interactive agent turns and owns the conversation lifecycle.

    Only one request may run against a conversation id at a time; a second
    concurrent request is rejected with a ``ConversationBusyError`` event.
    """

    def __init__(
        self,
        ai: AIService,
        tools: ToolRegistry,
        store: ConversationStore,
        config: ChatConfig | None = None,
        project_name: str = "project",
        tool_names: list[str] | None = None,
        ready_timeout: float | None = None,
    ):
        self._ai = ai
        self._tools = tools
        self._store = store
        self._config = config or ChatConfig()
        self._project_name = project_name
        self._tool_names = tool_names
        self._ready_timeout = ready_timeout
        self._active: set[str] = set()

    def system_prompt(self) -> str:
        template = self._config.system_prompt or DEFAULT_SYSTEM_PROMPT
        tool_list = ", ".join(t["name"] for t in self._tools.definitions(self._tool_names)) or "none"
        return template.format(project=self._project_name, tools=tool_list)

    def is_active(self, conversation_id: str) -> bool:
        return conversation_id in self._active

    async def stream(
        self, request: ChatRequest, cancel_event: asyncio.Event | None = None
    ) -> AsyncIterator[ChatEvent]:
        """Run one request and yield its events in order.

        Closing the iterator early cancels the running loop.
        """
        channel = EventChannel()

        async def produce() -> None:
            try:
                await self.run(request, channel.send, cancel_event)
            finally:
                channel.close()

        task = asyncio.create_task(produce())
        try:
            async for event in channel:
                yield event
        finally:
            if not task.done():
                task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def run(
        self, request: ChatRequest, emit: Emit, cancel_event: asyncio.Event | None = None
    ) -> None:
        """Run the agent loop for one user message, writing events through ``emit``."""
        try:
            await self._ai.ensure_ready(self._ready_timeout)
        except AIError as e:
            await emit(ChatEvent(type="error", error=str(e)))
            return

        is_new = not request.conversation_id
        if is_new:
            convo = self._store.create()
        else:
            try:
                convo = self._store.load(request.conversation_id)
            except ValueError:
                convo = None
            if convo is None:
                await emit(ChatEvent(type="error", error=str(ConversationNotFoundError(request.conversation_id))))
                return

        if convo.id in self._active:
            await emit(ChatEvent(type="error", conversation_id=convo.id, error=str(ConversationBusyError(convo.id))))
            return

        self._active.add(convo.id)
        bind_context(conversation_id=convo.id)
        try:
            if is_new:
                self._store.save(convo)
                await emit(ChatEvent(type="status", content="new_conversation", conversation_id=convo.id))
            await self._run_turns(convo, request, emit, cancel_event)
        finally:
            self._active.discard(convo.id)
            clear_context("conversation_id")

    async def _run_turns(
        self,
        convo: Conversation,
        request: ChatRequest,
        emit: Emit,
        cancel_event: asyncio.Event | None,
    ) -> None:
        convo.messages.append(UserMessage(content=request.message))
        convo.apply_auto_title(request.message)

        try:
            model = request.model_override or convo.model or self._ai.resolve_model(TaskType.CHAT)
        except AIError as e:
            self._store.save(convo)
            await emit(ChatEvent(type="error", conversation_id=convo.id, error=str(e)))
            return

        tools = self._tools.definitions(self._tool_names)
        system_prompt = self.system_prompt()
        max_iterations = self._config.max_iterations
        total_usage = Usage()
        total_cost = 0.0

        await emit(ChatEvent(type="status", content="thinking"))

        for iteration in range(max_iterations):
            if is_cancelled(cancel_event):
                await self._finish_cancelled(convo, emit, model, total_usage, total_cost)
                return

            parts: list[str] = []
            tool_calls: list[ToolCall] = []
            resolved_model = model

            try:
                async for event in self._ai.stream(
                    build_provider_messages(system_prompt, convo.messages),
                    model=model,
                    tools=tools,
                    max_tokens=self._config.max_tokens,
                ):
                    match event.type:
                        case "text_delta":
                            parts.append(event.content)
                            await emit(ChatEvent(type="text_delta", content=event.content))
                        case "tool_call_start" if event.tool_call is not None:
                            tc = event.tool_call
                            tool_calls.append(tc)
                            await emit(
                                ChatEvent(
                                    type="tool_call_start",
                                    tool_call=ToolCallInfo(
                                        id=tc.id, name=tc.name, friendly_name=self._tools.label_for(tc.name)
                                    ),
                                )
                            )
                        case "tool_call_delta" | "tool_call_end" if event.tool_call is not None:
                            _replace_call(tool_calls, event.tool_call)
                        case "done":
                            if event.usage is not None:
                                total_usage = total_usage + event.usage
                            total_cost += event.estimated_cost
                            resolved_model = event.model or model
                        case "error":
                            raise AIError(event.error or "AI request failed")
            except Exception as e:
                logger.error("chat_provider_error", iteration=iteration, error=str(e))
                self._store.save(convo)
                await emit(ChatEvent(type="error", conversation_id=convo.id, error=str(e) or "AI request failed"))
                return

            content = "".join(parts)
            if not tool_calls:
                reply = AssistantMessage(content=content)
                convo.messages.append(reply)
                self._store.save(convo)
                await emit(ChatEvent(type="message_complete", message=reply, model=resolved_model, usage=total_usage))
                await emit(
                    ChatEvent(
                        type="done",
                        conversation_id=convo.id,
                        model=resolved_model,
                        usage=total_usage,
                        cost=total_cost,
                        stop_reason=StopReason.FINAL_ANSWER,
                    )
                )
                logger.info("chat_complete", iterations=iteration + 1, tokens=total_usage.total_tokens)
                return

            convo.messages.append(AssistantMessage(content=content, tool_calls=tool_calls))
            for index, tc in enumerate(tool_calls):
                if is_cancelled(cancel_event):
                    # keep every tool call answered so the history stays valid for the provider
                    for skipped in tool_calls[index:]:
                        convo.messages.append(
                            ToolMessage(content=CANCELLED_TOOL_RESULT, tool_call_id=skipped.id, tool_name=skipped.name)
                        )
                    await self._finish_cancelled(convo, emit, model, total_usage, total_cost)
                    return

                execution = await execute_tool_call(self._tools, tc)
                convo.messages.append(execution.to_message())
                await emit(
                    ChatEvent(
                        type="tool_call_result",
                        tool_call=ToolCallInfo(
                            id=tc.id,
                            name=tc.name,
                            friendly_name=self._tools.label_for(tc.name),
                            arguments=json.dumps(execution.args),
                            result=preview(execution.result, RESULT_PREVIEW_CHARS),
                            status=_result_status(execution.result),
                        ),
                    )
                )

            self._store.save(convo)
            if iteration + 1 < max_iterations:
                await emit(ChatEvent(type="status", content="thinking"))

        self._store.save(convo)
        marker = max_iterations_marker(max_iterations)
        logger.warning("chat_max_iterations", max_iterations=max_iterations)
        await emit(ChatEvent(type="status", content=marker))
        await emit(
            ChatEvent(
                type="done",
                content=marker,
                conversation_id=convo.id,
                model=model,
                usage=total_usage,
                cost=total_cost,
                stop_reason=StopReason.MAX_ITERATIONS,
            )
        )

    async def _finish_cancelled(
        self, convo: Conversation, emit: Emit, model: str, usage: Usage, cost: float
    ) -> None:
        self._store.save(convo)
        logger.info("chat_cancelled")
        await emit(ChatEvent(type="status", content="cancelled"))
        await emit(
            ChatEvent(
                type="done",
                content=CANCELLED_MARKER,
                conversation_id=convo.id,
                model=model,
                usage=usage,
                cost=cost,
                stop_reason=StopReason.CANCELLED,
            )
        )


def _replace_call(tool_calls: list[ToolCall], updated: ToolCall) -> None:
    for i, tc in enumerate(tool_calls):
        if tc.id == updated.id:
            tool_calls[i] = updated
            return
