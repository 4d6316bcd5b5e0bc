"""Headless agent runner for unattended tasks (audits, doc generation, automation).

Same loop semantics as chat, but non-streaming: one ``complete()`` call per
iteration and a single ``AgentResult`` at the end.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol

from devtrack.ai.exceptions import ProviderError
from devtrack.ai.loop import (
    CANCELLED_MARKER,
    StopReason,
    build_provider_messages,
    cost_cap_marker,
    execute_tool_call,
    is_cancelled,
    max_iterations_marker,
    preview,
)
from devtrack.ai.messages import AssistantMessage, Message, Usage, UserMessage, new_id
from devtrack.ai.service import AIService
from devtrack.ai.tools.registry import ToolRegistry
from devtrack.config import AgentConfig
from devtrack.core.types import ModelTier
from devtrack.log import bind_context, clear_context, get_logger

logger = get_logger(__name__)

RESULT_PREVIEW_CHARS = 200


class RunRecorder(Protocol):
    """Audit hook notified of each step of a headless run."""

    def record_thinking(
        self, content: str, usage: Usage | None = None, cost: float = 0.0, model: str = "", provider: str = ""
    ) -> None: ...

    def record_tool_call(self, name: str, args: dict[str, Any]) -> None: ...

    def record_tool_result(self, name: str, result: str) -> None: ...


@dataclass
class ProgressUpdate:
    tool_name: str
    args: dict[str, Any]
    result: str
    iteration: int
    tokens_used: int
    cost: float


@dataclass
class AgentOptions:
    task: Optional[str] = None
    tier: Optional[ModelTier] = None
    model: Optional[str] = None
    max_iterations: Optional[int] = None
    max_cost: Optional[float] = None
    max_tokens: Optional[int] = None
    allowed_tools: Optional[list[str]] = None
    on_progress: Optional[Callable[[ProgressUpdate], None]] = None
    recorder: Optional[RunRecorder] = None
    cancel_event: Optional[asyncio.Event] = None


@dataclass
class ToolCallRecord:
    name: str
    args: dict[str, Any]
    result_preview: str


@dataclass
class AgentResult:
    content: str
    tool_calls_made: list[ToolCallRecord] = field(default_factory=list)
    iterations: int = 0
    tokens_used: int = 0
    cost: float = 0.0
    stop_reason: StopReason = StopReason.FINAL_ANSWER
    model: str = ""

    @property
    def completed(self) -> bool:
        return self.stop_reason == StopReason.FINAL_ANSWER


class AgentRunner:
    def __init__(self, ai: AIService, tools: ToolRegistry, config: AgentConfig | None = None):
        self._ai = ai
        self._tools = tools
        self._config = config or AgentConfig()

    def _resolve_model(self, options: AgentOptions) -> str:
        if options.model:
            return options.model
        if options.tier is not None:
            return self._ai.router.route_tier(options.tier)
        return self._ai.resolve_model(options.task or self._config.default_task)

    async def run(
        self, system_prompt: str, user_message: str, options: AgentOptions | None = None
    ) -> AgentResult:
        """Run the loop to completion.

        Raises ``ConfigurationError`` if no provider becomes ready and
        ``ProviderError`` on a failed model call. Every other stop (iteration
        cap, cost cap, cancellation) returns a result whose ``content`` is a
        marker string and whose ``stop_reason`` says why.
        """
        options = options or AgentOptions()
        await self._ai.ensure_ready()

        model = self._resolve_model(options)
        max_iterations = (
            options.max_iterations if options.max_iterations is not None else self._config.max_iterations
        )
        max_cost = options.max_cost if options.max_cost is not None else self._config.max_cost
        max_tokens = options.max_tokens or self._config.max_tokens
        tools = self._tools.definitions(options.allowed_tools)

        history: list[Message] = [UserMessage(content=user_message)]
        result = AgentResult(content="", model=model)
        run_id = new_id("run")
        bind_context(run_id=run_id)
        logger.info("agent_run_start", model=model, max_iterations=max_iterations, max_cost=max_cost)

        try:
            for i in range(max_iterations):
                if is_cancelled(options.cancel_event):
                    return self._stop(result, StopReason.CANCELLED, CANCELLED_MARKER, iterations=i)

                try:
                    completion = await self._ai.complete(
                        build_provider_messages(system_prompt, history),
                        model=model,
                        tools=tools,
                        max_tokens=max_tokens,
                    )
                except ProviderError as e:
                    logger.error("agent_provider_error", iteration=i, error=str(e))
                    raise

                result.iterations = i + 1
                result.tokens_used += completion.usage.total_tokens
                result.cost += completion.estimated_cost
                result.model = completion.model or model
                if options.recorder is not None:
                    options.recorder.record_thinking(
                        completion.content,
                        completion.usage,
                        completion.estimated_cost,
                        result.model,
                        completion.provider,
                    )

                history.append(AssistantMessage(content=completion.content, tool_calls=completion.tool_calls))
                if not completion.tool_calls:
                    result.content = completion.content
                    logger.info(
                        "agent_run_complete", iterations=result.iterations, tokens=result.tokens_used, cost=result.cost
                    )
                    return result

                for tc in completion.tool_calls:
                    if is_cancelled(options.cancel_event):
                        return self._stop(result, StopReason.CANCELLED, CANCELLED_MARKER)

                    if options.recorder is not None:
                        options.recorder.record_tool_call(tc.name, tc.parse_arguments())
                    execution = await execute_tool_call(self._tools, tc)
                    history.append(execution.to_message())
                    result.tool_calls_made.append(
                        ToolCallRecord(
                            name=tc.name,
                            args=execution.args,
                            result_preview=preview(execution.result, RESULT_PREVIEW_CHARS, ellipsis=""),
                        )
                    )
                    if options.recorder is not None:
                        options.recorder.record_tool_result(tc.name, execution.result)
                    self._notify(options, execution.call.name, execution.args, execution.result, result)

                if max_cost is not None and result.cost > max_cost:
                    return self._stop(result, StopReason.COST_CAP, cost_cap_marker(result.cost, max_cost))

            return self._stop(result, StopReason.MAX_ITERATIONS, max_iterations_marker(max_iterations))
        finally:
            clear_context("run_id")

    @staticmethod
    def _stop(result: AgentResult, reason: StopReason, marker: str, iterations: int | None = None) -> AgentResult:
        if iterations is not None:
            result.iterations = iterations
        result.content = marker
        result.stop_reason = reason
        logger.warning(
            "agent_run_stopped",
            reason=str(reason),
            iterations=result.iterations,
            tool_calls=len(result.tool_calls_made),
            cost=result.cost,
        )
        return result

    @staticmethod
    def _notify(options: AgentOptions, name: str, args: dict[str, Any], tool_result: str, result: AgentResult) -> None:
        if options.on_progress is None:
            return
        update = ProgressUpdate(
            tool_name=name,
            args=args,
            result=tool_result,
            iteration=result.iterations,
            tokens_used=result.tokens_used,
            cost=result.cost,
        )
        try:
            options.on_progress(update)
        except Exception as e:
            logger.warning("progress_callback_failed", tool=name, error=str(e))
