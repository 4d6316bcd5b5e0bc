"""AI client abstraction with Anthropic, OpenAI and Google (OpenAI-compatible) backends."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass, field
from typing import Any, Literal, assert_never

from devtrack.ai.exceptions import ProviderError
from devtrack.ai.messages import (
    AssistantMessage,
    Message,
    SystemMessage,
    ToolCall,
    ToolMessage,
    Usage,
    UserMessage,
)
from devtrack.config import ProviderConfig
from devtrack.log import get_logger

logger = get_logger(__name__)

EMPTY_ASSISTANT_TEXT = "(no response)"

StreamEventType = Literal["text_delta", "tool_call_start", "tool_call_delta", "tool_call_end", "done", "error"]


@dataclass
class CompletionResult:
    """Unified non-streaming response from any backend."""

    content: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    usage: Usage = field(default_factory=Usage)
    model: str = ""
    provider: str = ""
    estimated_cost: float = 0.0


@dataclass
class StreamEvent:
    type: StreamEventType
    content: str = ""
    tool_call: ToolCall | None = None
    usage: Usage | None = None
    model: str = ""
    provider: str = ""
    error: str = ""
    estimated_cost: float = 0.0


class AIClient(ABC):
    """Abstract base class for provider backends.

    ``tools`` are neutral definitions: ``{"name", "description", "input_schema"}``.
    """

    provider: str = ""

    @abstractmethod
    async def complete(
        self,
        messages: Sequence[Message],
        model: str,
        max_tokens: int = 4096,
        temperature: float = 0.7,
        tools: list[dict[str, Any]] | None = None,
    ) -> CompletionResult: ...

    @abstractmethod
    def stream(
        self,
        messages: Sequence[Message],
        model: str,
        max_tokens: int = 4096,
        temperature: float = 0.7,
        tools: list[dict[str, Any]] | None = None,
    ) -> AsyncIterator[StreamEvent]: ...

    @property
    def supports_listing(self) -> bool:
        """Whether ``list_models`` queries the provider live."""
        return True

    @abstractmethod
    async def list_models(self) -> list[str]: ...


class AnthropicClient(AIClient):
    """Anthropic API backend using the official SDK."""

    provider = "anthropic"

    def __init__(self, config: ProviderConfig):
        import anthropic

        self._anthropic = anthropic
        self._client = anthropic.AsyncAnthropic(
            api_key=config.api_key,
            base_url=config.base_url,
            max_retries=config.max_retries,
            timeout=config.timeout,
        )

    @staticmethod
    def to_anthropic_messages(messages: Sequence[Message]) -> tuple[str, list[dict[str, Any]]]:
        """Split out the system prompt and convert the rest into content blocks.

        Consecutive tool results are grouped into one user message, as the API
        requires all results for an assistant turn in the following user turn.
        """
        system_parts: list[str] = []
        converted: list[dict[str, Any]] = []

        for msg in messages:
            match msg:
                case SystemMessage():
                    system_parts.append(msg.content)
                case UserMessage():
                    converted.append({"role": "user", "content": msg.content})
                case AssistantMessage():
                    if not msg.tool_calls:
                        # empty assistant text is rejected anywhere but the final turn
                        text = msg.content if msg.content.strip() else EMPTY_ASSISTANT_TEXT
                        converted.append({"role": "assistant", "content": text})
                        continue
                    blocks: list[dict[str, Any]] = []
                    if msg.content.strip():
                        blocks.append({"type": "text", "text": msg.content})
                    for tc in msg.tool_calls:
                        blocks.append(
                            {"type": "tool_use", "id": tc.id, "name": tc.name, "input": tc.parse_arguments()}
                        )
                    converted.append({"role": "assistant", "content": blocks})
                case ToolMessage():
                    block = {"type": "tool_result", "tool_use_id": msg.tool_call_id, "content": msg.content}
                    prev = converted[-1] if converted else None
                    if (
                        prev is not None
                        and prev["role"] == "user"
                        and isinstance(prev["content"], list)
                        and all(b.get("type") == "tool_result" for b in prev["content"])
                    ):
                        prev["content"].append(block)
                    else:
                        converted.append({"role": "user", "content": [block]})
                case _:
                    assert_never(msg)

        return "\n\n".join(p for p in system_parts if p), converted

    def _request(
        self,
        messages: Sequence[Message],
        model: str,
        max_tokens: int,
        temperature: float,
        tools: list[dict[str, Any]] | None,
    ) -> dict[str, Any]:
        system, converted = self.to_anthropic_messages(messages)
        kwargs: dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens,
            "messages": converted,
            "temperature": temperature,
        }
        if system:
            kwargs["system"] = system
        if tools:
            kwargs["tools"] = tools
        return kwargs

    async def complete(
        self,
        messages: Sequence[Message],
        model: str,
        max_tokens: int = 4096,
        temperature: float = 0.7,
        tools: list[dict[str, Any]] | None = None,
    ) -> CompletionResult:
        kwargs = self._request(messages, model, max_tokens, temperature, tools)
        logger.debug("api_request", provider=self.provider, model=model, message_count=len(messages))
        try:
            response = await self._client.messages.create(**kwargs)
        except self._anthropic.APIError as e:
            raise ProviderError(self.provider, str(e)) from e

        text_parts: list[str] = []
        tool_calls: list[ToolCall] = []
        for block in response.content:
            if block.type == "text":
                text_parts.append(block.text)
            elif block.type == "tool_use":
                tool_calls.append(ToolCall(id=block.id, name=block.name, arguments=json.dumps(block.input)))

        usage = Usage(
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            total_tokens=response.usage.input_tokens + response.usage.output_tokens,
        )
        logger.debug(
            "api_response",
            provider=self.provider,
            model=model,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            stop_reason=response.stop_reason,
        )
        return CompletionResult(
            content="\n".join(text_parts),
            tool_calls=tool_calls,
            usage=usage,
            model=model,
            provider=self.provider,
        )

    async def stream(
        self,
        messages: Sequence[Message],
        model: str,
        max_tokens: int = 4096,
        temperature: float = 0.7,
        tools: list[dict[str, Any]] | None = None,
    ) -> AsyncIterator[StreamEvent]:
        kwargs = self._request(messages, model, max_tokens, temperature, tools)
        # content block index -> (tool call, accumulated argument JSON)
        open_calls: dict[int, tuple[ToolCall, str]] = {}

        try:
            async with self._client.messages.stream(**kwargs) as stream:
                async for event in stream:
                    if event.type == "content_block_start" and event.content_block.type == "tool_use":
                        tc = ToolCall(id=event.content_block.id, name=event.content_block.name, arguments="")
                        open_calls[event.index] = (tc, "")
                        yield StreamEvent(type="tool_call_start", tool_call=tc)
                    elif event.type == "content_block_delta":
                        if event.delta.type == "text_delta":
                            yield StreamEvent(type="text_delta", content=event.delta.text)
                        elif event.delta.type == "input_json_delta" and event.index in open_calls:
                            tc, partial = open_calls[event.index]
                            open_calls[event.index] = (tc, partial + event.delta.partial_json)
                            yield StreamEvent(type="tool_call_delta", tool_call=tc, content=event.delta.partial_json)
                    elif event.type == "content_block_stop" and event.index in open_calls:
                        tc, partial = open_calls.pop(event.index)
                        done_call = ToolCall(id=tc.id, name=tc.name, arguments=partial or "{}")
                        yield StreamEvent(type="tool_call_end", tool_call=done_call)
                final = await stream.get_final_message()
        except self._anthropic.APIError as e:
            raise ProviderError(self.provider, str(e)) from e

        usage = Usage(
            input_tokens=final.usage.input_tokens,
            output_tokens=final.usage.output_tokens,
            total_tokens=final.usage.input_tokens + final.usage.output_tokens,
        )
        yield StreamEvent(type="done", model=model, provider=self.provider, usage=usage)

    async def list_models(self) -> list[str]:
        page = await self._client.models.list(limit=100)
        return [m.id for m in page.data]


class OpenAIClient(AIClient):
    """OpenAI chat-completions backend."""

    provider = "openai"
    default_base_url: str | None = None
    max_tokens_param = "max_completion_tokens"

    def __init__(self, config: ProviderConfig):
        import openai

        self._openai = openai
        self._client = openai.AsyncOpenAI(
            api_key=config.api_key,
            base_url=config.base_url or self.default_base_url,
            max_retries=config.max_retries,
            timeout=config.timeout,
        )

    @staticmethod
    def to_openai_messages(messages: Sequence[Message]) -> list[dict[str, Any]]:
        converted: list[dict[str, Any]] = []
        for msg in messages:
            match msg:
                case SystemMessage():
                    converted.append({"role": "system", "content": msg.content})
                case UserMessage():
                    converted.append({"role": "user", "content": msg.content})
                case AssistantMessage():
                    entry: dict[str, Any] = {"role": "assistant", "content": msg.content or None}
                    if msg.tool_calls:
                        entry["tool_calls"] = [
                            {
                                "id": tc.id,
                                "type": "function",
                                "function": {"name": tc.name, "arguments": tc.arguments or "{}"},
                            }
                            for tc in msg.tool_calls
                        ]
                    elif entry["content"] is None:
                        entry["content"] = ""
                    converted.append(entry)
                case ToolMessage():
                    converted.append({"role": "tool", "tool_call_id": msg.tool_call_id, "content": msg.content})
                case _:
                    assert_never(msg)
        return converted

    @staticmethod
    def to_openai_tools(tools: list[dict[str, Any]]) -> list[dict[str, Any]]:
        return [
            {
                "type": "function",
                "function": {
                    "name": t["name"],
                    "description": t.get("description", ""),
                    "parameters": t.get("input_schema", {"type": "object", "properties": {}}),
                },
            }
            for t in tools
        ]

    def _request(
        self,
        messages: Sequence[Message],
        model: str,
        max_tokens: int,
        temperature: float,
        tools: list[dict[str, Any]] | None,
    ) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": model,
            "messages": self.to_openai_messages(messages),
            "temperature": temperature,
            self.max_tokens_param: max_tokens,
        }
        if tools:
            kwargs["tools"] = self.to_openai_tools(tools)
        return kwargs

    async def complete(
        self,
        messages: Sequence[Message],
        model: str,
        max_tokens: int = 4096,
        temperature: float = 0.7,
        tools: list[dict[str, Any]] | None = None,
    ) -> CompletionResult:
        kwargs = self._request(messages, model, max_tokens, temperature, tools)
        logger.debug("api_request", provider=self.provider, model=model, message_count=len(messages))
        try:
            response = await self._client.chat.completions.create(**kwargs)
        except self._openai.OpenAIError as e:
            raise ProviderError(self.provider, str(e)) from e

        message = response.choices[0].message
        tool_calls = [
            ToolCall(id=tc.id, name=tc.function.name, arguments=tc.function.arguments or "{}")
            for tc in (message.tool_calls or [])
        ]
        usage = Usage()
        if response.usage is not None:
            usage = Usage(
                input_tokens=response.usage.prompt_tokens,
                output_tokens=response.usage.completion_tokens,
                total_tokens=response.usage.total_tokens,
            )
        return CompletionResult(
            content=message.content or "",
            tool_calls=tool_calls,
            usage=usage,
            model=model,
            provider=self.provider,
        )

    async def stream(
        self,
        messages: Sequence[Message],
        model: str,
        max_tokens: int = 4096,
        temperature: float = 0.7,
        tools: list[dict[str, Any]] | None = None,
    ) -> AsyncIterator[StreamEvent]:
        kwargs = self._request(messages, model, max_tokens, temperature, tools)
        kwargs["stream"] = True
        kwargs["stream_options"] = {"include_usage": True}

        # delta index -> (id, name, accumulated arguments)
        calls: dict[int, tuple[str, str, str]] = {}
        usage = Usage()

        try:
            stream = await self._client.chat.completions.create(**kwargs)
            async for chunk in stream:
                if chunk.usage is not None:
                    usage = Usage(
                        input_tokens=chunk.usage.prompt_tokens,
                        output_tokens=chunk.usage.completion_tokens,
                        total_tokens=chunk.usage.total_tokens,
                    )
                if not chunk.choices:
                    continue
                choice = chunk.choices[0]
                delta = choice.delta

                if delta is not None and delta.content:
                    yield StreamEvent(type="text_delta", content=delta.content)

                for tc in (delta.tool_calls or []) if delta is not None else []:
                    fn_name = tc.function.name if tc.function else None
                    fn_args = (tc.function.arguments if tc.function else None) or ""
                    if tc.id and tc.index not in calls:
                        calls[tc.index] = (tc.id, fn_name or "", fn_args)
                        yield StreamEvent(
                            type="tool_call_start",
                            tool_call=ToolCall(id=tc.id, name=fn_name or "", arguments=fn_args),
                        )
                    elif tc.index in calls and fn_args:
                        call_id, name, args = calls[tc.index]
                        calls[tc.index] = (call_id, name, args + fn_args)
                        yield StreamEvent(
                            type="tool_call_delta",
                            tool_call=ToolCall(id=call_id, name=name, arguments=args + fn_args),
                            content=fn_args,
                        )

                if choice.finish_reason:
                    for idx in sorted(calls):
                        call_id, name, args = calls[idx]
                        yield StreamEvent(
                            type="tool_call_end",
                            tool_call=ToolCall(id=call_id, name=name, arguments=args or "{}"),
                        )
                    calls.clear()
        except self._openai.OpenAIError as e:
            raise ProviderError(self.provider, str(e)) from e

        yield StreamEvent(type="done", model=model, provider=self.provider, usage=usage)

    async def list_models(self) -> list[str]:
        page = await self._client.models.list()
        # skip embeddings, audio, image models
        return [m.id for m in page.data if m.id.startswith("gpt-")]


class GoogleClient(OpenAIClient):
    """Gemini through Google's OpenAI-compatible endpoint.

    The endpoint has no usable model listing, so discovery falls back to the
    router's static Gemini list.
    """

    provider = "google"
    default_base_url = "https://generativelanguage.googleapis.com/v1beta/openai/"
    max_tokens_param = "max_tokens"

    @property
    def supports_listing(self) -> bool:
        return False

    async def list_models(self) -> list[str]:
        return []


def create_client(provider: str, config: ProviderConfig) -> AIClient:
    match provider:
        case "anthropic":
            return AnthropicClient(config)
        case "openai":
            return OpenAIClient(config)
        case "google":
            return GoogleClient(config)
        case _:
            raise ValueError(f"Unknown AI provider: {provider}")
