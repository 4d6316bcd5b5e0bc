"""AIService: one facade over every configured provider backend.

Owns the model router and its discovery pass, resolves ``model or route(task)``
for each call, dispatches to the backend that serves the model and attaches a
cost estimate from the catalog prices. Non-streaming calls are paced per
provider by a one-minute input-token window.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Sequence
from typing import Any

from devtrack.ai.client import AIClient, CompletionResult, StreamEvent, create_client
from devtrack.ai.exceptions import ConfigurationError, ProviderError
from devtrack.ai.messages import Message
from devtrack.ai.rate_limit import TokenRateTracker, estimate_tokens
from devtrack.ai.router import ModelRouter, ModelSource
from devtrack.config import AIConfig, ProvidersConfig
from devtrack.core.types import TaskType
from devtrack.log import get_logger

logger = get_logger(__name__)


def provider_for_model(model: str) -> str:
    """Guess the provider from a model id that is not in the catalog."""
    if model.startswith("claude"):
        return "anthropic"
    if model.startswith("gemini"):
        return "google"
    return "openai"


class AIService:
    """Provider facade consumed by the chat and headless agent loops."""

    def __init__(
        self,
        ai_config: AIConfig,
        providers: ProvidersConfig | None = None,
        clients: dict[str, AIClient] | None = None,
        rate_tracker: TokenRateTracker | None = None,
    ):
        self._config = ai_config
        if clients is None:
            configured = (providers or ProvidersConfig()).configured()
            clients = {name: create_client(name, cfg) for name, cfg in configured.items()}
        self._clients = clients
        self._router = ModelRouter(ai_config, self._clients.keys())
        self._rate_tracker = rate_tracker or TokenRateTracker(ai_config.rate_limits)
        self._ready = asyncio.Event()
        for name in self._clients:
            logger.info("provider_configured", provider=name)

    @property
    def router(self) -> ModelRouter:
        return self._router

    @property
    def temperature(self) -> float:
        return self._config.temperature

    def is_configured(self) -> bool:
        return bool(self._clients)

    def is_ready(self) -> bool:
        return self._ready.is_set()

    async def discover(self) -> None:
        """Run a discovery pass and mark the service ready."""
        sources: dict[str, ModelSource | None] = {
            name: (client.list_models if client.supports_listing else None)
            for name, client in self._clients.items()
        }
        await self._router.discover_models(sources)
        self._ready.set()

    async def wait_for_ready(self, timeout: float) -> bool:
        """Wait up to ``timeout`` seconds for the first discovery pass."""
        try:
            await asyncio.wait_for(self._ready.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True

    async def ensure_ready(self, timeout: float | None = None) -> None:
        """Raise ConfigurationError unless a provider is configured and discovery finished."""
        if not self.is_configured():
            raise ConfigurationError("No AI providers configured. Add API keys to the configuration.")
        wait = self._config.ready_timeout if timeout is None else timeout
        if not await self.wait_for_ready(wait):
            raise ConfigurationError(f"Model discovery did not complete within {wait:g}s")

    def resolve_model(self, task: str | None = None, model: str | None = None) -> str:
        return model or self._router.route(task or TaskType.CHAT)

    def _client_for(self, model: str) -> AIClient:
        info = self._router.find(model)
        provider = info.provider.value if info is not None else provider_for_model(model)
        client = self._clients.get(provider)
        if client is None:
            raise ProviderError(provider, f"provider not configured for model '{model}'")
        return client

    async def complete(
        self,
        messages: Sequence[Message],
        *,
        task: str | None = None,
        model: str | None = None,
        tools: list[dict[str, Any]] | None = None,
        max_tokens: int = 4096,
    ) -> CompletionResult:
        resolved = self.resolve_model(task, model)
        client = self._client_for(resolved)
        await self._rate_tracker.wait_if_needed(client.provider, estimate_tokens(messages))
        result = await client.complete(
            messages,
            model=resolved,
            max_tokens=max_tokens,
            temperature=self._config.temperature,
            tools=tools or None,
        )
        self._rate_tracker.record_usage(client.provider, result.usage.input_tokens)
        result.estimated_cost = self._router.estimate_cost(
            resolved, result.usage.input_tokens, result.usage.output_tokens
        )
        return result

    async def stream(
        self,
        messages: Sequence[Message],
        *,
        task: str | None = None,
        model: str | None = None,
        tools: list[dict[str, Any]] | None = None,
        max_tokens: int = 4096,
    ) -> AsyncIterator[StreamEvent]:
        """Stream a completion. Backend failures arrive as a final ``error`` event."""
        resolved = self.resolve_model(task, model)
        try:
            client = self._client_for(resolved)
            async for event in client.stream(
                messages,
                model=resolved,
                max_tokens=max_tokens,
                temperature=self._config.temperature,
                tools=tools or None,
            ):
                if event.type == "done" and event.usage is not None:
                    event.estimated_cost = self._router.estimate_cost(
                        resolved, event.usage.input_tokens, event.usage.output_tokens
                    )
                yield event
        except ProviderError as e:
            logger.error("stream_error", model=resolved, error=str(e))
            yield StreamEvent(type="error", error=str(e), model=resolved)
