from __future__ import annotations

import pytest

from devtrack.ai.client import AIClient, CompletionResult, StreamEvent
from devtrack.ai.exceptions import ConfigurationError, ProviderError
from devtrack.ai.messages import Usage, UserMessage
from devtrack.ai.rate_limit import MAX_WAIT_SECONDS, TokenRateTracker
from devtrack.ai.service import AIService, provider_for_model
from devtrack.config import AIConfig, ProviderConfig, ProvidersConfig
from devtrack.core.types import TaskType

USAGE = Usage(input_tokens=1000, output_tokens=1000, total_tokens=2000)


class ScriptedClient(AIClient):
    provider = "anthropic"

    def __init__(self, models=("claude-sonnet-4-5-20250929",), fail_stream: bool = False):
        self.models = list(models)
        self.fail_stream = fail_stream
        self.requests: list[str] = []

    async def complete(self, messages, model, max_tokens=4096, temperature=0.7, tools=None):
        self.requests.append(model)
        return CompletionResult(content="ok", usage=USAGE, model=model, provider=self.provider)

    async def stream(self, messages, model, max_tokens=4096, temperature=0.7, tools=None):
        self.requests.append(model)
        if self.fail_stream:
            raise ProviderError(self.provider, "stream dropped")
        yield StreamEvent(type="text_delta", content="ok")
        yield StreamEvent(type="done", usage=USAGE, model=model)

    async def list_models(self) -> list[str]:
        return self.models


@pytest.mark.asyncio
async def test_not_configured_raises():
    service = AIService(AIConfig(), clients={})
    assert not service.is_configured()
    with pytest.raises(ConfigurationError):
        await service.ensure_ready()


@pytest.mark.asyncio
async def test_ready_times_out_before_discovery():
    service = AIService(AIConfig(), clients={"anthropic": ScriptedClient()})
    assert not service.is_ready()
    assert await service.wait_for_ready(0.01) is False
    with pytest.raises(ConfigurationError, match="did not complete"):
        await service.ensure_ready(0.01)


@pytest.mark.asyncio
async def test_complete_routes_and_prices():
    client = ScriptedClient()
    service = AIService(AIConfig(), clients={"anthropic": client})
    await service.discover()
    await service.ensure_ready()

    result = await service.complete([UserMessage(content="hi")], task=TaskType.CHAT)
    assert client.requests == ["claude-sonnet-4-5-20250929"]
    assert result.estimated_cost == pytest.approx(0.003 + 0.015)


@pytest.mark.asyncio
async def test_stream_attaches_cost_on_done():
    service = AIService(AIConfig(), clients={"anthropic": ScriptedClient()})
    await service.discover()

    events = [e async for e in service.stream([UserMessage(content="hi")], task=TaskType.CHAT)]
    assert [e.type for e in events] == ["text_delta", "done"]
    assert events[-1].estimated_cost == pytest.approx(0.018)


@pytest.mark.asyncio
async def test_stream_failure_becomes_error_event():
    service = AIService(AIConfig(), clients={"anthropic": ScriptedClient(fail_stream=True)})
    await service.discover()

    events = [e async for e in service.stream([UserMessage(content="hi")], task=TaskType.CHAT)]
    assert [e.type for e in events] == ["error"]
    assert "stream dropped" in events[0].error


@pytest.mark.asyncio
async def test_model_for_unconfigured_provider_is_a_provider_error():
    service = AIService(AIConfig(), clients={"anthropic": ScriptedClient()})
    await service.discover()
    with pytest.raises(ProviderError):
        await service.complete([UserMessage(content="hi")], model="gpt-5.2")


def test_only_usable_provider_keys_build_clients():
    providers = ProvidersConfig(
        anthropic=ProviderConfig(api_key="sk-ant-test"),
        openai=ProviderConfig(api_key="${OPENAI_API_KEY}"),
        google=ProviderConfig(api_key=""),
    )
    service = AIService(AIConfig(), providers)
    assert service.is_configured()
    assert list(providers.configured()) == ["anthropic"]


def test_provider_for_model():
    assert provider_for_model("claude-opus-4-6") == "anthropic"
    assert provider_for_model("gemini-2.5-pro") == "google"
    assert provider_for_model("gpt-5.2") == "openai"


@pytest.mark.asyncio
async def test_complete_paces_provider_by_recorded_input_tokens():
    now = [0.0]
    sleeps: list[float] = []

    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)
        now[0] += seconds

    tracker = TokenRateTracker({"anthropic": 1000}, clock=lambda: now[0], sleep=fake_sleep)
    service = AIService(AIConfig(), clients={"anthropic": ScriptedClient()}, rate_tracker=tracker)
    await service.discover()

    await service.complete([UserMessage(content="hi")], task=TaskType.CHAT)
    assert sleeps == []
    assert tracker.recent_tokens("anthropic") == 1000

    await service.complete([UserMessage(content="hi")], task=TaskType.CHAT)
    assert sleeps == [MAX_WAIT_SECONDS]


def test_default_rate_limits_cover_every_provider():
    assert set(AIConfig().rate_limits) == {"anthropic", "openai", "google"}
