"""Task-aware model routing over an auto-discovered model catalog.

Provider model ids change constantly (dated snapshots, preview suffixes), so
instead of an allow-list each discovered id is classified into a capability
tier by regex. A renamed model keeps working as long as it still matches its
family pattern; ids that match nothing are dropped from the catalog.

Routing then resolves an abstract task type to a concrete model id using the
task's ordered (tier, provider) preferences, which are configuration.
"""

from __future__ import annotations

import asyncio
import re
import time
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass

from devtrack.ai.exceptions import NoModelsAvailableError
from devtrack.config import AIConfig, TaskRouteConfig
from devtrack.core.types import ModelTier, ProviderName, TaskType
from devtrack.log import get_logger

logger = get_logger(__name__)

# Returns the provider's live model ids.
ModelSource = Callable[[], Awaitable[list[str]]]

_TIER_RANK = {ModelTier.PREMIUM: 0, ModelTier.STANDARD: 1, ModelTier.BUDGET: 2}
_PROVIDER_ORDER = (ProviderName.ANTHROPIC, ProviderName.OPENAI, ProviderName.GOOGLE)

DEFAULT_COST_PER_1K_INPUT = 0.003
DEFAULT_COST_PER_1K_OUTPUT = 0.015


@dataclass(frozen=True)
class TierPattern:
    pattern: re.Pattern[str]
    tier: ModelTier
    friendly_name: str
    cost_per_1k_input: float
    cost_per_1k_output: float
    priority: int  # lower is preferred within the tier


def _p(regex: str, tier: ModelTier, name: str, cost_in: float, cost_out: float, priority: int) -> TierPattern:
    return TierPattern(re.compile(regex), tier, name, cost_in, cost_out, priority)


P, S, B = ModelTier.PREMIUM, ModelTier.STANDARD, ModelTier.BUDGET

CLASSIFICATION_PATTERNS: dict[ProviderName, list[TierPattern]] = {
    ProviderName.ANTHROPIC: [
        _p(r"claude-opus-4-6", P, "Claude Opus 4.6", 0.015, 0.075, 0),
        _p(r"claude-opus-4-5", P, "Claude Opus 4.5", 0.015, 0.075, 1),
        _p(r"claude-opus-4-1", P, "Claude Opus 4.1", 0.015, 0.075, 2),
        _p(r"claude-opus-4(?![\d.-])", P, "Claude Opus 4", 0.015, 0.075, 3),
        _p(r"claude-sonnet-4-5", S, "Claude Sonnet 4.5", 0.003, 0.015, 0),
        _p(r"claude-sonnet-4", S, "Claude Sonnet 4", 0.003, 0.015, 1),
        _p(r"claude-haiku-4", B, "Claude Haiku 4.5", 0.001, 0.005, 0),
        _p(r"claude-3-haiku", B, "Claude Haiku 3", 0.0008, 0.004, 1),
    ],
    ProviderName.OPENAI: [
        _p(r"gpt-5-pro", P, "GPT-5 Pro", 0.015, 0.060, 0),
        _p(r"gpt-5\.3", P, "GPT-5.3 Codex", 0.003, 0.015, 1),
        _p(r"gpt-5\.2", S, "GPT-5.2", 0.003, 0.015, 0),
        _p(r"gpt-5\.1", S, "GPT-5.1", 0.003, 0.015, 1),
        _p(r"gpt-5(?![\d.])", S, "GPT-5", 0.003, 0.015, 2),
        _p(r"gpt-4o-mini", B, "GPT-4o Mini", 0.00015, 0.0006, 0),
        _p(r"gpt-4o", S, "GPT-4o", 0.005, 0.015, 3),
    ],
    ProviderName.GOOGLE: [
        _p(r"gemini-3-pro", S, "Gemini 3 Pro", 0.00125, 0.005, 0),
        _p(r"gemini-3-flash", B, "Gemini 3 Flash", 0.00015, 0.0006, 0),
        _p(r"gemini-2.*pro", S, "Gemini 2 Pro", 0.00125, 0.005, 1),
        _p(r"gemini-2.*flash", B, "Gemini 2 Flash", 0.00015, 0.0006, 1),
    ],
}

# Used for providers that have no model-listing capability.
STATIC_MODELS: dict[ProviderName, list[str]] = {
    ProviderName.GOOGLE: [
        "gemini-3-pro-preview",
        "gemini-3-flash-preview",
        "gemini-2.5-pro",
        "gemini-2.5-flash",
    ],
}


@dataclass(frozen=True)
class ModelInfo:
    id: str
    provider: ProviderName
    tier: ModelTier
    name: str
    cost_per_1k_input: float
    cost_per_1k_output: float
    priority: int = 0

    def estimate_cost(self, input_tokens: int, output_tokens: int) -> float:
        return (input_tokens * self.cost_per_1k_input + output_tokens * self.cost_per_1k_output) / 1000


def classify_model(model_id: str, provider: str) -> ModelInfo | None:
    """Classify a provider model id; ``None`` when no pattern matches."""
    try:
        provider_name = ProviderName(provider)
    except ValueError:
        return None
    for p in CLASSIFICATION_PATTERNS[provider_name]:
        if p.pattern.search(model_id):
            return ModelInfo(
                id=model_id,
                provider=provider_name,
                tier=p.tier,
                name=p.friendly_name,
                cost_per_1k_input=p.cost_per_1k_input,
                cost_per_1k_output=p.cost_per_1k_output,
                priority=p.priority,
            )
    return None


@dataclass(frozen=True)
class TaskRoute:
    tiers: tuple[ModelTier, ...]
    providers: tuple[ProviderName, ...]


def _route(tiers: Iterable[str], providers: Iterable[str] = _PROVIDER_ORDER) -> TaskRoute:
    return TaskRoute(tuple(ModelTier(t) for t in tiers), tuple(ProviderName(p) for p in providers))


_A, _O, _G = ProviderName.ANTHROPIC, ProviderName.OPENAI, ProviderName.GOOGLE

DEFAULT_TASK_ROUTES: dict[str, TaskRoute] = {
    TaskType.CHAT: _route([S, P], [_A, _O, _G]),
    TaskType.CODEBASE_QA: _route([S, P], [_A, _O, _G]),
    TaskType.CHANGE_ANALYSIS: _route([S, B], [_O, _A, _G]),
    TaskType.CHANGELOG_UPDATE: _route([B, S], [_A, _G, _O]),
    TaskType.MODULE_DESCRIPTION: _route([S, P], [_A, _O, _G]),
    TaskType.DOCS_GENERATION: _route([S, P], [_A, _O, _G]),
    TaskType.QUICK_CLASSIFICATION: _route([B, S], [_G, _A, _O]),
    TaskType.CONTEXT_GENERATION: _route([B, S], [_A, _G, _O]),
    TaskType.DASHBOARD_INSIGHTS: _route([B, S], [_A, _G, _O]),
    # depth over cost for automation and init
    TaskType.PROJECT_INIT: _route([P, S], [_A, _O, _G]),
    TaskType.DEEP_AUDIT: _route([P, S], [_A, _O, _G]),
    TaskType.INCREMENTAL_UPDATE: _route([S, B], [_A, _O, _G]),
}


def build_task_routes(overrides: Mapping[str, TaskRouteConfig]) -> dict[str, TaskRoute]:
    """Merge configured task routes over the built-in defaults.

    Raises ValueError for unknown tier or provider names.
    """
    routes = dict(DEFAULT_TASK_ROUTES)
    for task, cfg in overrides.items():
        routes[task] = _route(cfg.tiers, cfg.providers)
    return routes


class ModelRouter:
    """Model catalog plus task routing."""

    def __init__(self, config: AIConfig, available_providers: Iterable[str]):
        self._config = config
        self._routes = build_task_routes(config.task_routes)
        self._available_providers = {ProviderName(p) for p in available_providers}
        self._models: list[ModelInfo] = []
        self._last_discovery: float | None = None

    async def discover_models(self, sources: Mapping[str, ModelSource | None]) -> list[ModelInfo]:
        """Classify the live (or static fallback) model list of every provider.

        Providers are queried concurrently. A provider whose listing fails
        contributes zero models; the catalog is replaced in one assignment.
        """
        names = [ProviderName(p) for p in sources]
        results = await asyncio.gather(
            *(self._discover_provider(name, sources[name]) for name in names)
        )
        by_provider = dict(zip(names, results))

        models: list[ModelInfo] = []
        for provider in _PROVIDER_ORDER:
            found = by_provider.get(provider, [])
            models.extend(sorted(found, key=lambda m: (_TIER_RANK[m.tier], m.priority)))

        self._models = models
        self._last_discovery = time.monotonic()
        logger.info("models_discovered", count=len(models), models=[m.id for m in models])
        return list(models)

    async def _discover_provider(self, provider: ProviderName, source: ModelSource | None) -> list[ModelInfo]:
        if source is None:
            model_ids = STATIC_MODELS.get(provider, [])
        else:
            try:
                model_ids = await source()
            except Exception as e:
                logger.warning("model_discovery_failed", provider=provider.value, error=str(e))
                return []

        seen: dict[str, ModelInfo] = {}
        for model_id in model_ids:
            info = classify_model(model_id, provider)
            if info is not None and model_id not in seen:
                seen[model_id] = info
        return list(seen.values())

    def route(self, task: str) -> str:
        """Resolve a task type to a concrete model id.

        Order: per-task override, validated default model, task tier/provider
        preferences, any discovered model.
        """
        feature = self._config.features.get(task)
        if feature and feature.model_override:
            return feature.model_override

        default_model = self._config.default_model
        if default_model and self.find(default_model) is not None:
            return default_model

        route = self._routes.get(task) or self._routes[TaskType.CHAT]
        for tier in route.tiers:
            for provider in route.providers:
                best = self._best(tier, provider)
                if best is not None:
                    return best.id

        if self._models:
            return self._models[0].id

        raise NoModelsAvailableError(task)

    def route_tier(self, tier: str) -> str:
        """Best model of an explicit tier, falling back to normal chat routing."""
        model_tier = ModelTier(tier)
        for provider in _PROVIDER_ORDER:
            best = self._best(model_tier, provider)
            if best is not None:
                return best.id
        logger.warning("tier_unavailable", tier=model_tier.value)
        return self.route(TaskType.CHAT)

    def _best(self, tier: ModelTier, provider: ProviderName) -> ModelInfo | None:
        if provider not in self._available_providers:
            return None
        candidates = [m for m in self._models if m.tier == tier and m.provider == provider]
        if not candidates:
            return None
        # min() keeps the first of equal priorities, i.e. the provider's listing order
        return min(candidates, key=lambda m: m.priority)

    def available_models(self) -> list[ModelInfo]:
        return list(self._models)

    def models_by_tier(self, tier: str) -> list[ModelInfo]:
        return [m for m in self._models if m.tier == tier]

    def find(self, model_id: str) -> ModelInfo | None:
        return next((m for m in self._models if m.id == model_id), None)

    def is_discovered(self) -> bool:
        return bool(self._models)

    def discovery_age(self) -> float | None:
        """Seconds since the last discovery pass, ``None`` if it never ran."""
        if self._last_discovery is None:
            return None
        return time.monotonic() - self._last_discovery

    def update_providers(self, providers: Iterable[str]) -> None:
        self._available_providers = {ProviderName(p) for p in providers}

    def estimate_cost(self, model_id: str, input_tokens: int, output_tokens: int) -> float:
        info = self.find(model_id)
        if info is not None:
            return info.estimate_cost(input_tokens, output_tokens)
        return (input_tokens * DEFAULT_COST_PER_1K_INPUT + output_tokens * DEFAULT_COST_PER_1K_OUTPUT) / 1000
