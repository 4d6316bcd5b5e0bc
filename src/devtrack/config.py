"""Configuration loader with YAML parsing, env-var interpolation, and Pydantic validation."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field

PROVIDER_NAMES = ("anthropic", "openai", "google")


class ProviderConfig(BaseModel):
    api_key: str = ""
    base_url: Optional[str] = None
    max_retries: int = 2
    timeout: int = 120

    @property
    def is_usable(self) -> bool:
        """False when the key is blank or an unresolved ``${VAR}`` placeholder."""
        key = self.api_key.strip()
        return bool(key) and not _ENV_VAR_PATTERN.fullmatch(key)


class ProvidersConfig(BaseModel):
    anthropic: Optional[ProviderConfig] = None
    openai: Optional[ProviderConfig] = None
    google: Optional[ProviderConfig] = None

    def configured(self) -> dict[str, ProviderConfig]:
        """Providers that have a usable API key, in preference order."""
        found: dict[str, ProviderConfig] = {}
        for name in PROVIDER_NAMES:
            cfg = getattr(self, name)
            if cfg is not None and cfg.is_usable:
                found[name] = cfg
        return found


class FeatureConfig(BaseModel):
    model_override: Optional[str] = None


class TaskRouteConfig(BaseModel):
    tiers: list[str]
    providers: list[str] = Field(default_factory=lambda: list(PROVIDER_NAMES))


class ChatConfig(BaseModel):
    max_iterations: int = 12
    max_tokens: int = 4096
    system_prompt: str = ""


class AgentConfig(BaseModel):
    max_iterations: int = 20
    default_task: str = "deep_audit"
    max_tokens: int = 4096
    max_cost: Optional[float] = None


class AIConfig(BaseModel):
    default_model: Optional[str] = None
    temperature: float = 0.7
    ready_timeout: float = 10.0
    # input tokens per minute per provider; 0 disables pacing
    rate_limits: dict[str, int] = Field(
        default_factory=lambda: {"anthropic": 130_000, "openai": 300_000, "google": 400_000}
    )
    features: dict[str, FeatureConfig] = Field(default_factory=dict)
    task_routes: dict[str, TaskRouteConfig] = Field(default_factory=dict)
    chat: ChatConfig = Field(default_factory=ChatConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)


class StorageConfig(BaseModel):
    conversations_dir: str = "./data/ai/conversations"
    db_path: str = "./data/devtrack.db"


class AppConfig(BaseModel):
    log_level: str = "INFO"
    log_format: str = "console"  # "console" | "json"
    data_dir: str = "./data"
    project_root: str = "."
    project_name: str = "project"
    providers: ProvidersConfig = Field(default_factory=ProvidersConfig)
    ai: AIConfig = Field(default_factory=AIConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)


_ENV_VAR_PATTERN = re.compile(r"\$\{(\w+)\}")


def _interpolate_env_vars(text: str, extra: dict[str, str] | None = None) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        if extra and var_name in extra:
            return extra[var_name]
        value = os.environ.get(var_name)
        if value is None:
            return match.group(0)
        return value

    return _ENV_VAR_PATTERN.sub(_replace, text)


def load_config(config_path: str | Path = "config.yaml", env_path: str | Path = ".env") -> AppConfig:
    """Load and validate configuration from YAML file with env-var interpolation."""
    env_file = Path(env_path)
    if env_file.exists():
        load_dotenv(env_file)

    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_file}")

    raw_text = config_file.read_text(encoding="utf-8")

    # data_dir may be referenced by other paths as ${data_dir}
    raw_data = yaml.safe_load(raw_text) or {}
    data_dir = _interpolate_env_vars(str(raw_data.get("data_dir", "./data")))

    interpolated = _interpolate_env_vars(raw_text, extra={"data_dir": data_dir})
    data = yaml.safe_load(interpolated) or {}

    return AppConfig(**data)
