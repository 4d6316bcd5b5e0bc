from __future__ import annotations

import pytest

from devtrack.config import load_config

CONFIG_YAML = """
data_dir: ./var
project_name: demo
providers:
  anthropic:
    api_key: ${TEST_ANTHROPIC_KEY}
  openai:
    api_key: ${TEST_MISSING_OPENAI_KEY}
ai:
  chat:
    max_iterations: 6
  agent:
    max_cost: 0.5
storage:
  conversations_dir: ${data_dir}/ai/conversations
"""


def test_load_config_interpolates_env_and_data_dir(tmp_path, monkeypatch):
    monkeypatch.setenv("TEST_ANTHROPIC_KEY", "sk-ant-test")
    monkeypatch.delenv("TEST_MISSING_OPENAI_KEY", raising=False)
    config_file = tmp_path / "config.yaml"
    config_file.write_text(CONFIG_YAML, encoding="utf-8")

    config = load_config(config_file, tmp_path / "missing.env")

    assert config.project_name == "demo"
    assert config.providers.anthropic.api_key == "sk-ant-test"
    assert config.storage.conversations_dir == "./var/ai/conversations"
    assert config.ai.chat.max_iterations == 6
    assert config.ai.agent.max_iterations == 20
    assert config.ai.agent.max_cost == 0.5
    # unresolved ${VAR} keys do not count as configured
    assert list(config.providers.configured()) == ["anthropic"]


def test_env_file_is_loaded(tmp_path, monkeypatch):
    monkeypatch.delenv("TEST_ENV_FILE_KEY", raising=False)
    (tmp_path / ".env").write_text("TEST_ENV_FILE_KEY=from-dotenv\n", encoding="utf-8")
    config_file = tmp_path / "config.yaml"
    config_file.write_text("providers:\n  google:\n    api_key: ${TEST_ENV_FILE_KEY}\n", encoding="utf-8")

    config = load_config(config_file, tmp_path / ".env")
    assert config.providers.google.api_key == "from-dotenv"
    monkeypatch.delenv("TEST_ENV_FILE_KEY", raising=False)


def test_missing_config_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.yaml", tmp_path / ".env")
