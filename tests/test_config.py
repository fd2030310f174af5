"""Tests for taskbot.core.config."""

import pytest
import yaml

from taskbot.core.config import Config, load_config
from taskbot.exceptions import ConfigError


def test_defaults():
    cfg = Config()
    assert cfg.assistant.name == "taskbot"
    assert cfg.database.path == "data/taskbot.db"
    assert cfg.scheduler.max_concurrent == 2
    assert cfg.scheduler.daily_budget == 1.0
    assert cfg.scheduler.condition_cooldown_s == 300
    assert cfg.executors.enabled
    assert cfg.executors.stale_days == 30
    assert "claude-haiku-4-5-20251001" in cfg.pricing.models


def test_from_dict():
    cfg = Config(
        assistant={"model": "openai/gpt-4o", "cheap_model": "openai/gpt-4o-mini"},
        providers={"anthropic": {"api_key": "sk-test"}},
        scheduler={"max_concurrent": 4},
    )
    assert cfg.assistant.model == "openai/gpt-4o"
    assert cfg.providers.anthropic.api_key == "sk-test"
    assert cfg.scheduler.max_concurrent == 4


def test_get_api_base():
    cfg = Config(providers={"openai": {"api_base": "http://localhost:8000"}})
    assert cfg.get_api_base("openai/gpt-4o") == "http://localhost:8000"
    assert cfg.get_api_base("openrouter/meta/llama") == "https://openrouter.ai/api/v1"
    assert cfg.get_api_base("anthropic/claude") is None


def test_load_yaml(tmp_path):
    f = tmp_path / "config.yaml"
    f.write_text(yaml.dump({"scheduler": {"daily_budget": 5.0}, "database": {"path": "x.db"}}))
    cfg = load_config(f)
    assert cfg.scheduler.daily_budget == 5.0
    assert cfg.db_path.name == "x.db"


def test_load_missing(tmp_path):
    cfg = load_config(tmp_path / "nope.yaml")
    assert cfg.assistant.name == "taskbot"


def test_env_overrides_yaml(tmp_path, monkeypatch):
    f = tmp_path / "config.yaml"
    f.write_text(yaml.dump({"scheduler": {"daily_budget": 5.0, "max_concurrent": 3}}))
    monkeypatch.setenv("TASKBOT_SCHEDULER__DAILY_BUDGET", "2.5")
    cfg = load_config(f)
    assert cfg.scheduler.daily_budget == 2.5
    assert cfg.scheduler.max_concurrent == 3


def test_config_path_from_env(tmp_path, monkeypatch):
    f = tmp_path / "custom.yaml"
    f.write_text(yaml.dump({"assistant": {"name": "nightly"}}))
    monkeypatch.setenv("TASKBOT_CONFIG", str(f))
    assert load_config().assistant.name == "nightly"


def test_load_cwd_default(tmp_path, monkeypatch):
    (tmp_path / "config.yaml").write_text(yaml.dump({"executors": {"enabled": False}}))
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("TASKBOT_CONFIG", raising=False)
    assert load_config().executors.enabled is False


def test_load_empty_file(tmp_path):
    f = tmp_path / "config.yaml"
    f.write_text("")
    assert load_config(f).scheduler.max_concurrent == 2


def test_load_non_mapping_rejected(tmp_path):
    f = tmp_path / "config.yaml"
    f.write_text("- just\n- a list\n")
    with pytest.raises(ConfigError, match="mapping"):
        load_config(f)


def test_load_invalid_yaml_rejected(tmp_path):
    f = tmp_path / "config.yaml"
    f.write_text("scheduler: [unclosed\n")
    with pytest.raises(ConfigError, match="invalid YAML"):
        load_config(f)
