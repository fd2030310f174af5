"""YAML config discovery and loading."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from loguru import logger

from taskbot.core.config.schema import Config
from taskbot.exceptions import ConfigError

CONFIG_ENV_VAR = "TASKBOT_CONFIG"
DEFAULT_CONFIG_FILE = "config.yaml"


def load_config(config_path: str | Path | None = None) -> Config:
    """
    Build a Config from the first YAML file found.

    Lookup: ``config_path`` argument, then ``$TASKBOT_CONFIG``, then
    ``./config.yaml``. No file means defaults plus env. Environment
    variables (``TASKBOT_SECTION__KEY``) override whatever the YAML sets.
    """
    path, origin = _locate(config_path)
    if path is None:
        logger.debug("No config file found, using defaults + env")
        return Config()
    if not path.is_file():
        logger.warning(f"Config file {path} ({origin}) not found, using defaults + env")
        return Config()

    data = _read_mapping(path)
    logger.debug(f"Config loaded from {path} ({origin}): sections={sorted(data)}")
    return Config(**data)


def _locate(config_path: str | Path | None) -> tuple[Path | None, str]:
    if config_path:
        return Path(config_path).expanduser(), "argument"
    env = os.environ.get(CONFIG_ENV_VAR)
    if env:
        return Path(env).expanduser(), CONFIG_ENV_VAR
    cwd_file = Path(DEFAULT_CONFIG_FILE)
    if cwd_file.is_file():
        return cwd_file, "cwd"
    return None, ""


def _read_mapping(path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigError(f"{path}: invalid YAML: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: top level must be a mapping, got {type(data).__name__}")
    return data
