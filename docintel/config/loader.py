"""YAML configuration loader with environment variable overrides.

Configuration is loaded in layers (later layers override earlier):

  1. ``.env`` file           (local developer values, not committed)
  2. ``config/config.yaml``  (defaults checked into the repo)
  3. Environment variables  (set at deploy time)

The YAML file groups settings into sections; section names are only for
readability and are flattened onto :class:`Settings` field names::

    chunking:
      chunk_max_size: 1000
      chunk_overlap: 200
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml

from docintel.config.settings import Settings
from docintel.utils.errors import ConfigurationError


def load_yaml(path: str | Path) -> dict[str, Any]:
    """Read a YAML file and flatten its sections into one dict.

    Returns an empty dict when the file does not exist.
    """
    config_path = Path(path)
    if not config_path.exists():
        return {}
    with open(config_path, encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ConfigurationError(message=f"{config_path} must contain a mapping")
    flat: dict[str, Any] = {}
    _flatten(raw, flat)
    return flat


def load_settings(path: str | Path = "config/config.yaml") -> Settings:
    """Build :class:`Settings` from YAML defaults, ``.env`` and the environment.

    Keys present in the environment are dropped from the YAML layer so that
    environment variables always win.

    Raises
    ------
    ConfigurationError
        If the YAML file is malformed or names unknown settings.
    """
    try:
        yaml_values = load_yaml(path)
    except yaml.YAMLError as exc:
        raise ConfigurationError(message=f"Cannot parse {path}: {exc}") from exc

    unknown = sorted(set(yaml_values) - set(Settings.model_fields))
    if unknown:
        raise ConfigurationError(message=f"Unknown settings in {path}: {', '.join(unknown)}")

    env_keys = {key.lower() for key in os.environ}
    overrides = {k: v for k, v in yaml_values.items() if k.lower() not in env_keys}
    settings = Settings(**overrides)
    _validate(settings)
    return settings


def _flatten(section: dict[str, Any], out: dict[str, Any]) -> None:
    for key, value in section.items():
        if isinstance(value, dict):
            _flatten(value, out)
        else:
            out[str(key)] = value


def _validate(settings: Settings) -> None:
    if settings.chunk_max_size <= 0:
        raise ConfigurationError(message="chunk_max_size must be positive")
    if not 0 <= settings.chunk_overlap < settings.chunk_max_size:
        raise ConfigurationError(message="chunk_overlap must be in [0, chunk_max_size)")
    if settings.qa_top_k <= 0:
        raise ConfigurationError(message="qa_top_k must be positive")
