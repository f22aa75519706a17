"""Process-wide configuration for the NPC engine.

Tunables live in config/config.yaml and are checked against config_schema on
every load or override, so a bad value stops the process before any NPC is
created. The collaborator URL and bearer token are not part of the file;
they are read from the environment (a .env file is honoured).

Usage:
    from npc_engine.config import load_config, get, get_validated_config

    load_config("config/config.yaml")       # once, at startup
    delay = get("lifecycle.respawn_delay_seconds")
    config = get_validated_config()          # typed AppConfig
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from .config_schema import AppConfig, load_validated_config, validate_config_dict
from .world.errors import ConfigurationError


@dataclass(frozen=True)
class Credentials:
    """Collaborator connection secrets read from the environment."""

    base_url: str
    api_key: str


_MISSING = object()

# Raw YAML mapping (overrides are written here) and its validated form
_config: dict[str, Any] | None = None
_validated_config: AppConfig | None = None

DEFAULT_CONFIG_PATH: Path = Path(__file__).parent.parent / "config" / "config.yaml"


def load_config(config_path: str | Path | None = None) -> dict[str, Any]:
    """Read and validate the YAML config, replacing anything loaded before.

    Raises:
        FileNotFoundError: The file does not exist.
        pydantic.ValidationError: A section or value is invalid.
    """
    global _config, _validated_config

    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
    _validated_config = load_validated_config(path)
    with open(path) as f:
        raw = yaml.safe_load(f)
    _config = raw if isinstance(raw, dict) else {}
    return _config


def get_config() -> dict[str, Any]:
    """Raw config mapping, loading the default file on first use."""
    if _config is None:
        load_config()
    if _config is None:
        raise RuntimeError("No configuration loaded")
    return _config


def get_validated_config() -> AppConfig:
    """Typed config, loading the default file on first use."""
    if _validated_config is None:
        load_config()
    if _validated_config is None:
        raise RuntimeError("No configuration loaded")
    return _validated_config


def _walk(tree: Any, key: str) -> Any:
    for part in key.split("."):
        if not isinstance(tree, dict) or part not in tree:
            return _MISSING
        tree = tree[part]
    return tree


def get(key: str, default: Any = None) -> Any:
    """Value at a dot path, e.g. get("personalities.merchant.pacing").

    Keys absent from the YAML file resolve to the schema default; default is
    returned only when the schema has no such key either.
    """
    value = _walk(get_config(), key)
    if value is _MISSING:
        value = _walk(get_validated_config().model_dump(), key)
    return default if value is _MISSING else value


def set_config_value(key: str, value: Any) -> None:
    """Override one value (CLI flags) and re-validate the whole config.

    Raises:
        pydantic.ValidationError: The override makes the config invalid.
    """
    global _validated_config

    node = get_config()
    *parents, leaf = key.split(".")
    for part in parents:
        child = node.get(part)
        if not isinstance(child, dict):
            child = node[part] = {}
        node = child
    node[leaf] = value
    _validated_config = validate_config_dict(get_config())


def require_environment(config: AppConfig | None = None) -> Credentials:
    """Collaborator URL and key from the environment.

    Raises:
        ConfigurationError: Naming every variable that is unset or blank.
    """
    load_dotenv()
    api = (config or get_validated_config()).api
    values = {name: os.environ.get(name, "").strip() for name in (api.base_url_env, api.api_key_env)}

    missing = [name for name, value in values.items() if not value]
    if missing:
        raise ConfigurationError(f"Missing required environment variables: {', '.join(missing)}")
    return Credentials(
        base_url=values[api.base_url_env].rstrip("/"),
        api_key=values[api.api_key_env],
    )


def reset_config() -> None:
    """Forget loaded config (tests)."""
    global _config, _validated_config
    _config = None
    _validated_config = None
