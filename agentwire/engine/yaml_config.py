"""YAML configuration loader.

Loads a single YAML file whose values override the environment-derived
ServerConfig. Unknown keys are logged and ignored.

Example YAML:
    server:
      host: 0.0.0.0
      port: 8080
      api_prefix: /api
      keepalive_seconds: 30
      session_idle_minutes: 60
      log_level: INFO

    agent:
      model: claude-sonnet-4-5
      system_prompt: |
        You are a helpful assistant.
      permission_mode: acceptEdits

    sandbox:
      root: /tmp/agentwire-sandboxes
      allow_bash: false
"""
from __future__ import annotations

import dataclasses
import logging
from pathlib import Path
from typing import Any

import yaml

from .config import ServerConfig
from .errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_NAME = "agentwire.yaml"

# section -> {yaml key: ServerConfig field}
_SECTION_FIELDS: dict[str, dict[str, str]] = {
    "server": {
        "host": "host",
        "port": "port",
        "api_prefix": "api_prefix",
        "keepalive_seconds": "keepalive_seconds",
        "session_idle_minutes": "session_idle_minutes",
        "log_level": "log_level",
    },
    "agent": {
        "model": "model",
        "system_prompt": "system_prompt",
        "permission_mode": "permission_mode",
    },
    "sandbox": {
        "root": "sandbox_root",
        "allow_bash": "allow_bash",
    },
}


def load_yaml_config(path: str | Path, base: ServerConfig | None = None) -> ServerConfig:
    """Load a YAML config file and apply it over *base*.

    *base* defaults to ``ServerConfig.from_env()``, so YAML values win over
    environment variables and both win over built-in defaults.
    """
    path = Path(path)
    logger.info(
        "load_yaml_config: attempting to load config from %s (exists=%s)",
        path, path.exists(),
    )
    try:
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
        logger.info("load_yaml_config: successfully read and parsed %s", path)
    except FileNotFoundError:
        logger.error(
            "load_yaml_config: config file not found at %s (absolute path: %s)",
            path, path.absolute(),
        )
        raise
    except yaml.YAMLError as exc:
        logger.error("load_yaml_config: YAML parse error in %s: %s", path, exc)
        raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigError(f"{path}: top level must be a mapping")

    top_sections = sorted(raw.keys())
    logger.info(
        "Parsed YAML config %s sections=%s",
        path.name, ", ".join(top_sections) if top_sections else "(empty)",
    )

    overrides = _collect_overrides(raw, path)
    base = base if base is not None else ServerConfig.from_env()
    try:
        config = dataclasses.replace(base, **overrides)
    except TypeError as exc:
        raise ConfigError(f"{path}: {exc}") from exc
    logger.info(
        "load_yaml_config: applied %d override(s) from %s",
        len(overrides), path.name,
    )
    return config


def find_config_file(start: str | Path | None = None) -> Path | None:
    """Look for ``agentwire.yaml`` in *start* (default cwd) and its parents."""
    current = Path(start or Path.cwd()).resolve()
    for directory in (current, *current.parents):
        candidate = directory / DEFAULT_CONFIG_NAME
        if candidate.is_file():
            logger.debug("find_config_file: found %s", candidate)
            return candidate
    return None


def _collect_overrides(raw: dict[str, Any], path: Path) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    for section, values in raw.items():
        mapping = _SECTION_FIELDS.get(section)
        if mapping is None:
            logger.warning("load_yaml_config: ignoring unknown section %r in %s", section, path)
            continue
        if values is None:
            continue
        if not isinstance(values, dict):
            raise ConfigError(f"{path}: section {section!r} must be a mapping")
        for key, value in values.items():
            field_name = mapping.get(key)
            if field_name is None:
                logger.warning(
                    "load_yaml_config: ignoring unknown key %s.%s in %s",
                    section, key, path,
                )
                continue
            overrides[field_name] = _coerce(field_name, value, path)
    return overrides


def _coerce(field_name: str, value: Any, path: Path) -> Any:
    try:
        if field_name == "port":
            return int(value)
        if field_name in ("keepalive_seconds", "session_idle_minutes"):
            return float(value)
        if field_name == "allow_bash":
            if isinstance(value, str):
                return value.lower() in {"1", "true", "yes", "on"}
            return bool(value)
        if field_name == "log_level":
            return str(value).upper()
        if field_name == "sandbox_root" and value is not None:
            return str(Path(str(value)).expanduser())
    except (TypeError, ValueError):
        raise ConfigError(f"{path}: invalid value for {field_name}: {value!r}") from None
    return value
