"""Configuration loaded from environment variables.

All settings have sensible defaults. Override via AGENTWIRE_* env vars,
or with a YAML file (see yaml_config.py).
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from .errors import ConfigError
from .models import PermissionMode

logger = logging.getLogger(__name__)

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass
class ServerConfig:
    """HTTP server and default agent configuration."""

    # HTTP surface
    host: str = "127.0.0.1"
    port: int = 8080
    api_prefix: str = "/api"

    # Agent defaults applied by the default session factory
    model: str | None = None
    system_prompt: str | None = None
    permission_mode: str = PermissionMode.DEFAULT.value

    # When set, every session gets its own directory under this root and
    # file tools are confined to it.
    sandbox_root: str | None = None
    allow_bash: bool = False

    # Seconds between ": keepalive" comments on idle event streams.
    keepalive_seconds: float = 30.0
    # Evict sessions idle longer than this. 0 disables the sweep.
    session_idle_minutes: float = 0.0

    # Logging
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        self.api_prefix = normalize_prefix(self.api_prefix)
        valid_modes = {m.value for m in PermissionMode}
        if self.permission_mode not in valid_modes:
            raise ConfigError(
                f"Invalid permission_mode {self.permission_mode!r}; "
                f"expected one of {sorted(valid_modes)}"
            )
        if self.keepalive_seconds <= 0:
            raise ConfigError("keepalive_seconds must be positive")

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Load configuration from AGENTWIRE_* environment variables."""
        env_vars = {
            k: v for k, v in os.environ.items() if k.startswith("AGENTWIRE_")
        }
        if env_vars:
            logger.info(
                "ServerConfig.from_env: AGENTWIRE_* env overrides: %s",
                ", ".join(sorted(env_vars)),
            )
        else:
            logger.debug("ServerConfig.from_env: no AGENTWIRE_* env vars set, using defaults")

        config = cls(
            host=os.getenv("AGENTWIRE_HOST", cls.host),
            port=_env_number("AGENTWIRE_PORT", cls.port, int),
            api_prefix=os.getenv("AGENTWIRE_API_PREFIX", cls.api_prefix),
            model=os.getenv("AGENTWIRE_MODEL") or None,
            system_prompt=os.getenv("AGENTWIRE_SYSTEM_PROMPT") or None,
            permission_mode=os.getenv(
                "AGENTWIRE_PERMISSION_MODE", cls.permission_mode
            ),
            sandbox_root=os.getenv("AGENTWIRE_SANDBOX_ROOT") or None,
            allow_bash=(
                os.getenv("AGENTWIRE_ALLOW_BASH", "").lower() in _TRUTHY
            ),
            keepalive_seconds=_env_number(
                "AGENTWIRE_KEEPALIVE_SECONDS", cls.keepalive_seconds, float,
            ),
            session_idle_minutes=_env_number(
                "AGENTWIRE_SESSION_IDLE_MINUTES", cls.session_idle_minutes, float,
            ),
            log_level=os.getenv("AGENTWIRE_LOG_LEVEL", cls.log_level).upper(),
        )
        logger.info(
            "ServerConfig.from_env: host=%s port=%d prefix=%s sandbox=%s",
            config.host, config.port, config.api_prefix,
            config.sandbox_root or "<none>",
        )
        return config


def normalize_prefix(prefix: str | None) -> str:
    """``api/`` -> ``/api``; empty or ``/`` -> ``""``."""
    prefix = (prefix or "").strip().rstrip("/")
    if prefix and not prefix.startswith("/"):
        prefix = "/" + prefix
    return prefix


def _env_number(name: str, default, kind):
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return kind(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a {kind.__name__}, got {raw!r}") from None
