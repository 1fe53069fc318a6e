"""agentwire CLI: server entry point."""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from agentwire.engine.config import ServerConfig
from agentwire.engine.errors import ConfigError
from agentwire.engine.yaml_config import find_config_file, load_yaml_config


def _log_runtime_versions() -> None:
    """Log the installed SDK and aiohttp versions."""
    logger = logging.getLogger(__name__)
    from importlib.metadata import PackageNotFoundError, version

    for dist in ("claude-agent-sdk", "aiohttp"):
        try:
            logger.info("Runtime %s=%s", dist, version(dist))
        except PackageNotFoundError:
            logger.warning("Runtime %s is not installed", dist)


def configure_logging(level: str, log_dir: Path | None = None) -> Path:
    """Root logger to a rotating file plus stderr; returns the log file."""
    log_dir = log_dir or Path.home() / ".agentwire" / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "agentwire-server.log"

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()
    formatter = logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s [pid=%(process)d] %(message)s"
    )
    file_handler = RotatingFileHandler(
        log_file, maxBytes=2_000_000, backupCount=5, encoding="utf-8"
    )
    file_handler.setFormatter(formatter)
    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    root.addHandler(file_handler)
    root.addHandler(stream_handler)
    return log_file


def resolve_config(config_path: str | None) -> ServerConfig:
    """Explicit YAML path, else ``agentwire.yaml`` if found, else env only."""
    logger = logging.getLogger(__name__)
    if config_path:
        explicit = Path(config_path)
        logger.info(
            "Using explicit config path: %s (exists=%s)", explicit, explicit.exists(),
        )
        return load_yaml_config(explicit)
    auto_yaml = find_config_file()
    if auto_yaml is not None:
        logger.info("Auto-discovered config: %s", auto_yaml)
        return load_yaml_config(auto_yaml)
    logger.info("No config file found; using environment and defaults")
    return ServerConfig.from_env()


def main() -> None:
    import argparse
    import dataclasses

    parser = argparse.ArgumentParser(
        prog="agentwire",
        description="agentwire: stream agent sessions to web clients over SSE",
    )
    parser.add_argument("--host", help="Interface to bind (default from config)")
    parser.add_argument("--port", type=int, help="Port to listen on (default from config)")
    parser.add_argument(
        "--config", metavar="PATH",
        help="YAML config file (default: ./agentwire.yaml if present)",
    )
    parser.add_argument(
        "--log-level", metavar="LEVEL",
        help="Logging level (default: AGENTWIRE_LOG_LEVEL or INFO)",
    )
    args = parser.parse_args()

    log_level = (args.log_level or os.getenv("AGENTWIRE_LOG_LEVEL", "INFO")).upper()
    log_file = configure_logging(log_level)
    logger = logging.getLogger(__name__)

    try:
        config = resolve_config(args.config)
    except (ConfigError, FileNotFoundError) as exc:
        logger.error("Failed to load configuration: %s", exc)
        sys.exit(2)

    overrides = {}
    if args.host:
        overrides["host"] = args.host
    if args.port is not None:
        overrides["port"] = args.port
    if args.log_level:
        overrides["log_level"] = log_level
    if overrides:
        config = dataclasses.replace(config, **overrides)
    if config.log_level != log_level:
        logging.getLogger().setLevel(getattr(logging, config.log_level, logging.INFO))

    logger.info(
        "Starting agentwire server cwd=%s host=%s port=%s config=%s log=%s",
        Path.cwd(), config.host, config.port, args.config or "<auto>", log_file,
    )
    _log_runtime_versions()

    # The agent CLI refuses to start as a nested session when this is set.
    os.environ.pop("CLAUDECODE", None)

    from agentwire.web.server import AgentServer

    server = AgentServer(config)
    try:
        asyncio.run(server.start())
    except KeyboardInterrupt:
        logger.info("Interrupted")
    sys.exit(0)


if __name__ == "__main__":
    main()
