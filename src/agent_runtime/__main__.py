"""Entry point for `python -m agent_runtime`."""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys

import structlog
from dotenv import load_dotenv

from agent_runtime.config import ENV_PATHS

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def json_formatter() -> structlog.stdlib.ProcessorFormatter:
    """Render stdlib log records as one JSON object per line, for log shippers."""
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
        ],
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(ensure_ascii=False),
        ],
    )


def configure_logging(level: str = "INFO", json_format: bool = False) -> None:
    handler = logging.StreamHandler(sys.stdout)
    if json_format:
        handler.setFormatter(json_formatter())
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt=LOG_DATEFMT,
        handlers=[handler],
        force=True,
    )


def _preprocess_env() -> None:
    """Turn comma-separated list values into JSON arrays.

    pydantic-settings JSON-decodes ``list`` fields read from the
    environment, so ``1,2`` must become ``[1, 2]`` first.
    """
    for key in ("DISCORD_CHANNEL_IDS",):
        val = os.environ.get(key, "")
        if val and not val.lstrip().startswith("["):
            os.environ[key] = json.dumps([v.strip() for v in val.split(",") if v.strip()])


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="agent_runtime", description="Run an agent on Discord.")
    parser.add_argument("--character", help="Character JSON file (overrides CHARACTER_FILE).")
    parser.add_argument(
        "--check",
        action="store_true",
        help="Validate configuration and the character file, then exit.",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    args = _parse_args(argv)

    for env_path in ENV_PATHS:
        load_dotenv(env_path)
    _preprocess_env()

    # Settings are not validated yet; honour LOG_LEVEL on a best-effort basis.
    configure_logging(
        os.environ.get("LOG_LEVEL", "INFO"),
        os.environ.get("LOG_JSON_FORMAT", "").lower() in {"1", "true", "yes"},
    )
    log = logging.getLogger("agent_runtime")

    try:
        from agent_runtime.config import get_settings

        settings = get_settings()
    except Exception as e:
        log.error("Configuration error: %s", e)
        log.error("")
        log.error("  How to fix:")
        log.error("  1. Edit config/.env (or set environment variables)")
        log.error("  2. Ensure OPENROUTER_API_KEY is set (and DISCORD_TOKEN to run the bot)")
        log.error("  3. DISCORD_CHANNEL_IDS should be comma-separated channel ids")
        log.error("")
        sys.exit(1)

    configure_logging(settings.LOG_LEVEL, settings.LOG_JSON_FORMAT)

    from agent_runtime.character import load_character

    character_path = args.character or settings.CHARACTER_FILE
    try:
        character = load_character(character_path)
    except Exception as e:
        log.error("Could not load character %s: %s", character_path, e)
        sys.exit(1)

    if args.check:
        log.info("Configuration OK: %r", settings)
        log.info("Character OK: %s", character.name)
        return

    if not settings.DISCORD_TOKEN:
        log.error("DISCORD_TOKEN is not set; cannot start the Discord connector.")
        sys.exit(1)

    from agent_runtime.channels.discord_connector import DiscordConnector
    from agent_runtime.runtime import AgentRuntime

    runtime = AgentRuntime.from_settings(settings, character)
    log.info("Starting %s (agent_id=%s)...", character.name, runtime.agent_id)

    connector = DiscordConnector(
        runtime,
        channel_ids=settings.DISCORD_CHANNEL_IDS,
        members_intent=settings.DISCORD_MEMBERS_INTENT,
    )
    connector.run(settings.DISCORD_TOKEN, log_handler=None)


if __name__ == "__main__":
    main()
