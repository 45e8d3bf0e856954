"""Tests for the command-line entry point."""

import json
import logging
import os
import sys
from pathlib import Path
from unittest.mock import patch

import pytest
import structlog

from agent_runtime import __main__ as entry
from agent_runtime.config import get_settings

CHARACTER = str(Path(__file__).parent.parent / "characters" / "default.json")


@pytest.fixture(autouse=True)
def _fresh_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_preprocess_env_turns_commas_into_json(monkeypatch):
    monkeypatch.setenv("DISCORD_CHANNEL_IDS", "1, 2,3")
    entry._preprocess_env()
    assert json.loads(os.environ["DISCORD_CHANNEL_IDS"]) == ["1", "2", "3"]

    monkeypatch.setenv("DISCORD_CHANNEL_IDS", "[4]")
    entry._preprocess_env()
    assert os.environ["DISCORD_CHANNEL_IDS"] == "[4]"


def test_json_formatter_emits_one_object():
    record = logging.LogRecord("agent_runtime.test", logging.INFO, __file__, 1, "hello %s", ("world",), None)
    entry_json = json.loads(entry.json_formatter().format(record))
    assert entry_json["event"] == "hello world"
    assert entry_json["level"] == "info"
    assert entry_json["logger"] == "agent_runtime.test"
    assert "timestamp" in entry_json


def test_json_formatter_includes_traceback():
    try:
        raise ValueError("bad value")
    except ValueError:
        exc_info = sys.exc_info()
    record = logging.LogRecord("agent_runtime.test", logging.ERROR, __file__, 1, "failed", (), exc_info)
    entry_json = json.loads(entry.json_formatter().format(record))
    assert entry_json["event"] == "failed"
    assert "ValueError: bad value" in entry_json["exception"]


def test_configure_logging_sets_level():
    entry.configure_logging("WARNING")
    assert logging.getLogger().level == logging.WARNING
    entry.configure_logging("DEBUG", json_format=True)
    assert isinstance(logging.getLogger().handlers[0].formatter, structlog.stdlib.ProcessorFormatter)
    entry.configure_logging("INFO")


def test_check_mode_validates_and_returns():
    with patch.dict(os.environ, {"OPENROUTER_API_KEY": "sk-test"}, clear=True), \
            patch.object(entry, "load_dotenv"):
        entry.main(["--check", "--character", CHARACTER])


def test_missing_api_key_exits():
    with patch.dict(os.environ, {}, clear=True), patch.object(entry, "load_dotenv"):
        with pytest.raises(SystemExit) as excinfo:
            entry.main(["--check", "--character", CHARACTER])
    assert excinfo.value.code == 1


def test_bad_character_exits(tmp_path):
    with patch.dict(os.environ, {"OPENROUTER_API_KEY": "sk-test"}, clear=True), \
            patch.object(entry, "load_dotenv"):
        with pytest.raises(SystemExit):
            entry.main(["--check", "--character", str(tmp_path / "missing.json")])


def test_run_without_discord_token_exits():
    with patch.dict(os.environ, {"OPENROUTER_API_KEY": "sk-test"}, clear=True), \
            patch.object(entry, "load_dotenv"):
        with pytest.raises(SystemExit):
            entry.main(["--character", CHARACTER])
