"""Tests for the config system."""

import json
import logging
from pathlib import Path

import agentrelay.core.config as config_module
from agentrelay.core.config import (
    AgentConfig,
    RelayConfig,
    ServerConfig,
    StorageConfig,
    StreamConfig,
)
from agentrelay.core.logging import StructuredFormatter


def test_defaults():
    cfg = RelayConfig()
    assert cfg.server.host == "127.0.0.1"
    assert cfg.server.port == 3001
    assert cfg.agent.command == ()
    assert cfg.agent.model == "claude-sonnet-4-5"
    assert cfg.stream.subscriber_queue_size == 1000


def test_storage_paths():
    cfg = StorageConfig(home="/data/relay")
    assert cfg.db_path == Path("/data/relay/agentrelay.db")
    assert cfg.workspaces_dir == Path("/data/relay/workspaces")
    assert cfg.preferences_path == Path("/data/relay/preferences.md")


def test_server_from_env(monkeypatch):
    monkeypatch.setenv("AGENTRELAY_HOST", "0.0.0.0")
    monkeypatch.setenv("AGENTRELAY_PORT", "9000")
    monkeypatch.setenv("AGENTRELAY_CORS_ORIGINS", "http://a.local, http://b.local")

    cfg = ServerConfig.from_env()
    assert cfg.host == "0.0.0.0"
    assert cfg.port == 9000
    assert cfg.cors_origins == ("http://a.local", "http://b.local")


def test_agent_command_is_shell_split(monkeypatch):
    monkeypatch.setenv("AGENTRELAY_AGENT_COMMAND", "node agent.js --mode 'stdio json'")
    monkeypatch.setenv("AGENTRELAY_MODEL", "claude-opus")

    cfg = AgentConfig.from_env()
    assert cfg.command == ("node", "agent.js", "--mode", "stdio json")
    assert cfg.model == "claude-opus"


def test_agent_line_limit(monkeypatch):
    assert AgentConfig().line_limit == 16 * 1024 * 1024

    monkeypatch.setenv("AGENTRELAY_AGENT_LINE_LIMIT", "1048576")
    assert AgentConfig.from_env().line_limit == 1048576


def test_home_expands_user(monkeypatch):
    monkeypatch.setenv("AGENTRELAY_HOME", "~/relay-test")
    assert StorageConfig.from_env().home == str(Path.home() / "relay-test")


def test_stream_from_env(monkeypatch):
    monkeypatch.setenv("AGENTRELAY_SUBSCRIBER_QUEUE_SIZE", "5")
    assert StreamConfig.from_env().subscriber_queue_size == 5


def test_reload_config(monkeypatch):
    monkeypatch.setenv("AGENTRELAY_PORT", "4321")
    original = config_module.config
    try:
        reloaded = config_module.reload_config()
        assert reloaded.server.port == 4321
        assert config_module.config is reloaded
    finally:
        config_module.config = original


def test_structured_formatter_includes_extra_fields():
    record = logging.LogRecord("agentrelay.test", logging.INFO, __file__, 1, "Turn %s", ("done",), None)
    record.session_id = "s1"
    record.duration_ms = 42

    entry = json.loads(StructuredFormatter().format(record))
    assert entry["msg"] == "Turn done"
    assert entry["level"] == "INFO"
    assert entry["session_id"] == "s1"
    assert entry["duration_ms"] == 42
    assert "turn_id" not in entry
