"""
agentrelay Configuration — single source of truth for all settings.

Reads from environment variables (and a local .env) with sensible defaults.
Runtime-mutable settings such as the selected model or stored credentials
live in the SessionStore settings table, not here.
"""

from __future__ import annotations

import os
import shlex
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


def _default_home() -> str:
    return str(Path.home() / ".agentrelay")


@dataclass(frozen=True)
class ServerConfig:
    """HTTP server settings."""

    host: str = "127.0.0.1"
    port: int = 3001
    cors_origins: tuple[str, ...] = ("*",)

    @classmethod
    def from_env(cls) -> ServerConfig:
        origins = os.getenv("AGENTRELAY_CORS_ORIGINS", "*")
        return cls(
            host=os.getenv("AGENTRELAY_HOST", "127.0.0.1"),
            port=int(os.getenv("AGENTRELAY_PORT", "3001")),
            cors_origins=tuple(o.strip() for o in origins.split(",") if o.strip()),
        )


@dataclass(frozen=True)
class StorageConfig:
    """Where durable state lives on disk."""

    home: str = field(default_factory=_default_home)

    @property
    def db_path(self) -> Path:
        return Path(self.home) / "agentrelay.db"

    @property
    def workspaces_dir(self) -> Path:
        return Path(self.home) / "workspaces"

    @property
    def preferences_path(self) -> Path:
        return Path(self.home) / "preferences.md"

    @classmethod
    def from_env(cls) -> StorageConfig:
        home = os.getenv("AGENTRELAY_HOME", "") or _default_home()
        return cls(home=os.path.expanduser(home))


@dataclass(frozen=True)
class AgentConfig:
    """Agent runtime settings."""

    command: tuple[str, ...] = ()
    model: str = "claude-sonnet-4-5"
    base_url: str = ""
    secret: str = ""
    line_limit: int = 16 * 1024 * 1024

    @classmethod
    def from_env(cls) -> AgentConfig:
        return cls(
            command=tuple(shlex.split(os.getenv("AGENTRELAY_AGENT_COMMAND", ""))),
            model=os.getenv("AGENTRELAY_MODEL", "claude-sonnet-4-5"),
            base_url=os.getenv("ANTHROPIC_BASE_URL", ""),
            secret=os.getenv("AGENTRELAY_SECRET", ""),
            line_limit=int(os.getenv("AGENTRELAY_AGENT_LINE_LIMIT", str(16 * 1024 * 1024))),
        )


@dataclass(frozen=True)
class StreamConfig:
    """Event fan-out settings."""

    subscriber_queue_size: int = 1000

    @classmethod
    def from_env(cls) -> StreamConfig:
        return cls(
            subscriber_queue_size=int(
                os.getenv("AGENTRELAY_SUBSCRIBER_QUEUE_SIZE", "1000")
            ),
        )


@dataclass(frozen=True)
class RelayConfig:
    """Root configuration."""

    server: ServerConfig = field(default_factory=ServerConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    agent: AgentConfig = field(default_factory=AgentConfig)
    stream: StreamConfig = field(default_factory=StreamConfig)

    @classmethod
    def from_env(cls) -> RelayConfig:
        return cls(
            server=ServerConfig.from_env(),
            storage=StorageConfig.from_env(),
            agent=AgentConfig.from_env(),
            stream=StreamConfig.from_env(),
        )


# Singleton; import this wherever you need config
config = RelayConfig.from_env()


def reload_config() -> RelayConfig:
    """Re-read the environment and replace the module-level config."""
    global config
    config = RelayConfig.from_env()
    return config
