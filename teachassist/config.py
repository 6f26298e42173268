"""
Settings for the Teaching Assistant provider.
"""

import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Union

import yaml  # type: ignore[import-untyped]

from .exceptions import ConfigError
from .llm import DEFAULT_EMBEDDING_MODEL, DEFAULT_MAX_STEPS, DEFAULT_MODEL
from .mcp import MCPServerConfig
from .memory import MemoryOptions

DEFAULT_API_BASE = "https://api.openai.com/v1"
CREDENTIAL_PREFIX = "sk-"
MEMORY_DB_NAME = "teaching-assistant-memory.db"


def default_memory_dir() -> Path:
    return Path(tempfile.gettempdir()) / "teachassist"


@dataclass
class AssistantSettings:
    """Configuration for the agent, its memory, tools and stream pacing."""

    model: str = DEFAULT_MODEL
    embedding_model: str = DEFAULT_EMBEDDING_MODEL
    api_base_url: str = DEFAULT_API_BASE

    memory_dir: Optional[Path] = None
    memory_db_name: str = MEMORY_DB_NAME
    memory: MemoryOptions = field(default_factory=MemoryOptions)

    mcp_server: MCPServerConfig = field(default_factory=MCPServerConfig)
    tools_enabled: bool = True

    chunk_size: int = 50
    chunk_delay: float = 0.05
    max_steps: int = DEFAULT_MAX_STEPS
    validation_timeout: float = 10.0

    def __post_init__(self):
        if self.memory_dir is None:
            self.memory_dir = default_memory_dir()
        else:
            self.memory_dir = Path(self.memory_dir)
        if self.chunk_size <= 0:
            raise ConfigError("chunk_size must be positive")
        if self.chunk_delay < 0:
            raise ConfigError("chunk_delay must not be negative")

    @property
    def memory_db_path(self) -> Path:
        return self.memory_dir / self.memory_db_name

    @classmethod
    def from_env(cls) -> "AssistantSettings":
        """Create settings from environment variables."""
        kwargs: dict[str, Any] = {}
        if os.environ.get("TEACHASSIST_MODEL"):
            kwargs["model"] = os.environ["TEACHASSIST_MODEL"]
        if os.environ.get("TEACHASSIST_EMBEDDING_MODEL"):
            kwargs["embedding_model"] = os.environ["TEACHASSIST_EMBEDDING_MODEL"]
        if os.environ.get("TEACHASSIST_API_BASE"):
            kwargs["api_base_url"] = os.environ["TEACHASSIST_API_BASE"]
        if os.environ.get("TEACHASSIST_MEMORY_DIR"):
            kwargs["memory_dir"] = Path(os.environ["TEACHASSIST_MEMORY_DIR"])
        if os.environ.get("TEACHASSIST_DISABLE_TOOLS", "").lower() == "true":
            kwargs["tools_enabled"] = False
        if os.environ.get("TEACHASSIST_CHUNK_DELAY"):
            try:
                kwargs["chunk_delay"] = float(os.environ["TEACHASSIST_CHUNK_DELAY"])
            except ValueError as e:
                raise ConfigError(f"Invalid TEACHASSIST_CHUNK_DELAY: {e}", cause=e) from e
        return cls(**kwargs)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AssistantSettings":
        """Create settings from a parsed YAML/JSON mapping.

        Example YAML::

            model: gpt-4o
            memory_dir: /var/lib/teachassist
            memory:
              last_messages: 15
              top_k: 5
            mcp:
              servers:
                basics-courses:
                  command: npx
                  args: ["-y", "@basicsu/courses-mcp@latest"]
        """
        if not isinstance(data, dict):
            raise ConfigError("Settings must be a mapping")

        kwargs: dict[str, Any] = {}
        for key in (
            "model",
            "embedding_model",
            "api_base_url",
            "memory_dir",
            "memory_db_name",
            "tools_enabled",
            "chunk_size",
            "chunk_delay",
            "max_steps",
            "validation_timeout",
        ):
            if key in data:
                kwargs[key] = data[key]

        memory_def = data.get("memory") or {}
        try:
            kwargs["memory"] = MemoryOptions(**memory_def)
        except TypeError as e:
            raise ConfigError(f"Invalid memory options: {e}", cause=e) from e

        servers = (data.get("mcp") or {}).get("servers") or {}
        if len(servers) > 1:
            raise ConfigError("Only one MCP server can be configured")
        for name, server_def in servers.items():
            kwargs["mcp_server"] = MCPServerConfig.from_dict(name, server_def or {})

        return cls(**kwargs)

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "AssistantSettings":
        """Load settings from a YAML file."""
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Settings file not found: {path}")
        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML syntax: {e}", cause=e) from e
        return cls.from_dict(data)
