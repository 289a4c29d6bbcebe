"""Collaboration Configuration - Schema and loading"""

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

CONFIG_ENV_VAR = "COLLAB_CONFIG"
DEFAULT_CONFIG_FILE = "collaborate.yaml"


class ConfigError(Exception):
    """Invalid or unreadable configuration."""
    pass


@dataclass
class SessionSettings:
    prefix: str = "collab"
    suffix_length: int = 8
    default_iterations: int = 3


@dataclass
class AgentSettings:
    """Reviewer agent CLI."""
    name: str = "Codex"
    command: str = "codex"
    timeout: int = 600


@dataclass
class MemorySettings:
    """External memory store and optional Redis mirror.

    store_command / search_command are argv templates with ${content},
    ${tag}, ${query} and ${limit} placeholders.
    """
    enabled: bool = False
    store_name: str = "Byterover"
    retrieve_tool: str = "byterover-retrieve-knowledge"
    store_tool: str = "byterover-store-knowledge"
    store_command: List[str] = field(default_factory=list)
    search_command: List[str] = field(default_factory=list)
    command_timeout: int = 30
    retries: int = 2
    result_limit: int = 5
    poll_timeout: float = 60.0
    poll_initial_delay: float = 2.0
    poll_max_delay: float = 15.0
    redis_url: Optional[str] = None


NUMERIC_FIELDS = (
    ("session", "suffix_length", int),
    ("session", "default_iterations", int),
    ("agent", "timeout", int),
    ("memory", "command_timeout", (int, float)),
    ("memory", "retries", int),
    ("memory", "result_limit", int),
    ("memory", "poll_timeout", (int, float)),
    ("memory", "poll_initial_delay", (int, float)),
    ("memory", "poll_max_delay", (int, float)),
)


def _build(cls, data: Optional[Dict[str, Any]], section: str):
    if data is None:
        return cls()
    if not isinstance(data, dict):
        raise ConfigError(f"'{section}' must be a mapping")

    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(f"Unknown key(s) in '{section}': {', '.join(unknown)}")
    return cls(**data)


@dataclass
class CollabConfig:
    """Complete collaboration configuration."""
    planner_name: str = "Claude Code"
    session: SessionSettings = field(default_factory=SessionSettings)
    agent: AgentSettings = field(default_factory=AgentSettings)
    memory: MemorySettings = field(default_factory=MemorySettings)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'CollabConfig':
        data = dict(data or {})
        unknown = sorted(set(data) - {"planner_name", "session", "agent", "memory"})
        if unknown:
            raise ConfigError(f"Unknown top-level key(s): {', '.join(unknown)}")

        config = cls(
            planner_name=data.get("planner_name", cls.planner_name),
            session=_build(SessionSettings, data.get("session"), "session"),
            agent=_build(AgentSettings, data.get("agent"), "agent"),
            memory=_build(MemorySettings, data.get("memory"), "memory"),
        )
        config.validate()
        return config

    @classmethod
    def load(cls, path: Optional[str] = None) -> 'CollabConfig':
        """Load configuration from YAML.

        Lookup order: explicit path, $COLLAB_CONFIG, ./collaborate.yaml.
        An explicit path that does not exist is an error; a missing
        default file means built-in defaults. $REDIS_URL overrides
        memory.redis_url.
        """
        explicit = path or os.environ.get(CONFIG_ENV_VAR)
        config_path = Path(explicit) if explicit else Path(DEFAULT_CONFIG_FILE)

        data: Dict[str, Any] = {}
        if config_path.exists():
            try:
                with open(config_path, "r", encoding="utf-8") as f:
                    data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"Invalid YAML in {config_path}: {e}")
            if not isinstance(data, dict):
                raise ConfigError(f"{config_path} must contain a mapping")
        elif explicit:
            raise ConfigError(f"Config file not found: {config_path}")

        config = cls.from_dict(data)

        redis_url = os.environ.get("REDIS_URL")
        if redis_url:
            config.memory.redis_url = redis_url

        return config

    def validate(self) -> None:
        for section, key, kind in NUMERIC_FIELDS:
            value = getattr(getattr(self, section), key)
            if isinstance(value, bool) or not isinstance(value, kind):
                expected = "an integer" if kind is int else "a number"
                raise ConfigError(f"{section}.{key} must be {expected}, got {value!r}")

        if self.session.default_iterations < 1:
            raise ConfigError("session.default_iterations must be >= 1")
        if self.session.suffix_length < 1:
            raise ConfigError("session.suffix_length must be >= 1")
        if self.agent.timeout < 1:
            raise ConfigError("agent.timeout must be >= 1")
        if self.memory.enabled:
            for key in ("store_command", "search_command"):
                value = getattr(self.memory, key)
                if not isinstance(value, list) or not value:
                    raise ConfigError(f"memory.{key} must be a non-empty list when memory is enabled")
        if self.memory.poll_initial_delay <= 0 or self.memory.poll_max_delay < self.memory.poll_initial_delay:
            raise ConfigError("memory.poll_initial_delay must be > 0 and <= memory.poll_max_delay")
