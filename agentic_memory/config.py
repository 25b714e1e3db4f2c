"""
Configuration Module - Load and manage memory system configuration.

This module provides support for loading configuration from:
- YAML configuration files (.agentic-memory.yml)
- Environment variables
- Programmatic configuration

Configuration precedence (highest to lowest):
1. Programmatic overrides (passed to load_config)
2. Environment variables
3. Configuration file
4. Default values

Keys are accepted in snake_case or camelCase. Values outside their
documented range are logged and replaced by the default.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml


logger = logging.getLogger(__name__)


# Default configuration file names (in order of precedence)
CONFIG_FILE_NAMES = [
    ".agentic-memory.yml",
    ".agentic-memory.yaml",
    "agentic-memory.yml",
    "agentic-memory.yaml",
]

# Database location used when none is configured
DEFAULT_DB_PATH = "~/.agentic_memory/memory.db"

DEFAULT_SKIP_TOOLS = ["Read", "Glob", "Grep", "Bash"]

INJECTION_FORMATS = ("timeline", "bullets", "structured")


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def _get(data: Dict[str, Any], key: str, default: Any = None) -> Any:
    """Look up a key in snake_case, then camelCase."""
    if key in data:
        return data[key]
    return data.get(_camel(key), default)


def _ranged(
    data: Dict[str, Any],
    key: str,
    low: float,
    high: float,
    default: Any,
    section: str,
) -> Any:
    """Read a numeric value, falling back to the default when out of range."""
    value = _get(data, key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        if value is not default:
            logger.warning(
                f"Invalid memory config {section}.{key}={value!r}, using {default}"
            )
        return default
    if value < low or value > high:
        logger.warning(
            f"Memory config {section}.{key}={value} outside [{low}, {high}], "
            f"using {default}"
        )
        return default
    return value


def _flag(data: Dict[str, Any], key: str, default: bool, section: str) -> bool:
    value = _get(data, key, default)
    if isinstance(value, bool):
        return value
    logger.warning(f"Invalid memory config {section}.{key}={value!r}, using {default}")
    return default


def _section(data: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = _get(data, key)
    return value if isinstance(value, dict) else {}


@dataclass
class CaptureConfig:
    """Which activity events MemoryManager.distill turns into memories."""

    enabled: bool = True
    capture_tool_use: bool = True
    capture_messages: bool = False
    capture_phase_changes: bool = True
    skip_tools: List[str] = field(default_factory=lambda: list(DEFAULT_SKIP_TOOLS))
    min_importance_threshold: int = 4

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CaptureConfig":
        skip_tools = _get(data, "skip_tools", DEFAULT_SKIP_TOOLS)
        if not isinstance(skip_tools, list):
            logger.warning(f"Invalid memory config capture.skip_tools={skip_tools!r}")
            skip_tools = DEFAULT_SKIP_TOOLS
        return cls(
            enabled=_flag(data, "enabled", True, "capture"),
            capture_tool_use=_flag(data, "capture_tool_use", True, "capture"),
            capture_messages=_flag(data, "capture_messages", False, "capture"),
            capture_phase_changes=_flag(data, "capture_phase_changes", True, "capture"),
            skip_tools=[str(tool) for tool in skip_tools],
            min_importance_threshold=_ranged(
                data, "min_importance_threshold", 1, 10, 4, "capture"
            ),
        )


@dataclass
class InjectionConfig:
    """
    How memories are injected back into a session's context.

    Read by the context injector that renders memories into a prompt;
    the store and manager only carry these settings.
    """

    enabled: bool = True
    budget_tokens: int = 800
    format: str = "timeline"
    priority_types: List[str] = field(
        default_factory=lambda: ["decision", "observation", "todo"]
    )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InjectionConfig":
        fmt = _get(data, "format", "timeline")
        if fmt not in INJECTION_FORMATS:
            logger.warning(f"Invalid memory config injection.format={fmt!r}, using timeline")
            fmt = "timeline"
        return cls(
            enabled=_flag(data, "enabled", True, "injection"),
            budget_tokens=_ranged(data, "budget_tokens", 100, 4000, 800, "injection"),
            format=fmt,
            priority_types=list(
                _get(data, "priority_types", ["decision", "observation", "todo"])
            ),
        )


@dataclass
class PrivacyConfig:
    """Content sanitization and retention policy."""

    enabled: bool = True
    private_tag_enabled: bool = True
    retention_days: int = 90
    max_memories: int = 10000
    # Extra regular expressions redacted on save
    strip_patterns: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PrivacyConfig":
        return cls(
            enabled=_flag(data, "enabled", True, "privacy"),
            private_tag_enabled=_flag(data, "private_tag_enabled", True, "privacy"),
            retention_days=_ranged(data, "retention_days", 1, 365, 90, "privacy"),
            max_memories=_ranged(data, "max_memories", 100, 100000, 10000, "privacy"),
            strip_patterns=list(_get(data, "strip_patterns", []) or []),
        )


@dataclass
class EmbeddingsConfig:
    """
    Configuration for the embedding backend.

    Attributes:
        enabled: Whether memories are embedded for semantic search
        required: Fail saves when embedding fails instead of continuing
            with lexical search only
        provider: Backend name ("local", "openai", "ollama")
        model: Model name (uses the provider default if not specified)
        dimensions: Length of every stored vector
        api_key: API key for hosted backends
        base_url: Endpoint override for HTTP backends
        timeout: HTTP timeout in seconds
    """

    enabled: bool = True
    required: bool = False
    provider: str = "local"
    model: Optional[str] = None
    dimensions: int = 384
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    timeout: float = 30.0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EmbeddingsConfig":
        return cls(
            enabled=_flag(data, "enabled", True, "embeddings"),
            required=_flag(data, "required", False, "embeddings"),
            provider=str(_get(data, "provider", "local")).lower(),
            model=_get(data, "model"),
            dimensions=_ranged(data, "dimensions", 64, 4096, 384, "embeddings"),
            api_key=_get(data, "api_key"),
            base_url=_get(data, "base_url"),
            timeout=_ranged(data, "timeout", 1, 600, 30.0, "embeddings"),
        )


@dataclass
class MemoryConfig:
    """
    Complete configuration for the memory system.

    Example YAML configuration:
        ```yaml
        memory:
          db_path: ~/.agentic_memory/memory.db
          privacy:
            retention_days: 30
            max_memories: 5000
          embeddings:
            provider: ollama
            model: nomic-embed-text
            dimensions: 768
        ```
    """

    enabled: bool = True
    # Port of the background capture worker; read by the worker service
    worker_port: int = 37777
    db_path: Optional[str] = None

    capture: CaptureConfig = field(default_factory=CaptureConfig)
    injection: InjectionConfig = field(default_factory=InjectionConfig)
    privacy: PrivacyConfig = field(default_factory=PrivacyConfig)
    embeddings: EmbeddingsConfig = field(default_factory=EmbeddingsConfig)

    def resolved_db_path(self) -> str:
        """Get the database path with "~" expanded."""
        if self.db_path == ":memory:":
            return self.db_path
        return str(Path(self.db_path or DEFAULT_DB_PATH).expanduser())

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MemoryConfig":
        """
        Create configuration from a dictionary.

        Accepts either the bare settings or settings nested under a
        top-level "memory" key.
        """
        data = data or {}
        if isinstance(data.get("memory"), dict):
            data = data["memory"]

        db_path = _get(data, "db_path")
        return cls(
            enabled=_flag(data, "enabled", True, "memory"),
            worker_port=_ranged(data, "worker_port", 1024, 65535, 37777, "memory"),
            db_path=str(db_path) if db_path else None,
            capture=CaptureConfig.from_dict(_section(data, "capture")),
            injection=InjectionConfig.from_dict(_section(data, "injection")),
            privacy=PrivacyConfig.from_dict(_section(data, "privacy")),
            embeddings=EmbeddingsConfig.from_dict(_section(data, "embeddings")),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return {
            "enabled": self.enabled,
            "worker_port": self.worker_port,
            "db_path": self.db_path,
            "capture": {
                "enabled": self.capture.enabled,
                "capture_tool_use": self.capture.capture_tool_use,
                "capture_messages": self.capture.capture_messages,
                "capture_phase_changes": self.capture.capture_phase_changes,
                "skip_tools": list(self.capture.skip_tools),
                "min_importance_threshold": self.capture.min_importance_threshold,
            },
            "injection": {
                "enabled": self.injection.enabled,
                "budget_tokens": self.injection.budget_tokens,
                "format": self.injection.format,
                "priority_types": list(self.injection.priority_types),
            },
            "privacy": {
                "enabled": self.privacy.enabled,
                "private_tag_enabled": self.privacy.private_tag_enabled,
                "retention_days": self.privacy.retention_days,
                "max_memories": self.privacy.max_memories,
                "strip_patterns": list(self.privacy.strip_patterns),
            },
            "embeddings": {
                "enabled": self.embeddings.enabled,
                "required": self.embeddings.required,
                "provider": self.embeddings.provider,
                "model": self.embeddings.model,
                "dimensions": self.embeddings.dimensions,
                "api_key": "***" if self.embeddings.api_key else None,  # Redact API key
                "base_url": self.embeddings.base_url,
                "timeout": self.embeddings.timeout,
            },
        }


def find_config_file(start_path: Optional[str] = None) -> Optional[Path]:
    """
    Find the configuration file starting from the given path.

    Searches the start path, then the current directory and its parents,
    then the home directory.

    Returns:
        Path to configuration file if found, None otherwise.
    """
    search_dirs = []
    if start_path:
        search_dirs.append(Path(start_path))

    current = Path.cwd()
    search_dirs.append(current)
    while current.parent != current:
        current = current.parent
        search_dirs.append(current)

    search_dirs.append(Path.home())

    for directory in search_dirs:
        for config_name in CONFIG_FILE_NAMES:
            config_path = directory / config_name
            if config_path.is_file():
                logger.debug(f"Found config file: {config_path}")
                return config_path

    return None


def load_yaml_file(file_path: Path) -> Dict[str, Any]:
    """
    Load a YAML configuration file.

    Unreadable or malformed files are logged and treated as empty.
    """
    try:
        with open(file_path, "r") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Error loading config file {file_path}: {e}")
        return {}

    if not isinstance(data, dict):
        logger.warning(f"Ignoring config file {file_path}: expected a mapping")
        return {}
    if isinstance(data.get("memory"), dict):
        return data["memory"]
    return data


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str) -> Optional[int]:
    try:
        return int(os.environ[name])
    except ValueError:
        logger.warning(f"Ignoring non-integer {name}={os.environ[name]!r}")
        return None


def load_config_from_env() -> Dict[str, Any]:
    """
    Load configuration from environment variables.

    Supported environment variables:
    - AGENTIC_MEMORY_ENABLED: Enable/disable the memory system
    - AGENTIC_MEMORY_DB_PATH: Database file path
    - AGENTIC_MEMORY_RETENTION_DAYS: Retention window in days
    - AGENTIC_MEMORY_MAX_MEMORIES: Maximum number of stored memories
    - AGENTIC_MEMORY_EMBEDDINGS_ENABLED: Enable/disable embeddings
    - AGENTIC_MEMORY_EMBEDDINGS_PROVIDER: Embedding backend name
    - AGENTIC_MEMORY_EMBEDDINGS_MODEL: Embedding model name
    - AGENTIC_MEMORY_EMBEDDINGS_DIMENSIONS: Embedding dimensions
    - OPENAI_API_KEY: OpenAI API key

    OLLAMA_HOST is read by the Ollama provider itself when no base URL
    is configured.
    """
    config: Dict[str, Any] = {"privacy": {}, "embeddings": {}}
    env = os.environ

    if env.get("AGENTIC_MEMORY_ENABLED"):
        config["enabled"] = _env_bool(env["AGENTIC_MEMORY_ENABLED"])

    if env.get("AGENTIC_MEMORY_DB_PATH"):
        config["db_path"] = env["AGENTIC_MEMORY_DB_PATH"]

    if env.get("AGENTIC_MEMORY_RETENTION_DAYS"):
        config["privacy"]["retention_days"] = _env_int("AGENTIC_MEMORY_RETENTION_DAYS")

    if env.get("AGENTIC_MEMORY_MAX_MEMORIES"):
        config["privacy"]["max_memories"] = _env_int("AGENTIC_MEMORY_MAX_MEMORIES")

    if env.get("AGENTIC_MEMORY_EMBEDDINGS_ENABLED"):
        config["embeddings"]["enabled"] = _env_bool(env["AGENTIC_MEMORY_EMBEDDINGS_ENABLED"])

    if env.get("AGENTIC_MEMORY_EMBEDDINGS_PROVIDER"):
        config["embeddings"]["provider"] = env["AGENTIC_MEMORY_EMBEDDINGS_PROVIDER"]

    if env.get("AGENTIC_MEMORY_EMBEDDINGS_MODEL"):
        config["embeddings"]["model"] = env["AGENTIC_MEMORY_EMBEDDINGS_MODEL"]

    if env.get("AGENTIC_MEMORY_EMBEDDINGS_DIMENSIONS"):
        config["embeddings"]["dimensions"] = _env_int("AGENTIC_MEMORY_EMBEDDINGS_DIMENSIONS")

    if env.get("OPENAI_API_KEY"):
        config["embeddings"]["api_key"] = env["OPENAI_API_KEY"]

    return config


def _normalize_keys(data: Dict[str, Any]) -> Dict[str, Any]:
    """Rewrite camelCase keys to snake_case, recursively."""
    result: Dict[str, Any] = {}
    for key, value in data.items():
        snake = "".join(f"_{c.lower()}" if c.isupper() else c for c in str(key))
        result[snake] = _normalize_keys(value) if isinstance(value, dict) else value
    return result


def load_config(
    config_path: Optional[str] = None,
    project_path: Optional[str] = None,
    **overrides: Any,
) -> MemoryConfig:
    """
    Load configuration from all sources.

    Args:
        config_path: Optional explicit path to config file.
        project_path: Optional project path to search for config.
        **overrides: Configuration overrides. Nested sections are given
            as dictionaries, e.g. embeddings={"provider": "ollama"}.

    Returns:
        Merged MemoryConfig.
    """
    merged_config: Dict[str, Any] = {}

    if config_path:
        file_path = Path(config_path)
        if file_path.exists():
            merged_config = _deep_merge(merged_config, _normalize_keys(load_yaml_file(file_path)))
        else:
            logger.warning(f"Config file not found: {config_path}")
    else:
        config_file = find_config_file(project_path)
        if config_file:
            merged_config = _deep_merge(merged_config, _normalize_keys(load_yaml_file(config_file)))

    merged_config = _deep_merge(merged_config, load_config_from_env())

    if overrides:
        merged_config = _deep_merge(merged_config, _normalize_keys(overrides))

    return MemoryConfig.from_dict(merged_config)


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """
    Deep merge two dictionaries.

    None values in the override leave the base value in place.
    """
    result = base.copy()

    for key, value in override.items():
        if (
            key in result
            and isinstance(result[key], dict)
            and isinstance(value, dict)
        ):
            result[key] = _deep_merge(result[key], value)
        elif value is not None:
            result[key] = value

    return result
