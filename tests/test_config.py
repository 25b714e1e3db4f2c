"""Tests for configuration module."""

import os
from pathlib import Path

import pytest

from agentic_memory.config import (
    CaptureConfig,
    EmbeddingsConfig,
    MemoryConfig,
    PrivacyConfig,
    _deep_merge,
    find_config_file,
    load_config,
    load_config_from_env,
    load_yaml_file,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    """Isolate tests from the caller's environment and config files."""
    for name in list(os.environ):
        if name.startswith("AGENTIC_MEMORY_"):
            monkeypatch.delenv(name)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    workdir = tmp_path / "work"
    workdir.mkdir()
    monkeypatch.chdir(workdir)


class TestDefaults:
    """Test default configuration values."""

    def test_memory_defaults(self):
        """Test top-level defaults."""
        config = MemoryConfig()

        assert config.enabled is True
        assert config.worker_port == 37777
        assert config.capture.min_importance_threshold == 4
        assert config.injection.budget_tokens == 800
        assert config.privacy.retention_days == 90
        assert config.privacy.max_memories == 10000
        assert config.embeddings.provider == "local"
        assert config.embeddings.dimensions == 384
        assert config.embeddings.required is False

    def test_resolved_db_path(self):
        """Test database path expansion."""
        assert MemoryConfig().resolved_db_path().endswith(
            os.path.join(".agentic_memory", "memory.db")
        )
        assert "~" not in MemoryConfig(db_path="~/x.db").resolved_db_path()
        assert MemoryConfig(db_path=":memory:").resolved_db_path() == ":memory:"

    def test_to_dict_redacts_api_key(self):
        """Test that the API key is not exposed."""
        config = MemoryConfig(embeddings=EmbeddingsConfig(api_key="sk-secret"))

        data = config.to_dict()

        assert data["embeddings"]["api_key"] == "***"
        assert "sk-secret" not in str(data)


class TestFromDict:
    """Test building configuration from dictionaries."""

    def test_nested_memory_key(self):
        """Test settings nested under a memory key."""
        config = MemoryConfig.from_dict({
            "memory": {"privacy": {"retention_days": 30}},
        })
        assert config.privacy.retention_days == 30

    def test_camel_case_keys(self):
        """Test camelCase spelling of keys."""
        config = MemoryConfig.from_dict({
            "dbPath": "/tmp/m.db",
            "privacy": {"retentionDays": 14, "maxMemories": 500},
            "capture": {"minImportanceThreshold": 6},
        })

        assert config.db_path == "/tmp/m.db"
        assert config.privacy.retention_days == 14
        assert config.privacy.max_memories == 500
        assert config.capture.min_importance_threshold == 6

    @pytest.mark.parametrize("section,key,value,attr,default", [
        ("privacy", "retention_days", 0, "retention_days", 90),
        ("privacy", "retention_days", 400, "retention_days", 90),
        ("privacy", "max_memories", 50, "max_memories", 10000),
        ("embeddings", "dimensions", 8, "dimensions", 384),
        ("embeddings", "dimensions", "large", "dimensions", 384),
    ])
    def test_out_of_range_falls_back(self, section, key, value, attr, default, caplog):
        """Test that invalid values are replaced by the default."""
        config = MemoryConfig.from_dict({section: {key: value}})

        assert getattr(getattr(config, section), attr) == default
        assert key in caplog.text

    def test_invalid_value_does_not_reset_siblings(self):
        """Test that fallback is per field."""
        config = MemoryConfig.from_dict({
            "privacy": {"retention_days": -1, "max_memories": 2000},
        })
        assert config.privacy.retention_days == 90
        assert config.privacy.max_memories == 2000

    def test_provider_lowercased(self):
        """Test provider name normalization."""
        config = MemoryConfig.from_dict({"embeddings": {"provider": "OpenAI"}})
        assert config.embeddings.provider == "openai"

    def test_invalid_skip_tools(self):
        """Test that a non-list skip_tools falls back."""
        config = CaptureConfig.from_dict({"skip_tools": "Read"})
        assert config.skip_tools == ["Read", "Glob", "Grep", "Bash"]


class TestConfigFiles:
    """Test YAML file discovery and loading."""

    def test_find_in_start_path(self, tmp_path):
        """Test finding a config file in the project path."""
        project = tmp_path / "project"
        project.mkdir()
        (project / ".agentic-memory.yml").write_text("enabled: true\n")

        assert find_config_file(str(project)) == project / ".agentic-memory.yml"

    def test_find_in_home(self):
        """Test falling back to the home directory."""
        config_file = Path.home() / "agentic-memory.yaml"
        config_file.write_text("enabled: true\n")

        assert find_config_file() == config_file

    def test_not_found(self):
        """Test when no config file exists."""
        assert find_config_file() is None

    def test_load_yaml_unwraps_memory_key(self, tmp_path):
        """Test loading a file with a memory section."""
        path = tmp_path / "config.yml"
        path.write_text("memory:\n  db_path: /data/m.db\n")

        assert load_yaml_file(path) == {"db_path": "/data/m.db"}

    def test_malformed_yaml_is_empty(self, tmp_path, caplog):
        """Test that a broken file is logged and ignored."""
        path = tmp_path / "broken.yml"
        path.write_text("privacy: [unclosed\n")

        assert load_yaml_file(path) == {}
        assert "Error loading config file" in caplog.text

    def test_non_mapping_is_empty(self, tmp_path):
        """Test that a list document is ignored."""
        path = tmp_path / "list.yml"
        path.write_text("- one\n- two\n")

        assert load_yaml_file(path) == {}


class TestEnvironment:
    """Test environment variable overrides."""

    def test_empty_environment(self):
        """Test that nothing is set without variables."""
        assert load_config_from_env() == {"privacy": {}, "embeddings": {}}

    def test_variables_read(self, monkeypatch):
        """Test each supported variable."""
        monkeypatch.setenv("AGENTIC_MEMORY_ENABLED", "false")
        monkeypatch.setenv("AGENTIC_MEMORY_DB_PATH", "/var/memory.db")
        monkeypatch.setenv("AGENTIC_MEMORY_RETENTION_DAYS", "7")
        monkeypatch.setenv("AGENTIC_MEMORY_EMBEDDINGS_PROVIDER", "ollama")
        monkeypatch.setenv("AGENTIC_MEMORY_EMBEDDINGS_DIMENSIONS", "768")
        monkeypatch.setenv("OPENAI_API_KEY", "sk-env")

        env = load_config_from_env()

        assert env["enabled"] is False
        assert env["db_path"] == "/var/memory.db"
        assert env["privacy"]["retention_days"] == 7
        assert env["embeddings"]["provider"] == "ollama"
        assert env["embeddings"]["dimensions"] == 768
        assert env["embeddings"]["api_key"] == "sk-env"

    def test_non_integer_ignored(self, monkeypatch, caplog):
        """Test that a bad number leaves the value unset."""
        monkeypatch.setenv("AGENTIC_MEMORY_MAX_MEMORIES", "lots")

        config = load_config()

        assert config.privacy.max_memories == 10000
        assert "AGENTIC_MEMORY_MAX_MEMORIES" in caplog.text


class TestLoadConfig:
    """Test merging of all configuration sources."""

    def test_defaults_without_sources(self):
        """Test loading with nothing configured."""
        assert load_config() == MemoryConfig()

    def test_precedence(self, tmp_path, monkeypatch):
        """Test file < environment < overrides."""
        path = tmp_path / "config.yml"
        path.write_text(
            "privacy:\n"
            "  retentionDays: 30\n"
            "  maxMemories: 500\n"
            "embeddings:\n"
            "  provider: ollama\n"
        )
        monkeypatch.setenv("AGENTIC_MEMORY_RETENTION_DAYS", "60")

        config = load_config(
            config_path=str(path),
            embeddings={"enabled": False},
        )

        assert config.privacy.retention_days == 60
        assert config.privacy.max_memories == 500
        assert config.embeddings.provider == "ollama"
        assert config.embeddings.enabled is False

    def test_override_wins_over_environment(self, monkeypatch):
        """Test that explicit overrides beat the environment."""
        monkeypatch.setenv("AGENTIC_MEMORY_DB_PATH", "/env.db")

        config = load_config(db_path="/override.db")

        assert config.db_path == "/override.db"

    def test_missing_explicit_file(self, tmp_path, caplog):
        """Test a config path that does not exist."""
        config = load_config(config_path=str(tmp_path / "missing.yml"))

        assert config == MemoryConfig()
        assert "Config file not found" in caplog.text

    def test_discovered_file(self, tmp_path):
        """Test loading a file found in the project path."""
        project = tmp_path / "project"
        project.mkdir()
        (project / ".agentic-memory.yml").write_text("memory:\n  workerPort: 40000\n")

        config = load_config(project_path=str(project))

        assert config.worker_port == 40000


class TestDeepMerge:
    """Test cases for _deep_merge."""

    def test_nested_merge(self):
        base = {"a": 1, "b": {"c": 2, "d": 3}}
        override = {"b": {"c": 20}, "e": 5}

        assert _deep_merge(base, override) == {"a": 1, "b": {"c": 20, "d": 3}, "e": 5}

    def test_none_keeps_base(self):
        assert _deep_merge({"a": 1}, {"a": None}) == {"a": 1}

    def test_base_not_modified(self):
        base = {"b": {"c": 2}}
        _deep_merge(base, {"b": {"c": 3}})
        assert base == {"b": {"c": 2}}
