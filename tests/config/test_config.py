"""Tests for configuration loading and validation."""

import pytest
import yaml

from cadre.config.loader import ConfigError, load_config, save_config
from cadre.config.schema import CadreConfig, NamedAgentConfig


def test_default_config(default_config):
    """Test that default config has expected values."""
    assert default_config.model.name == "qwen2.5:7b"
    assert default_config.model.temperature == 0.7
    assert default_config.model.max_tokens is None

    assert default_config.inference.backend == "ollama"
    assert default_config.inference.timeout == 120

    assert default_config.agent.max_tool_iterations == 10
    assert default_config.agent.num_history_runs == 5
    assert default_config.agent.add_history_to_context is True

    assert default_config.tools.filesystem is True
    assert default_config.storage.backend == "sqlite"
    assert default_config.knowledge.enabled is False
    assert default_config.memory.mode == "background"
    assert default_config.summary.every_n_runs == 5
    assert default_config.team.max_rounds == 5
    assert default_config.agents == []
    assert default_config.logging.level == "WARNING"


def test_load_config_nonexistent_returns_defaults(tmp_path):
    config = load_config(tmp_path / "nonexistent.yaml")

    assert config == CadreConfig()


def test_load_config_empty_file_returns_defaults(tmp_path):
    config_path = tmp_path / "empty.yaml"
    config_path.write_text("")

    assert load_config(config_path) == CadreConfig()


def test_load_config_partial_override(tmp_path):
    """Test that partial config overrides only specified values."""
    config_path = tmp_path / "partial.yaml"
    config_path.write_text(
        yaml.safe_dump({"model": {"name": "llama3.2:3b", "temperature": 0.2}, "team": {"max_rounds": 2}})
    )

    config = load_config(config_path)

    assert config.model.name == "llama3.2:3b"
    assert config.model.temperature == 0.2
    assert config.team.max_rounds == 2
    assert config.agent.max_tool_iterations == 10


def test_load_config_named_agents(tmp_path):
    config_path = tmp_path / "agents.yaml"
    config_path.write_text(
        """
agents:
  - name: researcher
    description: Finds facts
    instructions: Research carefully.
    tools: [read_file]
    search_knowledge: true
"""
    )

    config = load_config(config_path)

    assert config.agents == [
        NamedAgentConfig(
            name="researcher",
            description="Finds facts",
            instructions="Research carefully.",
            tools=["read_file"],
            search_knowledge=True,
        )
    ]


def test_load_config_invalid_yaml(tmp_path):
    config_path = tmp_path / "invalid.yaml"
    config_path.write_text("model: [unclosed")

    with pytest.raises(ConfigError, match="Invalid YAML"):
        load_config(config_path)


def test_load_config_non_mapping(tmp_path):
    config_path = tmp_path / "list.yaml"
    config_path.write_text("- one\n- two\n")

    with pytest.raises(ConfigError, match="mapping"):
        load_config(config_path)


def test_load_config_validation_error(tmp_path):
    config_path = tmp_path / "bad.yaml"
    config_path.write_text(yaml.safe_dump({"model": {"temperature": 5.0}}))

    with pytest.raises(ConfigError, match="validation failed"):
        load_config(config_path)


def test_load_config_unknown_backend(tmp_path):
    config_path = tmp_path / "backend.yaml"
    config_path.write_text(yaml.safe_dump({"inference": {"backend": "carrier-pigeon"}}))

    with pytest.raises(ConfigError):
        load_config(config_path)


def test_save_and_reload(tmp_path):
    config = CadreConfig()
    config.model.name = "mistral:7b"
    config.storage.backend = "memory"

    written = save_config(config, tmp_path / "nested" / "cadre.yaml")

    assert written.exists()
    assert load_config(written) == config
