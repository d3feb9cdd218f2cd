"""Tests for configuration loading."""

from auditswarm.config import load_config


def test_defaults_without_config_file():
    config = load_config()
    assert config.models.orchestrator.startswith("google-gla:")
    assert config.agent.max_tool_failures == 3
    assert config.agent.max_list_limit == 50
    assert config.agent.draft_workflows is False
    assert config.usage.monthly_limit is None
    assert config.database_url is None


def test_load_config_from_env(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
models:
  orchestrator: openai:gpt-4o
datasource:
  url: http://localhost:9000
  tool_prefix: db_
agent:
  max_tool_failures: 5
  draft_workflows: true
usage:
  monthly_limit: 25.0
  pricing:
    gpt-4o:
      input: 2.5
      output: 10.0
"""
    )
    monkeypatch.setenv("AUDITSWARM_CONFIG", str(config_path))

    config = load_config()
    assert config.models.orchestrator == "openai:gpt-4o"
    assert config.datasource.url == "http://localhost:9000"
    assert config.datasource.tool_prefix == "db_"
    assert config.agent.max_tool_failures == 5
    assert config.agent.draft_workflows is True
    assert config.usage.monthly_limit == 25.0
    assert config.usage.pricing["gpt-4o"].output == 10.0


def test_explicit_path_wins_and_database_env_overrides(tmp_path, monkeypatch):
    config_path = tmp_path / "other.yaml"
    config_path.write_text("database_url: sqlite:///from-file.db\n")
    monkeypatch.setenv("DATABASE_URL", "sqlite:///from-env.db")

    config = load_config(str(config_path))
    assert config.database_url == "sqlite:///from-env.db"

    monkeypatch.setenv("AUDITSWARM_DATABASE_URL", "sqlite:///preferred.db")
    assert load_config(str(config_path)).database_url == "sqlite:///preferred.db"


def test_empty_config_file_gives_defaults(tmp_path):
    config_path = tmp_path / "empty.yaml"
    config_path.write_text("")
    config = load_config(str(config_path))
    assert config.datasource.url == "https://data.auditswarm.com"
