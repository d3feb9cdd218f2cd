from __future__ import annotations

import os
from typing import Dict, Optional

import yaml
from pydantic import BaseModel, Field

from .constants import (
    DEFAULT_ANALYZER_MODEL,
    DEFAULT_MAX_TOOL_FAILURES,
    DEFAULT_ORCHESTRATOR_MODEL,
    MAX_LIST_LIMIT,
)


class ModelsConfig(BaseModel):
    """Model names in pydantic-ai ``provider:model`` form."""

    orchestrator: str = DEFAULT_ORCHESTRATOR_MODEL
    helper: str = DEFAULT_ORCHESTRATOR_MODEL
    analyzer: str = DEFAULT_ANALYZER_MODEL


class DataSourceConfig(BaseModel):
    """Connection settings for the MCP data server used by the wrangler."""

    url: str = "https://data.auditswarm.com"
    timeout: float = 30.0
    tool_prefix: str = "data_"


class ModelPrice(BaseModel):
    """Price in USD per one million tokens."""

    input: float = 0.0
    output: float = 0.0


def _default_pricing() -> Dict[str, ModelPrice]:
    return {
        "gemini-2.5-flash": ModelPrice(input=0.15, output=0.60),
        "gemini-2.5-pro": ModelPrice(input=2.00, output=12.00),
    }


class UsageConfig(BaseModel):
    """Token accounting and spending limit settings."""

    pricing: Dict[str, ModelPrice] = Field(default_factory=_default_pricing)
    monthly_limit: Optional[float] = None


class AgentSettings(BaseModel):
    """Behavioural limits of the agent loops and the tool router."""

    max_tool_failures: int = DEFAULT_MAX_TOOL_FAILURES
    max_list_limit: int = MAX_LIST_LIMIT
    draft_workflows: bool = False


class AuditSwarmConfig(BaseModel):
    """Top-level configuration model."""

    models: ModelsConfig = ModelsConfig()
    datasource: DataSourceConfig = DataSourceConfig()
    usage: UsageConfig = UsageConfig()
    agent: AgentSettings = AgentSettings()
    database_url: Optional[str] = None
    personas_dir: Optional[str] = None


def load_config(path: Optional[str] = None) -> AuditSwarmConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to AUDITSWARM_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("AUDITSWARM_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = AuditSwarmConfig(**data)
    else:
        config = AuditSwarmConfig()

    env_db_url = os.getenv("AUDITSWARM_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    return config
