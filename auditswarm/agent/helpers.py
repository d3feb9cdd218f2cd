"""Helper agents and interview personas."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Literal, Optional, Union

import yaml
from pydantic import BaseModel, ValidationError
from pydantic_ai.models import Model

from ..config import AuditSwarmConfig
from ..constants import ANALYZER_HELPER, WRANGLER_HELPER
from ..datasource import DataSourceClient, data_tools
from ..tools.prompts import analyzer_prompt, wrangler_prompt
from ..usage import UsageTracker
from .cancellation import CancellationToken
from .delegation import HelperSpec
from .loop import AgentLoop, LoopConfig

logger = logging.getLogger(__name__)

PERSONAS_DIR = Path(__file__).resolve().parent.parent / "personas"


def build_wrangler_helper(
    model: Union[Model, str],
    datasource: DataSourceClient,
    config: Optional[AuditSwarmConfig] = None,
) -> HelperSpec:
    config = config or AuditSwarmConfig()
    return HelperSpec(
        name=WRANGLER_HELPER,
        description="Queries the audit data source (schemas, filtered table queries).",
        system_instruction=wrangler_prompt(),
        model=model,
        tools=data_tools(config.datasource.tool_prefix),
        router=datasource.call_tool,
        max_tool_failures=config.agent.max_tool_failures,
    )


def build_analyzer_helper(
    model: Union[Model, str],
    config: Optional[AuditSwarmConfig] = None,
    code_execution: bool = True,
) -> HelperSpec:
    config = config or AuditSwarmConfig()
    return HelperSpec(
        name=ANALYZER_HELPER,
        description="Runs Python code for statistics, aggregation and charts on data given in the task.",
        system_instruction=analyzer_prompt(),
        model=model,
        code_execution=code_execution,
        max_tool_failures=config.agent.max_tool_failures,
    )


class Persona(BaseModel):
    """An interviewee the user can talk to during an audit."""

    id: str
    name: str
    title: str = ""
    cooperation_level: Literal["cooperative", "neutral", "evasive", "hostile"] = "neutral"
    system_instruction: str


def load_personas(directory: Union[str, Path, None] = None) -> Dict[str, Persona]:
    """Load every ``*.yaml`` persona in ``directory`` keyed by id.

    Invalid files are skipped with a warning.
    """
    path = Path(directory) if directory else PERSONAS_DIR
    personas: Dict[str, Persona] = {}
    if not path.is_dir():
        logger.warning(f"Persona directory {path} does not exist")
        return personas

    for file in sorted(path.glob("*.yaml")):
        try:
            with open(file) as f:
                persona = Persona(**(yaml.safe_load(f) or {}))
        except (yaml.YAMLError, ValidationError, TypeError) as exc:
            logger.warning(f"Skipping persona file {file.name}: {exc}")
            continue
        if persona.id in personas:
            logger.warning(f"Duplicate persona id '{persona.id}' in {file.name}")
            continue
        personas[persona.id] = persona
    return personas


def build_persona_agent(
    persona: Persona,
    model: Union[Model, str],
    datasource: DataSourceClient,
    config: Optional[AuditSwarmConfig] = None,
    cancel_token: Optional[CancellationToken] = None,
    usage_tracker: Optional[UsageTracker] = None,
) -> AgentLoop:
    """A plain loop with data access and no delegation."""
    config = config or AuditSwarmConfig()
    loop_config = LoopConfig(
        name=f"persona:{persona.id}",
        model=model,
        system_instruction=persona.system_instruction,
        tools=data_tools(config.datasource.tool_prefix),
        router=datasource.call_tool,
        max_tool_failures=config.agent.max_tool_failures,
        usage_tracker=usage_tracker,
    )
    return AgentLoop(loop_config, cancel_token)
