"""Command line interface for auditswarm."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer

from .agent import (
    CancellationToken,
    build_copilot,
    build_persona_agent,
    load_personas,
)
from .config import load_config
from .contracts import (
    CodeExecutionFinished,
    CodeExecutionStarted,
    DelegationFinished,
    DelegationStarted,
    FatalErrorEvent,
    StepStatusEvent,
    TerminalEvent,
    TextEvent,
    ToolCallFinished,
    ToolCallStarted,
)
from .datasource import DataSourceClient
from .errors import AuditSwarmError
from .persistence import get_store
from .review import approve_step
from .tools import WorkflowToolRouter
from .usage import UsageTracker, check_user_can_spend

app = typer.Typer(help="CLI for auditswarm workflows")

workflow_app = typer.Typer(help="Commands for browsing workflows")
step_app = typer.Typer(help="Commands for reviewing step results")
persona_app = typer.Typer(help="Commands for interview personas")

app.add_typer(workflow_app, name="workflow")
app.add_typer(step_app, name="step")
app.add_typer(persona_app, name="persona")

DEFAULT_USER = "local"


def _load(config_path: Optional[Path]):
    config = load_config(str(config_path) if config_path else None)
    return config, get_store(config=config)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """auditswarm CLI entry point."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _render(event) -> None:
    if isinstance(event, TextEvent):
        typer.echo(event.content, nl=False)
    elif isinstance(event, ToolCallStarted):
        label = f" [{event.tool_call.step_label}]" if event.tool_call.step_label else ""
        typer.secho(f"\n-> {event.tool_call.name}{label}", fg=typer.colors.CYAN)
    elif isinstance(event, ToolCallFinished):
        colour = typer.colors.GREEN if event.tool_call.status == "completed" else typer.colors.RED
        typer.secho(f"<- {event.tool_call.name}: {event.tool_call.status}", fg=colour)
    elif isinstance(event, (CodeExecutionStarted, CodeExecutionFinished)):
        typer.secho(f"[code] {event.type}", fg=typer.colors.MAGENTA)
    elif isinstance(event, DelegationStarted):
        typer.secho(f"[delegate] {event.agent}: {event.task}", fg=typer.colors.BLUE)
    elif isinstance(event, DelegationFinished):
        typer.secho(f"[delegate] {event.agent} finished", fg=typer.colors.BLUE)
    elif isinstance(event, StepStatusEvent):
        typer.secho(f"[step] {event.label or event.node_id}: {event.status}", fg=typer.colors.YELLOW)
    elif isinstance(event, FatalErrorEvent):
        typer.secho(f"\nError: {event.error}", fg=typer.colors.RED)
    elif isinstance(event, TerminalEvent):
        typer.echo("\n(cancelled)" if event.cancelled else "")


@app.command("chat")
def chat(
    message: str,
    user: str = typer.Option(DEFAULT_USER, help="Acting user id"),
    persona: Optional[str] = typer.Option(None, help="Talk to an interview persona instead"),
    workflow: Optional[str] = typer.Option(None, help="Run mode: id of the workflow to run"),
    model: Optional[str] = typer.Option(None, help="Override the orchestrator model"),
    config_path: Optional[Path] = typer.Option(None, "--config", help="Config file"),
) -> None:
    """
    Send one message to the copilot (or a persona) and stream the reply.

    Example:
        auditswarm chat "show my workflows"
        auditswarm chat "walk me through the vendor ledger" --persona controller
    """
    config, store = _load(config_path)
    token = CancellationToken()

    async def _chat() -> int:
        spend = await check_user_can_spend(store, user, config.usage.monthly_limit)
        if not spend.allowed:
            typer.secho(
                f"Monthly spend limit reached (${spend.spent:.2f} of ${spend.limit:.2f})",
                fg=typer.colors.RED,
            )
            return 1

        tracker = UsageTracker(store, user, config.usage.pricing)
        datasource = DataSourceClient(config.datasource)
        if persona:
            personas = load_personas(config.personas_dir)
            if persona not in personas:
                typer.secho(f"Unknown persona: {persona}", fg=typer.colors.RED)
                return 1
            loop = build_persona_agent(
                personas[persona],
                model or config.models.helper,
                datasource,
                config,
                token,
                tracker,
            )
        else:
            run_mode = None
            if workflow:
                wf = await store.get_workflow(workflow)
                if wf is None:
                    typer.secho("Workflow not found", fg=typer.colors.RED)
                    return 1
                run_mode = (wf.id, wf.slug)
            loop = build_copilot(
                store,
                user,
                config,
                model=model,
                datasource=datasource,
                run_mode=run_mode,
                cancel_token=token,
                usage_tracker=tracker,
            )

        try:
            async for event in loop.stream(message):
                _render(event)
        finally:
            await datasource.aclose()
        return 0

    try:
        code = asyncio.run(_chat())
    except KeyboardInterrupt:
        token.cancel()
        typer.echo("\n(cancelled)")
        return
    if code:
        raise typer.Exit(code=code)


@app.command("plan")
def plan(
    workflow_id: str,
    user: str = typer.Option(DEFAULT_USER, help="Acting user id"),
    config_path: Optional[Path] = typer.Option(None, "--config", help="Config file"),
) -> None:
    """
    Print the execution plan of a workflow.

    Shows progress, the parallel waves of remaining steps and the steps that
    are ready to run now.

    Example:
        auditswarm plan 3f2c... --user alice
    """
    config, store = _load(config_path)
    router = WorkflowToolRouter(store, user, config)
    result = asyncio.run(router.call_tool("get_execution_plan", {"workflow_id": workflow_id}))
    if not result.success:
        typer.secho(result.error, fg=typer.colors.RED)
        raise typer.Exit(code=1)
    data = result.result
    typer.echo(
        f"{data['workflow_name']}: {data['completed_steps']}/{data['total_steps']} "
        f"steps completed ({data['progress']}%)"
    )
    for index, wave in enumerate(data["parallel_groups"], start=1):
        typer.echo(f"Wave {index}: " + ", ".join(s["label"] for s in wave))
    ready = ", ".join(s["node_id"] for s in data["next_steps"]) or "none"
    typer.echo(f"Ready: {ready}")


@workflow_app.command("list")
def workflow_list(
    user: str = typer.Option(DEFAULT_USER, help="Acting user id"),
    search: Optional[str] = typer.Option(None, help="Search in name and description"),
    sort_by: str = typer.Option("recent", help="recent, popular or rating"),
    config_path: Optional[Path] = typer.Option(None, "--config", help="Config file"),
) -> None:
    """List the user's workflows as tab-separated id, slug and name."""
    config, store = _load(config_path)
    router = WorkflowToolRouter(store, user, config)
    result = asyncio.run(
        router.call_tool("list_workflows", {"search": search, "sort_by": sort_by})
    )
    if not result.success:
        typer.secho(result.error, fg=typer.colors.RED)
        raise typer.Exit(code=1)
    workflows = result.result["workflows"]
    if not workflows:
        typer.echo("No workflows found")
        return
    for wf in workflows:
        typer.echo(f"{wf['id']}\t{wf['slug']}\t{wf['name']}")


@step_app.command("approve")
def step_approve(
    workflow_id: str,
    node_id: str,
    user: str = typer.Option(DEFAULT_USER, help="Acting user id"),
    result: Optional[str] = typer.Option(None, help="Replace the draft result"),
    config_path: Optional[Path] = typer.Option(None, "--config", help="Config file"),
) -> None:
    """Approve a drafted step result and mark the step completed."""
    _, store = _load(config_path)
    try:
        record = asyncio.run(approve_step(store, user, workflow_id, node_id, result))
    except AuditSwarmError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.echo(f"Approved {record.node_id} at {record.completed_at}")


@persona_app.command("list")
def persona_list(
    directory: Optional[Path] = typer.Option(None, "--dir", help="Persona directory"),
) -> None:
    """List the available interview personas."""
    personas = load_personas(directory or load_config().personas_dir)
    if not personas:
        typer.echo("No personas found")
        return
    for persona in personas.values():
        typer.echo(f"{persona.id}\t{persona.name}\t{persona.cooperation_level}")


if __name__ == "__main__":
    app()
