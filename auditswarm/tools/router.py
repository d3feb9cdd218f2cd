"""Routes workflow tool calls from the model onto the workflow store."""

from __future__ import annotations

import logging
import re
from typing import Any, Awaitable, Callable, Dict, Optional, Type

from pydantic import BaseModel, ValidationError

from ..config import AuditSwarmConfig
from ..contracts import ToolResult
from ..errors import AuditSwarmError, CyclicWorkflow, InvalidArgument, NotAuthorized, NotFound
from ..graph import ExecutionPlanner, WorkflowGraph
from ..persistence import WorkflowRecord, WorkflowStore
from .catalog import (
    CreateWorkflowArgs,
    ListWorkflowsArgs,
    NoArgs,
    SaveStepResultArgs,
    SlugArgs,
    StepArgs,
    UpdateStepArgs,
    UpdateWorkflowArgs,
    WorkflowIdArgs,
)

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Awaitable[Any]]


def slugify(text: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")
    return slug or "workflow"


def _validation_message(name: str, exc: ValidationError) -> str:
    problems = "; ".join(
        f"{'.'.join(str(p) for p in err['loc']) or 'arguments'}: {err['msg']}"
        for err in exc.errors()
    )
    return f"Invalid arguments for {name}: {problems}"


def _stats(wf: WorkflowRecord) -> Dict[str, Any]:
    return {
        "views": wf.views_count,
        "downloads": wf.downloads_count,
        "favorites": wf.favorites_count,
        "rating": wf.rating_avg,
        "rating_count": wf.rating_count,
    }


class WorkflowToolRouter:
    """Executes workflow tools on behalf of one user.

    ``call_tool`` never raises: every failure comes back as a
    ``ToolResult(success=False)`` the model can read and react to.
    """

    def __init__(
        self,
        store: WorkflowStore,
        user_id: str,
        config: Optional[AuditSwarmConfig] = None,
    ) -> None:
        self.store = store
        self.user_id = user_id
        self.config = config or AuditSwarmConfig()
        self._handlers: Dict[str, tuple[Type[BaseModel], Handler]] = {
            "list_workflows": (ListWorkflowsArgs, self._list_workflows),
            "get_workflow": (SlugArgs, self._get_workflow),
            "create_workflow": (CreateWorkflowArgs, self._create_workflow),
            "update_workflow": (UpdateWorkflowArgs, self._update_workflow),
            "update_step": (UpdateStepArgs, self._update_step),
            "get_categories": (NoArgs, self._get_categories),
            "get_favorites": (NoArgs, self._get_favorites),
            "toggle_favorite": (WorkflowIdArgs, self._toggle_favorite),
            "get_workflow_progress": (WorkflowIdArgs, self._get_workflow_progress),
            "save_step_result": (SaveStepResultArgs, self._save_step_result),
            "get_step_context": (StepArgs, self._get_step_context),
            "get_execution_plan": (WorkflowIdArgs, self._get_execution_plan),
        }

    @property
    def tool_names(self) -> list[str]:
        return list(self._handlers)

    async def call_tool(self, name: str, args: Optional[Dict[str, Any]] = None) -> ToolResult:
        entry = self._handlers.get(name)
        if entry is None:
            return ToolResult.fail(f"Unknown tool: {name}")
        args_model, handler = entry
        try:
            parsed = args_model.model_validate(args or {})
        except ValidationError as exc:
            return ToolResult.fail(str(InvalidArgument(_validation_message(name, exc))))

        try:
            return ToolResult.ok(await handler(parsed))
        except AuditSwarmError as exc:
            logger.info(f"Tool {name} failed: {exc}")
            return ToolResult.fail(str(exc))
        except Exception as exc:
            logger.exception(f"Tool router error ({name})")
            return ToolResult.fail(str(exc) or "Internal error")

    # ------------------------------------------------------------------
    async def _owned(self, workflow_id: str, denied: str) -> WorkflowRecord:
        wf = await self.store.get_workflow(workflow_id)
        if wf is None:
            raise NotFound("Workflow not found")
        if wf.user_id != self.user_id:
            raise NotAuthorized(denied)
        return wf

    async def _owned_by_slug(self, slug: str) -> WorkflowRecord:
        wf = await self.store.get_workflow_by_slug(slug)
        if wf is None:
            raise NotFound(f'Workflow "{slug}" not found')
        if wf.user_id != self.user_id:
            raise NotAuthorized("You can only update your own workflows")
        return wf

    async def _planner(self, wf: WorkflowRecord) -> ExecutionPlanner:
        graph = WorkflowGraph.from_payload(wf.nodes, wf.edges, strict=False)
        results = await self.store.list_step_results(self.user_id, wf.id)
        return ExecutionPlanner.from_results(graph, results)

    async def _unique_slug(self, name: str) -> str:
        base = slugify(name)
        slug, n = base, 1
        while await self.store.get_workflow_by_slug(slug) is not None:
            n += 1
            slug = f"{base}-{n}"
        return slug

    # ------------------------------------------------------------------
    async def _list_workflows(self, args: ListWorkflowsArgs) -> Dict[str, Any]:
        limit = min(args.limit, self.config.agent.max_list_limit)
        categories = {c.id: c for c in await self.store.list_categories()}
        category_id = None
        if args.category_slug:
            match = [c for c in categories.values() if c.slug == args.category_slug]
            if not match:
                return {"workflows": [], "total": 0}
            category_id = match[0].id

        workflows = await self.store.list_workflows(
            self.user_id,
            search=args.search,
            category_id=category_id,
            sort_by=args.sort_by,
            limit=limit,
        )
        items = []
        for wf in workflows:
            category = categories.get(wf.category_id) if wf.category_id else None
            items.append(
                {
                    "id": wf.id,
                    "name": wf.name,
                    "slug": wf.slug,
                    "description": wf.description,
                    "category": category.name if category else None,
                    "category_slug": category.slug if category else None,
                    "stats": _stats(wf),
                    "created_at": wf.created_at.isoformat(),
                }
            )
        return {"workflows": items, "total": len(items)}

    async def _get_workflow(self, args: SlugArgs) -> Dict[str, Any]:
        wf = await self.store.get_workflow_by_slug(args.slug)
        if wf is None:
            raise NotFound(f'Workflow "{args.slug}" not found')
        category = None
        if wf.category_id:
            category = next(
                (c.name for c in await self.store.list_categories() if c.id == wf.category_id),
                None,
            )
        return {
            "id": wf.id,
            "name": wf.name,
            "slug": wf.slug,
            "description": wf.description,
            "is_owner": wf.user_id == self.user_id,
            "category": category,
            "nodes": wf.nodes,
            "edges": wf.edges,
            "metadata": wf.metadata,
            "version": wf.version,
            "stats": _stats(wf),
            "created_at": wf.created_at.isoformat(),
        }

    async def _create_workflow(self, args: CreateWorkflowArgs) -> Dict[str, Any]:
        graph = WorkflowGraph.from_payload(args.nodes, args.edges, strict=True)

        if self.config.agent.draft_workflows:
            return {
                "draft": True,
                "name": args.name,
                "description": args.description,
                "nodes": args.nodes,
                "edges": args.edges,
                "metadata": args.metadata,
                "category_slug": args.category_slug,
                "message": f'Workflow "{args.name}" generated as a draft for review.',
            }

        category_id = None
        if args.category_slug:
            category = await self.store.get_category_by_slug(args.category_slug)
            if category is None:
                raise InvalidArgument(f"Unknown category '{args.category_slug}'")
            category_id = category.id

        record = WorkflowRecord(
            slug=await self._unique_slug(args.name),
            name=args.name,
            description=args.description,
            user_id=self.user_id,
            category_id=category_id,
            nodes=args.nodes,
            edges=args.edges,
            metadata=args.metadata,
        )
        record = await self.store.create_workflow(record)
        logger.info(f"Created workflow {record.slug} with {len(graph)} steps")
        return {
            "id": record.id,
            "slug": record.slug,
            "name": record.name,
            "step_count": len(graph),
            "message": f'Workflow "{record.name}" created successfully.',
        }

    async def _update_workflow(self, args: UpdateWorkflowArgs) -> Dict[str, Any]:
        wf = await self._owned_by_slug(args.slug)
        fields: Dict[str, Any] = {}
        if args.name:
            fields["name"] = args.name
        if args.description:
            fields["description"] = args.description
        if args.metadata is not None:
            fields["metadata"] = args.metadata
        if args.nodes is not None or args.edges is not None:
            nodes = args.nodes if args.nodes is not None else wf.nodes
            if args.edges is not None:
                edges = args.edges
            else:
                # stored edges of removed steps are dropped with them
                kept = WorkflowGraph.from_payload(nodes, strict=True)
                edges = [
                    e
                    for e in wf.edges
                    if isinstance(e, dict)
                    and str(e.get("source")) in kept
                    and str(e.get("target")) in kept
                ]
            WorkflowGraph.from_payload(nodes, edges, strict=True)
            fields["nodes"] = nodes
            fields["edges"] = edges
        fields["version"] = wf.version + 1

        updated = await self.store.update_workflow(wf.id, **fields)
        return {
            "id": updated.id,
            "slug": updated.slug,
            "name": updated.name,
            "version": updated.version,
            "message": f'Workflow "{updated.name}" updated successfully.',
        }

    async def _update_step(self, args: UpdateStepArgs) -> Dict[str, Any]:
        wf = await self._owned_by_slug(args.slug)
        nodes = [dict(n) for n in wf.nodes]
        index = next((i for i, n in enumerate(nodes) if n.get("id") == args.node_id), None)
        if index is None:
            raise NotFound(f'Step "{args.node_id}" not found in workflow')

        patched = {
            key: value
            for key, value in (
                ("label", args.label),
                ("description", args.description),
                ("instructions", args.instructions),
            )
            if value
        }
        node = nodes[index]
        node["data"] = {**(node.get("data") or {}), **patched}
        await self.store.update_workflow(wf.id, nodes=nodes)

        label = node["data"].get("label") or args.node_id
        return {
            "node_id": args.node_id,
            "slug": args.slug,
            "label": label,
            "patched": patched,
            "message": f'Step "{label}" updated successfully.',
        }

    async def _get_categories(self, args: NoArgs) -> Dict[str, Any]:
        categories = await self.store.list_categories()
        return {
            "categories": [
                {
                    "id": c.id,
                    "name": c.name,
                    "slug": c.slug,
                    "description": c.description,
                    "workflow_count": c.workflow_count,
                }
                for c in categories
            ]
        }

    async def _get_favorites(self, args: NoArgs) -> Dict[str, Any]:
        favorites = await self.store.list_favorites(self.user_id)
        return {
            "favorites": [
                {
                    "id": wf.id,
                    "name": wf.name,
                    "slug": wf.slug,
                    "description": wf.description,
                    "stats": _stats(wf),
                }
                for wf in favorites
            ],
            "total": len(favorites),
        }

    async def _toggle_favorite(self, args: WorkflowIdArgs) -> Dict[str, Any]:
        wf = await self.store.get_workflow(args.workflow_id)
        if wf is None:
            raise NotFound("Workflow not found")
        if await self.store.is_favorited(self.user_id, wf.id):
            await self.store.remove_favorite(self.user_id, wf.id)
            favorited = False
        else:
            await self.store.add_favorite(self.user_id, wf.id)
            favorited = True
        refreshed = await self.store.get_workflow(wf.id)
        return {
            "workflow_id": wf.id,
            "favorited": favorited,
            "favorites_count": refreshed.favorites_count if refreshed else 0,
            "message": f'{"Added" if favorited else "Removed"} "{wf.name}" '
            f'{"to" if favorited else "from"} favorites.',
        }

    async def _get_workflow_progress(self, args: WorkflowIdArgs) -> Dict[str, Any]:
        wf = await self._owned(
            args.workflow_id, "Only the workflow owner can track step progress"
        )
        planner = await self._planner(wf)
        graph = planner.graph
        results = {
            r.node_id: r for r in await self.store.list_step_results(self.user_id, wf.id)
        }

        warning = None
        try:
            order: Optional[list] = planner.topological_order()
            groups: Optional[list] = planner.parallel_groups()
        except CyclicWorkflow as exc:
            order = groups = None
            warning = str(exc)

        progress = {
            "workflow_id": wf.id,
            "workflow_name": wf.name,
            "total_steps": len(graph),
            "completed_steps": len(planner.completed),
            "progress": planner.progress(),
            "topological_order": order,
            "parallel_groups": groups,
            "next_steps": [
                {"node_id": sid, "label": graph.label_of(sid)}
                for sid in planner.ready_frontier()
            ],
            "steps": [
                {
                    "node_id": sid,
                    "label": graph.label_of(sid),
                    "completed": sid in planner.completed,
                    "completed_at": (
                        results[sid].completed_at.isoformat()
                        if sid in results and results[sid].completed_at
                        else None
                    ),
                    "has_result": bool(sid in results and results[sid].result),
                }
                for sid in graph.all_step_ids()
            ],
        }
        if warning:
            progress["warning"] = warning
        return progress

    async def _save_step_result(self, args: SaveStepResultArgs) -> Dict[str, Any]:
        wf = await self._owned(
            args.workflow_id, "Only the workflow owner can save step results"
        )
        graph = WorkflowGraph.from_payload(wf.nodes, wf.edges, strict=False)
        if args.node_id not in graph:
            raise NotFound(f'Step "{args.node_id}" not found in workflow')

        record = await self.store.upsert_step_result(
            self.user_id, wf.id, args.node_id, result=args.result, completed=args.completed
        )
        label = graph.label_of(args.node_id)
        return {
            "workflow_id": wf.id,
            "node_id": args.node_id,
            "label": label,
            "completed": record.completed,
            "completed_at": record.completed_at.isoformat() if record.completed_at else None,
            "message": f'Result for step "{label}" saved.',
        }

    async def _get_step_context(self, args: StepArgs) -> Dict[str, Any]:
        wf = await self._owned(
            args.workflow_id, "Only the workflow owner can execute steps"
        )
        graph = WorkflowGraph.from_payload(wf.nodes, wf.edges, strict=False)
        step = graph.get_step(args.node_id)
        if step is None:
            raise NotFound(f'Step "{args.node_id}" not found in workflow')

        results = {
            r.node_id: r for r in await self.store.list_step_results(self.user_id, wf.id)
        }
        upstream = []
        for uid in graph.upstream_of(step.id):
            up = graph.get_step(uid)
            res = results.get(uid)
            upstream.append(
                {
                    "node_id": uid,
                    "label": graph.label_of(uid),
                    "description": up.description if up else "",
                    "result": res.result if res else None,
                    "completed": bool(res and res.completed),
                }
            )
        current = results.get(step.id)
        return {
            "workflow_id": wf.id,
            "workflow_name": wf.name,
            "node_id": step.id,
            "label": step.display_label,
            "description": step.description,
            "instructions": step.instructions,
            "current_result": current.result if current else None,
            "completed": bool(current and current.completed),
            "upstream_steps": upstream,
            "all_upstream_completed": all(u["completed"] for u in upstream),
        }

    async def _get_execution_plan(self, args: WorkflowIdArgs) -> Dict[str, Any]:
        wf = await self._owned(
            args.workflow_id, "Only the workflow owner can plan execution"
        )
        planner = await self._planner(wf)
        plan = planner.describe()
        return {"workflow_id": wf.id, "workflow_name": wf.name, **plan.model_dump()}
