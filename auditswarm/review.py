"""Human approval of drafted step results."""

from __future__ import annotations

import logging

from .errors import NotAuthorized, NotFound
from .graph import WorkflowGraph
from .persistence import StepResultRecord, WorkflowStore

logger = logging.getLogger(__name__)


async def approve_step(
    store: WorkflowStore,
    user_id: str,
    workflow_id: str,
    node_id: str,
    result: str | None = None,
) -> StepResultRecord:
    """Mark a step completed for ``user_id``, optionally replacing its result.

    This is the only path besides ``save_step_result`` that completes a step.
    The caller must re-plan afterwards before dispatching further steps.
    """
    wf = await store.get_workflow(workflow_id)
    if wf is None:
        raise NotFound("Workflow not found")
    if wf.user_id != user_id:
        raise NotAuthorized("Only the workflow owner can approve step results")
    graph = WorkflowGraph.from_payload(wf.nodes, wf.edges, strict=False)
    if node_id not in graph:
        raise NotFound(f'Step "{node_id}" not found in workflow')

    record = await store.upsert_step_result(
        user_id, workflow_id, node_id, result=result, completed=True
    )
    logger.info(f"Approved step {node_id} of workflow {workflow_id}")
    return record
