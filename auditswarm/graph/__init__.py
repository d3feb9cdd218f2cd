"""Workflow graph model and execution planning."""

from .model import Dependency, Step, WorkflowGraph
from .planner import ExecutionPlan, ExecutionPlanner, PlannedStep, StepRef

__all__ = [
    "Dependency",
    "Step",
    "WorkflowGraph",
    "ExecutionPlan",
    "ExecutionPlanner",
    "PlannedStep",
    "StepRef",
]
