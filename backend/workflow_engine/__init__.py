"""
Declarative workflow engine: graph model, planner, node runtime and executor.
"""

from .conditions import evaluate_condition
from .constants import NodeKind
from .context import ExecutionContext, WorkflowServices
from .executor import WorkflowExecutor
from .nodes import BaseNode, NodeRegistry
from .planner import ExecutionPlan, PlanBuilder
from .prompting import ParseError
from .schema import (
    EdgeDef,
    GraphValidationError,
    GraphValidator,
    NodeDef,
    StructuralError,
    WorkflowGraph,
    WorkflowValidationError,
)

__all__ = [
    'BaseNode',
    'EdgeDef',
    'ExecutionContext',
    'ExecutionPlan',
    'GraphValidationError',
    'GraphValidator',
    'NodeDef',
    'NodeKind',
    'NodeRegistry',
    'ParseError',
    'PlanBuilder',
    'StructuralError',
    'WorkflowExecutor',
    'WorkflowGraph',
    'WorkflowServices',
    'WorkflowValidationError',
    'evaluate_condition',
]
