"""
Sequential workflow executor.

Builds fresh node instances for every run, orders them with the planner,
wires each node's inputs from upstream outputs and runs them one at a time.
Only structural problems and unusable caller inputs abort a run; a node
that fails, expectedly or not, leaves a failure record in its outputs and
the run moves on to downstream nodes.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional, Union

from .conditions import evaluate_condition
from .constants import EdgeHandle
from .context import ExecutionContext, ProgressCallback, WorkflowServices
from .nodes import BaseNode, InputNode, NodeRegistry
from .planner import PlanBuilder
from .schema import EdgeDef, GraphValidator, WorkflowGraph, WorkflowValidationError
from utils.logging_utils import compact_json

logger = logging.getLogger(__name__)


class WorkflowExecutor:
    """
    Runs a workflow graph.

    The executor holds no per-run state, so one instance can serve
    concurrent ``execute`` calls.
    """

    def __init__(
        self,
        graph: Union[WorkflowGraph, Dict[str, Any]],
        services: Optional[WorkflowServices] = None,
        registry: Optional[NodeRegistry] = None,
    ):
        self.graph = graph if isinstance(graph, WorkflowGraph) else WorkflowGraph.from_dict(graph)
        self.services = services or WorkflowServices()
        self.registry = registry or NodeRegistry()
        self.validator = GraphValidator()
        self.planner = PlanBuilder()

    def build_nodes(self) -> Dict[str, BaseNode]:
        return {node_def.id: self.registry.create(node_def) for node_def in self.graph.nodes}

    def check(self, initial_inputs: Optional[Dict[str, Any]] = None) -> None:
        """
        Run every pre-execution check without executing any node.

        Validates structure, acyclicity and node configs, and when
        ``initial_inputs`` is given, the caller inputs as well.
        """
        validated = self.validator.validate(self.graph)
        self.planner.build(validated)
        nodes = self.build_nodes()
        if initial_inputs is None:
            return
        if not isinstance(initial_inputs, dict):
            raise WorkflowValidationError("Workflow inputs must be an object")
        for node_id in validated.input_node_ids:
            node = nodes[node_id]
            if isinstance(node, InputNode):
                node.seed(initial_inputs)

    async def execute(
        self,
        initial_inputs: Optional[Dict[str, Any]] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> Dict[str, Any]:
        """
        Run the graph and return the Output node's outputs.

        Without an Output node, returns every produced output keyed by node
        id. Raises StructuralError or WorkflowValidationError before any node
        runs.
        """
        if initial_inputs is None:
            initial_inputs = {}
        if not isinstance(initial_inputs, dict):
            raise WorkflowValidationError("Workflow inputs must be an object")

        validated = self.validator.validate(self.graph)
        plan = self.planner.build(validated)
        nodes = self.build_nodes()

        for node_id in validated.input_node_ids:
            node = nodes[node_id]
            if isinstance(node, InputNode):
                node.seed(initial_inputs)

        ctx = ExecutionContext(
            initial_inputs=dict(initial_inputs),
            services=self.services,
            on_progress=on_progress,
        )

        started = time.perf_counter()
        logger.info("Executing workflow: %d nodes, order %s", len(nodes), plan.ordered_nodes)

        for node_id in plan.ordered_nodes:
            node = nodes[node_id]
            self._wire_inputs(node, plan.upstream.get(node_id, []), ctx)

            scope = ctx.condition_scope()
            scope.update(node.inputs)
            if not evaluate_condition(node.definition.condition, scope):
                logger.info("Skipping node %s: condition %r is false", node_id, node.definition.condition)
                ctx.buffers.mark_skipped(node_id)
                continue

            outputs = await self._run_node(node, ctx)
            ctx.buffers.set_outputs(node_id, outputs)

        logger.info(
            "Workflow finished in %.2fs (%d skipped)",
            time.perf_counter() - started, len(ctx.buffers.skipped),
        )

        if validated.output_node_id is not None:
            return dict(ctx.buffers.get_outputs(validated.output_node_id))
        return {node_id: ctx.buffers.get_outputs(node_id) for node_id in ctx.buffers.produced()}

    @staticmethod
    def _wire_inputs(node: BaseNode, edges: List[EdgeDef], ctx: ExecutionContext) -> None:
        """Apply every incoming edge before the node runs."""
        for edge in edges:
            if not evaluate_condition(edge.condition, ctx.condition_scope()):
                logger.debug("Edge %s -> %s skipped by condition %r", edge.source, edge.target, edge.condition)
                continue

            source_outputs = ctx.buffers.get_outputs(edge.source)
            if edge.mapping:
                for source_key, target_key in edge.mapping.items():
                    if source_key in source_outputs:
                        node.set_input(target_key, source_outputs[source_key])
            else:
                source_key = edge.source_handle or EdgeHandle.DEFAULT_SOURCE
                if source_key in source_outputs:
                    node.set_input(
                        edge.target_handle or EdgeHandle.DEFAULT_TARGET,
                        source_outputs[source_key],
                    )

    @staticmethod
    async def _run_node(node: BaseNode, ctx: ExecutionContext) -> Dict[str, Any]:
        logger.debug("Executing node %s (%s)", node.id, node.kind.value)
        try:
            outputs = await node.execute(ctx)
        except Exception as exc:
            logger.exception("Node %s (%s) raised", node.id, node.kind.value)
            node.outputs = {'success': False, 'error': str(exc) or type(exc).__name__}
            return node.outputs
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("Node %s outputs: %s", node.id, compact_json(outputs))
        return outputs
