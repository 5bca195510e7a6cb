"""
Build execution plans for validated graphs.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List

from .schema import EdgeDef, StructuralError, ValidatedGraph

_UNVISITED = 0
_IN_PROGRESS = 1
_DONE = 2


@dataclass
class ExecutionPlan:
    ordered_nodes: List[str]
    upstream: Dict[str, List[EdgeDef]]


class PlanBuilder:
    """Turns a validated graph into a dependency-respecting execution order."""

    def build(self, graph: ValidatedGraph) -> ExecutionPlan:
        ordered = self._dependency_order(graph)
        return ExecutionPlan(
            ordered_nodes=ordered,
            upstream={node_id: list(edges) for node_id, edges in graph.incoming.items()},
        )

    @staticmethod
    def _dependency_order(graph: ValidatedGraph) -> List[str]:
        """
        Post-order depth-first visit from every node in definition order.

        A node is appended only after every node with an edge into it, and
        exactly once however many dependants it has. Reaching a node that is
        still in progress means the walk has come back round a cycle.
        """
        colour: Dict[str, int] = {node_id: _UNVISITED for node_id in graph.nodes_by_id}
        ordered: List[str] = []
        path: List[str] = []

        def visit(node_id: str) -> None:
            state = colour[node_id]
            if state == _DONE:
                return
            if state == _IN_PROGRESS:
                cycle = path[path.index(node_id):] + [node_id]
                raise StructuralError(f"Graph contains a cycle: {' -> '.join(reversed(cycle))}")

            colour[node_id] = _IN_PROGRESS
            path.append(node_id)
            for edge in graph.incoming.get(node_id, []):
                visit(edge.source)
            path.pop()
            colour[node_id] = _DONE
            ordered.append(node_id)

        for node_id in graph.nodes_by_id:
            visit(node_id)
        return ordered
