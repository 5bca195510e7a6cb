"""
Workflow graph definitions and structural validation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .constants import NodeKind, TOP_LEVEL_ONLY_KINDS


class GraphValidationError(ValueError):
    """Raised when a graph definition or its inputs fail validation."""


class StructuralError(GraphValidationError):
    """Malformed graph: missing node, dangling edge, duplicate id or cycle."""


class WorkflowValidationError(GraphValidationError):
    """Caller-supplied inputs are unusable for this graph."""


@dataclass
class NodeDef:
    id: str
    type: str
    config: Dict[str, Any] = field(default_factory=dict)
    children: List['NodeDef'] = field(default_factory=list)
    condition: Optional[str] = None

    @property
    def kind(self) -> NodeKind:
        return NodeKind.parse(self.type)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> 'NodeDef':
        if not isinstance(raw, dict) or not raw.get('id'):
            raise StructuralError(f"Node definition without an id: {raw!r}")
        return cls(
            id=str(raw['id']),
            type=str(raw.get('type', '')),
            config=dict(raw.get('config') or {}),
            children=[cls.from_dict(child) for child in raw.get('children') or []],
            condition=raw.get('condition'),
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {'id': self.id, 'type': self.type, 'config': self.config}
        if self.children:
            data['children'] = [child.to_dict() for child in self.children]
        if self.condition:
            data['condition'] = self.condition
        return data


@dataclass
class EdgeDef:
    source: str
    target: str
    mapping: Optional[Dict[str, str]] = None
    condition: Optional[str] = None
    source_handle: Optional[str] = None
    target_handle: Optional[str] = None

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> 'EdgeDef':
        source = raw.get('source') or raw.get('from')
        target = raw.get('target') or raw.get('to')
        if not source or not target:
            raise StructuralError(f"Edge must name a source and a target: {raw!r}")
        return cls(
            source=str(source),
            target=str(target),
            mapping=dict(raw['mapping']) if raw.get('mapping') else None,
            condition=raw.get('condition'),
            source_handle=raw.get('sourceHandle'),
            target_handle=raw.get('targetHandle'),
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {'source': self.source, 'target': self.target}
        if self.mapping:
            data['mapping'] = self.mapping
        if self.condition:
            data['condition'] = self.condition
        if self.source_handle:
            data['sourceHandle'] = self.source_handle
        if self.target_handle:
            data['targetHandle'] = self.target_handle
        return data


@dataclass
class WorkflowGraph:
    nodes: List[NodeDef]
    edges: List[EdgeDef]

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> 'WorkflowGraph':
        """Build a graph from its stored JSON document."""
        if not isinstance(raw, dict):
            raise StructuralError("Workflow definition must be an object with nodes and edges")
        nodes = raw.get('nodes')
        edges = raw.get('edges', raw.get('connections'))
        if nodes is None or edges is None:
            raise StructuralError("Workflow definition requires 'nodes' and 'edges'")
        return cls(
            nodes=[NodeDef.from_dict(node) for node in nodes],
            edges=[EdgeDef.from_dict(edge) for edge in edges],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'nodes': [node.to_dict() for node in self.nodes],
            'edges': [edge.to_dict() for edge in self.edges],
        }


@dataclass
class ValidatedGraph:
    nodes_by_id: Dict[str, NodeDef]
    edges: List[EdgeDef]
    incoming: Dict[str, List[EdgeDef]]
    input_node_ids: List[str]
    output_node_id: Optional[str]


class GraphValidator:
    """
    Checks the structural invariants of a workflow graph.

    Cycle detection is left to the planner, which walks the dependency
    graph anyway.
    """

    def validate(self, graph: WorkflowGraph) -> ValidatedGraph:
        if not graph.nodes:
            raise StructuralError("Graph contains no nodes")

        nodes_by_id: Dict[str, NodeDef] = {}
        seen_ids: set = set()
        for node in graph.nodes:
            self._check_node(node, seen_ids, nested=False)
            nodes_by_id[node.id] = node

        incoming: Dict[str, List[EdgeDef]] = {node_id: [] for node_id in nodes_by_id}
        for edge in graph.edges:
            if edge.source not in nodes_by_id:
                raise StructuralError(f"Edge references unknown source node: {edge.source}")
            if edge.target not in nodes_by_id:
                raise StructuralError(f"Edge references unknown target node: {edge.target}")
            incoming[edge.target].append(edge)

        input_ids = [n.id for n in graph.nodes if n.kind == NodeKind.INPUT]
        output_ids = [n.id for n in graph.nodes if n.kind == NodeKind.OUTPUT]

        return ValidatedGraph(
            nodes_by_id=nodes_by_id,
            edges=list(graph.edges),
            incoming=incoming,
            input_node_ids=input_ids,
            output_node_id=output_ids[0] if output_ids else None,
        )

    def _check_node(self, node: NodeDef, seen_ids: set, nested: bool) -> None:
        try:
            kind = node.kind
        except ValueError:
            raise StructuralError(f"Unsupported node type: {node.type} (node {node.id})") from None

        if node.id in seen_ids:
            raise StructuralError(f"Duplicate node id: {node.id}")
        seen_ids.add(node.id)

        if nested and kind in TOP_LEVEL_ONLY_KINDS:
            raise StructuralError(f"Node {node.id}: {kind.value} nodes cannot run inside a loop")

        if node.children and kind != NodeKind.LOOP:
            raise StructuralError(f"Node {node.id}: only loop nodes may declare children")

        for child in node.children:
            self._check_node(child, seen_ids, nested=True)
