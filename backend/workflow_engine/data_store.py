"""
Simple in-memory store for node outputs during a workflow run.
"""

from typing import Any, Dict, Iterable, List


class GraphDataStore:
    """
    Stores node outputs keyed by node id, in the order nodes produced them.

    Skipped nodes are recorded separately so the run summary can tell an
    empty output apart from a node that never ran.
    """

    def __init__(self):
        self._outputs: Dict[str, Dict[str, Any]] = {}
        self._order: List[str] = []
        self.skipped: List[str] = []

    def set_outputs(self, node_id: str, values: Dict[str, Any]) -> None:
        if node_id not in self._outputs:
            self._order.append(node_id)
        self._outputs[node_id] = dict(values)

    def get_outputs(self, node_id: str) -> Dict[str, Any]:
        return self._outputs.get(node_id, {})

    def mark_skipped(self, node_id: str) -> None:
        self.skipped.append(node_id)

    def produced(self) -> Iterable[str]:
        return list(self._order)

    def flatten(self) -> Dict[str, Any]:
        """
        Union of every output produced so far.

        Later nodes win on plain keys; ``node_id.key`` entries keep each
        value addressable regardless of collisions.
        """
        merged: Dict[str, Any] = {}
        for node_id in self._order:
            for key, value in self._outputs[node_id].items():
                merged[key] = value
                merged[f'{node_id}.{key}'] = value
        return merged
