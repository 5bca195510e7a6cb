"""
Shared execution context passed to node instances.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional

from .data_store import GraphDataStore

if TYPE_CHECKING:
    from asset_store import AssetStore
    from providers.base import PollPolicy, TaskProvider
    from providers.llm import TextGenerationProvider


ProgressCallback = Callable[[float], None]


@dataclass
class WorkflowServices:
    """
    Collaborators injected into node instances.

    Any of them may be missing; a node that needs an absent service reports
    a failure through its outputs rather than raising.
    """

    image_provider: Optional['TaskProvider'] = None
    text_provider: Optional['TextGenerationProvider'] = None
    asset_store: Optional['AssetStore'] = None
    poll_policy: Optional['PollPolicy'] = None


@dataclass
class ExecutionContext:
    initial_inputs: Dict[str, Any]
    services: WorkflowServices
    on_progress: Optional[ProgressCallback] = None
    buffers: GraphDataStore = field(default_factory=GraphDataStore)

    def condition_scope(self) -> Dict[str, Any]:
        """Caller inputs overlaid with every node output produced so far."""
        scope = dict(self.initial_inputs)
        scope.update(self.buffers.flatten())
        return scope
