"""
Constants shared across the workflow execution runtime.
"""

from enum import Enum


class NodeKind(str, Enum):
    """Closed set of node kinds understood by the executor."""

    INPUT = 'input'
    TEXT_SPLITTER = 'text-splitter'
    STYLE_DETECTOR = 'style-detector'
    PROMPT_BUILDER = 'prompt-builder'
    PROMPT = 'prompt'
    IMAGE_GENERATOR = 'image-generator'
    LOOP = 'loop'
    OUTPUT = 'output'

    @classmethod
    def parse(cls, raw: str) -> 'NodeKind':
        """Resolve a stored type string, accepting legacy aliases."""
        return cls(NODE_KIND_ALIASES.get(raw, raw))


NODE_KIND_ALIASES = {
    'image_gen': NodeKind.IMAGE_GENERATOR.value,
}

# Kinds that may not appear inside a loop body; loops do not nest
TOP_LEVEL_ONLY_KINDS = {NodeKind.INPUT, NodeKind.OUTPUT, NodeKind.LOOP}


class EdgeHandle:
    """
    Default handle names used when an edge carries no explicit mapping.

    An unmapped edge copies the upstream ``output`` value into the downstream
    ``value`` input.
    """

    DEFAULT_SOURCE = 'output'
    DEFAULT_TARGET = 'value'


# Input names a Loop node binds onto its children for every item
LOOP_ITEM = 'item'
LOOP_INDEX = 'index'
LOOP_TOTAL = 'total'
LOOP_ITEMS_INPUT = 'items'
