"""
Node implementations for the workflow runtime.

Every kind shares one contract: ``execute(ctx)`` reads ``self.inputs``,
writes ``self.outputs`` and returns them. Expected failures (provider
errors, unparseable responses, missing services) are reported through
``outputs['success']`` and ``outputs['error']`` instead of being raised.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Type

from providers.base import PollPolicy, ProviderError, Sizing
from providers.lifecycle import TaskLifecycle

from .conditions import evaluate_condition
from .constants import LOOP_INDEX, LOOP_ITEM, LOOP_TOTAL, NodeKind
from .context import ExecutionContext
from .node_configs import (
    ImageGeneratorConfig,
    InputConfig,
    LoopConfig,
    OutputConfig,
    PromptBuilderConfig,
    PromptConfig,
    StyleDetectorConfig,
    TextSplitterConfig,
)
from .prompting import (
    ParseError,
    build_scene_prompt,
    detect_style,
    fill_placeholders,
    parse_json_response,
    split_into_scenes,
)
from .schema import NodeDef, WorkflowValidationError

logger = logging.getLogger(__name__)


class BaseNode:
    """Runtime instance of one node definition, private to a single run."""

    kind: NodeKind
    config_class: Type = None

    def __init__(self, definition: NodeDef):
        self.definition = definition
        self.config = self.config_class.from_dict(definition.id, definition.config)
        self.inputs: Dict[str, Any] = {}
        self.outputs: Dict[str, Any] = {}

    @property
    def id(self) -> str:
        return self.definition.id

    def set_input(self, name: str, value: Any) -> None:
        self.inputs[name] = value

    def reset(self) -> None:
        self.inputs = {}
        self.outputs = {}

    async def execute(self, ctx: ExecutionContext) -> Dict[str, Any]:
        raise NotImplementedError

    def _fail(self, message: str, **extra: Any) -> Dict[str, Any]:
        logger.warning("%s node %s failed: %s", self.kind.value, self.id, message)
        self.outputs.update(extra)
        self.outputs['success'] = False
        self.outputs['error'] = message
        return self.outputs

    def _text_input(self, *names: str) -> str:
        for name in names:
            value = self.inputs.get(name)
            if value is not None:
                return value if isinstance(value, str) else str(value)
        return ''


class InputNode(BaseNode):
    kind = NodeKind.INPUT
    config_class = InputConfig

    def seed(self, initial_inputs: Dict[str, Any]) -> None:
        """Bind caller inputs; raises WorkflowValidationError for a missing required key."""
        key = self.config.key
        if self.config.required and key and key not in initial_inputs:
            raise WorkflowValidationError(f"Missing required input '{key}' (node {self.id})")

        for name, value in initial_inputs.items():
            self.set_input(name, value)

        if key and key in initial_inputs:
            value = initial_inputs[key]
        elif self.config.value is not None:
            value = self.config.value
        elif len(initial_inputs) == 1:
            value = next(iter(initial_inputs.values()))
        else:
            value = self.inputs.get('value')
        self.set_input('value', value)

    async def execute(self, ctx: ExecutionContext) -> Dict[str, Any]:
        self.outputs = dict(self.inputs)
        return self.outputs


class TextSplitterNode(BaseNode):
    kind = NodeKind.TEXT_SPLITTER
    config_class = TextSplitterConfig

    async def execute(self, ctx: ExecutionContext) -> Dict[str, Any]:
        text = self._text_input('text', 'value')
        clean_text, scenes = split_into_scenes(
            text,
            self.config.sentences_per_scene,
            self.config.max_scenes,
        )
        self.outputs = {
            'scenes': scenes,
            'cleanText': clean_text,
            'sceneCount': len(scenes),
        }
        return self.outputs


class StyleDetectorNode(BaseNode):
    kind = NodeKind.STYLE_DETECTOR
    config_class = StyleDetectorConfig

    async def execute(self, ctx: ExecutionContext) -> Dict[str, Any]:
        style, matched = detect_style(
            self._text_input('text', 'value', 'item'),
            self.config.rules,
            self.config.default_style,
        )
        self.outputs = {'style': style, 'matchedRule': matched}
        return self.outputs


class PromptBuilderNode(BaseNode):
    kind = NodeKind.PROMPT_BUILDER
    config_class = PromptBuilderConfig

    def _first_input(self, *names: str, default: Any = None) -> Any:
        for name in names:
            if self.inputs.get(name) is not None:
                return self.inputs[name]
        return default

    async def execute(self, ctx: ExecutionContext) -> Dict[str, Any]:
        scene = self._first_input('scene', 'item', default={})
        if isinstance(scene, str):
            scene = {'text': scene}
        index = int(self._first_input('sceneIndex', 'index', default=0))
        total = int(self._first_input('totalScenes', 'total', default=1))
        style = self.inputs.get('style') or self.config.default_style

        prompt = build_scene_prompt(self.config, scene.get('text', ''), style, index, total)
        self.outputs = {'prompt': prompt, 'scene': scene}
        return self.outputs


class PromptNode(BaseNode):
    """LLM call with ``{key}`` substitution from the node's inputs."""

    kind = NodeKind.PROMPT
    config_class = PromptConfig

    async def execute(self, ctx: ExecutionContext) -> Dict[str, Any]:
        provider = ctx.services.text_provider
        if provider is None:
            return self._fail("No text generation provider configured")

        user_prompt = fill_placeholders(self.config.user_prompt, self.inputs)
        try:
            response = await provider.generate(
                user_prompt,
                system=self.config.system_prompt,
                model=self.config.provider_model,
                max_tokens=self.config.max_tokens,
            )
        except ProviderError as exc:
            return self._fail(str(exc))

        content = response.content
        if self.config.output_format == 'json':
            try:
                output = parse_json_response(content)
            except ParseError as exc:
                return self._fail(str(exc), raw=exc.raw)
        else:
            output = content

        self.outputs = {'output': output, 'raw': content, 'success': True}
        return self.outputs


class ImageGeneratorNode(BaseNode):
    kind = NodeKind.IMAGE_GENERATOR
    config_class = ImageGeneratorConfig

    async def execute(self, ctx: ExecutionContext) -> Dict[str, Any]:
        prompt = self._text_input('prompt', 'value')
        if not prompt.strip():
            return self._fail("No prompt provided")

        services = ctx.services
        if services.image_provider is None:
            return self._fail("No image provider configured")

        width, height = self.config.resolve_size()
        extras = {'model': self.config.model, **self.config.extras}
        lifecycle = TaskLifecycle(
            services.image_provider,
            asset_store=services.asset_store,
            policy=services.poll_policy or PollPolicy(),
        )
        outcome = await lifecycle.run(
            prompt,
            Sizing(width, height, self.config.aspect_ratio),
            extras,
        )
        self.outputs = outcome.to_node_outputs()
        if not outcome.success:
            logger.warning("Image generation in node %s failed: %s", self.id, outcome.error)
        return self.outputs


class LoopNode(BaseNode):
    """
    Runs its children once per item, in item order.

    Children are built once and reset before each item. Each child is bound
    with the loop's pass-through inputs, then the merged outputs of the
    children before it in this iteration, then ``item``/``index``/``total``.
    """

    kind = NodeKind.LOOP
    config_class = LoopConfig

    def __init__(self, definition: NodeDef, children: List[BaseNode]):
        super().__init__(definition)
        self.children = children

    async def execute(self, ctx: ExecutionContext) -> Dict[str, Any]:
        items = self.inputs.get(self.config.items_input)
        if items is None:
            items = []
        if not isinstance(items, (list, tuple)):
            return self._fail(f"Loop items must be a list, got {type(items).__name__}")

        passthrough = {
            name: value for name, value in self.inputs.items()
            if name != self.config.items_input
        }
        total = len(items)
        results: List[Dict[str, Any]] = []

        for index, item in enumerate(items):
            results.append(await self._run_item(ctx, passthrough, item, index, total))
            if ctx.on_progress:
                ctx.on_progress((index + 1) / total)

        failures = sum(1 for result in results if result.get('success') is False)
        self.outputs = {
            'results': results,
            'successCount': total - failures,
            'failureCount': failures,
        }
        return self.outputs

    async def _run_item(
        self,
        ctx: ExecutionContext,
        passthrough: Dict[str, Any],
        item: Any,
        index: int,
        total: int,
    ) -> Dict[str, Any]:
        merged: Dict[str, Any] = {}
        first_error: Optional[str] = None

        for child in self.children:
            child.reset()
            for name, value in passthrough.items():
                child.set_input(name, value)
            for name, value in merged.items():
                child.set_input(name, value)
            child.set_input(LOOP_ITEM, item)
            child.set_input(LOOP_INDEX, index)
            child.set_input(LOOP_TOTAL, total)

            scope = ctx.condition_scope()
            scope.update(child.inputs)
            if not evaluate_condition(child.definition.condition, scope):
                logger.debug("Loop %s item %d: skipping child %s", self.id, index, child.id)
                continue

            try:
                outputs = await child.execute(ctx)
            except Exception as exc:
                logger.exception("Loop %s item %d: child %s raised", self.id, index, child.id)
                outputs = {'success': False, 'error': str(exc) or type(exc).__name__}

            if outputs.get('success') is False and first_error is None:
                first_error = outputs.get('error') or f"Child {child.id} failed"
            merged.update(outputs)

        if first_error is not None:
            merged['success'] = False
            merged['error'] = first_error
        return merged


class OutputNode(BaseNode):
    kind = NodeKind.OUTPUT
    config_class = OutputConfig

    async def execute(self, ctx: ExecutionContext) -> Dict[str, Any]:
        if self.config.fields is None:
            self.outputs = dict(self.inputs)
        else:
            self.outputs = {
                name: self.inputs[name] for name in self.config.fields if name in self.inputs
            }
        return self.outputs


class NodeRegistry:
    """
    Closed mapping from node kind to implementation.

    Every ``NodeKind`` must have exactly one class; ``create`` builds loop
    children recursively so a loop owns its child instances.
    """

    NODE_CLASSES: Dict[NodeKind, Type[BaseNode]] = {
        cls.kind: cls
        for cls in (
            InputNode,
            TextSplitterNode,
            StyleDetectorNode,
            PromptBuilderNode,
            PromptNode,
            ImageGeneratorNode,
            LoopNode,
            OutputNode,
        )
    }

    def __init__(self):
        missing = set(NodeKind) - set(self.NODE_CLASSES)
        if missing:
            raise RuntimeError(f"No node class registered for: {sorted(k.value for k in missing)}")

    def create(self, definition: NodeDef) -> BaseNode:
        kind = definition.kind
        node_class = self.NODE_CLASSES[kind]
        if kind == NodeKind.LOOP:
            children = [self.create(child) for child in definition.children]
            return LoopNode(definition, children)
        return node_class(definition)
