"""
Typed configuration for each node kind.

Stored graphs carry free-form ``config`` objects with camelCase keys; every
kind parses its object once, at build time, into one of the dataclasses
below so that defaults live in a single place.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Pattern, Tuple

from .schema import StructuralError

DEFAULT_STYLE = 'modern-minimal'

DEFAULT_STYLE_RULES: List[Tuple[str, str]] = [
    ('3d-tech', r'software|app|platform|automation|ai|data|cloud|future|innovation|cutting-edge'),
    ('professional-minimal', r'money|invest|business|revenue|profit|growth'),
    ('organic-warm', r'health|wellness|fitness|body|mind|energy'),
    ('friendly-cartoon', r'learn|teach|education|student|course|skill'),
    ('bold-dynamic', r'create|design|art|music|video|content'),
]

DEFAULT_STYLE_TEMPLATES: Dict[str, str] = {
    'modern-minimal': 'Clean modern minimal design, soft gradients, geometric shapes, pastel colors',
    '3d-tech': 'Futuristic 3D tech aesthetic, glowing elements, holographic effects, neon accents',
    'professional-minimal': (
        'Professional minimal design, charts and graphs, data visualization, corporate colors'
    ),
    'organic-warm': 'Warm organic style, natural colors, flowing shapes, soft textures',
    'friendly-cartoon': 'Friendly cartoon style, bold colors, simple shapes, playful, rounded edges',
    'bold-dynamic': 'Bold dynamic motion graphics, vibrant colors, energetic, abstract shapes',
}

ASPECT_RATIO_SIZES: Dict[str, Tuple[int, int]] = {
    '16:9': (1920, 1080),
    '9:16': (1080, 1920),
    '1:1': (1080, 1080),
    '4:3': (1440, 1080),
    '3:4': (1080, 1440),
}
DEFAULT_IMAGE_SIZE = (1920, 1080)


def _positive_int(node_id: str, config: Dict[str, Any], key: str, default: int) -> int:
    raw = config.get(key, default)
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise StructuralError(f"Node {node_id}: {key} must be an integer, got {raw!r}") from None
    if value <= 0:
        raise StructuralError(f"Node {node_id}: {key} must be positive, got {value}")
    return value


@dataclass(frozen=True)
class InputConfig:
    key: Optional[str] = None
    value: Any = None
    required: bool = False

    @classmethod
    def from_dict(cls, node_id: str, config: Dict[str, Any]) -> 'InputConfig':
        return cls(
            key=config.get('key'),
            value=config.get('value'),
            required=bool(config.get('required', False)),
        )


@dataclass(frozen=True)
class TextSplitterConfig:
    sentences_per_scene: int = 2
    max_scenes: int = 10

    @classmethod
    def from_dict(cls, node_id: str, config: Dict[str, Any]) -> 'TextSplitterConfig':
        return cls(
            sentences_per_scene=_positive_int(node_id, config, 'sentencesPerScene', 2),
            max_scenes=_positive_int(node_id, config, 'maxScenes', 10),
        )


@dataclass(frozen=True)
class StyleDetectorConfig:
    """Rules are evaluated in order; the first match wins."""

    rules: Tuple[Tuple[str, Pattern], ...] = ()
    default_style: str = DEFAULT_STYLE

    @classmethod
    def from_dict(cls, node_id: str, config: Dict[str, Any]) -> 'StyleDetectorConfig':
        raw_rules = config.get('rules')
        if raw_rules is None:
            pairs = DEFAULT_STYLE_RULES
        elif isinstance(raw_rules, dict):
            pairs = list(raw_rules.items())
        else:
            pairs = [tuple(rule) for rule in raw_rules]

        compiled = []
        for pair in pairs:
            if len(pair) != 2:
                raise StructuralError(f"Node {node_id}: style rules must be [style, pattern] pairs")
            style, pattern = pair
            try:
                compiled.append((str(style), re.compile(pattern)))
            except re.error as exc:
                raise StructuralError(
                    f"Node {node_id}: invalid pattern for style {style!r}: {exc}"
                ) from None

        return cls(
            rules=tuple(compiled),
            default_style=config.get('defaultStyle') or DEFAULT_STYLE,
        )


@dataclass(frozen=True)
class PromptBuilderConfig:
    foundation: str = 'Explainer video frame.'
    style_templates: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_STYLE_TEMPLATES))
    default_style: str = DEFAULT_STYLE
    text_overlay: bool = False
    overlay_prompt: Optional[str] = None
    opening_context: str = 'Opening scene, introduction. '
    closing_context: str = 'Final scene, conclusion. '
    technical: str = '16:9 aspect ratio, high quality illustration.'
    concept_max_length: int = 80

    @classmethod
    def from_dict(cls, node_id: str, config: Dict[str, Any]) -> 'PromptBuilderConfig':
        templates = dict(DEFAULT_STYLE_TEMPLATES)
        templates.update(config.get('styleTemplates') or {})
        return cls(
            foundation=config.get('foundation') or cls.foundation,
            style_templates=templates,
            default_style=config.get('defaultStyle') or DEFAULT_STYLE,
            text_overlay=bool(config.get('textOverlay', False)),
            overlay_prompt=config.get('overlayPrompt'),
            opening_context=config.get('openingContext') or cls.opening_context,
            closing_context=config.get('closingContext') or cls.closing_context,
            technical=config.get('technical') or cls.technical,
            concept_max_length=_positive_int(node_id, config, 'conceptMaxLength', 80),
        )


@dataclass(frozen=True)
class PromptConfig:
    model: str = 'anthropic/claude-sonnet-4-5'
    system_prompt: str = ''
    user_prompt: str = ''
    output_format: str = 'text'
    max_tokens: int = 2048

    @classmethod
    def from_dict(cls, node_id: str, config: Dict[str, Any]) -> 'PromptConfig':
        output_format = config.get('outputFormat', 'text')
        if output_format not in ('text', 'json'):
            raise StructuralError(
                f"Node {node_id}: outputFormat must be 'text' or 'json', got {output_format!r}"
            )
        return cls(
            model=config.get('model') or cls.model,
            system_prompt=config.get('systemPrompt', ''),
            user_prompt=config.get('userPrompt', ''),
            output_format=output_format,
            max_tokens=_positive_int(node_id, config, 'maxTokens', 2048),
        )

    @property
    def provider_model(self) -> str:
        """Model name without a ``vendor/`` routing prefix."""
        return self.model.split('/', 1)[1] if '/' in self.model else self.model


@dataclass(frozen=True)
class ImageGeneratorConfig:
    width: Optional[int] = None
    height: Optional[int] = None
    aspect_ratio: Optional[str] = None
    model: str = 'fal-ai/flux-lora'
    extras: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, node_id: str, config: Dict[str, Any]) -> 'ImageGeneratorConfig':
        width = config.get('width')
        height = config.get('height')
        return cls(
            width=_positive_int(node_id, config, 'width', 1) if width else None,
            height=_positive_int(node_id, config, 'height', 1) if height else None,
            aspect_ratio=config.get('aspectRatio'),
            model=config.get('model') or cls.model,
            extras=dict(config.get('extras') or {}),
        )

    def resolve_size(self) -> Tuple[int, int]:
        if self.width and self.height:
            return self.width, self.height
        if self.aspect_ratio:
            return ASPECT_RATIO_SIZES.get(self.aspect_ratio, DEFAULT_IMAGE_SIZE)
        return DEFAULT_IMAGE_SIZE


@dataclass(frozen=True)
class LoopConfig:
    items_input: str = 'items'

    @classmethod
    def from_dict(cls, node_id: str, config: Dict[str, Any]) -> 'LoopConfig':
        return cls(items_input=config.get('itemsInput') or 'items')


@dataclass(frozen=True)
class OutputConfig:
    """``fields`` limits the aggregate to the named inputs; None keeps all."""

    fields: Optional[Tuple[str, ...]] = None

    @classmethod
    def from_dict(cls, node_id: str, config: Dict[str, Any]) -> 'OutputConfig':
        fields = config.get('fields')
        return cls(fields=tuple(fields) if fields else None)
