"""
Text handling shared by the script-oriented node kinds.

Covers script cleanup and scene splitting, rule-based style detection,
deterministic image prompt assembly, ``{key}`` placeholder substitution and
tolerant JSON extraction from LLM responses.
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict, List, Mapping, Optional, Pattern, Sequence, Tuple

from .node_configs import DEFAULT_STYLE, DEFAULT_STYLE_TEMPLATES, PromptBuilderConfig

_HEADING_RE = re.compile(r'^[ \t]*###.*$', re.MULTILINE)
_EMPHASIS_ASIDE_RE = re.compile(r'\*[^*]*\*')
_BRACKET_ASIDE_RE = re.compile(r'\[.*?\]')
_EXCESS_NEWLINES_RE = re.compile(r'\n{3,}')
_WHITESPACE_RE = re.compile(r'\s+')
_SENTENCE_RE = re.compile(r'[^.!?]+(?:[.!?]+|$)')

_STOP_WORDS_RE = re.compile(r'\b(the|a|an|and|or|but|in|on|at|to|for|of|with|by)\b')
_PLACEHOLDER_RE = re.compile(r'\{([^{}]+)\}')
_JSON_FENCE_RE = re.compile(r'```(?:json)?\s*([\s\S]*?)\s*```')


class ParseError(ValueError):
    """An LLM response could not be parsed into the requested format."""

    def __init__(self, message: str, raw: str):
        super().__init__(message)
        self.raw = raw


def clean_script(text: str) -> str:
    """Strip headings and annotation asides, then normalise whitespace."""
    cleaned = _HEADING_RE.sub('', text or '')
    cleaned = _EMPHASIS_ASIDE_RE.sub('', cleaned)
    cleaned = _BRACKET_ASIDE_RE.sub('', cleaned)
    cleaned = _EXCESS_NEWLINES_RE.sub('\n\n', cleaned)
    return _WHITESPACE_RE.sub(' ', cleaned).strip()


def split_sentences(text: str) -> List[str]:
    """Split on terminal punctuation; text without any is a single unit."""
    sentences = [match.group(0).strip() for match in _SENTENCE_RE.finditer(text)]
    return [sentence for sentence in sentences if sentence]


def split_into_scenes(
    text: str,
    sentences_per_scene: int,
    max_scenes: int,
) -> Tuple[str, List[Dict[str, Any]]]:
    """
    Group sentence units into scenes.

    Returns the cleaned text and at most ``max_scenes`` scenes of
    ``sentences_per_scene`` units each. Joining the scene texts with a space
    and splitting again yields the same scenes.
    """
    clean_text = clean_script(text)
    sentences = split_sentences(clean_text)[:max_scenes * sentences_per_scene]

    scenes: List[Dict[str, Any]] = []
    for start in range(0, len(sentences), sentences_per_scene):
        scene_text = ' '.join(sentences[start:start + sentences_per_scene]).strip()
        if scene_text:
            scenes.append({'index': len(scenes), 'text': scene_text})
    return clean_text, scenes


def detect_style(
    text: str,
    rules: Sequence[Tuple[str, Pattern]],
    default_style: str,
) -> Tuple[str, Optional[str]]:
    """First rule whose pattern matches the lower-cased text wins."""
    lowered = (text or '').lower()
    for style, pattern in rules:
        if pattern.search(lowered):
            return style, pattern.pattern
    return default_style, None


def extract_concept(text: str, max_length: int = 80) -> str:
    stripped = _STOP_WORDS_RE.sub('', (text or '').lower())
    stripped = _WHITESPACE_RE.sub(' ', stripped).strip()
    return stripped[:max_length] or (text or '')[:max_length]


def positional_context(config: PromptBuilderConfig, index: int, total: int) -> str:
    if index == 0:
        return config.opening_context
    if index == total - 1:
        return config.closing_context
    return f'Scene {index + 1} of {total}. '


def build_scene_prompt(
    config: PromptBuilderConfig,
    scene_text: str,
    style: Optional[str],
    index: int,
    total: int,
) -> str:
    templates = config.style_templates
    style_template = (
        templates.get(style or '')
        or templates.get(config.default_style)
        or DEFAULT_STYLE_TEMPLATES[DEFAULT_STYLE]
    )
    concept = extract_concept(scene_text, config.concept_max_length)

    prompt = f'{config.foundation} {concept}. {style_template}. '
    if config.text_overlay and config.overlay_prompt and scene_text:
        prompt += f" {config.overlay_prompt.replace('{text}', scene_text)}. "
    prompt += positional_context(config, index, total)
    prompt += config.technical
    return prompt


def _render_value(value: Any) -> str:
    if value is None:
        return ''
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def fill_placeholders(template: str, values: Mapping[str, Any]) -> str:
    """Replace ``{key}`` with the matching value; unknown keys are left intact."""

    def replacer(match):
        key = match.group(1)
        if key not in values:
            return match.group(0)
        return _render_value(values[key])

    return _PLACEHOLDER_RE.sub(replacer, template or '')


def parse_json_response(content: str) -> Any:
    """Parse JSON directly, or from the first markdown code fence."""
    try:
        return json.loads(content)
    except (TypeError, ValueError):
        pass

    match = _JSON_FENCE_RE.search(content or '')
    if match:
        try:
            return json.loads(match.group(1))
        except ValueError as exc:
            raise ParseError(f"Failed to parse fenced JSON output: {exc}", raw=content) from None

    raise ParseError("Failed to parse JSON output", raw=content)
