"""
Condition strings that gate nodes and edges.

The grammar is deliberately tiny and has no boolean composition:

    !name          true when name is absent, falsy or a blank string
    name==value    string equality against the context entry
    name!=value    string inequality against the context entry
    name           true when name is truthy and not a blank string

An empty or missing condition always passes.
"""

import re
from typing import Any, Mapping, Optional

_EQ_RE = re.compile(r'^(.+?)==(.+)$')
_NEQ_RE = re.compile(r'^(.+?)!=(.+)$')


def _is_blank(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip() == ''
    return not value


def _as_comparable(value: Any) -> str:
    if value is None:
        return ''
    if isinstance(value, bool):
        return 'true' if value else 'false'
    return str(value)


def evaluate_condition(condition: Optional[str], context: Mapping[str, Any]) -> bool:
    if not condition or not condition.strip():
        return True

    condition = condition.strip()

    if condition.startswith('!') and not condition.startswith('!='):
        name = condition[1:].strip()
        return _is_blank(context.get(name))

    match = _EQ_RE.match(condition)
    if match:
        name, expected = match.group(1).strip(), match.group(2).strip()
        return _as_comparable(context.get(name)) == expected

    match = _NEQ_RE.match(condition)
    if match:
        name, expected = match.group(1).strip(), match.group(2).strip()
        return _as_comparable(context.get(name)) != expected

    return not _is_blank(context.get(condition))
