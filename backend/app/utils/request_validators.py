"""
Declarative extraction of request fields for the workflow and batch routes.

Every failure raises ValueError, which ``handle_route_errors`` turns into a
400 response carrying the message:

    data = extract_json_fields(
        RequestField('items', required=True, validator=non_empty_list),
        RequestField('aspectRatio', aliases=('aspect_ratio',), default='9:16',
                     validator=one_of(ASPECT_RATIO_SIZES)),
    )
"""

import logging
from typing import Any, Callable, Container, Dict, Iterable, Optional, Tuple
from flask import request

logger = logging.getLogger(__name__)

_MISSING = object()


class RequestField:
    """
    One named value read from a JSON body or the query string.

    ``aliases`` are alternative spellings tried in order when ``name`` is
    absent (camelCase clients and snake_case scripts both post here).
    ``transform`` runs before ``validator``; a value that stays ``None``
    skips both.
    """

    def __init__(
        self,
        name: str,
        *,
        aliases: Tuple[str, ...] = (),
        required: bool = False,
        default: Any = None,
        transform: Optional[Callable[[Any], Any]] = None,
        validator: Optional[Callable[[Any], bool]] = None,
        error_message: Optional[str] = None
    ):
        self.name = name
        self.aliases = aliases
        self.required = required
        self.default = default
        self.transform = transform
        self.validator = validator
        self.error_message = error_message or f"No {name} provided"

    def lookup(self, source: Dict[str, Any]) -> Any:
        for key in (self.name, *self.aliases):
            value = source.get(key, _MISSING)
            if value is not _MISSING:
                return value
        return self.default

    def resolve(self, source: Dict[str, Any]) -> Any:
        value = self.lookup(source)

        if self.required and _is_blank(value):
            raise ValueError(self.error_message)
        if value is None:
            return None

        if self.transform is not None:
            try:
                value = self.transform(value)
            except (TypeError, ValueError) as e:
                logger.warning("Field '%s' could not be converted: %s", self.name, e)
                raise ValueError(f"Invalid format for {self.name}") from e

        if self.validator is not None and not _passes(self.validator, value):
            raise ValueError(f"Invalid {self.name}")
        return value


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, dict)):
        return not value
    return False


def _passes(validator: Callable[[Any], bool], value: Any) -> bool:
    # Comparisons against the wrong type ("abc" > 0) count as invalid
    try:
        return bool(validator(value))
    except TypeError:
        return False


def _resolve_all(source: Dict[str, Any], fields: Iterable[RequestField]) -> Dict[str, Any]:
    return {field.name: field.resolve(source) for field in fields}


def extract_json_fields(*fields: RequestField) -> Dict[str, Any]:
    """Resolve ``fields`` from the JSON body; a missing or non-object body reads as ``{}``."""
    body = request.get_json(silent=True)
    return _resolve_all(body if isinstance(body, dict) else {}, fields)


def extract_query_params(*fields: RequestField) -> Dict[str, Any]:
    return _resolve_all(request.args.to_dict(), fields)


# Validators

def non_empty_list(value: Any) -> bool:
    return isinstance(value, list) and len(value) > 0


def non_empty_dict(value: Any) -> bool:
    return isinstance(value, dict) and len(value) > 0


def is_dict(value: Any) -> bool:
    return isinstance(value, dict)


def non_empty_string(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def one_of(options: Container) -> Callable[[Any], bool]:
    """Validator factory: value must be a member of ``options``."""
    return lambda value: value in options


def in_range(low: float, high: float) -> Callable[[Any], bool]:
    """Validator factory: ``low < value <= high``."""
    return lambda value: low < value <= high


# Transformers

def to_int(value: Any) -> int:
    if isinstance(value, bool):
        raise TypeError("booleans are not integers")
    return int(value)


def to_float(value: Any) -> float:
    if isinstance(value, bool):
        raise TypeError("booleans are not numbers")
    return float(value)
