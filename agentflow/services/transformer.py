"""Map inbound webhook JSON onto a target shape with dotted-path rules.

A transformer is a mapping ``{"output_field": "dotted.source.path"}``.
Path segments walk object keys; a purely numeric segment also indexes into
lists (``items.0.sku``). Any missing step leaves the output field absent.
"""
from typing import Any, Dict, List, Mapping, Optional

from agentflow.core.errors import InvalidInputError


class _Missing:
    def __repr__(self) -> str:
        return "MISSING"


MISSING = _Missing()


def _walk(value: Any, parts: List[str]) -> Any:
    if not parts:
        return value
    head, rest = parts[0], parts[1:]
    if isinstance(value, Mapping):
        if head not in value:
            return MISSING
        return _walk(value[head], rest)
    # ASCII only, str.isdigit() also accepts digits like "²" that int() rejects
    if isinstance(value, list) and head.isascii() and head.isdigit():
        index = int(head)
        if index >= len(value):
            return MISSING
        return _walk(value[index], rest)
    return MISSING


def resolve_path(payload: Any, path: str) -> Any:
    """Value at ``path`` inside ``payload``, or ``MISSING``."""
    return _walk(payload, path.split("."))


def transform_payload(payload: Dict[str, Any], transformer: Optional[Mapping[str, str]]) -> Dict[str, Any]:
    if not transformer:
        return payload

    result: Dict[str, Any] = {}
    for output_field, path in transformer.items():
        value = resolve_path(payload, path)
        if value is not MISSING:
            result[output_field] = value
    return result


def validate_transformer(transformer: Optional[Mapping[str, Any]]) -> None:
    if transformer is None:
        return
    if not isinstance(transformer, Mapping):
        raise InvalidInputError("Payload transformer must be an object")
    for output_field, path in transformer.items():
        if not isinstance(output_field, str) or not output_field:
            raise InvalidInputError("Payload transformer field names must be non-empty strings")
        if not isinstance(path, str) or not path or any(part == "" for part in path.split(".")):
            raise InvalidInputError(f"Invalid transformer path for '{output_field}': {path!r}")
