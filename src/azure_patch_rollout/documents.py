"""Structured document helpers for Azure request bodies.

Request bodies and deployment templates are built as plain JSON values and
only serialized at the boundary. ``to_document`` converts the pipeline's own
types (dataclasses, enums, datetimes, tuples and sets) into that JSON value
model.
"""

import dataclasses
import json
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Union

JsonValue = Union[None, bool, int, float, str, list["JsonValue"], dict[str, "JsonValue"]]


def to_document(value: Any) -> JsonValue:
    """Convert a value into a JSON document value.

    Args:
        value: Value to convert

    Returns:
        The value expressed with dicts, lists and JSON scalars only

    Raises:
        TypeError: If the value contains an unsupported type
    """
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Enum):
        return to_document(value.value)
    if isinstance(value, datetime):
        return value.isoformat()
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_document(getattr(value, f.name)) for f in dataclasses.fields(value)}
    if isinstance(value, Mapping):
        document: dict[str, JsonValue] = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise TypeError(f"Document keys must be strings, got {type(key).__name__}")
            document[key] = to_document(item)
        return document
    if isinstance(value, (set, frozenset)):
        return [to_document(item) for item in sorted(value)]
    if isinstance(value, (list, tuple)):
        return [to_document(item) for item in value]
    raise TypeError(f"Cannot convert {type(value).__name__} to a document")


def dumps_document(value: Any, indent: int | None = None) -> str:
    """Serialize a value as JSON after converting it with ``to_document``."""
    return json.dumps(to_document(value), indent=indent)
