"""
Payload sanitization for analytics events.

Two passes exist. ``sanitize_event_data`` runs on the client at track time and
constrains an arbitrary payload to the allowed value union:

    leaf      = str | int | float (finite) | bool | None
    array     = list of (leaf | shallow object | leaf array), first 10 items only
    object    = mapping of leaf | array-of-leaf, one level deep

Arrays keep their length (up to 10): an item that cannot be kept becomes None,
the way JSON serialization renders functions inside arrays.

``normalize_event_data`` is the collector's second pass before storage: it cuts
long strings, reduces arrays to primitives and flattens nested objects into
dotted keys.

Neither function raises for any input; disallowed keys are dropped.
"""
from collections.abc import Mapping
from typing import Any
import logging
import math

logger = logging.getLogger(__name__)

MAX_KEY_LENGTH = 50
MAX_ARRAY_ITEMS = 10
MAX_STRING_LENGTH = 1000


def _is_leaf(value: Any) -> bool:
    if value is None or isinstance(value, (str, bool, int)):
        return True
    if isinstance(value, float):
        return math.isfinite(value)
    return False


def _is_valid_key(key: Any) -> bool:
    return isinstance(key, str) and len(key) <= MAX_KEY_LENGTH


def _leaf_array(values: list | tuple) -> list:
    return [item if _is_leaf(item) else None for item in values[:MAX_ARRAY_ITEMS]]


def _shallow_object(value: Mapping) -> dict[str, Any]:
    result = {}
    for key, item in value.items():
        if not _is_valid_key(key):
            continue
        if _is_leaf(item):
            result[key] = item
        elif isinstance(item, (list, tuple)):
            result[key] = _leaf_array(item)
    return result


def _sanitize_array(values: list | tuple) -> list:
    result = []
    for item in values[:MAX_ARRAY_ITEMS]:
        if _is_leaf(item):
            result.append(item)
        elif isinstance(item, Mapping):
            result.append(_shallow_object(item))
        elif isinstance(item, (list, tuple)):
            result.append(_leaf_array(item))
        else:
            result.append(None)
    return result


def sanitize_event_data(event_data: Mapping | None) -> dict[str, Any]:
    """Constrain a caller payload to a bounded, JSON-safe shape."""
    if not event_data:
        return {}
    if not isinstance(event_data, Mapping):
        logger.debug("Dropping non-mapping event payload of type %s", type(event_data).__name__)
        return {}

    sanitized: dict[str, Any] = {}
    for key, value in event_data.items():
        if not _is_valid_key(key):
            logger.debug("Dropping event key %r", key)
            continue

        if _is_leaf(value):
            sanitized[key] = value
        elif isinstance(value, (list, tuple)):
            sanitized[key] = _sanitize_array(value)
        elif isinstance(value, Mapping):
            sanitized[key] = _shallow_object(value)
        else:
            # callables, sets, bytes, arbitrary objects
            logger.debug("Dropping event key %r with unsupported value type %s", key, type(value).__name__)

    return sanitized


def _truncate(value: Any) -> Any:
    if isinstance(value, str) and len(value) > MAX_STRING_LENGTH:
        return value[:MAX_STRING_LENGTH]
    return value


def normalize_event_data(event_data: Mapping | None) -> dict[str, Any]:
    """Collector-side normalization applied before events are written."""
    if not event_data or not isinstance(event_data, Mapping):
        return {}

    normalized: dict[str, Any] = {}
    for key, value in event_data.items():
        if not _is_valid_key(key):
            continue

        if _is_leaf(value):
            normalized[key] = _truncate(value)
        elif isinstance(value, (list, tuple)):
            normalized[key] = [_truncate(item) for item in _leaf_array(value)]
        elif isinstance(value, Mapping):
            for sub_key, sub_value in value.items():
                flat_key = f"{key}.{sub_key}"
                if _is_valid_key(sub_key) and _is_valid_key(flat_key) and _is_leaf(sub_value):
                    normalized[flat_key] = _truncate(sub_value)

    return normalized
