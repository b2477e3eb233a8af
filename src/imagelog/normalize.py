"""
Converts arbitrary extractor output into a shape DynamoDB (or any JSON-like
document store) will accept: primitives, base64 text for binary payloads,
ISO text for dates and durations, and nested dicts/lists of the same.
"""
import base64
import numbers
from collections.abc import Mapping
from datetime import date, datetime, time, timedelta
from decimal import Decimal

from imagelog.errors import MetadataKeyCollision, NormalizationDepthExceeded

MAX_DEPTH = 32

PRIMITIVES = (str, bool, int, float, Decimal)
BINARY = (bytes, bytearray, memoryview)


def normalize(value, depth=0, max_depth=MAX_DEPTH, _ancestors=None):
    if depth > max_depth:
        raise NormalizationDepthExceeded(f"Metadata nested deeper than {max_depth} levels")

    if value is None or isinstance(value, PRIMITIVES):
        return value
    if isinstance(value, BINARY):
        return base64.b64encode(bytes(value)).decode('ascii')
    text = _as_text(value)
    if text is not None:
        return text

    # Composite values from here on: guard the current path against cycles
    if _ancestors is None:
        _ancestors = set()
    marker = id(value)
    if marker in _ancestors:
        raise NormalizationDepthExceeded(f"Reference cycle detected at depth {depth}")
    _ancestors.add(marker)
    try:
        if isinstance(value, Mapping):
            result = {}
            for k, v in value.items():
                name = str(k)
                if name in result:
                    raise MetadataKeyCollision(f"Metadata key {k!r} collides with another key named {name!r}")
                result[name] = normalize(v, depth + 1, max_depth, _ancestors)
            return result
        if isinstance(value, (list, tuple)):
            return [normalize(v, depth + 1, max_depth, _ancestors) for v in value]
        if isinstance(value, (set, frozenset)):
            items = [normalize(v, depth + 1, max_depth, _ancestors) for v in value]
            return sorted(items, key=repr)
        return normalize(_visible_attributes(value), depth, max_depth, _ancestors)
    finally:
        _ancestors.discard(marker)


def _as_text(value):
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, timedelta):
        return str(value)
    if isinstance(value, numbers.Number):
        # Fraction, complex and friends: "1/250" reads better than a float
        return str(value)
    isoformat = getattr(value, 'isoformat', None)
    if callable(isoformat):
        return isoformat()
    return None


def _visible_attributes(obj):
    try:
        attrs = vars(obj)
    except TypeError:
        slots = getattr(type(obj), '__slots__', ())
        if isinstance(slots, str):
            slots = (slots,)
        if not slots:
            return {'value': str(obj)}
        attrs = {name: getattr(obj, name) for name in slots if hasattr(obj, name)}
    return {k: v for k, v in attrs.items() if not k.startswith('_')}
