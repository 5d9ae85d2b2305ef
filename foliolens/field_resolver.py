"""Tolerant field lookup over backend payloads.

The portfolio backend is inconsistent about casing: the same logical
field may arrive as ``total_invested`` in one response and
``totalInvested`` in another. Everything that reads a raw payload goes
through :func:`resolve_field` so the rest of the package only ever sees
one canonical shape.
"""

import math
import re
from typing import Any, Iterable, Mapping, Optional

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])([A-Z])")


def to_camel_case(key: str) -> str:
    """``total_profit_loss`` -> ``totalProfitLoss``."""
    head, *rest = key.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def to_snake_case(key: str) -> str:
    """``totalProfitLoss`` -> ``total_profit_loss``."""
    return _CAMEL_BOUNDARY.sub(r"_\1", key).lower()


def _candidate_keys(key: str) -> list[str]:
    candidates = [key]
    if "_" in key:
        candidates.append(to_camel_case(key))
    elif key != key.lower():
        candidates.append(to_snake_case(key))
    return candidates


def resolve_field(record: Mapping[str, Any], key: str, default: Any = None) -> Any:
    """Look up a logical field, trying the key as given, then its other casing.

    A JSON ``null`` counts as absent. Returns ``default`` when no form of
    the key carries a value.
    """
    for candidate in _candidate_keys(key):
        value = record.get(candidate)
        if value is not None:
            return value
    return default


def first_present(record: Mapping[str, Any], keys: Iterable[str]) -> Any:
    """Return the value of the first key (in either casing) that is present."""
    for key in keys:
        value = resolve_field(record, key)
        if value is not None:
            return value
    return None


def coerce_float(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        result = float(value)
    elif isinstance(value, str):
        try:
            result = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    if math.isnan(result) or math.isinf(result):
        return None
    return result


def get_float(record: Mapping[str, Any], key: str, default: float = 0.0) -> float:
    """Numeric field with a default for missing or malformed values."""
    value = coerce_float(resolve_field(record, key))
    return default if value is None else value


def get_optional_float(record: Mapping[str, Any], key: str) -> Optional[float]:
    return coerce_float(resolve_field(record, key))


def get_optional_int(record: Mapping[str, Any], key: str) -> Optional[int]:
    value = resolve_field(record, key)
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    number = coerce_float(value)
    if number is None or not number.is_integer():
        return None
    return int(number)


def get_text(record: Mapping[str, Any], key: str, default: str = "") -> str:
    """Text field; non-string scalars are stringified, blanks become ``default``."""
    value = resolve_field(record, key)
    if value is None or isinstance(value, (dict, list)):
        return default
    text = str(value).strip()
    return text or default


def get_optional_text(record: Mapping[str, Any], key: str) -> Optional[str]:
    text = get_text(record, key)
    return text or None
