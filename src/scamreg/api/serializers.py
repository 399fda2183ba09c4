"""Shape domain objects into camelCase JSON payloads."""

from __future__ import annotations

from typing import Any, Iterable

from pydantic.alias_generators import to_camel

# Mappings whose keys are data (category names, statuses), not field names.
_VERBATIM_KEYS = frozenset({"categories", "statuses", "identifierTypes", "riskLevels", "fields", "byDecision"})


def camelize(value: Any) -> Any:
    """Recursively convert ``snake_case`` dictionary keys to ``camelCase``.

    Objects exposing ``to_dict`` are expanded first. Values are left for
    FastAPI's encoder (datetimes become ISO 8601 strings).
    """

    if hasattr(value, "to_dict"):
        value = value.to_dict()
    if isinstance(value, dict):
        result = {}
        for key, item in value.items():
            name = _camel_key(key)
            result[name] = _verbatim(item) if name in _VERBATIM_KEYS else camelize(item)
        return result
    if isinstance(value, (list, tuple)):
        return [camelize(item) for item in value]
    return value


def camelize_all(values: Iterable[Any]) -> list:
    return [camelize(value) for value in values]


def _camel_key(key: Any) -> Any:
    if isinstance(key, str) and "_" in key:
        return to_camel(key)
    return key


def _verbatim(value: Any) -> Any:
    if isinstance(value, dict):
        return dict(value)
    return camelize(value)


__all__ = ["camelize", "camelize_all"]
