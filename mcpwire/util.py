"""Random identifiers and JSON objects that carry extra keys alongside fields.

Dataclass fields take their JSON names from a ``"json"`` metadata entry with
the same form as a struct tag: ``"name,omitempty"``. An empty name means the
field name, ``"-"`` leaves the field out, and fields whose names start with
an underscore are never marshalled.
"""

from __future__ import annotations

import dataclasses
import functools
import json
import secrets
from typing import Any, Iterator

BASE32_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ234567"
_RAND_TEXT_LENGTH = 26  # enough base32 characters for 128 bits


def rand_text() -> str:
    """Return 26 cryptographically random base32 characters."""
    return "".join(secrets.choice(BASE32_ALPHABET) for _ in range(_RAND_TEXT_LENGTH))


def _json_fields(cls: type) -> Iterator[tuple[dataclasses.Field, str, bool]]:
    """Yield (field, JSON name, omitempty) for each marshalled field of cls."""
    if not (isinstance(cls, type) and dataclasses.is_dataclass(cls)):
        raise TypeError(f"{cls!r} is not a dataclass type")
    for f in dataclasses.fields(cls):
        if f.name.startswith("_"):
            continue
        name, _, opts = str(f.metadata.get("json", "")).partition(",")
        if name == "-" and not opts:
            continue
        yield f, name or f.name, "omitempty" in opts.split(",")


@functools.lru_cache(maxsize=None)
def json_names(cls: type) -> frozenset[str]:
    """Return the set of JSON object keys that instances of cls marshal into."""
    return frozenset(name for _, name, _ in _json_fields(cls))


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (bool, int, float, str, bytes, list, tuple, dict)):
        return not value
    return False


def _struct_dict(obj: Any, skip: str | None = None) -> dict[str, Any]:
    result: dict[str, Any] = {}
    for f, name, omitempty in _json_fields(type(obj)):
        if f.name == skip:
            continue
        value = getattr(obj, f.name)
        if omitempty and _is_empty(value):
            continue
        result[name] = _to_json(value)
    return result


def _to_json(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return _struct_dict(value)
    if isinstance(value, (list, tuple)):
        return [_to_json(item) for item in value]
    if isinstance(value, dict):
        return {key: _to_json(item) for key, item in value.items()}
    return value


def _field_names(cls: type) -> set[str]:
    return {f.name for f in dataclasses.fields(cls)}


def marshal_struct_with_map(obj: Any, map_field: str) -> bytes:
    """Marshal a dataclass to JSON, spreading the dict in map_field into the object.

    Raises ValueError if a map key duplicates the JSON name of a field.
    """
    if obj is None:
        return b"null"
    cls = type(obj)
    if map_field not in _field_names(cls):
        raise ValueError(f"{cls.__name__} has no field {map_field!r}")
    extra = getattr(obj, map_field) or {}
    names = json_names(cls)
    for key in extra:
        if key in names:
            raise ValueError(f"map key {json.dumps(key)} duplicates struct field")
    combined = _struct_dict(obj, skip=map_field)
    combined.update((key, _to_json(value)) for key, value in extra.items())
    return json.dumps(combined, separators=(",", ":"), ensure_ascii=False).encode()


def unmarshal_struct_with_map(data: bytes | str, cls: type, map_field: str) -> Any:
    """Build a cls instance from JSON; keys that are not fields go into map_field.

    Field values are taken as decoded, without conversion of nested objects.
    """
    if map_field not in _field_names(cls):
        raise ValueError(f"{cls.__name__} has no field {map_field!r}")
    value = json.loads(data)
    if not isinstance(value, dict):
        raise ValueError(f"cannot unmarshal {type(value).__name__} into {cls.__name__}")
    kwargs: dict[str, Any] = {}
    for f, name, _ in _json_fields(cls):
        if name in value:
            kwargs[f.name] = value[name]
    names = json_names(cls)
    extra = {key: item for key, item in value.items() if key not in names}
    if extra:
        kwargs[map_field] = extra
    return cls(**kwargs)