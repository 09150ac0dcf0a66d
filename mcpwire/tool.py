"""Tools bound to handlers, with schema inference, defaults and validation."""

from __future__ import annotations

import copy
import dataclasses
import json
import types
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, Iterator, TypeVar, Union, get_args, get_origin

from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError, best_match

from mcpwire.util import _json_fields

Out = TypeVar("Out")

_NONE_TYPE = type(None)
_UNION_ORIGINS = (Union, types.UnionType)

_NAMED_TYPES = {
    "int": int,
    "str": str,
    "bool": bool,
    "float": float,
    "dict": dict,
    "list": list,
    "tuple": tuple,
    "Any": Any,
    "object": object,
}


@dataclass
class Tool:
    """A tool definition as advertised to clients."""

    name: str
    description: str = ""
    input_schema: dict | None = None
    output_schema: dict | None = None


@dataclass
class TextContent:
    """Plain text content."""

    text: str
    type: str = "text"


@dataclass
class CallToolResult(Generic[Out]):
    """The result of a tool call."""

    content: list = field(default_factory=list)
    is_error: bool = False
    structured_content: Any = None
    meta: dict | None = None


class _DecodeError(ValueError):
    pass


def _annotation(tp: Any) -> Any:
    """Return the type an annotation names; unknown textual names mean Any."""
    if isinstance(tp, str):
        return _NAMED_TYPES.get(tp.strip(), Any)
    return tp


def _field_types(cls: type) -> dict[str, Any]:
    return {f.name: _annotation(f.type) for f in dataclasses.fields(cls)}


def schema_json(schema: Any) -> str:
    """Return the schema as compact JSON, or a marker describing the failure."""
    try:
        return json.dumps(schema, separators=(",", ":"))
    except (TypeError, ValueError) as exc:
        return f"<!{exc}>"


_SCHEMA_MAPS = ("properties", "patternProperties", "$defs", "definitions", "dependentSchemas")
_SCHEMA_LISTS = ("allOf", "anyOf", "oneOf", "prefixItems")
_SCHEMA_SINGLE = (
    "items", "additionalProperties", "not", "if", "then", "else", "contains",
    "propertyNames", "unevaluatedItems", "unevaluatedProperties",
)


def _subschemas(node: dict) -> Iterator[dict]:
    for key in _SCHEMA_MAPS:
        yield from (s for s in (node.get(key) or {}).values() if isinstance(s, dict))
    for key in _SCHEMA_LISTS:
        yield from (s for s in (node.get(key) or []) if isinstance(s, dict))
    for key in _SCHEMA_SINGLE:
        if isinstance(node.get(key), dict):
            yield node[key]


def _check_defaults(node: dict) -> None:
    if "default" in node:
        rest = {key: value for key, value in node.items() if key != "default"}
        err = best_match(Draft202012Validator(rest).iter_errors(node["default"]))
        if err is not None:
            raise ValueError(
                f"default value {json.dumps(node['default'])} does not validate "
                f"against {schema_json(rest)}: {err.message}"
            )
    for sub in _subschemas(node):
        _check_defaults(sub)


def _resolve(schema: dict) -> Draft202012Validator:
    try:
        Draft202012Validator.check_schema(schema)
    except SchemaError as exc:
        raise ValueError(f"invalid schema {schema_json(schema)}: {exc.message}") from exc
    _check_defaults(schema)
    return Draft202012Validator(schema)


def apply_defaults(schema: dict | None, value: Any) -> Any:
    """Fill in missing object properties from their schema defaults, recursively."""
    if not isinstance(schema, dict) or not isinstance(value, dict):
        return value
    for name, sub in (schema.get("properties") or {}).items():
        if not isinstance(sub, dict):
            continue
        if name in value:
            apply_defaults(sub, value[name])
        elif "default" in sub:
            value[name] = copy.deepcopy(sub["default"])
    return value


def _load(data: Any) -> Any:
    if isinstance(data, (bytes, bytearray, str)):
        try:
            return json.loads(data)
        except ValueError as exc:
            raise ValueError(f"unmarshaling: {exc}") from exc
    return copy.deepcopy(data)


def unmarshal_schema(data: Any, schema: dict | None) -> Any:
    """Decode JSON arguments, apply schema defaults and validate the result."""
    value = _load(data)
    if schema is None:
        return value
    validator = _resolve(schema)
    apply_defaults(schema, value)
    err = best_match(validator.iter_errors(value))
    if err is not None:
        raise ValueError(
            f"validating\n\t{schema_json(value)}\nagainst\n\t {schema_json(schema)}:\n {err.message}"
        )
    return value


def _type_name(tp: Any) -> str:
    return getattr(tp, "__name__", repr(tp))


def _kind(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    return "object"


def _mismatch(value: Any, tp: Any, where: str) -> _DecodeError:
    return _DecodeError(
        f"cannot unmarshal {_kind(value)} {schema_json(value)} into {where} of type {_type_name(tp)}"
    )


def _zero(tp: Any) -> Any:
    origin = get_origin(tp)
    if origin in _UNION_ORIGINS:
        return None
    if tp is bool:
        return False
    if tp is int:
        return 0
    if tp is float:
        return 0.0
    if tp is str:
        return ""
    if tp in (list, tuple) or origin in (list, tuple):
        return []
    if tp is dict or origin is dict:
        return {}
    if dataclasses.is_dataclass(tp):
        return _decode_struct({}, tp, _type_name(tp))
    return None


def _decode_struct(value: Any, cls: type, where: str) -> Any:
    if not isinstance(value, dict):
        raise _mismatch(value, cls, where)
    hints = _field_types(cls)
    by_name = {name: f for f, name, _ in _json_fields(cls)}
    kwargs: dict[str, Any] = {}
    for key, item in value.items():
        f = by_name.get(key)
        if f is None:
            raise _DecodeError(f"unknown field {json.dumps(key)}")
        kwargs[f.name] = _decode(item, hints.get(f.name, Any), f"field {cls.__name__}.{key}")
    for f in dataclasses.fields(cls):
        no_default = (
            f.default is dataclasses.MISSING and f.default_factory is dataclasses.MISSING
        )
        if f.init and f.name not in kwargs and no_default:
            kwargs[f.name] = _zero(hints.get(f.name, Any))
    return cls(**kwargs)


def _decode(value: Any, tp: Any, where: str) -> Any:
    """Convert a decoded JSON value to tp, strictly."""
    tp = _annotation(tp)
    if tp is Any or tp is object:
        return value
    origin = get_origin(tp)
    if origin in _UNION_ORIGINS:
        args = get_args(tp)
        if value is None and _NONE_TYPE in args:
            return None
        errors = []
        for arg in args:
            if arg is _NONE_TYPE:
                continue
            try:
                return _decode(value, arg, where)
            except _DecodeError as exc:
                errors.append(exc)
        raise errors[0] if errors else _mismatch(value, tp, where)
    if value is None:
        return _zero(tp)
    if tp is bool:
        if isinstance(value, bool):
            return value
        raise _mismatch(value, tp, where)
    if tp is int:
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        raise _mismatch(value, tp, where)
    if tp is float:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
        raise _mismatch(value, tp, where)
    if tp is str:
        if isinstance(value, str):
            return value
        raise _mismatch(value, tp, where)
    if tp in (list, tuple) or origin in (list, tuple):
        if not isinstance(value, list):
            raise _mismatch(value, tp, where)
        args = get_args(tp)
        item_type = args[0] if args else Any
        return [_decode(item, item_type, f"{where}[{i}]") for i, item in enumerate(value)]
    if tp is dict or origin is dict:
        if not isinstance(value, dict):
            raise _mismatch(value, tp, where)
        args = get_args(tp)
        value_type = args[1] if len(args) == 2 else Any
        return {key: _decode(item, value_type, f"{where}[{key!r}]") for key, item in value.items()}
    if dataclasses.is_dataclass(tp):
        return _decode_struct(value, tp, where)
    raise TypeError(f"unsupported argument type {tp!r}")


_SIMPLE_TYPES = {bool: "boolean", int: "integer", float: "number", str: "string"}


def _schema_for(tp: Any) -> dict:
    """Infer a JSON schema for a Python type."""
    tp = _annotation(tp)
    if tp is Any or tp is object:
        return {}
    if tp in _SIMPLE_TYPES:
        return {"type": _SIMPLE_TYPES[tp]}
    origin = get_origin(tp)
    if origin in _UNION_ORIGINS:
        options = [arg for arg in get_args(tp) if arg is not _NONE_TYPE]
        nullable = len(options) < len(get_args(tp))
        if len(options) == 1:
            schema = _schema_for(options[0])
            if nullable and isinstance(schema.get("type"), str):
                schema["type"] = ["null", schema["type"]]
            return schema
        alternatives = [_schema_for(arg) for arg in options]
        if nullable:
            alternatives.append({"type": "null"})
        return {"anyOf": alternatives}
    if tp in (list, tuple) or origin in (list, tuple):
        schema: dict[str, Any] = {"type": "array"}
        args = get_args(tp)
        if args:
            schema["items"] = _schema_for(args[0])
        return schema
    if tp is dict or origin is dict:
        schema = {"type": "object"}
        args = get_args(tp)
        if len(args) == 2 and args[1] is not Any:
            schema["additionalProperties"] = _schema_for(args[1])
        return schema
    if dataclasses.is_dataclass(tp):
        hints = _field_types(tp)
        properties = {}
        required = []
        for f, name, omitempty in _json_fields(tp):
            properties[name] = _schema_for(hints.get(f.name, Any))
            if not omitempty:
                required.append(name)
        schema = {"type": "object"}
        if required:
            schema["required"] = required
        schema["properties"] = properties
        schema["additionalProperties"] = {"not": {}}
        return schema
    raise TypeError(f"cannot infer a schema for {tp!r}")


def _result_type(annotation: Any) -> Any:
    annotation = _annotation(annotation)
    candidates = [annotation]
    if get_origin(annotation) in _UNION_ORIGINS:
        candidates = list(get_args(annotation))
    for candidate in candidates:
        if get_origin(candidate) is CallToolResult:
            args = get_args(candidate)
            return args[0] if args else Any
    return Any


def _handler_types(handler: Callable) -> tuple[Any, Any]:
    func = getattr(handler, "__func__", handler)
    code = getattr(func, "__code__", None)
    if code is None:
        call = getattr(type(handler), "__call__", None)
        func = getattr(call, "__func__", call)
        code = getattr(func, "__code__", None)
    annotations = getattr(func, "__annotations__", None) or {}
    names = code.co_varnames[: code.co_argcount] if code is not None else ()
    in_type = _annotation(annotations.get(names[-1], dict)) if names else dict
    return in_type, _result_type(annotations.get("return"))


class ServerTool:
    """A tool bound to its handler, with resolved input and output schemas.

    The handler is called as handler(session, name, arguments) and returns a
    CallToolResult or None. The annotation of its arguments parameter gives the
    input type, and a CallToolResult[Out] return annotation the output type;
    missing schemas on the tool are inferred from these.
    """

    def __init__(self, tool: Tool, handler: Callable[[Any, str, Any], Any]) -> None:
        self.tool = tool
        self.handler = handler
        self._in_type, out_type = _handler_types(handler)
        if tool.input_schema is None:
            tool.input_schema = _schema_for(self._in_type)
        self.input_resolved = _resolve(tool.input_schema)
        self.output_resolved = None
        if out_type is not Any:
            if tool.output_schema is None:
                tool.output_schema = _schema_for(out_type)
            self.output_resolved = _resolve(tool.output_schema)

    def _arguments(self, arguments: Any) -> Any:
        value = _load(arguments)
        try:
            _decode(value, self._in_type, "arguments")
        except _DecodeError as exc:
            raise ValueError(f"unmarshaling: {exc}") from exc
        value = unmarshal_schema(value, self.tool.input_schema)
        return _decode(value, self._in_type, "arguments")

    def handle(self, session: Any, name: str, arguments: Any) -> CallToolResult:
        """Decode and validate the arguments, then run the handler.

        Bad arguments raise ValueError; an exception from the handler is
        reported as an error result.
        """
        args = None if arguments is None else self._arguments(arguments)
        try:
            res = self.handler(session, name, args)
        except Exception as exc:
            return CallToolResult(content=[TextContent(text=str(exc))], is_error=True)
        if res is None:
            return CallToolResult()
        return CallToolResult(
            content=list(res.content),
            is_error=res.is_error,
            structured_content=res.structured_content,
            meta=res.meta,
        )