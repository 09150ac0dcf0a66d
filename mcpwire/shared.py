"""Method tables, request checks, middleware and progress tokens shared by peers."""

from __future__ import annotations

import dataclasses
import enum
import json
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping

from mcpwire.transport import InvalidRequestError, NotHandledError, Request

LATEST_PROTOCOL_VERSION = "2025-06-18"
SUPPORTED_PROTOCOL_VERSIONS = (LATEST_PROTOCOL_VERSION, "2025-03-26", "2024-11-05")

CODE_RESOURCE_NOT_FOUND = -32002
CODE_UNSUPPORTED_METHOD = -31001

PROGRESS_TOKEN_KEY = "progressToken"

MethodHandler = Callable[[Any, str, Any], Any]
Middleware = Callable[[MethodHandler], MethodHandler]


class MethodFlags(enum.Flag):
    """Flags controlling how a JSON-RPC method is handled."""

    NONE = 0
    NOTIFICATION = enum.auto()
    MISSING_PARAMS_OK = enum.auto()


def _missing_params() -> InvalidRequestError:
    return InvalidRequestError('invalid request: missing required "params"')


def _build(params_type: Any, value: dict) -> Any:
    from_dict = getattr(params_type, "from_dict", None)
    if callable(from_dict):
        return from_dict(value)
    if dataclasses.is_dataclass(params_type):
        names = {f.name for f in dataclasses.fields(params_type) if f.init}
        return params_type(**{k: v for k, v in value.items() if k in names})
    return params_type(value)


@dataclass
class MethodInfo:
    """How to decode the params of a method and which handler runs it."""

    flags: MethodFlags
    params_type: Any
    handler: Callable[[Any, Any], Any]

    def unmarshal_params(self, raw: bytes | str | Mapping | None) -> Any:
        """Decode params from JSON text (or an already decoded object).

        Returns None for absent or null params when that is allowed.
        """
        value: Any = raw
        if isinstance(raw, (bytes, bytearray, str)):
            try:
                value = json.loads(raw)
            except ValueError as exc:
                raise ValueError(
                    f"unmarshaling {raw!r} into a {self._type_name()}: {exc}"
                ) from exc
        if value is None:
            if MethodFlags.MISSING_PARAMS_OK not in self.flags:
                raise _missing_params()
            return None
        if not isinstance(value, Mapping):
            raise ValueError(
                f"unmarshaling {raw!r} into a {self._type_name()}: "
                f"expected a JSON object, got {type(value).__name__}"
            )
        try:
            return _build(self.params_type, dict(value))
        except (TypeError, ValueError, KeyError) as exc:
            raise ValueError(
                f"unmarshaling {raw!r} into a {self._type_name()}: {exc}"
            ) from exc

    def handle(self, session: Any, params: Any) -> Any:
        """Run the method's handler for a session."""
        return self.handler(session, params)

    def _type_name(self) -> str:
        return getattr(self.params_type, "__name__", repr(self.params_type))


def new_method_info(
    handler: Callable[[Any, Any], Any],
    params_type: Any,
    flags: MethodFlags = MethodFlags.NONE,
) -> MethodInfo:
    """Describe a method by its typed handler, params type and flags."""
    return MethodInfo(flags=flags, params_type=params_type, handler=handler)


def check_request(request: Request, infos: Mapping[str, MethodInfo]) -> MethodInfo:
    """Return the method info for a request, or raise if the request is invalid."""
    info = infos.get(request.method)
    if info is None:
        raise NotHandledError(
            f"JSON RPC not handled: {json.dumps(request.method)} unsupported"
        )
    is_notification = MethodFlags.NOTIFICATION in info.flags
    if is_notification and request.is_call:
        raise InvalidRequestError(
            f"invalid request: unexpected id for {json.dumps(request.method)}"
        )
    if not is_notification and not request.is_call:
        raise InvalidRequestError(
            f"invalid request: missing id for {json.dumps(request.method)}"
        )
    if MethodFlags.MISSING_PARAMS_OK not in info.flags and request.params is None:
        raise _missing_params()
    return info


def add_middleware(handler: MethodHandler, middleware: Iterable[Middleware]) -> MethodHandler:
    """Wrap a handler so that the first middleware runs outermost."""
    for wrap in reversed(list(middleware)):
        handler = wrap(handler)
    return handler


def _meta(params: Any) -> dict | None:
    if isinstance(params, dict):
        return params.get("_meta")
    return getattr(params, "meta", None)


def get_progress_token(params: Any) -> Any:
    """Return the progress token from the params' metadata, or None."""
    meta = _meta(params)
    if not meta:
        return None
    return meta.get(PROGRESS_TOKEN_KEY)


def set_progress_token(params: Any, token: int | str) -> None:
    """Store a progress token in the params' metadata."""
    if isinstance(token, bool) or not isinstance(token, (int, str)):
        raise TypeError(
            f"progress token {token!r} is of type {type(token).__name__}, not int or string"
        )
    meta = _meta(params)
    if meta is None:
        meta = {}
        if isinstance(params, dict):
            params["_meta"] = meta
        else:
            params.meta = meta
    meta[PROGRESS_TOKEN_KEY] = token