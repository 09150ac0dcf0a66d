"""JSON-RPC messages and the newline-delimited connections that carry them."""

from __future__ import annotations

import json
import sys
import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Iterable, Union

JSONRPC_VERSION = "2.0"


class ConnectionClosedError(Exception):
    """Raised when sending on a connection that is closed or closing."""


class NotHandledError(Exception):
    """Raised when no handler exists for a method."""


class InvalidRequestError(ValueError):
    """Raised when a message is not a valid JSON-RPC message or request."""


def _check_id(value: Any) -> int | str | None:
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, bool):
        raise InvalidRequestError("invalid ID type bool")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    raise InvalidRequestError(f"invalid ID type {type(value).__name__}")


@dataclass
class Request:
    """A JSON-RPC call, or a notification when it has no id."""

    method: str
    params: Any = None
    id: int | str | None = None

    def __post_init__(self) -> None:
        self.id = _check_id(self.id)

    @property
    def is_call(self) -> bool:
        return self.id is not None


@dataclass
class Response:
    """A JSON-RPC response; error holds the wire error object, if any."""

    id: int | str
    result: Any = None
    error: dict | None = None


Message = Union[Request, Response]


def _to_wire(msg: Message) -> dict:
    wire: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION}
    if isinstance(msg, Request):
        wire["method"] = msg.method
        if msg.params is not None:
            wire["params"] = msg.params
        if msg.id is not None:
            wire["id"] = msg.id
    elif isinstance(msg, Response):
        if msg.error is None:
            wire["result"] = msg.result
        else:
            wire["error"] = msg.error
        wire["id"] = msg.id
    else:
        raise TypeError(f"not a JSON-RPC message: {type(msg).__name__}")
    return wire


def _from_wire(obj: Any) -> Message:
    if not isinstance(obj, dict):
        raise InvalidRequestError("message is not a JSON object")
    version = obj.get("jsonrpc")
    if version != JSONRPC_VERSION:
        raise InvalidRequestError(
            f"invalid message version tag {version!r} expected {JSONRPC_VERSION!r}"
        )
    msg_id = _check_id(obj.get("id"))
    method = obj.get("method")
    if method:
        if not isinstance(method, str):
            raise InvalidRequestError("method must be a string")
        return Request(method=method, params=obj.get("params"), id=msg_id)
    if msg_id is None:
        raise InvalidRequestError("response must have an id")
    return Response(id=msg_id, result=obj.get("result"), error=obj.get("error"))


def encode_message(msg: Message) -> bytes:
    """Encode a message as compact JSON."""
    return json.dumps(_to_wire(msg), separators=(",", ":")).encode()


def decode_message(data: bytes | str) -> Message:
    """Decode one JSON-RPC message."""
    return _from_wire(json.loads(data))


def read_batch(data: bytes | str) -> tuple[list[Message], bool]:
    """Decode a single message or a batch; report whether it was a batch."""
    value = json.loads(data)
    if isinstance(value, list):
        if not value:
            raise InvalidRequestError("empty batch")
        return [_from_wire(item) for item in value], True
    return [_from_wire(value)], False


def marshal_messages(msgs: Iterable[Message]) -> bytes:
    """Encode messages as a JSON array."""
    return b"[" + b",".join(encode_message(m) for m in msgs) + b"]"


@dataclass
class _Batch:
    unresolved: dict[int | str, int] = field(default_factory=dict)
    responses: list[Response | None] = field(default_factory=list)


class IOConnection:
    """A connection exchanging newline-delimited JSON over byte streams.

    Incoming batches are tracked so that their responses go back as one
    batch. With a positive batch_size, outgoing requests and notifications
    are collected and sent in batches of that size.
    """

    def __init__(self, reader: Any, writer: Any, batch_size: int = 0) -> None:
        if batch_size < 0:
            raise ValueError("batch_size must not be negative")
        self._reader = reader
        self._writer = writer
        self._batch_size = batch_size
        self._outgoing: list[Message] = []
        self._queue: deque[Message] = deque()
        self._batches: dict[int | str, _Batch] = {}
        self._batch_lock = threading.Lock()
        self._write_lock = threading.Lock()

    def session_id(self) -> str:
        return ""

    def read(self) -> Message:
        """Return the next incoming message; raise EOFError at end of stream."""
        if self._queue:
            return self._queue.popleft()
        msgs, is_batch = read_batch(self._next_line())
        self._queue.extend(msgs[1:])
        if is_batch:
            self._track(msgs)
        return msgs[0]

    def _next_line(self) -> bytes:
        while True:
            line = self._reader.readline()
            if not line:
                raise EOFError("end of stream")
            if line.strip():
                return line

    def _track(self, msgs: list[Message]) -> None:
        batch = _Batch()
        for msg in msgs:
            if isinstance(msg, Request) and msg.is_call:
                if msg.id in batch.unresolved:
                    raise InvalidRequestError(f"duplicate message ID {msg.id!r}")
                batch.unresolved[msg.id] = len(batch.responses)
                batch.responses.append(None)
        if batch.unresolved:
            self._add_batch(batch)

    def _add_batch(self, batch: _Batch) -> None:
        with self._batch_lock:
            for msg_id in batch.unresolved:
                if msg_id in self._batches:
                    raise InvalidRequestError(
                        f"batch contains previously seen request {msg_id!r}"
                    )
            for msg_id in batch.unresolved:
                self._batches[msg_id] = batch

    def _update_batch(self, resp: Response) -> tuple[bool, list[Response] | None]:
        with self._batch_lock:
            batch = self._batches.pop(resp.id, None)
            if batch is None:
                return False, None
            index = batch.unresolved.pop(resp.id)
            batch.responses[index] = resp
            if batch.unresolved:
                return True, None
            return True, list(batch.responses)

    def write(self, msg: Message) -> None:
        """Send a message, batching where configured or required."""
        with self._write_lock:
            if isinstance(msg, Response):
                in_batch, complete = self._update_batch(msg)
                if in_batch:
                    if complete:
                        self._send(marshal_messages(complete))
                    return
            elif len(self._outgoing) < self._batch_size:
                self._outgoing.append(msg)
                if len(self._outgoing) == self._batch_size:
                    pending, self._outgoing = self._outgoing, []
                    self._send(marshal_messages(pending))
                return
            self._send(encode_message(msg))

    def _send(self, data: bytes) -> None:
        self._writer.write(data + b"\n")
        flush = getattr(self._writer, "flush", None)
        if flush is not None:
            flush()

    def close(self) -> None:
        errors = []
        streams = [self._reader]
        if self._writer is not self._reader:
            streams.append(self._writer)
        for stream in streams:
            try:
                stream.close()
            except Exception as exc:  # close both before reporting
                errors.append(exc)
        if errors:
            raise errors[0]


class _Pipe:
    """A one-way in-memory byte pipe with blocking line reads."""

    def __init__(self) -> None:
        self._buffer = bytearray()
        self._closed = False
        self._cond = threading.Condition()

    def write(self, data: bytes) -> int:
        with self._cond:
            if self._closed:
                raise BrokenPipeError("write on closed pipe")
            self._buffer.extend(data)
            self._cond.notify_all()
        return len(data)

    def readline(self) -> bytes:
        with self._cond:
            while True:
                end = self._buffer.find(b"\n")
                if end >= 0:
                    line = bytes(self._buffer[: end + 1])
                    del self._buffer[: end + 1]
                    return line
                if self._closed:
                    line = bytes(self._buffer)
                    self._buffer.clear()
                    return line
                self._cond.wait()

    def close(self) -> None:
        with self._cond:
            self._closed = True
            self._cond.notify_all()


class InMemoryTransport:
    """One end of a pair of in-memory transports."""

    def __init__(self, incoming: _Pipe, outgoing: _Pipe) -> None:
        self._incoming = incoming
        self._outgoing = outgoing

    def connect(self) -> IOConnection:
        return IOConnection(self._incoming, self._outgoing)


def new_in_memory_transports() -> tuple[InMemoryTransport, InMemoryTransport]:
    """Return two transports connected to each other."""
    forward, backward = _Pipe(), _Pipe()
    return InMemoryTransport(backward, forward), InMemoryTransport(forward, backward)


@dataclass
class StdioTransport:
    """A transport over standard input and output, or the given byte streams."""

    reader: Any = None
    writer: Any = None

    def connect(self) -> IOConnection:
        reader = sys.stdin.buffer if self.reader is None else self.reader
        writer = sys.stdout.buffer if self.writer is None else self.writer
        return IOConnection(reader, writer)


@dataclass
class LoggingConnection:
    """A connection that logs every message read and written."""

    delegate: Any
    out: Any

    def session_id(self) -> str:
        return self.delegate.session_id()

    def read(self) -> Message:
        try:
            msg = self.delegate.read()
        except Exception as exc:
            self.out.write(f"read error: {exc}")
            raise
        self.out.write(f"read: {self._describe(msg)}\n")
        return msg

    def write(self, msg: Message) -> None:
        try:
            self.delegate.write(msg)
        except Exception as exc:
            self.out.write(f"write error: {exc}")
            raise
        self.out.write(f"write: {self._describe(msg)}\n")

    def close(self) -> None:
        self.delegate.close()

    def _describe(self, msg: Message) -> str:
        try:
            return encode_message(msg).decode()
        except (TypeError, ValueError) as exc:
            self.out.write(f"LoggingTransport: failed to marshal: {exc}")
            return ""


class LoggingTransport:
    """A transport that delegates to another and logs messages to a text stream."""

    def __init__(self, delegate: Any, out: Any) -> None:
        self._delegate = delegate
        self._out = out

    def connect(self) -> LoggingConnection:
        return LoggingConnection(self._delegate.connect(), self._out)