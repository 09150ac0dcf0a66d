"""Event IDs, reconnect backoff and Accept-header checks for streamable HTTP."""

from __future__ import annotations

import random
import re
from dataclasses import dataclass
from typing import Iterable, NamedTuple

_INT64_MAX = 2**63 - 1
_DECIMAL = re.compile(r"[+-]?[0-9]+")

METHOD_NOT_ALLOWED = 405
EVENT_STREAM = "text/event-stream"
APPLICATION_JSON = "application/json"


@dataclass(frozen=True)
class ReconnectOptions:
    """Parameters for client reconnect attempts; delays are in seconds.

    A max_retries of 0 or less means never retry. grow_factor multiplies the
    delay after each attempt and must be at least 1.0 when retries are allowed.
    """

    max_retries: int = 5
    grow_factor: float = 1.5
    initial_delay: float = 1.0
    max_delay: float = 30.0


DEFAULT_RECONNECT_OPTIONS = ReconnectOptions()


def format_event_id(stream_id: int, index: int) -> str:
    """Return the event ID for a stream and message index, as ``<stream>_<index>``."""
    return f"{stream_id}_{index}"


def _parse_non_negative(text: str) -> int:
    if not _DECIMAL.fullmatch(text):
        raise ValueError(f"invalid number {text!r}")
    value = int(text)
    if value < 0 or value > _INT64_MAX:
        raise ValueError(f"number {text!r} out of range")
    return value


def parse_event_id(event_id: str) -> tuple[int, int]:
    """Split an event ID into its stream ID and index.

    Raises ValueError if the ID is malformed.
    """
    parts = event_id.split("_")
    if len(parts) != 2:
        raise ValueError(f"malformed event ID {event_id!r}")
    try:
        return _parse_non_negative(parts[0]), _parse_non_negative(parts[1])
    except ValueError as exc:
        raise ValueError(f"malformed event ID {event_id!r}: {exc}") from exc


def calculate_reconnect_delay(options: ReconnectOptions, attempt: int) -> float:
    """Return the delay before an attempt: exponential backoff plus full jitter."""
    backoff = options.initial_delay * options.grow_factor**attempt
    backoff = min(backoff, options.max_delay)
    if backoff <= 0:
        raise ValueError(f"backoff delay must be positive, got {backoff}")
    return backoff + random.random() * backoff


def is_resumable(status: int, content_type: str) -> bool:
    """Report whether a response is an SSE stream that can be processed."""
    if status == METHOD_NOT_ALLOWED:
        return False
    return EVENT_STREAM in (content_type or "")


class AcceptedTypes(NamedTuple):
    """Which of the media types that matter an Accept header allows."""

    json: bool
    event_stream: bool


class AcceptError(ValueError):
    """Raised when a request's Accept header does not allow the needed types."""

    status = 400


def parse_accept(values: Iterable[str]) -> AcceptedTypes:
    """Read one or more Accept header values."""
    json_ok = stream_ok = False
    for item in ",".join(values).split(","):
        media = item.strip()
        if media == APPLICATION_JSON:
            json_ok = True
        elif media == EVENT_STREAM:
            stream_ok = True
    return AcceptedTypes(json_ok, stream_ok)


def check_accept(method: str, values: Iterable[str]) -> None:
    """Raise AcceptError unless the Accept values suit the HTTP method."""
    accepted = parse_accept(values)
    if method == "GET":
        if not accepted.event_stream:
            raise AcceptError("Accept must contain 'text/event-stream' for GET requests")
    elif not (accepted.json and accepted.event_stream):
        raise AcceptError(
            "Accept must contain both 'application/json' and 'text/event-stream'"
        )