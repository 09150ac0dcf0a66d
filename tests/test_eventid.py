from unittest import mock

import pytest

from mcpwire.eventid import (
    DEFAULT_RECONNECT_OPTIONS,
    AcceptError,
    ReconnectOptions,
    calculate_reconnect_delay,
    check_accept,
    format_event_id,
    is_resumable,
    parse_accept,
    parse_event_id,
)


@pytest.mark.parametrize(
    "sid, idx", [(0, 0), (0, 1), (1, 0), (1, 1), (1234, 5678)]
)
def test_event_id_round_trip(sid, idx):
    event_id = format_event_id(sid, idx)
    assert parse_event_id(event_id) == (sid, idx)


def test_format_event_id_shape():
    assert format_event_id(12, 3) == "12_3"


@pytest.mark.parametrize(
    "event_id", ["", "_", "1_", "_1", "a_1", "1_a", "-1_1", "1_-1", "1_2_3"]
)
def test_parse_event_id_invalid(event_id):
    with pytest.raises(ValueError):
        parse_event_id(event_id)


def test_default_reconnect_options():
    assert DEFAULT_RECONNECT_OPTIONS == ReconnectOptions(5, 1.5, 1.0, 30.0)


def test_reconnect_delay_without_jitter():
    opts = ReconnectOptions(max_retries=3, grow_factor=2.0, initial_delay=1.0, max_delay=30.0)
    with mock.patch("random.random", return_value=0.0):
        assert calculate_reconnect_delay(opts, 0) == 1.0
        assert calculate_reconnect_delay(opts, 3) == 8.0


def test_reconnect_delay_capped():
    opts = ReconnectOptions(max_retries=3, grow_factor=2.0, initial_delay=1.0, max_delay=5.0)
    with mock.patch("random.random", return_value=0.5):
        assert calculate_reconnect_delay(opts, 10) == 7.5


@pytest.mark.parametrize("attempt", range(8))
def test_reconnect_delay_bounds(attempt):
    opts = DEFAULT_RECONNECT_OPTIONS
    backoff = min(opts.initial_delay * opts.grow_factor**attempt, opts.max_delay)
    delay = calculate_reconnect_delay(opts, attempt)
    assert backoff <= delay < 2 * backoff


def test_reconnect_delay_zero_rejected():
    with pytest.raises(ValueError):
        calculate_reconnect_delay(ReconnectOptions(initial_delay=0.0), 0)


@pytest.mark.parametrize(
    "status, content_type, expected",
    [
        (200, "text/event-stream", True),
        (200, "text/event-stream; charset=utf-8", True),
        (405, "text/event-stream", False),
        (200, "application/json", False),
        (200, "", False),
    ],
)
def test_is_resumable(status, content_type, expected):
    assert is_resumable(status, content_type) is expected


def test_parse_accept_multiple_headers():
    accepted = parse_accept(["text/plain", "application/json, text/event-stream"])
    assert accepted.json is True
    assert accepted.event_stream is True


def test_parse_accept_none():
    assert parse_accept(["text/plain"]) == (False, False)


def test_check_accept_post_requires_both():
    with pytest.raises(AcceptError, match="both"):
        check_accept("POST", ["application/json"])


def test_check_accept_get_requires_stream():
    with pytest.raises(AcceptError, match="for GET requests"):
        check_accept("GET", ["application/json"])


def test_check_accept_error_status():
    with pytest.raises(AcceptError) as info:
        check_accept("DELETE", [])
    assert info.value.status == 400


def test_check_accept_passes():
    assert check_accept("GET", ["text/event-stream"]) is None
    assert check_accept("POST", ["text/plain", "application/json, text/event-stream"]) is None