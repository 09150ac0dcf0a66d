import io
import json

import pytest

from mcpwire.transport import (
    InvalidRequestError,
    IOConnection,
    LoggingTransport,
    Request,
    Response,
    StdioTransport,
    decode_message,
    encode_message,
    marshal_messages,
    new_in_memory_transports,
    read_batch,
)


def test_encode_request_pins_field_order():
    assert encode_message(Request("ping", id=1)) == b'{"jsonrpc":"2.0","method":"ping","id":1}'


def test_encode_notification_omits_id():
    data = encode_message(Request("notifications/initialized", params={}))
    assert json.loads(data) == {
        "jsonrpc": "2.0",
        "method": "notifications/initialized",
        "params": {},
    }


def test_encode_error_response():
    data = encode_message(Response(id="a", error={"code": -32601, "message": "nope"}))
    assert json.loads(data) == {
        "jsonrpc": "2.0",
        "error": {"code": -32601, "message": "nope"},
        "id": "a",
    }


@pytest.mark.parametrize(
    "msg",
    [
        Request("tools/call", params={"name": "greet"}, id=7),
        Request("notifications/progress", params={"progress": 1}),
        Response(id="x", result={"ok": True}),
    ],
)
def test_round_trip(msg):
    assert decode_message(encode_message(msg)) == msg


def test_decode_float_id_truncated():
    msg = decode_message('{"jsonrpc":"2.0","method":"m","id":3.0}')
    assert msg.id == 3


@pytest.mark.parametrize(
    "data",
    [
        '{"jsonrpc":"1.0","method":"m","id":1}',
        '{"jsonrpc":"2.0","method":"m","id":true}',
        '{"jsonrpc":"2.0","result":{}}',
        "[1]",
        "3",
    ],
)
def test_decode_invalid(data):
    with pytest.raises(InvalidRequestError):
        decode_message(data)


def test_read_batch_single_and_array():
    msgs, is_batch = read_batch(b'{"jsonrpc":"2.0","method":"a","id":1}')
    assert (msgs, is_batch) == ([Request("a", id=1)], False)
    msgs, is_batch = read_batch(
        b'[{"jsonrpc":"2.0","method":"a","id":1},{"jsonrpc":"2.0","result":2,"id":3}]'
    )
    assert is_batch is True
    assert msgs == [Request("a", id=1), Response(id=3, result=2)]


def test_read_batch_empty_raises():
    with pytest.raises(InvalidRequestError, match="empty batch"):
        read_batch(b"[]")


def test_marshal_messages():
    data = marshal_messages([Request("a", id=1), Request("b")])
    assert json.loads(data) == [
        {"jsonrpc": "2.0", "method": "a", "id": 1},
        {"jsonrpc": "2.0", "method": "b"},
    ]


def test_batch_framing():
    out = io.BytesIO()
    conn = IOConnection(io.BytesIO(), out, batch_size=2)
    conn.write(Request("test", id=1))
    assert out.getvalue() == b""
    conn.write(Request("test", id=2))
    wire = out.getvalue()
    assert wire.count(b"\n") == 1 and wire.endswith(b"\n")
    reader = IOConnection(io.BytesIO(wire), io.BytesIO())
    assert [reader.read().id for _ in range(2)] == [1, 2]


def test_incoming_batch_answered_as_batch_in_request_order():
    wire = (
        b'[{"jsonrpc":"2.0","method":"a","id":1},'
        b'{"jsonrpc":"2.0","method":"n"},'
        b'{"jsonrpc":"2.0","method":"b","id":2}]\n'
    )
    out = io.BytesIO()
    conn = IOConnection(io.BytesIO(wire), out)
    assert [conn.read().method for _ in range(3)] == ["a", "n", "b"]
    conn.write(Response(id=2, result={"x": 2}))
    assert out.getvalue() == b""
    conn.write(Response(id=1, result={"x": 1}))
    assert json.loads(out.getvalue()) == [
        {"jsonrpc": "2.0", "result": {"x": 1}, "id": 1},
        {"jsonrpc": "2.0", "result": {"x": 2}, "id": 2},
    ]


def test_response_outside_batch_written_directly():
    out = io.BytesIO()
    conn = IOConnection(io.BytesIO(), out)
    conn.write(Response(id=5, result={}))
    assert out.getvalue() == b'{"jsonrpc":"2.0","result":{},"id":5}\n'


def test_duplicate_id_in_batch_raises():
    wire = b'[{"jsonrpc":"2.0","method":"a","id":1},{"jsonrpc":"2.0","method":"b","id":1}]\n'
    conn = IOConnection(io.BytesIO(wire), io.BytesIO())
    with pytest.raises(InvalidRequestError, match="duplicate"):
        conn.read()


def test_previously_seen_id_across_batches_raises():
    line = b'[{"jsonrpc":"2.0","method":"a","id":1}]\n'
    conn = IOConnection(io.BytesIO(line + line), io.BytesIO())
    assert conn.read().id == 1
    with pytest.raises(InvalidRequestError, match="previously seen"):
        conn.read()


def test_read_skips_blank_lines_and_raises_eof():
    conn = IOConnection(io.BytesIO(b'\n\n{"jsonrpc":"2.0","method":"a"}\n'), io.BytesIO())
    assert conn.read() == Request("a")
    with pytest.raises(EOFError):
        conn.read()


def test_close_closes_streams():
    reader, writer = io.BytesIO(), io.BytesIO()
    conn = IOConnection(reader, writer)
    conn.close()
    assert reader.closed and writer.closed


def test_in_memory_transports_exchange_messages():
    left, right = new_in_memory_transports()
    a, b = left.connect(), right.connect()
    a.write(Request("ping", id=1))
    assert b.read() == Request("ping", id=1)
    b.write(Response(id=1, result={}))
    assert a.read() == Response(id=1, result={})
    assert a.session_id() == ""


def test_in_memory_close_ends_peer():
    left, right = new_in_memory_transports()
    a, b = left.connect(), right.connect()
    a.write(Request("n"))
    a.close()
    assert b.read() == Request("n")
    with pytest.raises(EOFError):
        b.read()
    with pytest.raises(BrokenPipeError):
        b.write(Request("n"))


def test_stdio_transport_with_given_streams():
    out = io.BytesIO()
    conn = StdioTransport(reader=io.BytesIO(b'{"jsonrpc":"2.0","method":"x","id":"q"}\n'), writer=out).connect()
    assert conn.read() == Request("x", id="q")
    conn.write(Response(id="q", result=1))
    assert out.getvalue() == b'{"jsonrpc":"2.0","result":1,"id":"q"}\n'


def test_logging_transport_logs_reads_and_writes():
    log = io.StringIO()
    inner = StdioTransport(
        reader=io.BytesIO(b'{"jsonrpc":"2.0","method":"ping","id":1}\n'),
        writer=io.BytesIO(),
    )
    conn = LoggingTransport(inner, log).connect()
    assert conn.read() == Request("ping", id=1)
    conn.write(Response(id=1, result={}))
    assert log.getvalue() == (
        'read: {"jsonrpc":"2.0","method":"ping","id":1}\n'
        'write: {"jsonrpc":"2.0","result":{},"id":1}\n'
    )
    with pytest.raises(EOFError):
        conn.read()
    assert log.getvalue().endswith("read error: end of stream")
    assert conn.session_id() == ""