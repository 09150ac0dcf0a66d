# mcpwire

Wire-level building blocks for Model Context Protocol (MCP) sessions. The
package has no network code of its own. It depends only on `jsonschema`.

## What it provides

### JSON-RPC framing: `mcpwire.transport`

- **Messages.** `Request` (a call when it has an `id`, otherwise a
  notification) and `Response`.
- **Encoding and decoding.**
  - `encode_message` and `decode_message` handle a single message.
  - `read_batch` decodes either one message or a JSON array of them.
  - `marshal_messages` encodes a list as an array.
- **Errors.** `ConnectionClosedError`, `NotHandledError` and
  `InvalidRequestError`.
- **`IOConnection`** exchanges newline-delimited JSON over a reader and a
  writer.
  - Responses to an incoming batch are collected and sent back as one
    batch.
  - With `batch_size > 0`, outgoing requests and notifications are held
    until that many have been written, then sent together.
  - `read()` raises `EOFError` at the end of the stream.
- **Transports.**
  - `new_in_memory_transports()` returns two `InMemoryTransport`s that are
    connected to each other.
  - `StdioTransport` uses standard input and output, or the byte streams
    you give it.
  - `LoggingTransport` wraps another transport. It writes every message
    read or written, and every error, to a text stream.

### Method dispatch: `mcpwire.shared`

- `MethodFlags` has the members `NOTIFICATION` and `MISSING_PARAMS_OK`.
- `MethodInfo` / `new_method_info(handler, params_type, flags)`:
  - `unmarshal_params` decodes params into a typed object. It raises an
    error for missing params unless `MISSING_PARAMS_OK` is set.
  - `handle` runs the handler.
- `check_request(request, infos)` rejects a request in these cases:
  - the method is unknown (`NotHandledError`);
  - the request has an id that the method does not allow, or lacks one
    that it needs (`InvalidRequestError`);
  - required params are missing (`InvalidRequestError`).
- `add_middleware(handler, middleware)` wraps a handler so that the first
  middleware in the list runs outermost.
- `get_progress_token` and `set_progress_token` read and write
  `_meta.progressToken`. The token must be an `int` or a `str`.
- The module also defines `LATEST_PROTOCOL_VERSION` and
  `SUPPORTED_PROTOCOL_VERSIONS`.

### Tools: `mcpwire.tool`

- `Tool`, `TextContent` and `CallToolResult` describe tools and their
  results.
- `ServerTool(tool, handler)` binds a tool to a handler.
  - The handler is called as `handler(session, name, arguments)`.
  - A missing input schema is inferred from the annotation of the
    arguments parameter: a dataclass, `dict`, or a simple type.
  - A missing output schema is inferred from a `CallToolResult[Out]`
    return annotation.
- `ServerTool.handle` processes the arguments as follows:
  - it decodes them strictly, so unknown fields and wrong types raise
    `ValueError`;
  - it fills in schema defaults;
  - it validates the result against the schema.

  An exception raised by the handler is returned as a `CallToolResult`
  with `is_error=True`.
- `apply_defaults`, `unmarshal_schema` and `schema_json` can also be used
  on their own.

### Struct/map JSON: `mcpwire.util`

- `marshal_struct_with_map(obj, map_field)` writes a dataclass as JSON. It
  spreads the dict held in `map_field` into the same object, and raises
  `ValueError` if a key duplicates a field's JSON name.
- `unmarshal_struct_with_map(data, cls, map_field)` is the inverse.
- `json_names(cls)` lists the JSON keys of a dataclass. Field names come
  from `"json"` field metadata such as `"name,omitempty"`.
- `rand_text()` returns 26 random base32 characters.

### Streamable HTTP helpers: `mcpwire.eventid`

- **Event IDs.** `format_event_id(stream_id, index)` produces `"<stream>_<index>"`.
  `parse_event_id` reverses it and raises `ValueError` on malformed IDs.
- **Reconnect backoff.**
  - `ReconnectOptions` and `DEFAULT_RECONNECT_OPTIONS` hold the settings:
    5 retries, growth factor 1.5, an initial delay of 1 s and a maximum
    of 30 s.
  - `calculate_reconnect_delay(options, attempt)` returns an exponential
    backoff with full jitter.
- **`is_resumable(status, content_type)`** reports whether a response can
  be processed as an SSE stream.
- **Accept headers.**
  - `parse_accept(values)` reads the header.
  - `check_accept(method, values)` raises `AcceptError` (status 400) in
    two cases: a GET that does not accept `text/event-stream`, and any
    other method that does not accept both `application/json` and
    `text/event-stream`.

## What it does not do

mcpwire does not contain any of the following:

- an HTTP server or client;
- SSE event reading or writing;
- session bookkeeping for streamable HTTP;
- client or server session objects that run a full MCP handshake.

It supplies the framing, dispatch, validation and header/ID helpers. Putting
them together over a network is up to the application.

## Install

```
pip install mcpwire
```

## Example: framing over an in-memory pair

```python
from mcpwire.transport import Request, new_in_memory_transports

client_t, server_t = new_in_memory_transports()
client = client_t.connect()
server = server_t.connect()

client.write(Request(method="ping", id=1))
msg = server.read()
print(msg.method, msg.id)  # ping 1
```

## Example: a validated tool

```python
from dataclasses import dataclass
from mcpwire.tool import CallToolResult, ServerTool, TextContent, Tool

@dataclass
class Greeting:
    name: str

def greet(session, name, args: Greeting) -> CallToolResult:
    return CallToolResult(content=[TextContent(text="hi " + args.name)])

tool = ServerTool(Tool(name="greet"), greet)
print(tool.handle(None, "greet", {"name": "user"}).content[0].text)  # hi user
# tool.handle(None, "greet", {"name": "user", "extra": 1}) raises ValueError
```

## Example: event IDs

```python
from mcpwire.eventid import format_event_id, parse_event_id

eid = format_event_id(3, 7)     # "3_7"
print(parse_event_id(eid))      # (3, 7)
```

`parse_event_id` raises `ValueError` for malformed IDs such as `"1_-1"` or
`"a_1"`.

## Running the tests

```
pip install -e .[test]
pytest
```