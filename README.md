# trafficreplay

Building blocks for tools that capture HTTP/TCP traffic and replay it
elsewhere: byte-level HTTP/1 helpers, parsing of captured TCP packets,
reassembly of packets into complete request/response messages, a small TCP
client and a parser for human readable sizes.

The package has no dependencies outside the Python standard library and
supports Python 3.10 and later.

## Modules

| Module | Purpose |
| --- | --- |
| `trafficreplay.proto` | HTTP/1 helpers working on raw payload bytes: `header`, `find_header`, `set_header`, `add_header`, `delete_header`, `body`, `path`, `set_path`, `path_param`, `set_path_param`, `set_host`, `method`, `status`, `parse_headers`, `get_headers`, `has_request_title`, `has_response_title`, `has_title`, `check_chunked`, `has_full_payload`. |
| `trafficreplay.size` | `parse_size` turns strings such as `"32mb"`, `"0x12gB"` or `"4_2"` into byte counts. |
| `trafficreplay.tcp_packet` | `parse_packet` decodes a link-layer frame holding IPv4/IPv6 + TCP into a `Packet`; malformed frames raise a `PacketError` subclass. |
| `trafficreplay.tcp_message` | `MessageParser` reassembles `Packet`s into `Message`s on a background thread, with size limits and expiry. |
| `trafficreplay.tcp_client` | `TCPClient` sends a payload over plain or TLS TCP and reads the reply until the peer closes. |
| `trafficreplay.debug` | `set_verbose` and `debug`: verbosity-controlled messages on standard error. |

## Examples

Parsing sizes (empty text gives `None`, invalid text raises `ValueError`):

```python
from trafficreplay.size import parse_size

assert parse_size("42mb") == 42 << 20
assert parse_size("0o12Mb") == 10 << 20
```

Working with raw HTTP payloads:

```python
from trafficreplay import proto

request = b"POST /post?user_id=1 HTTP/1.1\r\nContent-Length: 7\r\nHost: www.w3.org\r\n\r\na=1&b=2"

proto.header(request, b"Content-Length")        # b"7"
proto.path(request)                              # b"/post?user_id=1"
request = proto.set_header(request, b"User-Agent", b"Replayer")
request = proto.set_path_param(request, b"user_id", b"2")
proto.body(request)                              # b"a=1&b=2"
```

Checking whether a captured message is complete:

```python
from trafficreplay import proto

chunks = [
    b"HTTP/1.1 200 OK\r\nTransfer-Encoding: chunked\r\n\r\n",
    b"7\r\nMozilla\r\n0\r\n\r\n",
]
proto.has_full_payload(None, *chunks)  # True
```

Reassembling packets into messages. The `start` hint decides the direction of
a packet that opens a new message, the `end` hint decides when a message is
complete; without an `end` hint messages are emitted when they expire.

```python
import time

from trafficreplay import proto
from trafficreplay.tcp_message import MessageParser
from trafficreplay.tcp_packet import Direction, Packet

with MessageParser(1 << 20, 1.0) as parser:
    parser.start = lambda p: (
        proto.has_request_title(p.payload),
        proto.has_response_title(p.payload),
    )
    parser.end = lambda m: proto.has_full_payload(m, *m.packet_data())

    now = time.time()
    for seq, payload in ((1, b"GET / HTTP/1.1\r\n"), (17, b"Host: localhost\r\n\r\n")):
        parser.packet_handler(Packet(
            src_port=60000, dst_port=80, ack=1, seq=seq,
            direction=Direction.INCOMING, timestamp=now, payload=payload,
        ))

    message = parser.read(timeout=1)   # TimeoutError if nothing arrives
    message.data()                     # the whole request
    message.uuid()                     # 24 hex characters shared with its response
```

Sending a payload over TCP:

```python
from trafficreplay.tcp_client import TCPClient, TCPClientConfig

with TCPClient("localhost:9000", TCPClientConfig(timeout=2.0)) as client:
    reply = client.send(b"GET / HTTP/1.1\r\nHost: localhost\r\n\r\n")
```

The reply is cut to `response_buffer_size` bytes (100 KiB by default);
connection, write and read failures raise `OSError`.

## What this package does not do

There is no command-line program and no live capture: packets must be
captured by other means and handed to `parse_packet` or directly to
`MessageParser`. There are no record/replay outputs either — nothing here
writes recordings to files, forwards them to another instance or replays
requests against an HTTP server. The package provides the parsing,
reassembly and client pieces such tools are built from.