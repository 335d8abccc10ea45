"""Byte-level inspection and editing of HTTP/1 request and response payloads.

Example payloads, with line breaks shown escaped::

    POST /upload HTTP/1.1\\r\\n
    User-Agent: Gor\\r\\n
    Content-Length: 11\\r\\n
    \\r\\n
    Hello world
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

CRLF = b"\r\n"
EMPTY_LINE = b"\r\n\r\n"
HEADER_DELIM = b": "

METHODS = (
    b"CONNECT",
    b"DELETE",
    b"GET",
    b"HEAD",
    b"OPTIONS",
    b"PATCH",
    b"POST",
    b"PUT",
    b"TRACE",
)

MIN_REQUEST_COUNT = 16  # GET / HTTP/1.1\r\n
MIN_RESPONSE_COUNT = 14  # HTTP/1.1 200\r\n
VERSION_LEN = 8  # HTTP/1.1

# Status codes that have a registered reason phrase.
_KNOWN_STATUSES = frozenset(
    [100, 101, 102, 103]
    + list(range(200, 209))
    + [226]
    + [300, 301, 302, 303, 304, 305, 307, 308]
    + list(range(400, 419))
    + [421, 422, 423, 424, 425, 426, 428, 429, 431, 451]
    + list(range(500, 509))
    + [510, 511]
)

_TOKEN_CHARS = frozenset(
    b"0123456789abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ!#$%&'*+-.^_`|~"
)

_SIGNED_INT = re.compile(rb"[+-]?[0-9]+")
_VERSION_BIG = 1_000_000


@dataclass(frozen=True)
class HeaderSpan:
    """A header's value and its offsets; all offsets are -1 when not found."""

    value: bytes
    header_start: int
    header_end: int
    value_start: int
    value_end: int

    @property
    def found(self) -> bool:
        return self.header_start != -1


_NOT_FOUND = HeaderSpan(b"", -1, -1, -1, -1)


@dataclass
class HttpState:
    """Parsing progress kept between calls to :func:`has_full_payload`."""

    body: int = 0
    header_start: int = 0
    header_parsed: bool = False
    has_full_body: bool = False
    is_chunked: bool = False
    body_len: int = 0
    has_trailer: bool = False


def _atoi(data: bytes, base: int) -> tuple[int, bool]:
    """Parse a non-negative integer; stops at the first invalid digit."""
    num = 0
    for byte in data:
        if byte > 127:
            return num, False
        digit = _digit_value(byte)
        if digit is None or digit >= base:
            return num, False
        num = num * base + digit
    return num, True


def _digit_value(byte: int) -> int | None:
    if 0x30 <= byte <= 0x39:
        return byte - 0x30
    if 0x61 <= byte <= 0x66:
        return byte - 0x61 + 10
    if 0x41 <= byte <= 0x46:
        return byte - 0x41 + 10
    return None


def _replace(payload: bytes, start: int, end: int, value: bytes) -> bytes:
    return payload[:start] + value + payload[end:]


def mime_headers_end_pos(payload: bytes) -> int:
    """Position just past the empty line ending the headers, or -1."""
    pos = payload.find(EMPTY_LINE)
    return -1 if pos < 0 else pos + 4


def mime_headers_start_pos(payload: bytes) -> int:
    """Position of the second line (the first header), or -1."""
    pos = payload.find(CRLF)
    return -1 if pos < 0 else pos + 2


def find_header(payload: bytes, name: bytes) -> HeaderSpan:
    """Locate a header (case-insensitive); multi-line headers are not supported."""
    name = bytes(name).lower()
    if has_title(payload):
        header_start = mime_headers_start_pos(payload)
        if header_start < 0:
            return _NOT_FOUND
    else:
        header_start = 0

    value_start = value_end = header_end = 0
    found = False
    while header_start < len(payload):
        header_end = payload.find(b"\n", header_start)
        if header_end == -1:
            break
        colon = payload.find(b":", header_start, header_end)
        if colon == -1:
            break
        if payload[header_start:colon].lower() == name:
            value_start = colon + 1
            value_end = header_end - 2
            found = True
            break
        header_start = header_end + 1

    if not found:
        return _NOT_FOUND

    while value_start < value_end and payload[value_start] < 0x21:
        value_start += 1
    while value_end > value_start and payload[value_end] < 0x21:
        value_end -= 1

    return HeaderSpan(
        payload[value_start : value_end + 1],
        header_start,
        header_end,
        value_start,
        value_end,
    )


def _lines(data: bytes):
    start = 0
    while start < len(data):
        end = data.find(b"\n", start)
        if end < 0:
            yield data[start:]
            return
        line = data[start:end]
        if line.endswith(b"\r"):
            line = line[:-1]
        yield line
        start = end + 1


def _canonical_key(key: bytes) -> str:
    if any(byte not in _TOKEN_CHARS for byte in key):
        return key.decode("utf-8", errors="replace")
    out = bytearray()
    upper = True
    for byte in key:
        if upper and 0x61 <= byte <= 0x7A:
            byte -= 0x20
        elif not upper and 0x41 <= byte <= 0x5A:
            byte += 0x20
        out.append(byte)
        upper = byte == 0x2D
    return out.decode("ascii")


def get_headers(payload: bytes) -> dict[str, list[str]] | None:
    """Read MIME headers up to an empty line; ``None`` if malformed or unterminated."""
    if payload[:1] in (b" ", b"\t"):
        return None
    lines = list(_lines(payload))
    headers: dict[str, list[str]] = {}
    idx = 0
    while True:
        if idx >= len(lines):
            return None
        line = lines[idx]
        idx += 1
        if not line:
            return headers
        parts = [line.strip(b" \t")]
        while idx < len(lines) and lines[idx][:1] in (b" ", b"\t"):
            parts.append(lines[idx].strip(b" \t"))
            idx += 1
        kv = b" ".join(parts)

        colon = kv.find(b":")
        if colon < 0:
            return None
        end_key = colon
        while end_key > 0 and kv[end_key - 1] == 0x20:
            end_key -= 1
        key = _canonical_key(kv[:end_key])
        if not key:
            continue
        value = kv[colon + 1 :].lstrip(b" \t")
        headers.setdefault(key, []).append(value.decode("utf-8", errors="replace"))


def parse_headers(payload: bytes) -> dict[str, list[str]] | None:
    """Parse the headers of a payload, skipping its title line if present."""
    if has_title(payload):
        header_start = mime_headers_start_pos(payload)
        if header_start > len(payload) - 1:
            return None
        payload = payload[header_start:]
    header_end = mime_headers_end_pos(payload)
    if header_end > 1:
        payload = payload[:header_end]
    return get_headers(payload)


def header(payload: bytes, name: bytes) -> bytes:
    """Return a header's value, or empty bytes if it is absent."""
    return find_header(payload, name).value


def set_header(payload: bytes, name: bytes, value: bytes) -> bytes:
    """Replace a header's value, adding the header if it is absent."""
    span = find_header(payload, name)
    if span.found:
        return _replace(payload, span.value_start, span.value_end + 1, value)
    return add_header(payload, name, value)


def add_header(payload: bytes, name: bytes, value: bytes) -> bytes:
    """Insert a header at the start of the headers section."""
    mime_start = mime_headers_start_pos(payload)
    if mime_start < 1:
        return payload
    line = bytes(name) + HEADER_DELIM + bytes(value) + CRLF
    return payload[:mime_start] + line + payload[mime_start:]


def delete_header(payload: bytes, name: bytes) -> bytes:
    """Remove a header line if present."""
    span = find_header(payload, name)
    if span.found:
        return payload[: span.header_start] + payload[span.header_end + 1 :]
    return payload


def body(payload: bytes) -> bytes:
    """Return the body after the headers, or empty bytes if there is none."""
    pos = mime_headers_end_pos(payload)
    if pos == -1 or len(payload) <= pos:
        return b""
    return payload[pos:]


def path(payload: bytes) -> bytes:
    """Return the request path, or empty bytes if this is not a request."""
    if not has_request_title(payload):
        return b""
    start = payload.find(b" ") + 1
    end = payload.find(b" ", start) - start
    return payload[start : start + end]


def set_path(payload: bytes, new_path: bytes) -> bytes:
    """Replace the second title field; empty bytes if the payload has no title."""
    if not has_title(payload):
        return b""
    start = payload.find(b" ") + 1
    end = payload.find(b" ", start)
    end = end - start if end >= 0 else -1
    return _replace(payload, start, start + end, new_path)


def path_param(payload: bytes, name: bytes) -> tuple[bytes, int, int]:
    """Return a query parameter's value and its offsets within the path.

    When absent, the result is ``(b"", -1, -1)``.
    """
    name = bytes(name)
    req_path = path(payload)
    param_start = req_path.find(b"&" + name + b"=")
    if param_start == -1:
        param_start = req_path.find(b"?" + name + b"=")
        if param_start == -1:
            return b"", -1, -1
    value_start = param_start + len(name) + 2
    param_end = req_path.find(b"&", value_start)
    if param_end == -1:
        param_end = len(req_path)
    return req_path[value_start:param_end], value_start, param_end


def set_path_param(payload: bytes, name: bytes, value: bytes) -> bytes:
    """Set a query parameter, appending it if absent."""
    name = bytes(name)
    value = bytes(value)
    req_path = path(payload)
    _, start, end = path_param(payload, name)
    if start != -1:
        return set_path(payload, _replace(req_path, start, end, value))
    sep = b"?" if b"?" not in req_path else b"&"
    return set_path(payload, req_path + sep + name + b"=" + value)


def set_host(payload: bytes, url: bytes | None, host: bytes) -> bytes:
    """Rewrite an absolute request path's host, or else the Host header."""
    req_path = path(payload)
    if req_path.startswith(b"http"):
        host_start = req_path.find(b":") + 3
        host_end = host_start + req_path[host_start:].find(b"/")
        new_path = _replace(req_path, 0, host_end, bytes(url or b""))
        return set_path(payload, new_path)
    return set_header(payload, b"Host", host)


def method(payload: bytes) -> bytes:
    """Return the first title field (the HTTP method of a request)."""
    end = payload.find(b" ")
    if end == -1:
        return b""
    return payload[:end]


def status(payload: bytes) -> bytes:
    """Return the three digit response status, or empty bytes."""
    if not has_response_title(payload):
        return b""
    start = payload.find(b" ") + 1
    return payload[start : start + 3]


def _parse_http_version(text: bytes) -> tuple[int, int] | None:
    if text == b"HTTP/1.1":
        return 1, 1
    if text == b"HTTP/1.0":
        return 1, 0
    if not text.startswith(b"HTTP/"):
        return None
    dot = text.find(b".")
    if dot < 0:
        return None
    numbers = []
    for part in (text[5:dot], text[dot + 1 :]):
        if not _SIGNED_INT.fullmatch(part):
            return None
        number = int(part)
        if number < 0 or number > _VERSION_BIG:
            return None
        numbers.append(number)
    return numbers[0], numbers[1]


def _is_http1(version: tuple[int, int] | None) -> bool:
    return version is not None and version[0] == 1 and version[1] in (0, 1)


def has_response_title(payload: bytes) -> bool:
    """Whether the payload starts with an HTTP/1 response status line."""
    if len(payload) < MIN_RESPONSE_COUNT:
        return False
    if payload.find(CRLF) == -1:
        return False
    if not _is_http1(_parse_http_version(payload[:VERSION_LEN])):
        return False
    if payload[VERSION_LEN] != 0x20:
        return False
    code, ok = _atoi(payload[VERSION_LEN + 1 : VERSION_LEN + 4], 10)
    if not ok or code not in _KNOWN_STATUSES:
        return False
    return payload[VERSION_LEN + 4] in (0x20, 0x0D)


def has_request_title(payload: bytes) -> bool:
    """Whether the payload starts with an HTTP/1 request line."""
    if len(payload) < MIN_REQUEST_COUNT:
        return False
    title_len = payload.find(CRLF)
    if title_len == -1:
        return False
    if payload[:title_len].count(b" ") != 2:
        return False
    req_method = method(payload)
    if req_method not in METHODS:
        return False
    space = payload[len(req_method) + 1 :].find(b" ")
    if space == -1:
        return False
    version = payload[space + len(req_method) + 2 : title_len]
    return _is_http1(_parse_http_version(version))


def has_title(payload: bytes) -> bool:
    """Whether the payload has an HTTP/1 request or response title."""
    return has_request_title(payload) or has_response_title(payload)


def check_chunked(buf: bytes) -> tuple[int, bool]:
    """Validate chunked transfer data.

    Returns the length of the valid chunks scanned (sizes, extensions and
    CRLFs included) and whether the terminating zero-length chunk was reached.
    """
    chunk_end = 0
    full = False
    while chunk_end < len(buf):
        rel = buf[chunk_end:].find(b"\r")
        if rel < 1:
            break
        size_end = chunk_end + rel
        chunk_len, ok = _atoi(buf[chunk_end:size_end], 16)
        if not ok and buf[chunk_end:size_end].find(b";") < 1:
            break
        size_end += 1
        all_chunk = size_end + chunk_len + 2
        if (
            all_chunk >= len(buf)
            or buf[size_end] & buf[all_chunk] != 0x0A
            or buf[all_chunk - 1] != 0x0D
        ):
            break
        chunk_end = all_chunk + 1
        if chunk_len == 0:
            full = True
            break
    return chunk_end, full


def has_full_payload(holder: Any, *args: bytes) -> bool:
    """Whether the fragments in ``args`` form a complete HTTP message.

    ``holder`` is optional; when given, its ``protocol_state`` attribute keeps
    an :class:`HttpState` so repeated calls on a growing message reuse work.
    """
    payloads = args
    state = getattr(holder, "protocol_state", None) if holder is not None else None
    if not isinstance(state, HttpState):
        state = HttpState()
        if holder is not None:
            holder.protocol_state = state

    if state.header_start < 1:
        for data in payloads:
            state.header_start = mime_headers_start_pos(data)
            if state.header_start < 0:
                return False
            break

    if state.body < 1:
        pos = 0
        for data in payloads:
            end_pos = mime_headers_end_pos(data)
            pos += len(data) if end_pos < 0 else end_pos
            if end_pos > 0:
                state.body = pos
                break

    if not state.header_parsed:
        pos = 0
        for data in payloads:
            chunked = header(data, b"Transfer-Encoding")
            if chunked and data.find(b"chunked") > 0:
                state.is_chunked = True
                state.has_trailer = len(header(data, b"Trailer")) > 0
            else:
                state.body_len, _ = _atoi(header(data, b"Content-Length"), 10)
            pos += len(data)
            if state.body_len > 0 or pos >= state.body:
                state.header_parsed = True
                break

    body_len = sum(len(data) for data in payloads) - state.body

    if state.is_chunked:
        if body_len < 1:
            return False
        last = payloads[-1]
        if state.has_trailer:
            if last.endswith(b"\r\n\r\n"):
                return True
        elif last.endswith(b"0\r\n\r\n"):
            state.has_full_body = True
            return True
        return False

    return state.body_len == body_len