"""A simple TCP client that sends a payload and reads the reply until EOF."""

from __future__ import annotations

import socket
import ssl
from dataclasses import dataclass
from typing import Optional

from trafficreplay.debug import debug

READ_CHUNK_SIZE = 64 * 1024
MAX_RESPONSE_SIZE = 1073741824
DEFAULT_TIMEOUT = 5.0
DEFAULT_RESPONSE_BUFFER = 100 * 1024


@dataclass
class TCPClientConfig:
    """Client settings; timeouts are in seconds, zero means the default."""

    debug: bool = False
    connection_timeout: float = 0.0
    timeout: float = 0.0
    response_buffer_size: int = 0
    secure: bool = False


def _split_address(addr: str) -> tuple[str, int]:
    host, sep, port = addr.rpartition(":")
    if not sep or not port:
        raise ValueError(f"address {addr!r} is missing a port")
    host = host.strip("[]") or "localhost"
    return host, int(port)


class TCPClient:
    """Keeps one connection open and reconnects when it has been closed."""

    def __init__(self, addr: str, config: Optional[TCPClientConfig] = None) -> None:
        config = config if config is not None else TCPClientConfig()
        if config.timeout == 0:
            config.timeout = DEFAULT_TIMEOUT
        config.connection_timeout = config.timeout
        if config.response_buffer_size == 0:
            config.response_buffer_size = DEFAULT_RESPONSE_BUFFER
        self.addr = addr
        self.config = config
        self._conn: Optional[socket.socket] = None

    def __enter__(self) -> "TCPClient":
        return self

    def __exit__(self, *exc: object) -> None:
        self.disconnect()

    @property
    def connected(self) -> bool:
        return self._conn is not None

    def connect(self) -> None:
        """Open a fresh connection, wrapping it in TLS when configured."""
        self.disconnect()
        host, port = _split_address(self.addr)
        sock = socket.create_connection(
            (host, port), timeout=self.config.connection_timeout
        )
        if self.config.secure:
            context = ssl.create_default_context()
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
            try:
                sock = context.wrap_socket(sock, server_hostname=host)
            except (OSError, ssl.SSLError):
                sock.close()
                raise
        self._conn = sock

    def disconnect(self) -> None:
        """Close the connection if there is one."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            debug(1, "[TCPClient] Disconnected:", self.addr)

    def _is_alive(self) -> bool:
        conn = self._conn
        assert conn is not None
        try:
            conn.settimeout(0.001)
            if isinstance(conn, ssl.SSLSocket):
                chunk = conn.recv(1)
            else:
                chunk = conn.recv(1, socket.MSG_PEEK)
        except (TimeoutError, BlockingIOError, ssl.SSLWantReadError):
            return True
        except (BrokenPipeError, ConnectionResetError) as err:
            debug(1, "Detected broken pipe.", err)
            return False
        except OSError:
            return True
        if not chunk:
            debug(1, "[TCPClient] connection closed, reconnecting")
            return False
        return True

    def send(self, data: bytes) -> bytes:
        """Send ``data`` and return the reply read until the peer closes.

        The reply is cut to ``response_buffer_size`` bytes. Connection, write
        and read failures (timeouts included) raise ``OSError``.
        """
        if self._conn is None or not self._is_alive():
            debug(1, "[TCPClient] Connecting:", self.addr)
            try:
                self.connect()
            except OSError as err:
                debug(1, "[TCPClient] Connection error:", err)
                raise
        conn = self._conn
        assert conn is not None

        if self.config.debug:
            debug(1, "[TCPClient] Sending:", data.decode("utf-8", errors="replace"))
        conn.settimeout(self.config.timeout)
        try:
            conn.sendall(data)
        except OSError as err:
            debug(1, "[TCPClient] Write error:", err, self.addr)
            raise

        limit = self.config.response_buffer_size
        response = bytearray()
        total = 0
        timeout = self.config.timeout
        try:
            while True:
                conn.settimeout(timeout)
                want = limit - len(response) if len(response) < limit else READ_CHUNK_SIZE
                chunk = conn.recv(want)
                if not chunk:
                    break
                total += len(chunk)
                if len(response) < limit:
                    response += chunk[: limit - len(response)]
                if total >= MAX_RESPONSE_SIZE:
                    debug(1, "[TCPClient] Body is more than the max size",
                          MAX_RESPONSE_SIZE, self.addr)
                    break
                # following chunks are expected sooner
                timeout = self.config.timeout / 5
        except OSError as err:
            debug(1, "[TCPClient] Response read error", err, total)
            raise

        payload = bytes(response)
        if self.config.debug:
            debug(1, "[TCPClient] Received:", payload.decode("utf-8", errors="replace"))
        return payload