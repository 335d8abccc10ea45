import socket
import threading
from contextlib import contextmanager

import pytest

from trafficreplay.tcp_client import TCPClient, TCPClientConfig

PREFIX = b"reply:"


@contextmanager
def serve(handler):
    server = socket.create_server(("127.0.0.1", 0))
    server.settimeout(0.1)
    stop = threading.Event()

    def loop():
        while not stop.is_set():
            try:
                conn, _ = server.accept()
            except socket.timeout:
                continue
            except OSError:
                return
            threading.Thread(target=handler, args=(conn,), daemon=True).start()

    thread = threading.Thread(target=loop, daemon=True)
    thread.start()
    try:
        yield f"127.0.0.1:{server.getsockname()[1]}"
    finally:
        stop.set()
        thread.join()
        server.close()


def echo_and_close(conn):
    with conn:
        data = conn.recv(65536)
        conn.sendall(PREFIX + data)


def make_repeater(times):
    def handler(conn):
        with conn:
            data = conn.recv(65536)
            conn.sendall(data * times)

    return handler


def free_port():
    sock = socket.socket()
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port


def test_defaults_are_applied():
    client = TCPClient("127.0.0.1:1", TCPClientConfig())
    assert client.config.timeout == 5.0
    assert client.config.connection_timeout == 5.0
    assert client.config.response_buffer_size == 100 * 1024


def test_connection_timeout_follows_timeout():
    client = TCPClient("127.0.0.1:1", TCPClientConfig(timeout=0.5, response_buffer_size=10))
    assert client.config.connection_timeout == 0.5
    assert client.config.response_buffer_size == 10


def test_send_returns_reply():
    with serve(echo_and_close) as addr, TCPClient(addr, TCPClientConfig(timeout=2)) as client:
        assert client.send(b"GET / HTTP/1.1\r\n\r\n") == PREFIX + b"GET / HTTP/1.1\r\n\r\n"


def test_reply_is_cut_to_buffer_size():
    data = b"0123456789"
    with serve(make_repeater(100)) as addr:
        client = TCPClient(addr, TCPClientConfig(timeout=2, response_buffer_size=16))
        reply = client.send(data)
        client.disconnect()
    assert reply == (data * 100)[:16]


def test_large_reply_beyond_buffer_is_drained():
    data = b"x" * 1000
    with serve(make_repeater(200)) as addr:
        client = TCPClient(addr, TCPClientConfig(timeout=2, response_buffer_size=1024))
        reply = client.send(data)
        client.disconnect()
    assert reply == (data * 200)[:1024]


def test_reconnects_after_peer_closes():
    with serve(echo_and_close) as addr, TCPClient(addr, TCPClientConfig(timeout=2)) as client:
        first = client.send(b"one")
        second = client.send(b"two")
    assert first == PREFIX + b"one"
    assert second == PREFIX + b"two"


def test_read_timeout_raises():
    release = threading.Event()

    def silent(conn):
        with conn:
            conn.recv(65536)
            release.wait(5)

    try:
        with serve(silent) as addr:
            client = TCPClient(addr, TCPClientConfig(timeout=0.2))
            with pytest.raises(TimeoutError):
                client.send(b"hello")
            client.disconnect()
    finally:
        release.set()


def test_refused_connection_raises():
    client = TCPClient(f"127.0.0.1:{free_port()}", TCPClientConfig(timeout=1))
    with pytest.raises(OSError):
        client.send(b"hello")
    assert not client.connected


def test_disconnect_drops_connection():
    with serve(echo_and_close) as addr:
        client = TCPClient(addr, TCPClientConfig(timeout=2))
        client.connect()
        assert client.connected
        client.disconnect()
        assert not client.connected


def test_address_without_port_is_rejected():
    client = TCPClient("localhost", TCPClientConfig(timeout=1))
    with pytest.raises(ValueError):
        client.connect()