import socket

import pytest

from tinyreactor.tcp_connection import ConnectionState, TcpConnection
from tinyreactor.timestamp import Timestamp


@pytest.fixture
def pair():
    server, client = socket.socketpair()
    client.settimeout(5)
    yield server, client
    server.close()
    client.close()


def make_conn(sock, **kwargs):
    return TcpConnection("srv#1", sock, **kwargs)


def test_initial_state_is_connecting(pair):
    conn = make_conn(pair[0])
    assert conn.state_string() == "kConnecting"
    assert not conn.connected()
    assert not conn.disconnected()


def test_connection_established_notifies_user(pair):
    conn = make_conn(pair[0])
    seen = []
    conn.connection_callback = lambda c: seen.append(c.connected())
    conn.connection_established()
    assert seen == [True]
    assert conn.state_string() == "kConnected"
    assert conn.reading is True


def test_connection_established_twice_raises(pair):
    conn = make_conn(pair[0])
    conn.connection_established()
    with pytest.raises(RuntimeError):
        conn.connection_established()


def test_send_before_established_is_dropped(pair):
    server, client = pair
    conn = make_conn(server)
    conn.send(b"ignored")
    assert conn.pending_output() == b""
    client.setblocking(False)
    with pytest.raises(BlockingIOError):
        client.recv(16)


def test_send_bytes_and_str(pair):
    server, client = pair
    conn = make_conn(server)
    conn.connection_established()
    conn.send("A" * 100)
    conn.send(b"B" * 200)
    data = b""
    while len(data) < 300:
        data += client.recv(1024)
    assert data == b"A" * 100 + b"B" * 200
    assert not conn.is_writing()


def test_send_vectors_gathers_parts(pair):
    server, client = pair
    conn = make_conn(server)
    conn.connection_established()
    conn.send_vectors([b"Hello", " ", bytearray(b"World!")])
    assert conn.pending_output() == b""
    assert conn.is_writing() is False
    data = b""
    while len(data) < 12:
        data += client.recv(1024)
    assert data == b"Hello World!"


def test_write_complete_is_deferred(pair):
    server, client = pair
    queued = []
    conn = make_conn(server, defer=queued.append)
    conn.connection_established()
    done = []
    conn.write_complete_callback = lambda c: done.append(c.name)
    conn.send(b"payload")
    assert done == []
    assert len(queued) == 1
    queued.pop()()
    assert done == ["srv#1"]
    assert client.recv(64) == b"payload"


def test_large_send_buffers_then_drains(pair):
    server, client = pair
    conn = make_conn(server)
    conn.connection_established()
    completed = []
    conn.write_complete_callback = lambda c: completed.append(True)
    payload = bytes(range(256)) * 40000
    conn.send(payload)
    assert conn.is_writing()
    assert len(conn.pending_output()) > 0
    assert payload.endswith(conn.pending_output())

    received = bytearray()
    while len(received) < len(payload):
        received += client.recv(1 << 16)
        if conn.is_writing():
            conn.handle_write()
    assert bytes(received) == payload
    assert conn.pending_output() == b""
    assert not conn.is_writing()
    assert completed == [True]


def test_handle_read_delivers_input(pair):
    server, client = pair
    conn = make_conn(server)
    conn.connection_established()
    got = []

    def on_message(c, buf, when):
        got.append((bytes(buf), when))
        buf.clear()

    conn.message_callback = on_message
    client.sendall(b"GET / HTTP/1.1\r\n\r\n")
    stamp = Timestamp(42)
    conn.handle_read(stamp)
    assert got == [(b"GET / HTTP/1.1\r\n\r\n", stamp)]
    assert conn.input_buffer == bytearray()


def test_peer_close_runs_callbacks_in_order(pair):
    server, client = pair
    conn = make_conn(server)
    events = []
    conn.connection_callback = lambda c: events.append(("conn", c.connected()))
    conn.close_callback = lambda c: events.append(("close", c.disconnected()))
    conn.connection_established()
    client.close()
    conn.handle_read()
    assert events == [("conn", True), ("conn", False), ("close", True)]
    assert conn.state is ConnectionState.DISCONNECTED
    assert not conn.reading


def test_handle_close_requires_open_connection(pair):
    conn = make_conn(pair[0])
    with pytest.raises(RuntimeError):
        conn.handle_close()


def test_shutdown_closes_write_side(pair):
    server, client = pair
    conn = make_conn(server)
    conn.connection_established()
    conn.send(b"bye")
    conn.shutdown()
    assert conn.state_string() == "kDisconnecting"
    data = b""
    while True:
        chunk = client.recv(1024)
        if not chunk:
            break
        data += chunk
    assert data == b"bye"


def test_shutdown_waits_for_pending_output(pair):
    server, client = pair
    conn = make_conn(server)
    conn.connection_established()
    payload = b"x" * 4_000_000
    conn.send(payload)
    assert conn.is_writing()
    conn.shutdown()
    received = bytearray()
    while True:
        chunk = client.recv(1 << 16)
        if not chunk:
            break
        received += chunk
        if conn.is_writing():
            conn.handle_write()
    assert len(received) == len(payload)


def test_send_after_shutdown_is_dropped(pair):
    server, _ = pair
    conn = make_conn(server)
    conn.connection_established()
    conn.shutdown()
    conn.send(b"late")
    assert conn.pending_output() == b""


def test_force_close(pair):
    server, _ = pair
    queued = []
    conn = make_conn(server, defer=queued.append)
    closed = []
    conn.close_callback = lambda c: closed.append(c.name)
    conn.connection_established()
    conn.force_close()
    assert conn.state_string() == "kDisconnecting"
    assert closed == []
    queued.pop()()
    assert closed == ["srv#1"]
    assert conn.disconnected()


def test_force_close_when_not_connected_does_nothing(pair):
    queued = []
    conn = make_conn(pair[0], defer=queued.append)
    conn.force_close()
    assert queued == []
    assert conn.state_string() == "kConnecting"


def test_handle_error_healthy_socket(pair):
    conn = make_conn(pair[0])
    assert conn.handle_error() == 0


def test_connection_destroyed_closes_socket(pair):
    server, _ = pair
    conn = make_conn(server)
    events = []
    conn.connection_callback = lambda c: events.append(c.state_string())
    conn.connection_established()
    conn.connection_destroyed()
    assert events == ["kConnected", "kDisconnected"]
    assert server.fileno() == -1


def test_context_round_trip(pair):
    conn = make_conn(pair[0])
    conn.context = {"parser": "state"}
    assert conn.context == {"parser": "state"}