"""One established TCP connection driven by readiness events from a poller."""

from __future__ import annotations

import enum
import errno
import logging
import os
import socket
from typing import Any, Callable, Iterable, Union

from tinyreactor.timestamp import Timestamp

log = logging.getLogger(__name__)

BytesLike = Union[bytes, bytearray, memoryview]
ConnectionCallback = Callable[["TcpConnection"], object]
MessageCallback = Callable[["TcpConnection", bytearray, Timestamp], object]
Deferrer = Callable[[Callable[[], object]], object]

_READ_CHUNK = 65536
_FAULT_ERRNOS = {errno.EPIPE, errno.ECONNRESET}


class ConnectionState(enum.Enum):
    """Lifecycle of a connection."""

    CONNECTING = "kConnecting"
    CONNECTED = "kConnected"
    DISCONNECTED = "kDisconnected"
    DISCONNECTING = "kDisconnecting"


def _noop_connection(conn: TcpConnection) -> None:
    return None


def _noop_message(conn: TcpConnection, buffer: bytearray, receive_time: Timestamp) -> None:
    return None


def _run_now(func: Callable[[], object]) -> None:
    func()


def _as_bytes(data: str | BytesLike) -> bytes:
    if isinstance(data, str):
        return data.encode("utf-8")
    return bytes(data)


def _strerror(err: int) -> str:
    return os.strerror(err) if err else ""


def _safe_addr(getter: Callable[[], Any]) -> Any:
    try:
        return getter()
    except OSError:
        return None


class TcpConnection:
    """A non-blocking TCP connection with buffered input and output.

    The owner of the connection polls its socket and calls ``handle_read``,
    ``handle_write``, ``handle_close`` and ``handle_error`` as events arrive;
    ``reading`` and ``is_writing()`` tell which events the connection wants.
    Work that must not run in the middle of event handling (write-complete
    notification, forced close) is passed to ``defer``; by default it runs at once.
    All calls must come from the thread that owns the connection.
    """

    def __init__(
        self,
        name: str,
        sock: socket.socket,
        local_addr: Any = None,
        peer_addr: Any = None,
        defer: Deferrer | None = None,
    ) -> None:
        self.name = name
        self.sock = sock
        sock.setblocking(False)
        self.local_addr = local_addr if local_addr is not None else _safe_addr(sock.getsockname)
        self.peer_addr = peer_addr if peer_addr is not None else _safe_addr(sock.getpeername)
        self.state = ConnectionState.CONNECTING
        self.reading = False
        self._writing = False
        self._defer: Deferrer = defer or _run_now
        self.context: Any = None

        self.connection_callback: ConnectionCallback = _noop_connection
        self.message_callback: MessageCallback = _noop_message
        self.write_complete_callback: ConnectionCallback | None = None
        self.close_callback: ConnectionCallback = _noop_connection

        self.input_buffer = bytearray()
        self._output = bytearray()
        log.debug("TcpConnection::construct[%s] fd=%s", name, sock.fileno())

    def connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    def disconnected(self) -> bool:
        return self.state is ConnectionState.DISCONNECTED

    def state_string(self) -> str:
        return self.state.value

    def is_writing(self) -> bool:
        """Whether the connection waits for the socket to become writable."""
        return self._writing

    def pending_output(self) -> bytes:
        """Data accepted by ``send`` but not yet written to the socket."""
        return bytes(self._output)

    def connection_established(self) -> None:
        """Mark the connection usable, start reading and notify the user. Call once."""
        if self.state is not ConnectionState.CONNECTING:
            raise RuntimeError(f"connection {self.name} is {self.state_string()}, not kConnecting")
        self.state = ConnectionState.CONNECTED
        self.reading = True
        self.connection_callback(self)

    def connection_destroyed(self) -> None:
        """Tear the connection down for good and close its socket. Call once."""
        if self.state is ConnectionState.CONNECTED:
            self.state = ConnectionState.DISCONNECTED
            self._disable_all()
            self.connection_callback(self)
        log.debug(
            "TcpConnection::destroyed[%s] state=%s", self.name, self.state_string()
        )
        self.sock.close()

    def send(self, data: str | BytesLike) -> None:
        """Send ``data``, buffering what the socket does not take at once."""
        if self.state is ConnectionState.CONNECTED:
            self._send_in_loop(_as_bytes(data))

    def send_vectors(self, buffers: Iterable[str | BytesLike]) -> None:
        """Send several buffers with one gathered write where possible."""
        if self.state is not ConnectionState.CONNECTED:
            return
        parts = [_as_bytes(part) for part in buffers]
        if self.state is ConnectionState.DISCONNECTED:
            log.warning("disconnected, give up writing")
            return
        total = sum(len(part) for part in parts)
        written = 0
        fault = False
        if not self._writing and not self._output:
            try:
                if hasattr(self.sock, "sendmsg"):
                    written = self.sock.sendmsg(parts)
                else:
                    written = self.sock.send(b"".join(parts))
            except BlockingIOError:
                written = 0
            except OSError as exc:
                written = 0
                log.error("TcpConnection::sendInLoop writev: %s", exc)
                fault = exc.errno in _FAULT_ERRNOS
            else:
                if written == total:
                    self._queue_write_complete()
        remaining = total - written
        log.debug("TcpConnection::send send %d bytes, remaining: %d", written, remaining)
        if not fault and remaining > 0:
            self._output += b"".join(parts)[written:]
            self._writing = True

    def shutdown(self) -> None:
        """Close the write side once all buffered output has been written."""
        if self.state is ConnectionState.CONNECTED:
            self.state = ConnectionState.DISCONNECTING
            self._shutdown_in_loop()

    def force_close(self) -> None:
        """Close the connection without waiting for buffered output."""
        if self.state in (ConnectionState.CONNECTED, ConnectionState.DISCONNECTING):
            self.state = ConnectionState.DISCONNECTING
            self._defer(self._force_close_in_loop)

    def handle_read(self, receive_time: Timestamp | None = None) -> None:
        """Read what the socket has and hand the input buffer to the message callback."""
        if receive_time is None:
            receive_time = Timestamp.now()
        try:
            chunk = self.sock.recv(_READ_CHUNK)
        except OSError as exc:
            log.error("TcpConnection::handleRead: %s", exc)
            self.handle_error()
            return
        if chunk:
            self.input_buffer += chunk
            self.message_callback(self, self.input_buffer, receive_time)
        else:
            self.handle_close()

    def handle_write(self) -> None:
        """Write buffered output once the socket is writable."""
        if not self._writing:
            log.debug("Connection %s is down, no more writing", self.name)
            return
        try:
            written = self.sock.send(self._output)
        except OSError as exc:
            log.error("TcpConnection::handleWrite: %s", exc)
            return
        if written <= 0:
            return
        log.debug("TcpConnection::handleWrite send %d bytes", written)
        del self._output[:written]
        if not self._output:
            self._writing = False
            self._queue_write_complete()
            if self.state is ConnectionState.DISCONNECTING:
                self._shutdown_in_loop()

    def handle_close(self) -> None:
        """Mark the connection closed and notify the user and the owner."""
        if self.state not in (ConnectionState.CONNECTED, ConnectionState.DISCONNECTING):
            raise RuntimeError(f"cannot close connection {self.name} in state {self.state_string()}")
        log.debug("close %s state = %s", self.name, self.state_string())
        self.state = ConnectionState.DISCONNECTED
        self._disable_all()
        self.connection_callback(self)
        self.close_callback(self)

    def handle_error(self) -> int:
        """Log the socket's pending error and return its errno (0 if none)."""
        try:
            err = self.sock.getsockopt(socket.SOL_SOCKET, socket.SO_ERROR)
        except OSError as exc:
            err = exc.errno or 0
        log.error(
            "TcpConnection::handleError [%s] - SO_ERROR = %d %s",
            self.name,
            err,
            _strerror(err),
        )
        return err

    def _send_in_loop(self, data: bytes) -> None:
        if self.state is ConnectionState.DISCONNECTED:
            log.warning("disconnected, give up writing")
            return
        written = 0
        fault = False
        if not self._writing and not self._output:
            try:
                written = self.sock.send(data)
            except BlockingIOError:
                written = 0
            except OSError as exc:
                written = 0
                log.error("TcpConnection::sendInLoop: %s", exc)
                fault = exc.errno in _FAULT_ERRNOS
            else:
                if written == len(data):
                    self._queue_write_complete()
        remaining = len(data) - written
        log.debug("TcpConnection::send send %d bytes, remaining: %d", written, remaining)
        if not fault and remaining > 0:
            self._output += data[written:]
            self._writing = True

    def _queue_write_complete(self) -> None:
        callback = self.write_complete_callback
        if callback is not None:
            self._defer(lambda: callback(self))

    def _shutdown_in_loop(self) -> None:
        if not self._writing:
            try:
                self.sock.shutdown(socket.SHUT_WR)
            except OSError as exc:
                log.error("shutdownWrite: %s", exc)

    def _force_close_in_loop(self) -> None:
        if self.state in (ConnectionState.CONNECTED, ConnectionState.DISCONNECTING):
            self.handle_close()

    def _disable_all(self) -> None:
        self.reading = False
        self._writing = False

    def __repr__(self) -> str:
        return f"TcpConnection(name={self.name!r}, state={self.state_string()})"