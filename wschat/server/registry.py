"""
Connection registry and broadcast.

A Registry holds every connection whose read loop is currently running.
A single lock guards the map: register, deregister and broadcast never
interleave, so a broadcast always writes to a consistent membership and
messages reach each connection in the order they were broadcast.

A failed write during broadcast closes and removes that target only; the
sender of the broadcast is never told.

Usage:
    registry = Registry()
    registry.register(connection)
    registry.broadcast("hello", "alice")   # sends "[alice]: hello" to everyone
    registry.deregister(connection)
"""

import logging
import socket
import threading
from typing import BinaryIO, Dict, List, Optional, Tuple

from wschat.common.protocol import Frame, FrameError, Opcode, read_frame, write_frame


logger = logging.getLogger(__name__)


def format_message(sender: str, message: str) -> str:
    """Format a chat line as it appears on the wire."""
    return f"[{sender}]: {message}"


def encode_text(text: str) -> bytes:
    """Encode text for a Text frame; undecodable input bytes are restored as-is."""
    return text.encode("utf-8", "surrogateescape")


def decode_text(payload: bytes) -> str:
    """Decode a Text frame payload without validating it as UTF-8."""
    return payload.decode("utf-8", "surrogateescape")


class Connection:
    """
    One upgraded client stream.

    The connection owns its socket and the buffered reader created over it.
    Writes are serialized with a per-connection lock so a Pong from the
    session thread never interleaves with a broadcast write.
    """

    def __init__(self, sock: socket.socket, address: Optional[Tuple] = None,
                 reader: Optional[BinaryIO] = None):
        self.sock = sock
        self.address = address
        self.reader = reader if reader is not None else sock.makefile("rb")
        self.username: Optional[str] = None
        self.closed = False

        self._send_lock = threading.Lock()
        self._close_lock = threading.Lock()

    @property
    def client_id(self) -> str:
        if self.address:
            return f"{self.address[0]}:{self.address[1]}"
        return f"conn-{id(self):x}"

    def read_frame(self, max_payload: Optional[int] = None) -> Frame:
        """
        Read the next frame from this connection.

        Raises:
            FrameError: On a short read, or if the connection was closed by a
                failed broadcast while the session was not blocked in read
            OSError: If the socket fails
        """
        try:
            return read_frame(self.reader, max_payload)
        except ValueError as e:  # I/O operation on closed file
            raise FrameError(f"Connection closed: {e}") from e

    def send_frame(self, opcode: int, payload: bytes) -> None:
        """
        Send one unmasked frame.

        Raises:
            OSError: If the socket write fails
        """
        with self._send_lock:
            write_frame(self.sock, opcode, payload)

    def close(self) -> None:
        """Shut down and close the socket. Safe to call more than once."""
        with self._close_lock:
            if self.closed:
                return
            self.closed = True

        # shutdown() wakes a session thread blocked in read
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError as e:
            logger.debug(f"[{self.client_id}] Shutdown on closed socket: {e}")

        try:
            self.reader.close()
            self.sock.close()
            logger.debug(f"[{self.client_id}] Socket closed")
        except OSError as e:
            logger.error(f"[{self.client_id}] Error closing socket: {e}")

    def __repr__(self) -> str:
        return f"Connection({self.client_id}, username={self.username!r}, closed={self.closed})"


class Registry:
    """Thread-safe set of live connections, keyed by their socket."""

    def __init__(self):
        self._connections: Dict[socket.socket, Connection] = {}
        self._lock = threading.Lock()

    def register(self, connection: Connection) -> None:
        with self._lock:
            self._connections[connection.sock] = connection
            count = len(self._connections)
        logger.info(f"[{connection.client_id}] Registered ({count} connected)")

    def deregister(self, connection: Connection) -> None:
        """
        Remove a connection. Removing an absent connection is a no-op.

        The connection is left open; its ChatSession closes it right after
        deregistering.
        """
        with self._lock:
            removed = self._connections.pop(connection.sock, None)
            count = len(self._connections)
        if removed is not None:
            logger.info(f"[{connection.client_id}] Deregistered ({count} connected)")

    def broadcast(self, message: str, sender: str) -> int:
        """
        Send "[sender]: message" as a Text frame to every registered connection.

        The lock is held for the whole fan-out. Targets whose write fails are
        closed and removed immediately.

        Returns:
            int: Number of connections the message was written to
        """
        payload = encode_text(format_message(sender, message))
        delivered = 0

        with self._lock:
            for key, connection in list(self._connections.items()):
                try:
                    connection.send_frame(Opcode.TEXT, payload)
                except OSError as e:
                    logger.warning(f"[{connection.client_id}] Error sending message to {connection.username}: {e}")
                    connection.close()
                    del self._connections[key]
                else:
                    delivered += 1

        return delivered

    def connections(self) -> List[Connection]:
        """Return a snapshot of the registered connections."""
        with self._lock:
            return list(self._connections.values())

    def __contains__(self, connection: object) -> bool:
        if not isinstance(connection, Connection):
            return False
        with self._lock:
            return self._connections.get(connection.sock) is connection

    def __len__(self) -> int:
        with self._lock:
            return len(self._connections)
