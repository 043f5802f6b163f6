"""
Shared fixtures for the wschat test suite.

FakeSocket stands in for an accepted client socket: it records every byte
sent to it and can be told to fail writes, optionally only for some
opcodes. Incoming bytes are supplied through an io.BytesIO reader.
"""

import io
import itertools
import threading
from typing import Iterable, List

import pytest

from wschat.common.protocol import Frame, Opcode, read_frame
from wschat.server.registry import Connection, Registry, decode_text


class FakeSocket:
    """In-memory socket that records sendall() calls."""

    def __init__(self, fail_send: bool = False, fail_on: Iterable[int] = ()):
        self.sent: List[bytes] = []
        self.fail_send = fail_send
        self.fail_on = set(fail_on)
        self.closed = False
        self.shutdown_calls = 0
        self._lock = threading.Lock()

    def sendall(self, data: bytes) -> None:
        if self.closed:
            raise BrokenPipeError("[Errno 32] Broken pipe")
        if self.fail_send or (data and (data[0] & 0x0F) in self.fail_on):
            raise ConnectionResetError("[Errno 104] Connection reset by peer")
        with self._lock:
            self.sent.append(bytes(data))

    def shutdown(self, how: int) -> None:
        self.shutdown_calls += 1

    def close(self) -> None:
        self.closed = True

    def sent_frames(self) -> List[Frame]:
        """Decode everything sent so far as server frames."""
        with self._lock:
            data = b"".join(self.sent)
        stream = io.BytesIO(data)
        frames = []
        while stream.tell() < len(data):
            frames.append(read_frame(stream))
        return frames

    def sent_texts(self) -> List[str]:
        return [decode_text(f.payload) for f in self.sent_frames() if f.opcode == Opcode.TEXT]


@pytest.fixture
def registry() -> Registry:
    return Registry()


@pytest.fixture
def fake_socket() -> FakeSocket:
    return FakeSocket()


@pytest.fixture
def make_connection():
    """
    Factory for Connections over a FakeSocket.

    Args (of the returned callable):
        incoming: Bytes the client "sends"; EOF follows
        fail_send: Make every write fail
        fail_on: Opcodes whose writes fail
    """
    ports = itertools.count(40000)

    def _make(incoming: bytes = b"", fail_send: bool = False, fail_on: Iterable[int] = ()) -> Connection:
        sock = FakeSocket(fail_send=fail_send, fail_on=fail_on)
        return Connection(sock, ("127.0.0.1", next(ports)), reader=io.BytesIO(incoming))

    return _make
