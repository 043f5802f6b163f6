"""
Per-connection session dispatcher.

Each connection runs one ChatSession on its own thread. The session is a
two-state machine:

    ANONYMOUS --first Text frame (username)--> NAMED

    Text   (ANONYMOUS)  username set, "<name> joined the chat" broadcast
    Text   (NAMED)      payload broadcast as "[<name>]: <payload>"
    Ping   (any)        Pong with the same payload; a failed Pong is logged only
    Close  (any)        "<name> left the chat" broadcast, loop ends
    other  (any)        logged and ignored

The connection is registered when the loop starts. However the loop ends
(read error, EOF or Close) it is deregistered and its socket closed exactly
once. A peer that drops without a Close frame gets no "left" notice.
"""

import logging
from enum import Enum
from typing import Optional

from wschat.common.protocol import Frame, FrameError, Opcode
from wschat.server.registry import Connection, Registry, decode_text


logger = logging.getLogger(__name__)

# Sender name for join/leave notices. Nothing stops a user from also
# choosing this name.
SYSTEM_IDENTITY = "Server"


class SessionState(Enum):
    """States of a chat session."""

    ANONYMOUS = "anonymous"
    NAMED = "named"


class ChatSession:
    """Read loop turning decoded frames into registry actions."""

    def __init__(self, connection: Connection, registry: Registry,
                 max_payload: Optional[int] = None):
        self.connection = connection
        self.registry = registry
        self.max_payload = max_payload
        self.state = SessionState.ANONYMOUS

    @property
    def client_id(self) -> str:
        return self.connection.client_id

    def run(self) -> None:
        """Register, process frames until the session ends, then clean up."""
        self.registry.register(self.connection)
        try:
            while True:
                try:
                    frame = self.connection.read_frame(self.max_payload)
                except (FrameError, OSError) as e:
                    logger.info(f"[{self.client_id}] Error reading frame: {e}")
                    break

                if not self.handle_frame(frame):
                    break
        finally:
            self.registry.deregister(self.connection)
            self.connection.close()
            logger.info(f"[{self.client_id}] Connection closed for {self.connection.username}")

    def handle_frame(self, frame: Frame) -> bool:
        """
        Dispatch one frame.

        Returns:
            bool: False when the session must end
        """
        if frame.opcode == Opcode.TEXT:
            self._on_text(decode_text(frame.payload))
        elif frame.opcode == Opcode.PING:
            self._on_ping(frame.payload)
        elif frame.opcode == Opcode.CLOSE:
            self._on_close()
            return False
        else:
            logger.info(f"[{self.client_id}] Unhandled frame type: {frame.opcode_name}")
        return True

    def _on_text(self, message: str) -> None:
        if self.state is SessionState.ANONYMOUS:
            self.connection.username = message
            self.state = SessionState.NAMED
            logger.info(f"[{self.client_id}] Username set for connection: {message}")
            self.registry.broadcast(f"{message} joined the chat", SYSTEM_IDENTITY)
        else:
            username = self.connection.username
            logger.info(f"[{self.client_id}] [{username}]: {message}")
            self.registry.broadcast(message, username)

    def _on_ping(self, payload: bytes) -> None:
        logger.debug(f"[{self.client_id}] Received ping")
        try:
            self.connection.send_frame(Opcode.PONG, payload)
        except OSError as e:
            logger.warning(f"[{self.client_id}] Error writing pong frame: {e}")

    def _on_close(self) -> None:
        username = self.connection.username or ""
        logger.info(f"[{self.client_id}] {username} disconnected")
        self.registry.broadcast(f"{username} left the chat", SYSTEM_IDENTITY)
