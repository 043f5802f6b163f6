"""
wschat TCP listener and entry point.

This module implements the server process that:
    1. Listens on a configurable host and port (default 127.0.0.1:8080)
    2. Accepts client connections, one thread per client
    3. Performs the WebSocket opening handshake on the configured path
    4. Hands the upgraded socket to a ChatSession bound to a shared Registry
    5. Stops gracefully on SIGINT (Ctrl+C)

Usage:
    python -m wschat.server.server [--host HOST] [--port PORT]

    To stop the server: Press Ctrl+C

Environment Variables (.env):
    SERVER_HOST: Host to bind to (default: 127.0.0.1)
    SERVER_PORT: Port to listen on (default: 8080)
    WS_PATH: Path accepting WebSocket upgrades (default: /ws)
    MAX_FRAME_SIZE: Largest accepted frame payload in bytes, 0 = unlimited (default: 0)
    LOG_LEVEL: Logging level (default: INFO)
"""

import argparse
import logging
import os
import signal
import socket
import sys
import threading
from typing import Optional, Tuple

from dotenv import load_dotenv

from wschat.server.handshake import HandshakeError, build_error_response, perform_handshake
from wschat.server.registry import Connection, Registry
from wschat.server.session import ChatSession


# Load environment variables
load_dotenv()

# Configure logging
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="[%(asctime)s] %(levelname)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

# Configuration
SERVER_HOST = os.getenv("SERVER_HOST", "127.0.0.1")
SERVER_PORT = int(os.getenv("SERVER_PORT", "8080"))
WS_PATH = os.getenv("WS_PATH", "/ws")
MAX_FRAME_SIZE = int(os.getenv("MAX_FRAME_SIZE", "0")) or None

ACCEPT_TIMEOUT = 1.0
LISTEN_BACKLOG = 5

# Global handle for graceful shutdown
_server: Optional["ChatServer"] = None


class ChatServer:
    """
    Threaded WebSocket chat server.

    Every accepted client gets its own thread which performs the handshake
    and then runs a ChatSession against the server's Registry.
    """

    def __init__(self, host: str = SERVER_HOST, port: int = SERVER_PORT,
                 ws_path: str = WS_PATH, registry: Optional[Registry] = None,
                 max_payload: Optional[int] = MAX_FRAME_SIZE):
        self.host = host
        self.port = port
        self.ws_path = ws_path
        self.registry = registry if registry is not None else Registry()
        self.max_payload = max_payload

        self.server_socket: Optional[socket.socket] = None
        self.running = False

    @property
    def address(self) -> Tuple[str, int]:
        """Bound (host, port); the port is resolved when 0 was requested."""
        if self.server_socket is None:
            return self.host, self.port
        return self.server_socket.getsockname()[:2]

    def start(self) -> None:
        """
        Create, bind and listen on the server socket.

        Raises:
            OSError: If socket creation or binding fails
        """
        self.server_socket = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.server_socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self.server_socket.bind((self.host, self.port))
        self.server_socket.listen(LISTEN_BACKLOG)

        # Periodic accept timeout so the running flag is observed
        self.server_socket.settimeout(ACCEPT_TIMEOUT)
        self.running = True

        host, port = self.address
        logger.info(f"Server listening on {host}:{port}{self.ws_path}")

    def serve_forever(self) -> None:
        """Accept clients until stop() is called."""
        if self.server_socket is None:
            self.start()

        while self.running:
            try:
                client_socket, client_address = self.server_socket.accept()
            except socket.timeout:
                continue
            except OSError as e:
                if self.running:
                    logger.error(f"Error in server loop: {e}")
                break

            client_thread = threading.Thread(
                target=self.handle_client,
                args=(client_socket, client_address),
                daemon=True,
            )
            client_thread.start()

        logger.info("Server stopped")

    def serve_in_background(self) -> threading.Thread:
        """Start the server and run the accept loop on a daemon thread."""
        if self.server_socket is None:
            self.start()
        thread = threading.Thread(target=self.serve_forever, daemon=True)
        thread.start()
        return thread

    def stop(self) -> None:
        """Stop accepting and close the listening socket."""
        logger.info("Shutting down server...")
        self.running = False
        if self.server_socket is not None:
            self.server_socket.close()

    def handle_client(self, client_socket: socket.socket, client_address: tuple) -> None:
        """
        Handle one client: handshake, then run its chat session.

        Handshake failures are answered with an HTTP error and the socket is
        closed. After a successful handshake the session owns the socket.
        """
        client_id = f"{client_address[0]}:{client_address[1]}"
        logger.info(f"[{client_id}] Client connected")

        # Accepted sockets must block; reads have no timeout
        client_socket.settimeout(None)
        reader = client_socket.makefile("rb")

        try:
            perform_handshake(client_socket, reader, self.ws_path)
        except HandshakeError as e:
            logger.warning(f"[{client_id}] Handshake rejected ({int(e.status)}): {e.message}")
            try:
                client_socket.sendall(build_error_response(e))
            except OSError as send_error:
                logger.error(f"[{client_id}] Error sending handshake response: {send_error}")
            reader.close()
            client_socket.close()
            return
        except (EOFError, OSError) as e:
            logger.warning(f"[{client_id}] Handshake failed: {e}")
            reader.close()
            client_socket.close()
            return

        logger.info(f"[{client_id}] WebSocket connection has been established")

        connection = Connection(client_socket, client_address, reader=reader)
        ChatSession(connection, self.registry, max_payload=self.max_payload).run()


def signal_handler(signum, frame):
    """
    Handle SIGINT (Ctrl+C) for graceful shutdown.

    Args:
        signum: Signal number (signal.SIGINT for Ctrl+C)
        frame: Current stack frame
    """
    logger.info("Shutdown signal received (SIGINT)")
    if _server is not None:
        _server.stop()


def main():
    """
    Main entry point for the server.

    Exit codes:
        0: Normal shutdown
        1: Fatal error (bind failure, etc.)
    """
    global _server

    parser = argparse.ArgumentParser(description="Run the wschat WebSocket chat server")
    parser.add_argument("--host", default=SERVER_HOST,
                        help=f"Host to bind to (default: {SERVER_HOST})")
    parser.add_argument("--port", type=int, default=SERVER_PORT,
                        help=f"Port to listen on (default: {SERVER_PORT})")
    args = parser.parse_args()

    _server = ChatServer(host=args.host, port=args.port)

    try:
        _server.start()
    except OSError as e:
        logger.critical(f"Cannot start server: {e}")
        sys.exit(1)

    signal.signal(signal.SIGINT, signal_handler)
    print(f"[*] wschat server started on ws://{args.host}:{_server.address[1]}{WS_PATH}")
    print("[*] Press Ctrl+C to stop the server")

    try:
        _server.serve_forever()
    except KeyboardInterrupt:
        logger.info("Server interrupted by user")
        _server.stop()
    print("[*] Server stopped")


if __name__ == "__main__":
    main()
