"""
wschat console client.

This module implements a small client that:
    1. Connects to the server over TCP
    2. Performs the client half of the WebSocket handshake
    3. Sends the username as the first Text frame
    4. Sends every console line as a masked Text frame
    5. Prints incoming messages on a background thread

Message Framing:
    Client frames are always masked with a fresh random 4-byte key:
    [0x81] [0x80 | length] [4-byte mask] [masked payload]

Usage:
    python -m wschat.client.client alice [--host HOST] [--port PORT]

    Type 'exit' to leave the chat.

Environment Variables (.env):
    SERVER_HOST: Server hostname or IP (default: 127.0.0.1)
    SERVER_PORT: Server port (default: 8080)
    WS_PATH: WebSocket path (default: /ws)
"""

import argparse
import logging
import os
import secrets
import socket
import sys
import threading
from typing import BinaryIO

from dotenv import load_dotenv

from wschat.common.http11 import build_head, header_tokens, read_response
from wschat.common.protocol import MASK_KEY_SIZE, FrameError, Opcode, encode_frame, read_frame
from wschat.crypto.accept_key import compute_accept_key, generate_client_key


# Load environment variables
load_dotenv()

# Configure logging
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "WARNING").upper(),
    format="[%(asctime)s] %(levelname)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

# Configuration
SERVER_HOST = os.getenv("SERVER_HOST", "127.0.0.1")
SERVER_PORT = int(os.getenv("SERVER_PORT", "8080"))
WS_PATH = os.getenv("WS_PATH", "/ws")


class ClientHandshakeError(Exception):
    """Raised when the server does not accept the upgrade."""


def connect_to_server(host: str, port: int) -> socket.socket:
    """
    Create TCP connection to the server.

    Raises:
        socket.error: If connection fails
        ValueError: If host or port invalid
    """
    if not isinstance(host, str):
        raise ValueError(f"host must be string, got {type(host)}")

    if not isinstance(port, int) or port < 1 or port > 65535:
        raise ValueError(f"port must be integer in range [1, 65535], got {port}")

    logger.info(f"Connecting to server: {host}:{port}")
    client_socket = socket.create_connection((host, port))
    logger.info(f"Connected to server: {host}:{port}")
    return client_socket


def open_websocket(sock: socket.socket, reader: BinaryIO, host: str, port: int,
                   path: str = WS_PATH) -> None:
    """
    Send the upgrade request and verify the server's 101 response.

    Raises:
        ClientHandshakeError: If the server rejects the upgrade or answers
            with a wrong Sec-WebSocket-Accept
        EOFError: If the server closes the connection mid-handshake
    """
    key = generate_client_key()
    request = build_head(f"GET {path} HTTP/1.1", {
        "Host": f"{host}:{port}",
        "Upgrade": "websocket",
        "Connection": "Upgrade",
        "Sec-WebSocket-Key": key,
        "Sec-WebSocket-Version": "13",
    })
    sock.sendall(request)

    status_code, reason, headers = read_response(reader)
    if status_code != 101:
        raise ClientHandshakeError(f"Server refused upgrade: {status_code} {reason}")
    if "websocket" not in header_tokens(headers.get("upgrade", "")):
        raise ClientHandshakeError("Missing Upgrade: websocket in response")

    expected = compute_accept_key(key)
    if headers.get("sec-websocket-accept") != expected:
        raise ClientHandshakeError("Invalid Sec-WebSocket-Accept in response")

    logger.debug("WebSocket handshake completed")


def send_frame(sock: socket.socket, opcode: int, payload: bytes) -> None:
    """Send one masked frame, as clients must."""
    sock.sendall(encode_frame(opcode, payload, mask_key=secrets.token_bytes(MASK_KEY_SIZE)))


def send_text(sock: socket.socket, text: str) -> None:
    send_frame(sock, Opcode.TEXT, text.encode("utf-8"))


def send_close(sock: socket.socket) -> None:
    send_frame(sock, Opcode.CLOSE, b"")


def receive_messages(sock: socket.socket, reader: BinaryIO) -> None:
    """Print Text frames until the connection ends; answer Pings."""
    while True:
        try:
            frame = read_frame(reader)
        except (FrameError, OSError) as e:
            logger.info(f"Connection ended: {e}")
            break

        if frame.opcode == Opcode.TEXT:
            print(frame.payload.decode("utf-8", "replace"))
        elif frame.opcode == Opcode.PING:
            try:
                send_frame(sock, Opcode.PONG, frame.payload)
            except OSError as e:
                logger.warning(f"Error writing pong frame: {e}")
        elif frame.opcode == Opcode.CLOSE:
            break

    print("[*] Disconnected from server")


def main():
    """
    Main entry point for the client.

    Exit codes:
        0: Normal exit
        1: Connection or handshake failure
    """
    parser = argparse.ArgumentParser(description="Join a wschat chat room")
    parser.add_argument("username", help="Name shown to other users")
    parser.add_argument("--host", default=SERVER_HOST,
                        help=f"Server host (default: {SERVER_HOST})")
    parser.add_argument("--port", type=int, default=SERVER_PORT,
                        help=f"Server port (default: {SERVER_PORT})")
    args = parser.parse_args()

    try:
        sock = connect_to_server(args.host, args.port)
    except OSError as e:
        print(f"[!] Could not connect to {args.host}:{args.port}: {e}", file=sys.stderr)
        sys.exit(1)

    reader = sock.makefile("rb")
    try:
        open_websocket(sock, reader, args.host, args.port)
    except (ClientHandshakeError, EOFError, ValueError) as e:
        print(f"[!] Handshake failed: {e}", file=sys.stderr)
        sock.close()
        sys.exit(1)

    receiver = threading.Thread(target=receive_messages, args=(sock, reader), daemon=True)
    receiver.start()

    try:
        send_text(sock, args.username)
        print(f"[*] Joined as {args.username} (type 'exit' to leave)")

        while receiver.is_alive():
            try:
                line = input()
            except EOFError:
                break
            if line.strip().lower() == "exit":
                break
            if line:
                send_text(sock, line)

        send_close(sock)
    except KeyboardInterrupt:
        print("\n[*] Interrupted")
    except OSError as e:
        print(f"[!] Network error: {e}", file=sys.stderr)
    finally:
        sock.close()


if __name__ == "__main__":
    main()
