"""
Server half of the WebSocket opening handshake.

Reads the client's HTTP upgrade request from the connection's buffered
reader, validates it and answers with 101 Switching Protocols. After a
successful handshake the same reader is handed to the frame codec, so any
bytes the client sent right after the request head are not lost.

Rejections:
    404 Not Found            - path other than the configured WebSocket path
    405 Method Not Allowed   - method other than GET
    400 Bad Request          - malformed request, missing Upgrade/Connection
                               tokens or missing Sec-WebSocket-Key
"""

import http
import logging
import socket
from dataclasses import dataclass
from typing import BinaryIO, Dict

from wschat.common.http11 import HTTPParseError, build_head, header_tokens, read_request
from wschat.crypto.accept_key import compute_accept_key


logger = logging.getLogger(__name__)


class HandshakeError(Exception):
    """Raised when an upgrade request must be rejected."""

    def __init__(self, status: int, message: str):
        super().__init__(message)
        self.status = status
        self.message = message


@dataclass
class UpgradeRequest:
    """
    A validated upgrade request.

    Fields:
        path: Request target as sent by the client
        headers: Lower-cased header names to values
        key: Sec-WebSocket-Key sent by the client
    """

    path: str
    headers: Dict[str, str]
    key: str


def check_request(method: str, path: str, headers: Dict[str, str], ws_path: str) -> UpgradeRequest:
    """
    Validate a parsed request against the upgrade rules.

    Raises:
        HandshakeError: With the status code to answer with
    """
    if path.split("?", 1)[0] != ws_path:
        raise HandshakeError(http.HTTPStatus.NOT_FOUND, "404 page not found")

    if method != "GET":
        raise HandshakeError(http.HTTPStatus.METHOD_NOT_ALLOWED, f"Method {method} not allowed")

    # For compatibility with non-strict implementations, tokens are matched
    # case-insensitively and Connection may carry other options too.
    if "websocket" not in header_tokens(headers.get("upgrade", "")):
        raise HandshakeError(http.HTTPStatus.BAD_REQUEST, "Invalid WebSocket request")
    if "upgrade" not in header_tokens(headers.get("connection", "")):
        raise HandshakeError(http.HTTPStatus.BAD_REQUEST, "Invalid WebSocket request")

    key = headers.get("sec-websocket-key", "").strip()
    if not key:
        raise HandshakeError(http.HTTPStatus.BAD_REQUEST, "Missing WebSocket key")

    return UpgradeRequest(path=path, headers=headers, key=key)


def build_response(key: str) -> bytes:
    """Build the 101 Switching Protocols response for a client key."""
    return build_head("HTTP/1.1 101 Switching Protocols", {
        "Upgrade": "websocket",
        "Connection": "Upgrade",
        "Sec-WebSocket-Accept": compute_accept_key(key),
    })


def build_error_response(error: HandshakeError) -> bytes:
    """Build a plain-text error response that closes the connection."""
    status = http.HTTPStatus(error.status)
    body = (error.message + "\n").encode("utf-8")
    head = build_head(f"HTTP/1.1 {status.value} {status.phrase}", {
        "Content-Type": "text/plain; charset=utf-8",
        "Content-Length": str(len(body)),
        "Connection": "close",
    })
    return head + body


def perform_handshake(sock: socket.socket, reader: BinaryIO, ws_path: str) -> UpgradeRequest:
    """
    Run the server side of the opening handshake.

    Args:
        sock: Accepted client socket (used for writing)
        reader: Buffered reader over the same socket
        ws_path: Path that accepts upgrades

    Returns:
        UpgradeRequest: The accepted request; the socket is now a WebSocket

    Raises:
        HandshakeError: If the request is rejected (nothing has been sent yet)
        EOFError: If the client disconnects before sending a full request
        OSError: If reading or writing the socket fails
    """
    try:
        method, path, headers = read_request(reader)
    except HTTPParseError as e:
        raise HandshakeError(http.HTTPStatus.BAD_REQUEST, str(e)) from e

    request = check_request(method, path, headers, ws_path)
    sock.sendall(build_response(request.key))
    logger.debug(f"Handshake accepted for {path}")
    return request
