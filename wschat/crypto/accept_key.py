"""
Sec-WebSocket-Accept derivation for the opening handshake.

Algorithm: base64(SHA-1(Sec-WebSocket-Key + GUID))

Usage:
    key = generate_client_key()
    accept = compute_accept_key(key)
"""

import base64
import secrets

from cryptography.hazmat.primitives import hashes


# Fixed GUID from RFC 6455 section 1.3
WEBSOCKET_GUID = "258EAFA5-E914-47DA-95CA-C5AB0DC85B11"

CLIENT_KEY_SIZE = 16


def compute_sha1(data: bytes) -> bytes:
    """
    Compute the SHA-1 digest of data.

    Args:
        data: Input bytes to hash

    Returns:
        bytes: 20-byte SHA-1 digest

    Raises:
        TypeError: If data is not bytes
    """
    if not isinstance(data, bytes):
        raise TypeError(f"data must be bytes, got {type(data)}")

    digest = hashes.Hash(hashes.SHA1())
    digest.update(data)
    return digest.finalize()


def compute_accept_key(key: str) -> str:
    """
    Compute the value of the Sec-WebSocket-Accept header.

    Args:
        key: Value of the client's Sec-WebSocket-Key header

    Example:
        >>> compute_accept_key("dGhlIHNhbXBsZSBub25jZQ==")
        's3pPLMBiTxaQ9kYGzzhZRbK+xOo='
    """
    digest = compute_sha1((key + WEBSOCKET_GUID).encode("ascii", "surrogateescape"))
    return base64.b64encode(digest).decode("ascii")


def generate_client_key() -> str:
    """Return a random base64-encoded 16-byte Sec-WebSocket-Key."""
    return base64.b64encode(secrets.token_bytes(CLIENT_KEY_SIZE)).decode("ascii")
