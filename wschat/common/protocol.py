"""
WebSocket frame codec (RFC 6455 subset).

Encodes and decodes single WebSocket frames over a byte stream. Only the
parts of the format the chat server needs are supported:

    - FIN and RSV bits of incoming frames are ignored; fragmented messages
      are not reassembled and each fragment is seen as its own frame
    - 7-bit, 16-bit and 64-bit payload lengths
    - client-to-server masking (server frames are never masked)

Frame layout:
    [1 byte: FIN | RSV1-3 | opcode]
    [1 byte: MASK | 7-bit length]
    [2 or 8 bytes: extended length, big-endian, when length is 126 or 127]
    [4 bytes: masking key, when MASK is set]
    [payload]

Usage:
    frame = read_frame(sock.makefile("rb"))
    write_frame(sock, Opcode.TEXT, b"hello")
"""

import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import BinaryIO, Optional


FIN_BIT = 0x80
OPCODE_BITS = 0x0F
MASK_BIT = 0x80
LENGTH_BITS = 0x7F

# Payload length encodings
MAX_SHORT_LENGTH = 125
EXTENDED_16_MARKER = 126
EXTENDED_64_MARKER = 127
MAX_EXTENDED_16_LENGTH = 0xFFFF
# Most significant bit of a 64-bit length must be 0
LENGTH_64_RESERVED_BIT = 1 << 63

MASK_KEY_SIZE = 4


class Opcode(IntEnum):
    """Frame opcodes defined by RFC 6455."""

    CONTINUATION = 0x0
    TEXT = 0x1
    BINARY = 0x2
    CLOSE = 0x8
    PING = 0x9
    PONG = 0xA


class FrameError(Exception):
    """Raised when a complete frame cannot be read from the stream."""


@dataclass
class Frame:
    """
    One decoded WebSocket frame.

    Fields:
        opcode: 4-bit opcode (compare against Opcode; unknown values are kept)
        payload: Unmasked payload bytes
    """

    opcode: int
    payload: bytes

    @property
    def opcode_name(self) -> str:
        try:
            return Opcode(self.opcode).name
        except ValueError:
            return f"0x{self.opcode:X}"


def apply_mask(payload: bytes, mask_key: bytes) -> bytes:
    """
    XOR each payload byte i with mask_key[i % 4].

    The transform is its own inverse, so the same call masks and unmasks.

    Raises:
        ValueError: If mask_key is not exactly 4 bytes
    """
    if len(mask_key) != MASK_KEY_SIZE:
        raise ValueError(f"Masking key must be {MASK_KEY_SIZE} bytes, got {len(mask_key)}")

    size = len(payload)
    if size == 0:
        return b""

    key_stream = (mask_key * (size // MASK_KEY_SIZE + 1))[:size]
    masked = int.from_bytes(payload, "big") ^ int.from_bytes(key_stream, "big")
    return masked.to_bytes(size, "big")


def _read_exact(stream: BinaryIO, size: int) -> bytes:
    """Read exactly size bytes or raise FrameError."""
    if size == 0:
        return b""

    try:
        data = stream.read(size)
    except (OverflowError, MemoryError) as e:
        raise FrameError(f"Cannot read frame of {size} bytes: {e}") from e
    if not data or len(data) < size:
        received = len(data) if data else 0
        raise FrameError(f"Connection closed while reading frame ({received}/{size} bytes)")
    return data


def read_frame(stream: BinaryIO, max_payload: Optional[int] = None) -> Frame:
    """
    Read and decode one frame from a buffered binary stream.

    Args:
        stream: Object with a blocking read(n) (e.g. socket.makefile("rb"))
        max_payload: Optional payload size limit; None disables the check

    Returns:
        Frame: Opcode and unmasked payload

    Raises:
        FrameError: On a short read, an invalid 64-bit length or a payload
            over max_payload
        OSError: If the underlying socket fails
    """
    first_byte, second_byte = _read_exact(stream, 2)

    opcode = first_byte & OPCODE_BITS
    masked = bool(second_byte & MASK_BIT)
    length = second_byte & LENGTH_BITS

    if length == EXTENDED_16_MARKER:
        (length,) = struct.unpack(">H", _read_exact(stream, 2))
    elif length == EXTENDED_64_MARKER:
        (length,) = struct.unpack(">Q", _read_exact(stream, 8))
        if length & LENGTH_64_RESERVED_BIT:
            raise FrameError(f"Invalid 64-bit payload length: {length:#x}")

    if max_payload is not None and length > max_payload:
        raise FrameError(f"Frame payload too large: {length} bytes (max {max_payload})")

    mask_key = _read_exact(stream, MASK_KEY_SIZE) if masked else None
    payload = _read_exact(stream, length)

    if mask_key is not None:
        payload = apply_mask(payload, mask_key)

    return Frame(opcode=opcode, payload=payload)


def encode_frame(opcode: int, payload: bytes, mask_key: Optional[bytes] = None) -> bytes:
    """
    Serialize a single final frame.

    Server frames are sent without mask_key. Clients must pass a 4-byte
    mask_key, which sets the MASK bit and masks the payload.

    Example:
        >>> encode_frame(Opcode.TEXT, b"hi")
        b'\\x81\\x02hi'
    """
    header = bytearray([FIN_BIT | (opcode & OPCODE_BITS)])
    mask_flag = MASK_BIT if mask_key is not None else 0
    length = len(payload)

    if length <= MAX_SHORT_LENGTH:
        header.append(mask_flag | length)
    elif length <= MAX_EXTENDED_16_LENGTH:
        header.append(mask_flag | EXTENDED_16_MARKER)
        header += struct.pack(">H", length)
    else:
        header.append(mask_flag | EXTENDED_64_MARKER)
        header += struct.pack(">Q", length)

    if mask_key is not None:
        header += mask_key
        payload = apply_mask(payload, mask_key)

    return bytes(header) + payload


def write_frame(sock, opcode: int, payload: bytes) -> None:
    """
    Send one unmasked frame with sock.sendall().

    Raises:
        OSError: If the send fails; the caller decides what that means
    """
    sock.sendall(encode_frame(opcode, payload))
