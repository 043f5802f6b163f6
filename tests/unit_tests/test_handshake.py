"""
Opening handshake test suite.

Covers:
- Sec-WebSocket-Accept derivation (RFC 6455 section 1.3 example)
- Accepted upgrades and the 101 response
- Rejections: wrong path, wrong method, missing headers, malformed heads
- Frames pipelined right after the request head
"""

import base64
import io

import pytest

from wschat.common.http11 import MAX_LINE, HTTPParseError, read_response
from wschat.common.protocol import Frame, Opcode, encode_frame, read_frame
from wschat.crypto.accept_key import compute_accept_key, compute_sha1, generate_client_key
from wschat.server.handshake import (
    HandshakeError,
    build_error_response,
    build_response,
    perform_handshake,
)


SAMPLE_KEY = "dGhlIHNhbXBsZSBub25jZQ=="
SAMPLE_ACCEPT = "s3pPLMBiTxaQ9kYGzzhZRbK+xOo="


def upgrade_request(path: str = "/ws", method: str = "GET", **overrides) -> bytes:
    headers = {
        "Host": "127.0.0.1:8080",
        "Upgrade": "websocket",
        "Connection": "Upgrade",
        "Sec-WebSocket-Key": SAMPLE_KEY,
        "Sec-WebSocket-Version": "13",
    }
    for name, value in overrides.items():
        name = name.replace("_", "-")
        if value is None:
            headers.pop(name, None)
        else:
            headers[name] = value
    lines = [f"{method} {path} HTTP/1.1"] + [f"{k}: {v}" for k, v in headers.items()]
    return ("\r\n".join(lines) + "\r\n\r\n").encode("ascii")


def handshake(fake_socket, data: bytes, ws_path: str = "/ws"):
    reader = io.BytesIO(data)
    return perform_handshake(fake_socket, reader, ws_path), reader


# ============================================================================
# ACCEPT KEY
# ============================================================================

def test_accept_key_matches_rfc_example():
    assert compute_accept_key(SAMPLE_KEY) == SAMPLE_ACCEPT


def test_compute_sha1_rejects_text():
    with pytest.raises(TypeError):
        compute_sha1("not bytes")


def test_compute_sha1_digest():
    assert compute_sha1(b"abc").hex() == "a9993e364706816aba3e25717850c26c9cd0d89d"


def test_generated_client_key_is_16_random_bytes():
    first, second = generate_client_key(), generate_client_key()

    assert len(base64.b64decode(first, validate=True)) == 16
    assert first != second


# ============================================================================
# ACCEPTED UPGRADES
# ============================================================================

def test_successful_handshake_sends_101(fake_socket):
    request, _ = handshake(fake_socket, upgrade_request())

    assert request.path == "/ws"
    assert request.key == SAMPLE_KEY
    assert request.headers["sec-websocket-version"] == "13"

    status, reason, headers = read_response(io.BytesIO(fake_socket.sent[0]))
    assert status == 101
    assert reason == "Switching Protocols"
    assert headers["upgrade"] == "websocket"
    assert headers["connection"] == "Upgrade"
    assert headers["sec-websocket-accept"] == SAMPLE_ACCEPT


def test_build_response_bytes():
    response = build_response(SAMPLE_KEY)

    assert response.startswith(b"HTTP/1.1 101 Switching Protocols\r\n")
    assert f"Sec-WebSocket-Accept: {SAMPLE_ACCEPT}\r\n".encode() in response
    assert response.endswith(b"\r\n\r\n")


def test_connection_header_with_several_options(fake_socket):
    request, _ = handshake(fake_socket, upgrade_request(Connection="keep-alive, Upgrade", Upgrade="WebSocket"))

    assert request.key == SAMPLE_KEY


def test_query_string_is_ignored_for_routing(fake_socket):
    request, _ = handshake(fake_socket, upgrade_request(path="/ws?room=lobby"))

    assert request.path == "/ws?room=lobby"


def test_frames_after_request_head_stay_buffered(fake_socket):
    pipelined = encode_frame(Opcode.TEXT, b"alice", mask_key=b"\x01\x02\x03\x04")
    _, reader = handshake(fake_socket, upgrade_request() + pipelined)

    assert read_frame(reader) == Frame(Opcode.TEXT, b"alice")


# ============================================================================
# REJECTIONS
# ============================================================================

@pytest.mark.parametrize("data, status, message", [
    (upgrade_request(path="/chat"), 404, "404 page not found"),
    (upgrade_request(method="POST"), 405, "Method POST not allowed"),
    (upgrade_request(Upgrade=None), 400, "Invalid WebSocket request"),
    (upgrade_request(Upgrade="h2c"), 400, "Invalid WebSocket request"),
    (upgrade_request(Connection="keep-alive"), 400, "Invalid WebSocket request"),
    (upgrade_request(Sec_WebSocket_Key=None), 400, "Missing WebSocket key"),
    (upgrade_request(Sec_WebSocket_Key=""), 400, "Missing WebSocket key"),
])
def test_rejected_requests(fake_socket, data, status, message):
    with pytest.raises(HandshakeError) as exc_info:
        handshake(fake_socket, data)

    assert exc_info.value.status == status
    assert exc_info.value.message == message
    assert fake_socket.sent == []


@pytest.mark.parametrize("data", [
    b"GET /ws\r\n\r\n",
    b"GET /ws HTTP/1.0\r\n\r\n",
    b"GET /ws HTTP/1.1\r\nno colon here\r\n\r\n",
    b"GET /ws HTTP/1.1\r\nX-Long: " + b"a" * MAX_LINE + b"\r\n\r\n",
])
def test_malformed_requests_are_bad_requests(fake_socket, data):
    with pytest.raises(HandshakeError) as exc_info:
        handshake(fake_socket, data)

    assert exc_info.value.status == 400


def test_parse_errors_show_undecodable_bytes_escaped():
    stream = io.BytesIO(b"HTTP/1.1 2\xff0 OK\r\n\r\n")

    with pytest.raises(HTTPParseError, match=r"invalid HTTP status code: 2\\xff0"):
        read_response(stream)


def test_client_disconnecting_mid_request(fake_socket):
    with pytest.raises(EOFError):
        handshake(fake_socket, b"GET /ws HTTP/1.1\r\nHost: x")


def test_error_response_format():
    response = build_error_response(HandshakeError(404, "404 page not found"))
    head, body = response.split(b"\r\n\r\n", 1)

    assert head.startswith(b"HTTP/1.1 404 Not Found\r\n")
    assert b"Content-Length: %d" % len(body) in head
    assert b"Connection: close" in head
    assert body == b"404 page not found\n"
