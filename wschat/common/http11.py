"""
Minimal blocking HTTP/1.1 reader for the WebSocket opening handshake.

Only the request/status line and the header block are read. The handshake
has no body, so anything after the blank line belongs to the WebSocket
stream and is left in the reader's buffer.

Parsing follows websockets' legacy http module, distributed under this
license:

Copyright (c) Aymeric Augustin and contributors

Redistribution and use in source and binary forms, with or without
modification, are permitted provided that the following conditions are met:

    * Redistributions of source code must retain the above copyright notice,
      this list of conditions and the following disclaimer.
    * Redistributions in binary form must reproduce the above copyright notice,
      this list of conditions and the following disclaimer in the documentation
      and/or other materials provided with the distribution.
    * Neither the name of the copyright holder nor the names of its contributors
      may be used to endorse or promote products derived from this software
      without specific prior written permission.

THIS SOFTWARE IS PROVIDED BY THE COPYRIGHT HOLDERS AND CONTRIBUTORS "AS IS" AND
ANY EXPRESS OR IMPLIED WARRANTIES, INCLUDING, BUT NOT LIMITED TO, THE IMPLIED
WARRANTIES OF MERCHANTABILITY AND FITNESS FOR A PARTICULAR PURPOSE ARE
DISCLAIMED. IN NO EVENT SHALL THE COPYRIGHT HOLDER OR CONTRIBUTORS BE LIABLE
FOR ANY DIRECT, INDIRECT, INCIDENTAL, SPECIAL, EXEMPLARY, OR CONSEQUENTIAL
DAMAGES (INCLUDING, BUT NOT LIMITED TO, PROCUREMENT OF SUBSTITUTE GOODS OR
SERVICES; LOSS OF USE, DATA, OR PROFITS; OR BUSINESS INTERRUPTION) HOWEVER
CAUSED AND ON ANY THEORY OF LIABILITY, WHETHER IN CONTRACT, STRICT LIABILITY,
OR TORT (INCLUDING NEGLIGENCE OR OTHERWISE) ARISING IN ANY WAY OUT OF THE USE
OF THIS SOFTWARE, EVEN IF ADVISED OF THE POSSIBILITY OF SUCH DAMAGE.
"""

import re
from typing import BinaryIO, Dict, List, Tuple


# Maximum total size of headers is around 128 * 8 KiB = 1 MiB.
MAX_HEADERS = 128

# Limit request line and header lines. 8KiB is the most common default
# configuration of popular HTTP servers.
MAX_LINE = 8192

_token_re = re.compile(rb"[-!#$%&\'*+.^_`|~0-9a-zA-Z]+")
_value_re = re.compile(rb"[\x09\x20-\x7e\x80-\xff]*")


class HTTPParseError(ValueError):
    """Raised when a request or response head is malformed."""


def _printable(value: bytes) -> str:
    """Decode a bytestring for interpolating into an error message."""
    return value.decode(errors="backslashreplace")


def read_line(stream: BinaryIO) -> bytes:
    """
    Read a single CRLF-terminated line and strip the CRLF.

    Raises:
        EOFError: If the connection closes before a full line arrives
        HTTPParseError: If the line is longer than MAX_LINE
    """
    line = stream.readline(MAX_LINE + 1)
    if len(line) > MAX_LINE:
        raise HTTPParseError("line too long")
    if not line.endswith(b"\r\n"):
        raise EOFError("line without CRLF")
    return line[:-2]


def read_headers(stream: BinaryIO) -> Dict[str, str]:
    """
    Read header lines until the blank line.

    Header names are lower-cased. Repeated headers are joined with ", ".
    """
    headers: Dict[str, List[str]] = {}
    for _ in range(MAX_HEADERS + 1):
        try:
            line = read_line(stream)
        except EOFError as exc:
            raise EOFError("connection closed while reading HTTP headers") from exc
        if line == b"":
            break

        try:
            raw_name, raw_value = line.split(b":", 1)
        except ValueError:  # not enough values to unpack (expected 2, got 1)
            raise HTTPParseError(f"invalid HTTP header line: {_printable(line)}") from None
        if not _token_re.fullmatch(raw_name):
            raise HTTPParseError(f"invalid HTTP header name: {_printable(raw_name)}")
        raw_value = raw_value.strip(b" \t")
        if not _value_re.fullmatch(raw_value):
            raise HTTPParseError(f"invalid HTTP header value: {_printable(raw_value)}")

        name = raw_name.decode("ascii").lower()
        headers.setdefault(name, []).append(raw_value.decode("ascii", "surrogateescape"))
    else:
        raise HTTPParseError("too many HTTP headers")

    return {name: ", ".join(values) for name, values in headers.items()}


def read_request(stream: BinaryIO) -> Tuple[str, str, Dict[str, str]]:
    """
    Read an HTTP/1.1 request head and return ``(method, path, headers)``.

    ``path`` isn't URL-decoded or validated in any way.

    Raises:
        EOFError: If the connection is closed without a full request head
        HTTPParseError: If the request isn't well formatted
    """
    try:
        request_line = read_line(stream)
    except EOFError as exc:
        raise EOFError("connection closed while reading HTTP request line") from exc

    try:
        method, raw_path, version = request_line.split(b" ", 2)
    except ValueError:  # not enough values to unpack (expected 3, got 1-2)
        raise HTTPParseError(f"invalid HTTP request line: {_printable(request_line)}") from None

    if version != b"HTTP/1.1":
        raise HTTPParseError(f"unsupported HTTP version: {_printable(version)}")

    path = raw_path.decode("ascii", "surrogateescape")
    headers = read_headers(stream)
    return method.decode("ascii", "surrogateescape"), path, headers


def read_response(stream: BinaryIO) -> Tuple[int, str, Dict[str, str]]:
    """
    Read an HTTP/1.1 response head and return ``(status_code, reason, headers)``.

    Raises:
        EOFError: If the connection is closed without a full response head
        HTTPParseError: If the response isn't well formatted
    """
    try:
        status_line = read_line(stream)
    except EOFError as exc:
        raise EOFError("connection closed while reading HTTP status line") from exc

    try:
        version, raw_status_code, raw_reason = status_line.split(b" ", 2)
    except ValueError:  # not enough values to unpack (expected 3, got 1-2)
        raise HTTPParseError(f"invalid HTTP status line: {_printable(status_line)}") from None

    if version != b"HTTP/1.1":
        raise HTTPParseError(f"unsupported HTTP version: {_printable(version)}")
    try:
        status_code = int(raw_status_code)
    except ValueError:  # invalid literal for int() with base 10
        raise HTTPParseError(f"invalid HTTP status code: {_printable(raw_status_code)}") from None

    headers = read_headers(stream)
    return status_code, raw_reason.decode("ascii", "replace"), headers


def header_tokens(value: str) -> List[str]:
    """Split a comma-separated header value into lower-cased tokens."""
    return [token.strip().lower() for token in value.split(",") if token.strip()]


def build_head(start_line: str, headers: Dict[str, str]) -> bytes:
    """Serialize a start line and headers into a head ending with a blank line."""
    lines = [start_line] + [f"{name}: {value}" for name, value in headers.items()]
    return ("\r\n".join(lines) + "\r\n\r\n").encode("latin-1")
