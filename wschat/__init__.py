"""
wschat - a threaded WebSocket chat server.

This package contains:
- The WebSocket frame codec and HTTP/1.1 helpers (common)
- The Sec-WebSocket-Accept key derivation (crypto)
- The connection registry, session dispatcher and listener (server)
- A console client (client)
"""

__version__ = "0.1.0"
