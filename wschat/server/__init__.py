"""
Server-side modules for wschat.

This package contains server-side functionality including:
- The HTTP upgrade handshake
- The connection registry and broadcast
- The per-connection session dispatcher
- The TCP listener
"""
