"""
Hashing helpers for the WebSocket opening handshake.
"""
