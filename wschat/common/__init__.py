"""
Wire-level modules shared by the server and the client.
"""
