"""
Console client for wschat.
"""
