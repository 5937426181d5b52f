"""
Core infrastructure: configuration, logging, errors, metadata and sessions.
"""
