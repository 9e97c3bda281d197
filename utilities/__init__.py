"""
Shared utilities: structured logging.
"""
