"""Core infrastructure: structured logging."""
