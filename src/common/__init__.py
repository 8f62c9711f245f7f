"""Shared helpers: HTTP, subprocesses and logging."""
