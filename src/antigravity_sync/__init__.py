"""Antigravity Sync: keep an assistant's local context in step across machines via git."""

__version__ = "0.4.0"
