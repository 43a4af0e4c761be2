"""Relay MCP: queue-driven remote control of an interactive coding agent in tmux."""

__version__ = "0.1.0"

__all__ = ["__version__"]
