"""State, commands and framed business link for a WebSocket push gateway."""

__version__ = "0.1.0"