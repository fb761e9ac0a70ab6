"""Session relay: fans Redis pub/sub messages out to WebSocket sessions."""

__version__ = "0.1.0"
