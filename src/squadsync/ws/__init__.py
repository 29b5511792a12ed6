"""
Websocket relay server and client transport.
"""

from .client import WebSocketChannel, WebSocketTransport
from .server import app, manager

__all__ = ["app", "manager", "WebSocketChannel", "WebSocketTransport"]
