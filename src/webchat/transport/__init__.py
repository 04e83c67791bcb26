"""
Webchat Transport Layer

The connection manager talks to the network only through the Socket
interface: a socket is dialed, yields lifecycle events, and accepts text
frames. Swapping the factory swaps the transport (tests use an in-memory
double).
"""

from webchat.transport.socket import (
    ABNORMAL_CLOSURE,
    NORMAL_CLOSURE,
    Socket,
    SocketEvent,
    SocketEventType,
    SocketFactory,
    WebsocketsSocket,
    websockets_factory,
)

__all__ = [
    "ABNORMAL_CLOSURE",
    "NORMAL_CLOSURE",
    "Socket",
    "SocketEvent",
    "SocketEventType",
    "SocketFactory",
    "WebsocketsSocket",
    "websockets_factory",
]
