# Connection State - Transport Lifecycle

"""
Connection state shared by the WebSocket client and the heartbeat monitor.
The transport owns the state; the monitor only reads it.
"""

from enum import Enum

class ConnectionState(Enum):
    """WebSocket connection states"""
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"
