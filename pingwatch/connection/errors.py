# Connection Errors - Error Taxonomy
# Exceptions raised by the WebSocket client and heartbeat monitor

"""
Connection Errors Module

Error taxonomy:
- NotOpenError: send attempted while the connection is not open
- HeartbeatTimeoutError: pong deadline elapsed, connection is force-closed
- TransportError: any lower-level connection failure
"""

from typing import Optional

# Close code used when the heartbeat monitor closes a dead connection
# (4000-4999 is the range reserved for application use)
HEARTBEAT_TIMEOUT_CODE = 4000

class PingwatchError(Exception):
    """Base class for all pingwatch errors"""

class NotOpenError(PingwatchError):
    """Raised when sending on a connection that is not OPEN"""

    def __init__(self, state=None):
        self.state = state
        message = "WebSocket is not open"
        if state is not None:
            message = f"{message} (state: {state.value})"
        super().__init__(message)

class HeartbeatTimeoutError(PingwatchError):
    """Pong not received before the deadline"""

    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"Pong not received within {timeout:g} seconds")

class TransportError(PingwatchError):
    """Lower-level connection failure (wraps the original exception)"""

    def __init__(self, message: str, original: Optional[BaseException] = None):
        self.original = original
        super().__init__(message)
        self.__cause__ = original
