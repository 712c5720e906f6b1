# WebSocket Client - Connection Management
# Text-message WebSocket client with ping/pong liveness detection

"""
WebSocket Client Module

Responsibilities:
- Establish WebSocket connection to the server
- Connection state management (CONNECTING, OPEN, CLOSING, CLOSED)
- Heartbeat (ping/pong) via HeartbeatManager
- Route inbound application messages
- Error handling
- Event callbacks (open, message, close, error)

There is no auto-reconnect: when the connection closes (including a
heartbeat timeout) the close callback fires and recovery is up to the
caller.
"""

import asyncio
import inspect
from typing import Any, Callable, Dict, Optional, Tuple

import websockets

from .errors import NotOpenError, TransportError
from .heartbeat_manager import HeartbeatManager, PING_PAYLOAD, PONG_PAYLOAD
from .state import ConnectionState
from ..processors.message_router import MessageRouter
from ..utils.logger import setup_logger

# Close code reported when the socket dropped without a close frame
ABNORMAL_CLOSURE = 1006

class WebSocketClient:
    """
    WebSocket client with heartbeat liveness detection

    Features:
    - Ping/pong heartbeat, connection closed on missed pong
    - Message routing for non-heartbeat payloads
    - Event callbacks (sync or async callables)
    - Comprehensive error handling
    """

    def __init__(
        self,
        url: str = "ws://localhost:8001/ws",
        ping_interval: float = 30.0,
        pong_timeout: Optional[float] = None,
        close_timeout: float = 10.0,
        router: Optional[MessageRouter] = None
    ):
        """
        Initialize WebSocket client

        Args:
            url: WebSocket URL (ws:// or wss://)
            ping_interval: Seconds between heartbeat pings
            pong_timeout: Seconds to wait for a pong (defaults to ping_interval)
            close_timeout: Seconds to wait for the closing handshake
            router: Message router for application payloads
        """
        self.url = url
        self.ping_interval = ping_interval
        self.pong_timeout = pong_timeout if pong_timeout is not None else ping_interval
        self.close_timeout = close_timeout
        self.router = router or MessageRouter()

        # Connection state
        self.connection = None
        self.state = ConnectionState.CLOSED
        self.heartbeat: Optional[HeartbeatManager] = None
        self._local_close: Optional[Tuple[int, str]] = None
        self._close_notified = False

        # Event callbacks
        self.on_open_callback: Optional[Callable] = None
        self.on_message_callback: Optional[Callable] = None
        self.on_close_callback: Optional[Callable] = None
        self.on_error_callback: Optional[Callable] = None

        # Tasks
        self._receive_task: Optional[asyncio.Task] = None
        self._close_task: Optional[asyncio.Task] = None
        self._pending_sends: set = set()

        self.stats = {
            'messages_sent': 0,
            'messages_received': 0,
            'errors': 0
        }

        # Logger
        self.logger = setup_logger("WebSocketClient")

    async def connect(self) -> bool:
        """
        Establish WebSocket connection and start the heartbeat

        Returns:
            True if connected successfully, False otherwise
        """
        if self.state == ConnectionState.OPEN:
            self.logger.warning("Already connected")
            return True
        if self.state != ConnectionState.CLOSED:
            self.logger.warning(f"Cannot connect while {self.state.value}")
            return False

        self.state = ConnectionState.CONNECTING
        self._local_close = None
        self._close_notified = False
        self.heartbeat = HeartbeatManager(
            self,
            ping_interval=self.ping_interval,
            pong_timeout=self.pong_timeout
        )
        self.logger.info(f"Connecting to {self.url}...")

        try:
            self.connection = await websockets.connect(
                self.url,
                ping_interval=None,  # Heartbeat is handled by HeartbeatManager
                close_timeout=self.close_timeout
            )
        except Exception as e:
            self.state = ConnectionState.CLOSED
            self.connection = None
            self.logger.error(f"Connection failed: {e}")
            await self._emit_error(TransportError(f"Connection to {self.url} failed: {e}", e))
            return False

        if self.state != ConnectionState.CONNECTING:
            # close() was called during the opening handshake
            self.logger.info("Connection closed before it opened")
            code, reason = self._local_close
            await self._close_connection(self.connection, code, reason)
            await self._handle_close(self.connection)
            return False

        self.state = ConnectionState.OPEN
        self.logger.info("Connected to the WebSocket server.")

        # Start background tasks
        self._receive_task = asyncio.create_task(self._receive_loop(self.connection))
        self.heartbeat.start()

        await self._invoke(self.on_open_callback)
        return True

    def send(self, payload: str):
        """
        Send a raw text payload

        Args:
            payload: Message to transmit

        Raises:
            NotOpenError: If the connection is not OPEN (nothing is sent)
        """
        self._ensure_open()

        task = asyncio.create_task(
            self._transmit(self.connection, payload)
        )
        self._pending_sends.add(task)
        task.add_done_callback(self._pending_sends.discard)

    async def send_message(self, message: str) -> bool:
        """
        Send an application message to the server

        Args:
            message: Text payload (must not be a heartbeat token)

        Returns:
            True if sent successfully, False otherwise
        """
        if message in (PING_PAYLOAD, PONG_PAYLOAD):
            self.logger.warning(f"Refusing to send reserved heartbeat token: {message!r}")
            return False

        try:
            self._ensure_open()
        except NotOpenError:
            self.logger.error("Unable to send message. WebSocket is not open.")
            return False

        if not await self._transmit(self.connection, message):
            return False

        self.logger.info(f"Message sent to server: {message}")
        return True

    def close(self, code: int = 1000, reason: str = ""):
        """
        Start closing the connection (safe to call from timer callbacks)

        Args:
            code: WebSocket close code
            reason: Close reason
        """
        if self.state in (ConnectionState.CLOSING, ConnectionState.CLOSED):
            return

        previous = self.state
        self.state = ConnectionState.CLOSING
        self._local_close = (code, reason)
        if self.heartbeat:
            self.heartbeat.stop()
        self.logger.info(f"Closing connection (code={code}, reason={reason!r})")

        if previous == ConnectionState.OPEN and self.connection is not None:
            self._close_task = asyncio.create_task(
                self._close_connection(self.connection, code, reason)
            )

    async def disconnect(self, code: int = 1000, reason: str = ""):
        """
        Close WebSocket connection gracefully and wait for it to finish

        Args:
            code: WebSocket close code
            reason: Close reason
        """
        self.logger.info("Disconnecting...")
        self.close(code, reason)
        await self.wait_closed(timeout=self.close_timeout + 5.0)
        self.logger.info("✅ Disconnected")

    async def wait_closed(self, timeout: Optional[float] = None):
        """
        Wait until the receive loop has finished

        Args:
            timeout: Seconds to wait before cancelling the receive loop
        """
        task = self._receive_task
        if task is None or task.done() or task is asyncio.current_task():
            return

        try:
            await asyncio.wait_for(asyncio.shield(task), timeout=timeout)
        except asyncio.TimeoutError:
            self.logger.warning("Receive loop did not finish - cancelling")
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    def _ensure_open(self):
        if self.state != ConnectionState.OPEN:
            raise NotOpenError(self.state)

    async def _transmit(self, connection, payload: str) -> bool:
        try:
            await connection.send(payload)
        except websockets.exceptions.ConnectionClosed as e:
            # The receive loop reports the closure
            self.logger.warning(f"Send dropped, connection closed: {e}")
            return False
        except Exception as e:
            self.logger.error(f"Failed to send message: {e}")
            await self._emit_error(TransportError(f"Send failed: {e}", e))
            return False

        self.stats['messages_sent'] += 1
        self.logger.debug(f"Sent: {payload}")
        return True

    async def _close_connection(self, connection, code: int, reason: str):
        try:
            await connection.close(code, reason)
        except Exception as e:
            self.logger.warning(f"Error closing connection: {e}")

    async def _receive_loop(self, connection):
        """
        Background task to receive messages
        """
        try:
            async for message in connection:
                if isinstance(message, bytes):
                    message = message.decode("utf-8", errors="replace")
                await self._handle_message(message)

        except websockets.exceptions.ConnectionClosed as e:
            self.logger.debug(f"Connection closed while receiving: {e}")

        except asyncio.CancelledError:
            self.logger.debug("Receive loop cancelled")
            raise

        except Exception as e:
            self.logger.error(f"WebSocket error: {e}")
            await self._emit_error(TransportError(f"Receive failed: {e}", e))
            await self._close_connection(connection, 1011, "receive error")

        finally:
            await self._handle_close(connection)

    async def _handle_message(self, message: str):
        """
        Handle received message

        Args:
            message: Raw message string
        """
        self.stats['messages_received'] += 1
        self.logger.debug(f"Received message: {message}")

        if self.heartbeat and self.heartbeat.handle_message(message):
            return

        await self.router.dispatch(message)
        await self._invoke(self.on_message_callback, message)

    async def _handle_close(self, connection):
        """Tear down after the socket closed (runs once per connection)"""
        if self._close_notified:
            return
        self._close_notified = True

        if self.heartbeat:
            self.heartbeat.stop()
        self.state = ConnectionState.CLOSED

        if self._local_close is not None:
            code, reason = self._local_close
        else:
            code = getattr(connection, "close_code", None)
            reason = getattr(connection, "close_reason", None) or ""
        if code is None:
            code = ABNORMAL_CLOSURE

        self.logger.info(f"Connection closed. Code: {code}, Reason: {reason}")
        await self._invoke(self.on_close_callback, code, reason)

    async def _emit_error(self, error: Exception):
        self.stats['errors'] += 1
        await self._invoke(self.on_error_callback, error)

    async def _invoke(self, callback: Optional[Callable], *args: Any):
        if callback is None:
            return
        try:
            result = callback(*args)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            self.logger.error(f"Callback {getattr(callback, '__name__', callback)} failed: {e}")

    def is_open(self) -> bool:
        """
        Check if WebSocket is open

        Returns:
            True if open, False otherwise
        """
        return self.state == ConnectionState.OPEN

    def get_state(self) -> ConnectionState:
        """
        Get current connection state

        Returns:
            Current ConnectionState
        """
        return self.state

    def get_stats(self) -> Dict[str, Any]:
        """
        Get client statistics (including heartbeat and router)

        Returns:
            Dictionary with stats
        """
        return {
            **self.stats,
            'state': self.state.value,
            'heartbeat': self.heartbeat.get_stats() if self.heartbeat else None,
            'router': self.router.get_stats()
        }

    # Event callback setters
    def on_open(self, callback: Callable):
        """Set on_open callback"""
        self.on_open_callback = callback

    def on_message(self, callback: Callable):
        """Set on_message callback"""
        self.on_message_callback = callback

    def on_close(self, callback: Callable):
        """Set on_close callback (receives code, reason)"""
        self.on_close_callback = callback

    def on_error(self, callback: Callable):
        """Set on_error callback"""
        self.on_error_callback = callback
