# Message Router - Application Dispatch
# Delivers non-heartbeat payloads to registered application handlers

"""
Message Router Module

Responsibilities:
- Keep an ordered list of application handlers
- Dispatch each inbound payload to every handler
- Isolate handler failures (one bad handler does not block the rest)
- Statistics tracking

Payloads are opaque strings; the router does no parsing. Heartbeat
tokens are consumed by the HeartbeatManager before dispatch.
"""

import inspect
from typing import Any, Callable, Dict, List

from ..utils.logger import setup_logger

class MessageRouter:
    """
    Routes inbound application messages to handlers

    Handlers may be plain functions or coroutine functions taking the
    payload as their only argument.
    """

    def __init__(self):
        """Initialize message router"""
        self.logger = setup_logger("MessageRouter")
        self._handlers: List[Callable] = []
        self._dispatch_count = 0
        self._error_count = 0

    def add_handler(self, handler: Callable):
        """
        Register an application handler

        Args:
            handler: Callable receiving the raw payload
        """
        if handler not in self._handlers:
            self._handlers.append(handler)

    def remove_handler(self, handler: Callable) -> bool:
        """
        Unregister a handler

        Args:
            handler: Previously registered callable

        Returns:
            True if removed, False if it was not registered
        """
        try:
            self._handlers.remove(handler)
            return True
        except ValueError:
            return False

    async def dispatch(self, payload: Any) -> int:
        """
        Dispatch a payload to all handlers in registration order

        Args:
            payload: Raw message from the server

        Returns:
            Number of handlers that completed without error
        """
        self._dispatch_count += 1
        delivered = 0

        for handler in list(self._handlers):
            try:
                result = handler(payload)
                if inspect.isawaitable(result):
                    await result
                delivered += 1
            except Exception as e:
                self._error_count += 1
                self.logger.error(f"Handler {getattr(handler, '__name__', handler)} failed: {e}")

        if not self._handlers:
            self.logger.debug(f"No handler for message: {payload!r:.100}")

        return delivered

    def get_stats(self) -> Dict[str, int]:
        """
        Get router statistics

        Returns:
            Dictionary with stats
        """
        return {
            'handlers': len(self._handlers),
            'dispatched': self._dispatch_count,
            'handler_errors': self._error_count
        }
