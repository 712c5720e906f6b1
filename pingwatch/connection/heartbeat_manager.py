# Heartbeat Manager - Keep Connection Alive
# Ping/pong liveness detection for a single WebSocket connection

"""
Heartbeat Manager Module

Responsibilities:
- Send "ping" every ping_interval while the connection is open
- Expect a "pong" before pong_timeout elapses
- Close the connection on timeout (recovery is left to the caller)

Per-cycle state machine:
    IDLE -> PING_SENT -> ACKNOWLEDGED (pong) -> PING_SENT at next tick
                      -> TIMED_OUT (deadline) -> connection closed

All timers are scheduled with call_at() on a single event loop, so
tick, deadline and message callbacks never overlap.
"""

import asyncio
from enum import Enum
from typing import Any, Dict, Optional

from .errors import HEARTBEAT_TIMEOUT_CODE, HeartbeatTimeoutError
from .state import ConnectionState
from ..utils.logger import setup_logger

PING_PAYLOAD = "ping"
PONG_PAYLOAD = "pong"

class HeartbeatPhase(Enum):
    """Heartbeat cycle phases"""
    IDLE = "idle"
    PING_SENT = "ping_sent"
    ACKNOWLEDGED = "acknowledged"
    TIMED_OUT = "timed_out"
    STOPPED = "stopped"

class HeartbeatManager:
    """
    Manages WebSocket heartbeat (ping/pong)

    The connection only needs a ``state`` attribute, ``send(payload)`` and
    ``close(code, reason)``. The scheduler needs ``call_at(when, cb)``
    returning a cancellable handle with ``when()``, and ``time()``; the
    running asyncio loop is used when none is given.
    """

    def __init__(
        self,
        connection,
        ping_interval: float = 30.0,
        pong_timeout: Optional[float] = None,
        scheduler=None
    ):
        """
        Initialize heartbeat manager

        Args:
            connection: Transport to monitor (reads state, sends ping, closes)
            ping_interval: Seconds between pings
            pong_timeout: Seconds to wait for a pong (defaults to ping_interval)
            scheduler: Object providing call_at()/time()
        """
        if ping_interval <= 0:
            raise ValueError("ping_interval must be positive")
        if pong_timeout is None:
            pong_timeout = ping_interval
        if pong_timeout <= 0:
            raise ValueError("pong_timeout must be positive")

        self.connection = connection
        self.ping_interval = ping_interval
        self.pong_timeout = pong_timeout
        self._scheduler = scheduler

        self.phase = HeartbeatPhase.IDLE
        self.is_running = False
        self.last_ping_sent_at: Optional[float] = None
        self.last_pong_at: Optional[float] = None

        self._tick_handle = None
        self._deadline_handle = None

        self.stats = {
            'pings_sent': 0,
            'pongs_received': 0,
            'stray_pongs': 0,
            'skipped_ticks': 0,
            'timeouts': 0
        }

        self.logger = setup_logger("HeartbeatManager")

    def start(self):
        """Start heartbeat cycle (no-op if already running)"""
        if self.is_running:
            return
        if self._scheduler is None:
            self._scheduler = asyncio.get_running_loop()

        self.is_running = True
        self.phase = HeartbeatPhase.IDLE
        # First tick on the next loop iteration, then every ping_interval
        self._tick_handle = self._scheduler.call_at(self._scheduler.time(), self._tick)
        self.logger.debug(
            f"Heartbeat started (interval={self.ping_interval:g}s, "
            f"timeout={self.pong_timeout:g}s)"
        )

    def stop(self):
        """Stop heartbeat cycle and cancel all pending timers"""
        if self._tick_handle is not None:
            self._tick_handle.cancel()
            self._tick_handle = None
        self._disarm_deadline()

        if self.is_running:
            self.is_running = False
            if self.phase != HeartbeatPhase.TIMED_OUT:
                self.phase = HeartbeatPhase.STOPPED
            self.logger.debug("Heartbeat stopped")

    def handle_message(self, payload: Any) -> bool:
        """
        Inspect an inbound payload before application dispatch

        Args:
            payload: Raw message received from the server

        Returns:
            True if the payload was a heartbeat pong (consumed), False otherwise
        """
        if payload != PONG_PAYLOAD:
            return False

        if self._deadline_handle is None:
            # Stray or duplicate pong
            self.stats['stray_pongs'] += 1
            self.logger.debug("Pong received with no ping outstanding")
            return True

        self._disarm_deadline()
        self.stats['pongs_received'] += 1
        self.last_pong_at = self._scheduler.time()
        self.phase = HeartbeatPhase.ACKNOWLEDGED
        self.logger.info("Pong received from server.")
        return True

    def has_pending_ping(self) -> bool:
        """Check if a ping is waiting for its pong"""
        return self._deadline_handle is not None

    def get_stats(self) -> Dict[str, Any]:
        """
        Get heartbeat statistics

        Returns:
            Dictionary with counters, phase and last ping/pong times
        """
        return {
            **self.stats,
            'phase': self.phase.value,
            'is_running': self.is_running,
            'last_ping_sent_at': self.last_ping_sent_at,
            'last_pong_at': self.last_pong_at
        }

    def _tick(self):
        """Periodic tick: send ping and arm deadline"""
        scheduled = self._tick_handle.when()
        self._tick_handle = self._scheduler.call_at(
            scheduled + self.ping_interval, self._tick
        )

        # A deadline due at this boundary wins over the ping
        deadline = self._deadline_handle
        if deadline is not None and deadline.when() <= scheduled:
            self._on_deadline()
            return

        if self.connection.state != ConnectionState.OPEN:
            self.stats['skipped_ticks'] += 1
            self.logger.debug(
                f"Skipping ping, connection is {self.connection.state.value}"
            )
            return

        self.connection.send(PING_PAYLOAD)
        self.last_ping_sent_at = self._scheduler.time()
        self.stats['pings_sent'] += 1
        self.phase = HeartbeatPhase.PING_SENT
        self.logger.info("Ping sent to server.")

        # The oldest unanswered ping keeps its deadline
        if self._deadline_handle is None:
            self._arm_deadline(scheduled + self.pong_timeout)

    def _arm_deadline(self, when: float):
        self._disarm_deadline()
        self._deadline_handle = self._scheduler.call_at(when, self._on_deadline)

    def _disarm_deadline(self):
        if self._deadline_handle is not None:
            self._deadline_handle.cancel()
            self._deadline_handle = None

    def _on_deadline(self):
        """Pong deadline elapsed: close the connection"""
        self._disarm_deadline()
        error = HeartbeatTimeoutError(self.pong_timeout)
        self.stats['timeouts'] += 1
        self.logger.error(f"{error}. Closing connection.")

        self.stop()
        self.phase = HeartbeatPhase.TIMED_OUT
        self.connection.close(HEARTBEAT_TIMEOUT_CODE, str(error))
