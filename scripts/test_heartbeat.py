#!/usr/bin/env python3
# Test Heartbeat Manager
# Usage: python scripts/test_heartbeat.py  (or: pytest scripts/)

"""
Heartbeat Manager Test Script

Tests:
1. Ping cadence while the connection is open
2. Pong handling (disarm, duplicates, stray pongs)
3. Timeout closes the connection exactly once
4. Silent skip when the connection is not open
5. Independent ping interval / pong timeout

Runs on a virtual clock (no network, no real sleeping)
"""

import sys
from pathlib import Path

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from pingwatch.connection.errors import HEARTBEAT_TIMEOUT_CODE, NotOpenError
from pingwatch.connection.heartbeat_manager import HeartbeatManager, HeartbeatPhase
from pingwatch.connection.state import ConnectionState

class FakeHandle:
    """Timer handle compatible with asyncio.TimerHandle"""

    def __init__(self, when, callback, seq):
        self._when = when
        self.callback = callback
        self.seq = seq
        self.cancelled = False
        self.fired = False

    def when(self):
        return self._when

    def cancel(self):
        self.cancelled = True

class FakeScheduler:
    """Virtual clock; timers due at the same instant run in scheduling order"""

    def __init__(self):
        self.now = 0.0
        self._handles = []
        self._seq = 0

    def time(self):
        return self.now

    def call_at(self, when, callback):
        self._seq += 1
        handle = FakeHandle(when, callback, self._seq)
        self._handles.append(handle)
        return handle

    def pending(self):
        return [h for h in self._handles if not h.cancelled and not h.fired]

    def advance(self, seconds):
        target = self.now + seconds
        while True:
            due = [h for h in self.pending() if h.when() <= target]
            if not due:
                break
            handle = min(due, key=lambda h: (h.when(), h.seq))
            self.now = handle.when()
            handle.fired = True
            handle.callback()
        self.now = target

class FakeConnection:
    """Transport stand-in recording sends and closes"""

    def __init__(self, scheduler, state=ConnectionState.OPEN):
        self.scheduler = scheduler
        self.state = state
        self.sent = []
        self.closes = []

    def send(self, payload):
        if self.state != ConnectionState.OPEN:
            raise NotOpenError(self.state)
        self.sent.append((self.scheduler.time(), payload))

    def close(self, code=1000, reason=""):
        self.closes.append((self.scheduler.time(), code, reason))
        self.state = ConnectionState.CLOSING

    def ping_times(self):
        return [t for t, payload in self.sent if payload == "ping"]

def make_heartbeat(ping_interval=30.0, pong_timeout=None, state=ConnectionState.OPEN):
    scheduler = FakeScheduler()
    connection = FakeConnection(scheduler, state)
    heartbeat = HeartbeatManager(
        connection,
        ping_interval=ping_interval,
        pong_timeout=pong_timeout,
        scheduler=scheduler
    )
    return heartbeat, connection, scheduler

def test_ping_sent_every_interval_while_open():
    """One ping per interval boundary, answered pongs keep the cycle going"""
    heartbeat, connection, scheduler = make_heartbeat()
    heartbeat.start()

    for _ in range(4):
        scheduler.advance(5)
        heartbeat.handle_message("pong")
        scheduler.advance(25)

    assert connection.ping_times() == [0.0, 30.0, 60.0, 90.0, 120.0]
    assert connection.closes == []
    assert heartbeat.get_stats()['pings_sent'] == 5

def test_ping_only_on_boundaries():
    heartbeat, connection, scheduler = make_heartbeat(ping_interval=10.0)
    heartbeat.start()

    scheduler.advance(0)
    heartbeat.handle_message("pong")
    scheduler.advance(9.99)

    assert connection.ping_times() == [0.0]

def test_pong_before_deadline_keeps_connection_open():
    heartbeat, connection, scheduler = make_heartbeat()
    heartbeat.start()

    scheduler.advance(29)
    assert heartbeat.handle_message("pong") is True
    scheduler.advance(1)

    assert connection.closes == []
    assert heartbeat.phase == HeartbeatPhase.PING_SENT
    assert heartbeat.has_pending_ping()

def test_missed_pong_closes_once_and_stops_pinging():
    heartbeat, connection, scheduler = make_heartbeat()
    heartbeat.start()

    scheduler.advance(300)

    assert len(connection.closes) == 1
    closed_at, code, reason = connection.closes[0]
    assert closed_at == 30.0
    assert code == HEARTBEAT_TIMEOUT_CODE
    assert "Pong not received within 30 seconds" in reason
    assert connection.ping_times() == [0.0]
    assert heartbeat.phase == HeartbeatPhase.TIMED_OUT
    assert not heartbeat.is_running
    assert scheduler.pending() == []

def test_scenario_pong_then_timeout():
    """period=30s, timeout=30s: pong at 10s, no pong after the 30s ping"""
    heartbeat, connection, scheduler = make_heartbeat(ping_interval=30.0, pong_timeout=30.0)
    heartbeat.start()

    scheduler.advance(10)
    heartbeat.handle_message("pong")
    scheduler.advance(20)
    assert connection.ping_times() == [0.0, 30.0]
    assert connection.closes == []

    scheduler.advance(30)
    assert [c[0] for c in connection.closes] == [60.0]
    # The tick at the close boundary is suppressed
    assert connection.ping_times() == [0.0, 30.0]

    scheduler.advance(90)
    assert len(connection.closes) == 1
    assert connection.ping_times() == [0.0, 30.0]

def test_duplicate_pongs_are_idempotent():
    heartbeat, connection, scheduler = make_heartbeat()
    heartbeat.start()

    scheduler.advance(1)
    for _ in range(3):
        assert heartbeat.handle_message("pong") is True
    scheduler.advance(58)

    stats = heartbeat.get_stats()
    assert stats['pongs_received'] == 1
    assert stats['stray_pongs'] == 2
    assert connection.ping_times() == [0.0, 30.0]
    assert connection.closes == []
    assert heartbeat.has_pending_ping()

def test_stray_pong_before_any_ping():
    heartbeat, connection, scheduler = make_heartbeat()

    assert heartbeat.handle_message("pong") is True
    assert heartbeat.get_stats()['stray_pongs'] == 1
    assert heartbeat.phase == HeartbeatPhase.IDLE

def test_application_messages_are_not_consumed():
    heartbeat, connection, scheduler = make_heartbeat()
    heartbeat.start()
    scheduler.advance(0)

    for payload in ["hello", "ping", "PONG", " pong", '{"event": "pong"}', ""]:
        assert heartbeat.handle_message(payload) is False

    # Application traffic does not touch the deadline
    assert heartbeat.has_pending_ping()
    scheduler.advance(30)
    assert len(connection.closes) == 1

def test_tick_skipped_when_not_open():
    heartbeat, connection, scheduler = make_heartbeat(state=ConnectionState.CONNECTING)
    heartbeat.start()

    scheduler.advance(60)
    assert connection.sent == []
    assert not heartbeat.has_pending_ping()
    assert heartbeat.get_stats()['skipped_ticks'] == 3

    connection.state = ConnectionState.OPEN
    scheduler.advance(30)
    assert connection.ping_times() == [90.0]
    assert heartbeat.has_pending_ping()

def test_shorter_pong_timeout():
    heartbeat, connection, scheduler = make_heartbeat(ping_interval=30.0, pong_timeout=5.0)
    heartbeat.start()

    scheduler.advance(4)
    heartbeat.handle_message("pong")
    scheduler.advance(30)
    assert connection.closes == []

    scheduler.advance(10)
    assert [c[0] for c in connection.closes] == [35.0]
    assert connection.ping_times() == [0.0, 30.0]

def test_longer_pong_timeout_keeps_oldest_deadline():
    heartbeat, connection, scheduler = make_heartbeat(ping_interval=10.0, pong_timeout=25.0)
    heartbeat.start()

    scheduler.advance(100)

    assert connection.ping_times() == [0.0, 10.0, 20.0]
    assert [c[0] for c in connection.closes] == [25.0]

def test_pong_after_timeout_has_no_effect():
    heartbeat, connection, scheduler = make_heartbeat()
    heartbeat.start()
    scheduler.advance(30)

    assert heartbeat.handle_message("pong") is True
    assert heartbeat.phase == HeartbeatPhase.TIMED_OUT
    assert len(connection.closes) == 1
    assert heartbeat.get_stats()['timeouts'] == 1

def test_stop_cancels_all_timers():
    heartbeat, connection, scheduler = make_heartbeat()
    heartbeat.start()
    scheduler.advance(0)
    assert heartbeat.has_pending_ping()

    heartbeat.stop()
    heartbeat.stop()

    assert scheduler.pending() == []
    assert heartbeat.phase == HeartbeatPhase.STOPPED
    scheduler.advance(300)
    assert connection.ping_times() == [0.0]
    assert connection.closes == []

def test_start_is_idempotent():
    heartbeat, connection, scheduler = make_heartbeat()
    heartbeat.start()
    heartbeat.start()

    scheduler.advance(0)
    assert connection.ping_times() == [0.0]

def test_pong_timeout_defaults_to_ping_interval():
    heartbeat, _, _ = make_heartbeat(ping_interval=12.5)
    assert heartbeat.pong_timeout == 12.5

@pytest.mark.parametrize("ping_interval,pong_timeout", [(0, None), (-1, None), (10, 0)])
def test_invalid_durations_rejected(ping_interval, pong_timeout):
    with pytest.raises(ValueError):
        make_heartbeat(ping_interval=ping_interval, pong_timeout=pong_timeout)

if __name__ == "__main__":
    sys.exit(pytest.main([__file__, "-v"]))
