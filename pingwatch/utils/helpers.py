# Helpers - Utility Functions
# Time and formatting helpers used in logs and stats reports

"""
Helpers Module

Provides utility functions for:
- Timestamp formatting
- Duration conversion between config (ms) and runtime (seconds)
"""

import time
from datetime import datetime, timezone
from typing import Optional

def format_timestamp(timestamp_ms: int) -> str:
    """
    Convert millisecond timestamp to readable string

    Args:
        timestamp_ms: Unix timestamp in milliseconds

    Returns:
        Formatted datetime string (YYYY-MM-DD HH:MM:SS UTC)
    """
    dt = datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)
    return dt.strftime('%Y-%m-%d %H:%M:%S UTC')

def now_ms() -> int:
    """Current Unix time in milliseconds"""
    return int(time.time() * 1000)

def ms_to_seconds(value_ms: Optional[int]) -> Optional[float]:
    """
    Convert a millisecond duration to seconds

    Args:
        value_ms: Duration in milliseconds (None passes through)

    Returns:
        Duration in seconds
    """
    if value_ms is None:
        return None
    return value_ms / 1000.0

def format_age(seconds: Optional[float]) -> str:
    """
    Format an elapsed duration for log lines

    Args:
        seconds: Elapsed seconds, None when the event never happened

    Returns:
        Formatted string (e.g., "12.3s ago" or "never")
    """
    if seconds is None:
        return "never"
    return f"{seconds:.1f}s ago"
