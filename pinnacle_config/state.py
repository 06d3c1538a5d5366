"""
Session statistics for the Pinnacle configuration client.

Tracks call outcomes, event delivery and handler failures for one session.
"""

import time
from typing import Optional


class ClientStats:
    """
    Counters for one client session.

    Mutated only from the event loop thread; read from anywhere.
    """

    def __init__(self):
        """Initialize session statistics."""
        self.connected_at: Optional[float] = None
        self.disconnected_at: Optional[float] = None
        self.disconnect_reason: Optional[str] = None

        self.telemetry = {
            "calls_sent": 0,
            "calls_succeeded": 0,
            "calls_rejected": 0,
            "calls_timed_out": 0,
            "calls_cancelled": 0,
            "calls_failed_disconnect": 0,
            "late_responses_discarded": 0,
            "unknown_responses_ignored": 0,
            "events_received": 0,
            "events_dispatched": 0,
            "events_unrouted": 0,
            "events_dropped": 0,
            "handler_errors": 0,
        }

    def reset(self):
        """Reset statistics to initial values."""
        self.__init__()

    def increment(self, key: str, amount: int = 1):
        """
        Increment a telemetry counter.

        Args:
            key: Counter name
            amount: Amount to add
        """
        self.telemetry[key] = self.telemetry.get(key, 0) + amount

    def record_connected(self):
        self.connected_at = time.time()
        self.disconnected_at = None
        self.disconnect_reason = None

    def record_disconnected(self, reason: str):
        self.disconnected_at = time.time()
        self.disconnect_reason = reason

    @property
    def uptime_seconds(self) -> float:
        if self.connected_at is None:
            return 0.0
        end = self.disconnected_at or time.time()
        return round(end - self.connected_at, 3)

    def to_dict(self) -> dict:
        """
        Convert statistics to dictionary.

        Returns:
            Statistics as dictionary with telemetry
        """
        return {
            "connected": self.connected_at is not None and self.disconnected_at is None,
            "uptime_seconds": self.uptime_seconds,
            "disconnect_reason": self.disconnect_reason,
            "telemetry": dict(self.telemetry),
        }
