"""
Relay Metrics - Lightweight in-memory tracking.
"""

import time
from dataclasses import dataclass, field
from typing import Dict, List
from datetime import datetime


@dataclass
class RelayMetrics:
    """
    Lightweight in-memory metrics collector.

    Counters only - no exporters here.
    """

    # Counters
    events_received: int = 0
    messages_handled: int = 0
    system_events_handled: int = 0
    replies_sent: int = 0
    failures: int = 0
    commands: Dict[str, int] = field(default_factory=dict)

    # Errors (last 10 only)
    recent_errors: List[Dict] = field(default_factory=list)

    # Tracking
    start_time: float = field(default_factory=time.time)
    last_reset: float = field(default_factory=time.time)

    def record_event_received(self, is_message: bool):
        self.events_received += 1
        if is_message:
            self.messages_handled += 1
        else:
            self.system_events_handled += 1

    def record_command(self, name: str):
        self.commands[name] = self.commands.get(name, 0) + 1

    def record_reply_sent(self):
        self.replies_sent += 1

    def record_error(self, error_type: str, message: str, activity_id: str = None):
        """Record error (keep last 10)."""
        self.failures += 1
        error = {
            "time": datetime.utcnow().isoformat(),
            "type": error_type,
            "message": message,
            "activity_id": activity_id
        }
        self.recent_errors.append(error)
        if len(self.recent_errors) > 10:
            self.recent_errors.pop(0)

    def get_summary(self) -> Dict:
        elapsed = time.time() - self.last_reset
        return {
            "period_seconds": elapsed,
            "uptime_seconds": time.time() - self.start_time,
            "events_received": self.events_received,
            "messages_handled": self.messages_handled,
            "system_events_handled": self.system_events_handled,
            "replies_sent": self.replies_sent,
            "reply_rate": self.replies_sent / max(self.events_received, 1),
            "commands": dict(self.commands),
            "failures": self.failures,
            "error_count": len(self.recent_errors),
            "recent_errors": self.recent_errors.copy()
        }

    def reset(self):
        """Reset counters for next period."""
        self.events_received = 0
        self.messages_handled = 0
        self.system_events_handled = 0
        self.replies_sent = 0
        self.failures = 0
        self.commands = {}

        # Keep errors (rolling window)

        self.last_reset = time.time()
