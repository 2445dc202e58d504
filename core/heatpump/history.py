"""
Control Event History

Simple in-memory history for the last 24 hours. Nothing survives a restart.
"""

import threading
from collections import deque
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone


@dataclass
class ControlEvent:
    """A control action event."""

    timestamp: str  # ISO format
    action: str  # "manual_setpoint", "schedule_change", "mode_change", "reset"
    details: str
    source: str | None = None
    temperature: float | None = None
    amount: float | None = None


@dataclass
class SystemSnapshot:
    """Outputs of one control-loop pass."""

    timestamp: str  # ISO format
    system_mode: int
    current_hour: int
    target_temperature: float
    flow_temperature: float
    power: int  # mW
    pi_heating_demand: int  # 0-100 %
    heating_active: bool


class HistoryTracker:
    """Tracks control events and control-loop snapshots."""

    def __init__(self, max_hours: int = 24):
        """Initialize history tracker.

        Args:
            max_hours: How many hours of history to keep
        """
        self.max_age = timedelta(hours=max_hours)

        self.control_events: deque[ControlEvent] = deque(maxlen=1000)
        self.snapshots: deque[SystemSnapshot] = deque(maxlen=1440)  # 24h at 1/min

        self.lock = threading.Lock()

    def add_control_event(
        self,
        action: str,
        details: str,
        source: str | None = None,
        temperature: float | None = None,
        amount: float | None = None,
        timestamp: datetime | None = None,
    ):
        """Log a control action."""
        ts = timestamp or datetime.now(timezone.utc)
        event = ControlEvent(
            timestamp=_iso_utc(ts),
            action=action,
            details=details,
            source=source,
            temperature=temperature,
            amount=amount,
        )

        with self.lock:
            self.control_events.append(event)
            self._cleanup_old_data()

    def add_snapshot(
        self,
        system_mode: int,
        current_hour: int,
        target_temperature: float,
        flow_temperature: float,
        power: int,
        pi_heating_demand: int,
        heating_active: bool,
        timestamp: datetime | None = None,
    ):
        ts = timestamp or datetime.now(timezone.utc)
        snapshot = SystemSnapshot(
            timestamp=_iso_utc(ts),
            system_mode=system_mode,
            current_hour=current_hour,
            target_temperature=target_temperature,
            flow_temperature=flow_temperature,
            power=power,
            pi_heating_demand=pi_heating_demand,
            heating_active=heating_active,
        )

        with self.lock:
            self.snapshots.append(snapshot)

    def get_control_events(self, hours: int | None = None) -> list[dict]:
        """Get control events.

        Args:
            hours: How many hours back (None = all available)

        Returns:
            List of control events as dicts
        """
        with self.lock:
            events = list(self.control_events)
        return [asdict(e) for e in _since(events, hours)]

    def get_snapshots(self, hours: int | None = None) -> list[dict]:
        with self.lock:
            snapshots = list(self.snapshots)
        return [asdict(s) for s in _since(snapshots, hours)]

    def _cleanup_old_data(self):
        """Remove events older than max_age."""
        cutoff = datetime.now(timezone.utc) - self.max_age
        while (self.control_events and
               datetime.fromisoformat(self.control_events[0].timestamp) < cutoff):
            self.control_events.popleft()


def _iso_utc(ts: datetime) -> str:
    # Naive datetimes are local wall-clock time
    return ts.astimezone(timezone.utc).isoformat()


def _since(records: list, hours: int | None) -> list:
    if not hours:
        return records
    cutoff = datetime.now(timezone.utc) - timedelta(hours=hours)
    return [r for r in records if datetime.fromisoformat(r.timestamp) > cutoff]
