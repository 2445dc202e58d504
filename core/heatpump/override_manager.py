"""
Schedule/override state machine.

Decides whether the active setpoint comes from the fixed schedule or from a
temporary manual hold:

- Hour boundary into a different schedule segment -> Scheduled, setpoint
  taken from the schedule, hold cleared.
- Externally sourced setpoint change -> ManualHold with a fixed hold window.
- Hour boundary inside the same segment -> no transition.

Hold expiry is advisory. A hold only ends at the next segment change.
"""

import logging
from datetime import datetime, timedelta

from .const import CHANGE_SOURCE_MANUAL, CHANGE_SOURCE_SCHEDULE
from .models import ControlState, ScheduleState, SetpointChange, SystemMode
from .schedule import HeatingSchedule

logger = logging.getLogger(__name__)


class OverrideManager:
    """Applies schedule and manual-hold transitions to a ControlState."""

    def __init__(self, schedule: HeatingSchedule, hold_minutes: int = 30):
        """Initialize the override manager.

        Args:
            schedule: Fixed heating schedule
            hold_minutes: Length of a manual hold window
        """
        self.schedule = schedule
        self.hold_duration = timedelta(minutes=hold_minutes)

    def initial_state(self, now: datetime, mode: SystemMode = SystemMode.OFF) -> ControlState:
        """Create the control state for the segment matching the boot hour."""
        hour = now.hour
        index = self.schedule.index_for(hour)
        setpoint = self.schedule.segments[index].target_temperature
        logger.info(f"Boot hour {hour} -> schedule segment {index} ({setpoint}°C)")
        return ControlState(
            current_hour=hour,
            active_schedule_index=index,
            setpoint=setpoint,
            previous_setpoint=setpoint,
            system_mode=mode,
            last_change=SetpointChange(
                source=CHANGE_SOURCE_SCHEDULE,
                setpoint=setpoint,
                amount=0.0,
                timestamp=now,
            ),
        )

    def apply_hour(self, state: ControlState, hour: int, now: datetime) -> bool:
        """Advance to a new hour.

        Args:
            state: Control state to update
            hour: Wall-clock hour now in effect
            now: Current time

        Returns:
            True if a new schedule segment took over the setpoint
        """
        state.current_hour = hour
        index = self.schedule.index_for(hour)
        if index == state.active_schedule_index:
            return False

        segment = self.schedule.segments[index]
        amount = segment.target_temperature - state.setpoint

        state.active_schedule_index = index
        state.setpoint = segment.target_temperature
        state.previous_setpoint = segment.target_temperature
        state.schedule_state = ScheduleState.SCHEDULED
        state.hold_expiry = None
        state.last_change = SetpointChange(
            source=CHANGE_SOURCE_SCHEDULE,
            setpoint=segment.target_temperature,
            amount=amount,
            timestamp=now,
        )

        logger.info(
            f"Hour {hour}: schedule segment {index} active, "
            f"setpoint {segment.target_temperature}°C"
        )
        return True

    def apply_manual_setpoint(self, state: ControlState, setpoint: float, now: datetime) -> SetpointChange:
        """Enter (or extend) a manual hold for an externally written setpoint."""
        change = SetpointChange(
            source=CHANGE_SOURCE_MANUAL,
            setpoint=setpoint,
            amount=setpoint - state.previous_setpoint,
            timestamp=now,
        )

        state.previous_setpoint = setpoint
        state.setpoint = setpoint
        state.schedule_state = ScheduleState.MANUAL_HOLD
        state.hold_expiry = now + self.hold_duration
        state.last_change = change

        logger.info(
            f"Manual setpoint {setpoint}°C ({change.amount:+.2f}), "
            f"hold until {state.hold_expiry.isoformat()}"
        )
        return change

    @staticmethod
    def hold_expired(state: ControlState, now: datetime) -> bool:
        """Whether the advisory hold window has passed."""
        return state.hold_active and state.hold_expiry is not None and now >= state.hold_expiry
