"""
Heat Pump Simulator Data Models
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum
from typing import Generic, Optional, TypeVar

from .timeutil import to_matter_epoch_seconds

T = TypeVar("T")


class SystemMode(IntEnum):
    """Thermostat system mode (Matter encoding)."""

    OFF = 0
    HEAT = 4


class ScheduleState(str, Enum):
    """Which source owns the active setpoint."""

    SCHEDULED = "Scheduled"
    MANUAL_HOLD = "ManualHold"


@dataclass
class LoadResult(Generic[T]):
    """Outcome of a one-time startup load.

    A degraded result still carries a usable value (zero model, empty table).
    """

    value: T
    degraded: bool = False
    reason: Optional[str] = None


@dataclass
class SetpointChange:
    """Last change applied to the authoritative setpoint."""

    source: str  # "Schedule" or "Manual"
    setpoint: float
    amount: float
    timestamp: datetime

    def to_dict(self) -> dict:
        return {
            "source": self.source,
            "setpoint": self.setpoint,
            "amount": self.amount,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class ControlState:
    """Process-wide control state, owned by a single controller."""

    current_hour: int
    active_schedule_index: int
    setpoint: float  # °C
    previous_setpoint: float  # °C, last value seen by the override handler
    system_mode: SystemMode = SystemMode.OFF
    schedule_state: ScheduleState = ScheduleState.SCHEDULED
    hold_expiry: Optional[datetime] = None
    last_change: Optional[SetpointChange] = None

    @property
    def hold_active(self) -> bool:
        return self.schedule_state is ScheduleState.MANUAL_HOLD


@dataclass
class ThermalOutputs:
    """Derived values for one control-loop pass."""

    flow_temperature: float  # °C
    flow_rate: float  # litres/second
    power: float  # mW
    pi_heating_demand: int  # 0-100 %
    is_heating_active: bool
    measured_flow: int  # 0.1 L/min


@dataclass
class ForecastSlot:
    """One contiguous block of hours sharing a schedule segment."""

    duration_seconds: int
    nominal_power: float  # mW
    min_power: float
    max_power: float
    nominal_energy: float  # mWh

    def to_dict(self) -> dict:
        return {
            "minDuration": self.duration_seconds,
            "maxDuration": self.duration_seconds,
            "defaultDuration": self.duration_seconds,
            "elapsedSlotTime": 0,
            "remainingSlotTime": self.duration_seconds,
            "nominalPower": self.nominal_power,
            "minPower": self.min_power,
            "maxPower": self.max_power,
            "nominalEnergy": self.nominal_energy,
        }


@dataclass
class Forecast:
    """Power forecast for the remainder of the day."""

    forecast_id: int
    start_epoch: int  # Unix seconds
    end_epoch: int
    slots: list[ForecastSlot] = field(default_factory=list)
    active_slot_number: int = 0
    is_pausable: bool = False
    forecast_update_reason: int = 0

    def to_dict(self) -> dict:
        """Serialize with Unix epoch start/end times."""
        return {
            "forecastId": self.forecast_id,
            "activeSlotNumber": self.active_slot_number,
            "startTime": self.start_epoch,
            "endTime": self.end_epoch,
            "isPausable": self.is_pausable,
            "slots": [slot.to_dict() for slot in self.slots],
            "forecastUpdateReason": self.forecast_update_reason,
        }

    def to_matter_dict(self) -> dict:
        """Serialize with start/end times in the Matter epoch (2000-01-01)."""
        data = self.to_dict()
        data["startTime"] = to_matter_epoch_seconds(self.start_epoch)
        data["endTime"] = to_matter_epoch_seconds(self.end_epoch)
        return data
