"""
Heat pump control loop.

Single owner of the ControlState. Every trigger (hourly tick, setpoint or
mode change notifications, reset and on/off requests) is serialized through
one asyncio lock, then the control loop recomputes all outputs from the
current state:

    outdoor temp -> flow temperature / flow rate / demand -> power
    -> device-state store -> forecast -> systemUpdated notification

Setpoint writes made by the controller itself carry its source id, and the
setpoint handler ignores them. Only changes made by someone else start a
manual hold.
"""

import asyncio
import logging
import math
import uuid
from datetime import datetime
from typing import Callable

from .const import (
    ATTR_LOCAL_TEMPERATURE,
    ATTR_OUTDOOR_TEMPERATURE,
    ATTR_PI_HEATING_DEMAND,
    ATTR_RUNNING_STATE,
    ATTR_SETPOINT,
    ATTR_SYSTEM_MODE,
    CLUSTER_ENERGY_MANAGEMENT,
    CLUSTER_FLOW_MEASUREMENT,
    CLUSTER_POWER_MEASUREMENT,
    CLUSTER_TEMPERATURE_MEASUREMENT,
    CLUSTER_THERMOSTAT,
    ENDPOINT_FLOW_SENSOR,
    ENDPOINT_HEAT_PUMP,
    ENDPOINT_THERMOSTAT,
    EVENT_SYSTEM_UPDATED,
)
from .device_store import AttributeChange, DeviceStateStore
from .exceptions import HeatPumpError, SetpointOutOfRange
from .forecast import generate_forecast
from .history import HistoryTracker
from .models import ControlState, Forecast, SystemMode, ThermalOutputs
from .notifications import NotificationBus
from .override_manager import OverrideManager
from .schedule import HeatingSchedule
from .settings import HeatPumpSettings
from .thermal_model import LinearPowerModel, derive_outputs
from .weather import OutdoorTemperatureTable

logger = logging.getLogger(__name__)


def _to_centi(celsius: float) -> int:
    return round(celsius * 100)


class HeatPumpController:
    """Schedule-driven control loop for the simulated heat pump."""

    def __init__(
        self,
        settings: HeatPumpSettings,
        store: DeviceStateStore,
        bus: NotificationBus,
        temperatures: OutdoorTemperatureTable,
        model: LinearPowerModel,
        clock: Callable[[], datetime] = datetime.now,
        history: HistoryTracker | None = None,
    ):
        """Initialize controller.

        Args:
            settings: Simulator settings
            store: Device-state store the outputs are written to
            bus: Notification bus for connected clients
            temperatures: Reference-day outdoor temperatures
            model: Power model
            clock: Returns local wall-clock time
            history: Event history (a private tracker by default)
        """
        self.settings = settings
        self.store = store
        self.bus = bus
        self.temperatures = temperatures
        self.model = model
        self.clock = clock
        self.history = history or HistoryTracker()

        self.schedule = HeatingSchedule(settings.heating_schedule)
        self.overrides = OverrideManager(self.schedule, settings.hold_minutes)

        # Provenance tag for our own writes
        self.source_id = f"controller-{uuid.uuid4().hex[:8]}"

        self._lock = asyncio.Lock()
        self.state: ControlState | None = None
        self.outputs: ThermalOutputs | None = None
        self.forecast: Forecast | None = None
        self.update_count = 0

    async def start(self):
        """Seed state from the boot hour, subscribe to changes and run the loop once."""
        if self.state is not None:
            logger.warning("Controller already started")
            return

        mode = SystemMode(self.store.read_attribute(ENDPOINT_THERMOSTAT, CLUSTER_THERMOSTAT, ATTR_SYSTEM_MODE))
        self.state = self.overrides.initial_state(self.clock(), mode)

        self.store.subscribe(ENDPOINT_THERMOSTAT, CLUSTER_THERMOSTAT, ATTR_SETPOINT, self._on_setpoint_changed)
        self.store.subscribe(ENDPOINT_THERMOSTAT, CLUSTER_THERMOSTAT, ATTR_SYSTEM_MODE, self._on_mode_changed)

        async with self._lock:
            await self._write(ENDPOINT_THERMOSTAT, CLUSTER_THERMOSTAT, {ATTR_SETPOINT: _to_centi(self.state.setpoint)})
            await self._update_system()

        logger.info(f"Controller started at hour {self.state.current_hour} (source {self.source_id})")

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    async def tick(self) -> bool:
        """Detect an hour boundary and apply the schedule.

        Returns:
            True if the hour changed since the last tick
        """
        self._require_started()
        async with self._lock:
            hour = self.clock().hour
            if hour == self.state.current_hour:
                return False
            await self._advance_hour(hour)
            return True

    async def reset(self):
        """Re-seed the current hour from the wall clock and re-run the loop."""
        self._require_started()
        async with self._lock:
            hour = self.clock().hour
            self.history.add_control_event(action="reset", details=f"Reset to hour {hour}")
            logger.info(f"Reset requested, current hour {hour}")
            await self._advance_hour(hour)

    async def set_setpoint(self, temperature: float, source: str = "api"):
        """Write a setpoint as an external caller.

        The change reaches the override handler through the store's
        notification, exactly like a change made by any other client.

        Raises:
            SetpointOutOfRange: If outside the thermostat limits
        """
        self._require_started()
        low, high = self.settings.min_heat_setpoint, self.settings.max_heat_setpoint
        if not low <= temperature <= high:
            raise SetpointOutOfRange(f"Setpoint {temperature}°C outside [{low}, {high}]°C")

        await self._external_write({ATTR_SETPOINT: _to_centi(temperature)}, source)

    async def setpoint_raise_lower(self, amount: int, source: str = "api") -> float:
        """Raise or lower the setpoint by amount * 0.1 °C, clamped to limits.

        Returns:
            The new setpoint (°C)
        """
        self._require_started()
        current = self.store.read_attribute(ENDPOINT_THERMOSTAT, CLUSTER_THERMOSTAT, ATTR_SETPOINT) / 100
        target = current + amount / 10
        target = max(self.settings.min_heat_setpoint, min(self.settings.max_heat_setpoint, target))
        await self.set_setpoint(round(target, 2), source)
        return target

    async def set_system_mode(self, mode: SystemMode, source: str = "api"):
        """Switch the heat pump Off or into Heat."""
        self._require_started()
        await self._external_write({ATTR_SYSTEM_MODE: int(SystemMode(mode))}, source)

    async def _external_write(self, partial: dict, source: str):
        if source == self.source_id:
            raise HeatPumpError("External writes must not use the controller source id")
        ok = await self.store.write_attributes(ENDPOINT_THERMOSTAT, CLUSTER_THERMOSTAT, partial, source=source)
        if not ok:
            raise HeatPumpError(f"Thermostat rejected write: {partial}")
        # Let the change handlers finish so callers observe the result
        await self.store.drain()

    # ------------------------------------------------------------------
    # Change notifications
    # ------------------------------------------------------------------

    async def _on_setpoint_changed(self, change: AttributeChange):
        if change.source == self.source_id:
            logger.debug(f"Ignoring own setpoint write ({change.value})")
            return
        if change.value is None:
            return

        async with self._lock:
            if not self._is_current(ATTR_SETPOINT, change):
                return
            setpoint = change.value / 100
            result = self.overrides.apply_manual_setpoint(self.state, setpoint, self.clock())
            self.history.add_control_event(
                action="manual_setpoint",
                details=f"Manual setpoint {setpoint}°C from {change.source or 'unknown'}",
                source=result.source,
                temperature=setpoint,
                amount=result.amount,
            )
            await self._update_system()

    async def _on_mode_changed(self, change: AttributeChange):
        async with self._lock:
            if not self._is_current(ATTR_SYSTEM_MODE, change):
                return
            try:
                mode = SystemMode(change.value)
            except ValueError:
                logger.warning(f"Ignoring unsupported system mode {change.value!r}")
                return

            self.state.system_mode = mode
            logger.info(f"System mode changed to {mode.name}")
            self.history.add_control_event(action="mode_change", details=f"System mode {mode.name}")
            await self._update_system()

    def _is_current(self, name: str, change: AttributeChange) -> bool:
        # A later write may have replaced the value before this notification ran
        current = self.store.read_attribute(ENDPOINT_THERMOSTAT, CLUSTER_THERMOSTAT, name)
        if current != change.value:
            logger.debug(f"Dropping stale {name} change {change.value!r}, store holds {current!r}")
            return False
        return True

    # ------------------------------------------------------------------
    # Control loop (lock held)
    # ------------------------------------------------------------------

    async def _advance_hour(self, hour: int):
        if self.overrides.apply_hour(self.state, hour, self.clock()):
            change = self.state.last_change
            self.history.add_control_event(
                action="schedule_change",
                details=f"Schedule segment {self.state.active_schedule_index} at hour {hour}",
                source=change.source,
                temperature=change.setpoint,
                amount=change.amount,
            )
            await self._write(ENDPOINT_THERMOSTAT, CLUSTER_THERMOSTAT, {ATTR_SETPOINT: _to_centi(self.state.setpoint)})
        await self._update_system()

    async def _update_system(self):
        """Recompute every output from the current state."""
        state = self.state
        outdoor_temp = self.temperatures.temperature_at(state.current_hour)

        outputs = derive_outputs(
            self.model,
            state.setpoint,
            outdoor_temp,
            state.system_mode,
            self._local_temperature(),
        )
        power = math.floor(outputs.power)

        logger.debug(
            f"hour={state.current_hour} outdoor={outdoor_temp}°C setpoint={state.setpoint}°C "
            f"flow={outputs.flow_temperature:.1f}°C rate={outputs.flow_rate:.4f} "
            f"power={power}mW demand={outputs.pi_heating_demand}%"
        )

        await self._write(
            ENDPOINT_FLOW_SENSOR,
            CLUSTER_TEMPERATURE_MEASUREMENT,
            {"measuredValue": _to_centi(outputs.flow_temperature)},
        )
        await self._write(ENDPOINT_HEAT_PUMP, CLUSTER_POWER_MEASUREMENT, {"activePower": power})
        await self._write(ENDPOINT_HEAT_PUMP, CLUSTER_FLOW_MEASUREMENT, {"measuredValue": outputs.measured_flow})
        await self._write(
            ENDPOINT_THERMOSTAT,
            CLUSTER_THERMOSTAT,
            {
                ATTR_PI_HEATING_DEMAND: outputs.pi_heating_demand,
                ATTR_RUNNING_STATE: {"heat": outputs.is_heating_active},
                ATTR_OUTDOOR_TEMPERATURE: _to_centi(outdoor_temp),
            },
        )

        if state.system_mode == SystemMode.OFF:
            # No consumption expected while off
            forecast = None
        else:
            forecast = generate_forecast(
                state.current_hour,
                self.schedule,
                self.temperatures,
                self.model,
                self.clock(),
            )
        await self._write(
            ENDPOINT_HEAT_PUMP,
            CLUSTER_ENERGY_MANAGEMENT,
            {"forecast": forecast.to_matter_dict() if forecast else None},
        )

        self.outputs = outputs
        self.forecast = forecast
        self.update_count += 1

        self.history.add_snapshot(
            system_mode=int(state.system_mode),
            current_hour=state.current_hour,
            target_temperature=state.setpoint,
            flow_temperature=outputs.flow_temperature,
            power=power,
            pi_heating_demand=outputs.pi_heating_demand,
            heating_active=outputs.is_heating_active,
        )

        self.bus.publish(EVENT_SYSTEM_UPDATED, self.summary())

    async def _write(self, endpoint: str, cluster: str, partial: dict) -> bool:
        ok = await self.store.write_attributes(endpoint, cluster, partial, source=self.source_id)
        if not ok:
            logger.warning(f"Write to {endpoint}/{cluster} failed, continuing")
        return ok

    def _local_temperature(self) -> float | None:
        value = self.store.read_attribute(ENDPOINT_THERMOSTAT, CLUSTER_THERMOSTAT, ATTR_LOCAL_TEMPERATURE)
        return value / 100 if value is not None else None

    def _require_started(self):
        if self.state is None:
            raise HeatPumpError("Controller not started")

    # ------------------------------------------------------------------
    # Externally visible views
    # ------------------------------------------------------------------

    def summary(self) -> dict:
        """Payload pushed to clients after every control-loop pass."""
        flow_temp = self.store.read_attribute(ENDPOINT_FLOW_SENSOR, CLUSTER_TEMPERATURE_MEASUREMENT, "measuredValue")
        return {
            "systemMode": int(self.state.system_mode),
            "currentHour": self.state.current_hour,
            "targetTemperature": self.state.setpoint,
            "flowTemperature": (flow_temp or 0) / 100,
            "power": self.store.read_attribute(ENDPOINT_HEAT_PUMP, CLUSTER_POWER_MEASUREMENT, "activePower"),
            "activeHeatingScheduleIndex": self.state.active_schedule_index,
        }

    def status(self) -> dict:
        """Summary plus schedule/hold details."""
        self._require_started()
        state = self.state
        return {
            "status": "Running",
            **self.summary(),
            "piHeatingDemand": self.outputs.pi_heating_demand if self.outputs else 0,
            "scheduleState": state.schedule_state.value,
            "holdActive": state.hold_active,
            "holdExpiry": state.hold_expiry.isoformat() if state.hold_expiry else None,
            "holdExpired": self.overrides.hold_expired(state, self.clock()),
            "lastChange": state.last_change.to_dict() if state.last_change else None,
        }
