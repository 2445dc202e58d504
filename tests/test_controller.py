"""Tests for the control loop and its triggers."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta

import pytest

from conftest import FakeClock, build_controller
from core.heatpump.const import (
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
)
from core.heatpump.exceptions import HeatPumpError, SetpointOutOfRange
from core.heatpump.models import ScheduleState, SystemMode
from core.heatpump.settings import HeatPumpSettings


def read(controller, endpoint, cluster, name):
    return controller.store.read_attribute(endpoint, cluster, name)


def test_start_applies_boot_segment_and_runs_loop_once(settings, clock) -> None:
    async def scenario():
        controller = build_controller(settings, clock)
        await controller.start()
        await controller.store.drain()
        return controller

    controller = asyncio.run(scenario())

    assert controller.update_count == 1
    assert controller.state.setpoint == 21.0
    assert controller.state.schedule_state == ScheduleState.SCHEDULED
    assert read(controller, ENDPOINT_THERMOSTAT, CLUSTER_THERMOSTAT, ATTR_SETPOINT) == 2100
    # Own boot write must not start a hold
    assert not controller.state.hold_active


def test_off_mode_outputs(settings, clock) -> None:
    async def scenario():
        controller = build_controller(settings, clock)
        await controller.start()
        return controller

    controller = asyncio.run(scenario())

    assert controller.forecast is None
    assert read(controller, ENDPOINT_HEAT_PUMP, CLUSTER_ENERGY_MANAGEMENT, "forecast") is None
    assert read(controller, ENDPOINT_HEAT_PUMP, CLUSTER_FLOW_MEASUREMENT, "measuredValue") == 0
    # 19750 mW scaled by 20 % demand rather than forced to zero
    assert read(controller, ENDPOINT_HEAT_PUMP, CLUSTER_POWER_MEASUREMENT, "activePower") == 3950
    assert read(controller, ENDPOINT_THERMOSTAT, CLUSTER_THERMOSTAT, ATTR_PI_HEATING_DEMAND) == 20
    assert read(controller, ENDPOINT_THERMOSTAT, CLUSTER_THERMOSTAT, ATTR_RUNNING_STATE) == {"heat": False}
    assert read(controller, ENDPOINT_FLOW_SENSOR, CLUSTER_TEMPERATURE_MEASUREMENT, "measuredValue") == 3750


def test_heat_mode_outputs_and_forecast(settings, clock) -> None:
    async def scenario():
        controller = build_controller(settings, clock)
        await controller.start()
        await controller.set_system_mode(SystemMode.HEAT)
        return controller

    controller = asyncio.run(scenario())

    assert controller.state.system_mode == SystemMode.HEAT
    assert controller.update_count == 2
    assert read(controller, ENDPOINT_HEAT_PUMP, CLUSTER_POWER_MEASUREMENT, "activePower") == 19750
    assert read(controller, ENDPOINT_HEAT_PUMP, CLUSTER_FLOW_MEASUREMENT, "measuredValue") == 137
    assert read(controller, ENDPOINT_THERMOSTAT, CLUSTER_THERMOSTAT, ATTR_RUNNING_STATE) == {"heat": True}

    assert [s.duration_seconds for s in controller.forecast.slots] == [12 * 3600, 2 * 3600]
    stored = read(controller, ENDPOINT_HEAT_PUMP, CLUSTER_ENERGY_MANAGEMENT, "forecast")
    assert stored["startTime"] == controller.forecast.start_epoch - 946_684_800
    assert len(stored["slots"]) == 2


def test_manual_setpoint_starts_hold_and_runs_loop_once(settings, clock) -> None:
    async def scenario():
        controller = build_controller(settings, clock)
        await controller.start()
        before = controller.update_count
        await controller.set_setpoint(23.0)
        return controller, controller.update_count - before

    controller, runs = asyncio.run(scenario())

    assert runs == 1
    state = controller.state
    assert state.hold_active
    assert state.setpoint == 23.0
    assert state.hold_expiry == clock.now + timedelta(minutes=30)
    assert state.last_change.source == "Manual"
    assert state.last_change.amount == 2.0
    # Demand follows the new setpoint: (23 - 20) / 5
    assert read(controller, ENDPOINT_THERMOSTAT, CLUSTER_THERMOSTAT, ATTR_PI_HEATING_DEMAND) == 60


def test_write_from_other_client_is_treated_as_manual(settings, clock) -> None:
    async def scenario():
        controller = build_controller(settings, clock)
        await controller.start()
        await controller.store.write_attributes(
            ENDPOINT_THERMOSTAT, CLUSTER_THERMOSTAT, {ATTR_SETPOINT: 2250}, source="matter-controller"
        )
        await controller.store.drain()
        return controller

    controller = asyncio.run(scenario())

    assert controller.state.hold_active
    assert controller.state.setpoint == 22.5
    assert controller.state.last_change.amount == 1.5


def test_setpoint_outside_limits_is_rejected(settings, clock) -> None:
    async def scenario():
        controller = build_controller(settings, clock)
        await controller.start()
        with pytest.raises(SetpointOutOfRange):
            await controller.set_setpoint(31.0)
        return controller

    controller = asyncio.run(scenario())
    assert not controller.state.hold_active
    assert controller.update_count == 1


def test_raise_lower_in_tenths_and_clamped(settings, clock) -> None:
    async def scenario():
        controller = build_controller(settings, clock)
        await controller.start()
        first = await controller.setpoint_raise_lower(5)
        second = await controller.setpoint_raise_lower(200)
        return controller, first, second

    controller, first, second = asyncio.run(scenario())

    assert first == pytest.approx(21.5)
    assert second == 30.0
    assert controller.state.setpoint == 30.0
    assert controller.state.hold_active


def test_tick_without_hour_change_does_nothing(settings, clock) -> None:
    async def scenario():
        controller = build_controller(settings, clock)
        await controller.start()
        clock.now = clock.now + timedelta(minutes=10)
        changed = await controller.tick()
        return controller, changed

    controller, changed = asyncio.run(scenario())

    assert not changed
    assert controller.update_count == 1


def test_tick_in_same_segment_keeps_hold_and_setpoint(settings, clock) -> None:
    async def scenario():
        controller = build_controller(settings, clock)
        await controller.start()
        await controller.set_setpoint(23.0)
        events_before = len(controller.history.get_control_events())
        clock.now = datetime(2024, 11, 28, 11, 1)
        changed = await controller.tick()
        await controller.store.drain()
        return controller, changed, events_before

    controller, changed, events_before = asyncio.run(scenario())

    assert changed
    assert controller.state.current_hour == 11
    assert controller.state.hold_active
    assert controller.state.setpoint == 23.0
    assert read(controller, ENDPOINT_THERMOSTAT, CLUSTER_THERMOSTAT, ATTR_SETPOINT) == 2300
    assert len(controller.history.get_control_events()) == events_before


def test_tick_into_new_segment_applies_schedule_without_reentry(settings, clock) -> None:
    async def scenario():
        controller = build_controller(settings, clock)
        await controller.start()
        await controller.set_setpoint(23.0)
        before = controller.update_count
        clock.now = datetime(2024, 11, 28, 22, 0, 30)
        await controller.tick()
        await controller.store.drain()
        return controller, controller.update_count - before

    controller, runs = asyncio.run(scenario())

    # Own setpoint write is ignored, so exactly one loop pass
    assert runs == 1
    state = controller.state
    assert state.active_schedule_index == 2
    assert state.setpoint == 16.0
    assert state.schedule_state == ScheduleState.SCHEDULED
    assert state.hold_expiry is None
    assert state.last_change.source == "Schedule"
    assert read(controller, ENDPOINT_THERMOSTAT, CLUSTER_THERMOSTAT, ATTR_SETPOINT) == 1600


def test_reset_reseeds_hour(settings, clock) -> None:
    async def scenario():
        controller = build_controller(settings, clock)
        await controller.start()
        clock.now = datetime(2024, 11, 28, 3, 0)
        await controller.reset()
        return controller

    controller = asyncio.run(scenario())

    assert controller.state.current_hour == 3
    assert controller.state.active_schedule_index == 0
    assert controller.state.setpoint == 16.0
    assert controller.update_count == 2
    assert [e["action"] for e in controller.history.get_control_events()][-2:] == ["reset", "schedule_change"]


def test_repeated_passes_do_not_drift(settings, clock) -> None:
    async def scenario():
        controller = build_controller(settings, clock)
        await controller.start()
        await controller.set_system_mode(SystemMode.HEAT)
        first = controller.summary()
        for _ in range(3):
            await controller.reset()
        return first, controller.summary()

    first, last = asyncio.run(scenario())
    assert first == last


def test_mode_change_keeps_hold(settings, clock) -> None:
    async def scenario():
        controller = build_controller(settings, clock)
        await controller.start()
        await controller.set_setpoint(22.0)
        await controller.set_system_mode(SystemMode.HEAT)
        await controller.set_system_mode(SystemMode.OFF)
        return controller

    controller = asyncio.run(scenario())

    assert controller.state.hold_active
    assert controller.state.system_mode == SystemMode.OFF
    assert controller.forecast is None
    assert controller.update_count == 4


def test_failed_store_write_is_not_fatal(clock) -> None:
    # Schedule targets of 16 °C are below this thermostat's lower limit
    settings = HeatPumpSettings(weather_enabled=False, min_heat_setpoint=17.0)
    clock.now = datetime(2024, 11, 28, 2, 0)

    async def scenario():
        controller = build_controller(settings, clock)
        await controller.start()
        return controller

    controller = asyncio.run(scenario())

    assert controller.update_count == 1
    assert controller.state.setpoint == 16.0
    assert read(controller, ENDPOINT_THERMOSTAT, CLUSTER_THERMOSTAT, ATTR_SETPOINT) == 2000


def test_unknown_local_temperature_gives_no_demand(clock) -> None:
    settings = HeatPumpSettings(weather_enabled=False, initial_local_temperature=None)

    async def scenario():
        controller = build_controller(settings, clock)
        await controller.start()
        await controller.set_system_mode(SystemMode.HEAT)
        return controller

    controller = asyncio.run(scenario())

    assert controller.outputs.pi_heating_demand == 0
    assert not controller.outputs.is_heating_active
    assert read(controller, ENDPOINT_HEAT_PUMP, CLUSTER_FLOW_MEASUREMENT, "measuredValue") == 0


def test_unsupported_mode_is_rejected_by_store(settings, clock) -> None:
    async def scenario():
        controller = build_controller(settings, clock)
        await controller.start()
        ok = await controller.store.write_attributes(
            ENDPOINT_THERMOSTAT, CLUSTER_THERMOSTAT, {ATTR_SYSTEM_MODE: 3}, source="matter-controller"
        )
        await controller.store.drain()
        return controller, ok

    controller, ok = asyncio.run(scenario())

    assert not ok
    assert read(controller, ENDPOINT_THERMOSTAT, CLUSTER_THERMOSTAT, ATTR_SYSTEM_MODE) == int(SystemMode.OFF)
    assert controller.state.system_mode == SystemMode.OFF
    assert controller.update_count == 1


def test_setpoint_change_replaced_by_schedule_is_dropped(settings, clock) -> None:
    async def scenario():
        controller = build_controller(settings, clock)
        await controller.start()
        # Notification is queued but not yet delivered when the hour rolls over
        await controller.store.write_attributes(
            ENDPOINT_THERMOSTAT, CLUSTER_THERMOSTAT, {ATTR_SETPOINT: 2300}, source="matter-controller"
        )
        clock.now = datetime(2024, 11, 28, 22, 0, 5)
        await controller.tick()
        await controller.store.drain()
        return controller

    controller = asyncio.run(scenario())

    state = controller.state
    assert read(controller, ENDPOINT_THERMOSTAT, CLUSTER_THERMOSTAT, ATTR_SETPOINT) == 1600
    assert state.setpoint == 16.0
    assert state.schedule_state == ScheduleState.SCHEDULED
    assert not state.hold_active
    assert state.last_change.source == "Schedule"
    assert [e["action"] for e in controller.history.get_control_events()][-1] == "schedule_change"


def test_superseded_external_setpoint_is_dropped(settings, clock) -> None:
    async def scenario():
        controller = build_controller(settings, clock)
        await controller.start()
        before = controller.update_count
        for value in (2300, 2400):
            await controller.store.write_attributes(
                ENDPOINT_THERMOSTAT, CLUSTER_THERMOSTAT, {ATTR_SETPOINT: value}, source="matter-controller"
            )
        await controller.store.drain()
        return controller, controller.update_count - before

    controller, runs = asyncio.run(scenario())

    assert runs == 1
    assert controller.state.setpoint == 24.0
    assert controller.state.last_change.amount == 3.0


def test_notifications_published_per_pass(settings, clock) -> None:
    received = []

    async def subscriber(event, payload):
        received.append((event, payload))

    async def scenario():
        controller = build_controller(settings, clock)
        controller.bus.subscribe(subscriber)
        await controller.start()
        await controller.set_system_mode(SystemMode.HEAT)
        await controller.bus.drain()

    asyncio.run(scenario())

    assert [event for event, _ in received] == ["systemUpdated", "systemUpdated"]
    payload = received[-1][1]
    assert payload == {
        "systemMode": 4,
        "currentHour": 10,
        "targetTemperature": 21.0,
        "flowTemperature": 37.5,
        "power": 19750,
        "activeHeatingScheduleIndex": 1,
    }


def test_commands_require_start(settings, clock) -> None:
    controller = build_controller(settings, clock)
    with pytest.raises(HeatPumpError):
        asyncio.run(controller.tick())


def test_concurrent_triggers_are_serialized(settings, clock) -> None:
    async def scenario():
        controller = build_controller(settings, clock)
        await controller.start()
        await asyncio.gather(
            controller.set_setpoint(22.0),
            controller.set_system_mode(SystemMode.HEAT),
            controller.reset(),
        )
        await controller.store.drain()
        return controller

    controller = asyncio.run(scenario())

    assert controller.update_count == 4
    assert controller.state.setpoint == 22.0
    assert controller.state.system_mode == SystemMode.HEAT


def test_status_reports_hold(settings) -> None:
    clock = FakeClock(datetime(2024, 11, 28, 10, 30))

    async def scenario():
        controller = build_controller(settings, clock)
        await controller.start()
        await controller.set_setpoint(22.0)
        clock.now = clock.now + timedelta(minutes=45)
        return controller.status()

    status = asyncio.run(scenario())

    assert status["status"] == "Running"
    assert status["scheduleState"] == "ManualHold"
    assert status["holdActive"] is True
    assert status["holdExpired"] is True
    assert status["lastChange"]["source"] == "Manual"
