"""Tests for the in-memory device-state store."""

from __future__ import annotations

import asyncio

import pytest

from core.heatpump.const import (
    ATTR_PI_HEATING_DEMAND,
    ATTR_SETPOINT,
    ATTR_SYSTEM_MODE,
    CLUSTER_THERMOSTAT,
    ENDPOINT_THERMOSTAT,
)
from core.heatpump.device_store import DeviceStateStore, default_constraints, default_layout
from core.heatpump.settings import HeatPumpSettings


def make_store() -> DeviceStateStore:
    settings = HeatPumpSettings()
    return DeviceStateStore(default_layout(settings), default_constraints(settings))


def test_initial_layout_uses_device_units() -> None:
    store = make_store()
    assert store.read_attribute(ENDPOINT_THERMOSTAT, CLUSTER_THERMOSTAT, "localTemperature") == 2000
    assert store.read_attribute(ENDPOINT_THERMOSTAT, CLUSTER_THERMOSTAT, "minHeatSetpointLimit") == 700
    assert store.read_attribute("heat-pump", "deviceEnergyManagement", "absMaxPower") == 5_000_000


def test_write_notifies_with_source() -> None:
    received = []

    async def handler(change):
        received.append(change)

    async def scenario():
        store = make_store()
        store.subscribe(ENDPOINT_THERMOSTAT, CLUSTER_THERMOSTAT, ATTR_SETPOINT, handler)
        ok = await store.write_attributes(ENDPOINT_THERMOSTAT, CLUSTER_THERMOSTAT, {ATTR_SETPOINT: 2200}, source="me")
        await store.drain()
        return ok

    assert asyncio.run(scenario())
    assert len(received) == 1
    change = received[0]
    assert change.value == 2200
    assert change.old_value == 2000
    assert change.source == "me"


def test_unchanged_value_does_not_notify() -> None:
    received = []

    async def handler(change):
        received.append(change)

    async def scenario():
        store = make_store()
        store.subscribe(ENDPOINT_THERMOSTAT, CLUSTER_THERMOSTAT, ATTR_SETPOINT, handler)
        await store.write_attributes(ENDPOINT_THERMOSTAT, CLUSTER_THERMOSTAT, {ATTR_SETPOINT: 2000})
        await store.drain()

    asyncio.run(scenario())
    assert received == []


def test_out_of_range_write_is_rejected_atomically() -> None:
    async def scenario():
        store = make_store()
        ok = await store.write_attributes(
            ENDPOINT_THERMOSTAT,
            CLUSTER_THERMOSTAT,
            {ATTR_SETPOINT: 2500, ATTR_PI_HEATING_DEMAND: 150},
        )
        return store, ok

    store, ok = asyncio.run(scenario())

    assert not ok
    assert store.read_attribute(ENDPOINT_THERMOSTAT, CLUSTER_THERMOSTAT, ATTR_SETPOINT) == 2000
    assert store.read_attribute(ENDPOINT_THERMOSTAT, CLUSTER_THERMOSTAT, ATTR_PI_HEATING_DEMAND) == 0


@pytest.mark.parametrize(
    "endpoint, cluster, partial",
    [
        ("boiler", CLUSTER_THERMOSTAT, {ATTR_SETPOINT: 2100}),
        (ENDPOINT_THERMOSTAT, "fanControl", {"fanMode": 1}),
        (ENDPOINT_THERMOSTAT, CLUSTER_THERMOSTAT, {"coolingSetpoint": 2400}),
    ],
)
def test_unknown_targets_are_rejected(endpoint, cluster, partial) -> None:
    assert asyncio.run(make_store().write_attributes(endpoint, cluster, partial)) is False


def test_subscribe_to_unknown_attribute_fails() -> None:
    async def handler(change):
        pass

    with pytest.raises(KeyError):
        make_store().subscribe(ENDPOINT_THERMOSTAT, CLUSTER_THERMOSTAT, "nope", handler)


def test_failing_handler_does_not_break_writes() -> None:
    async def broken(change):
        raise RuntimeError("boom")

    async def scenario():
        store = make_store()
        store.subscribe(ENDPOINT_THERMOSTAT, CLUSTER_THERMOSTAT, ATTR_SETPOINT, broken)
        first = await store.write_attributes(ENDPOINT_THERMOSTAT, CLUSTER_THERMOSTAT, {ATTR_SETPOINT: 2100})
        await store.drain()
        second = await store.write_attributes(ENDPOINT_THERMOSTAT, CLUSTER_THERMOSTAT, {ATTR_SETPOINT: 2200})
        await store.drain()
        return first, second

    assert asyncio.run(scenario()) == (True, True)


@pytest.mark.parametrize("mode, accepted", [(0, True), (4, True), (3, False), (1, False)])
def test_system_mode_accepts_only_off_and_heat(mode, accepted) -> None:
    async def scenario():
        store = make_store()
        ok = await store.write_attributes(ENDPOINT_THERMOSTAT, CLUSTER_THERMOSTAT, {ATTR_SYSTEM_MODE: mode})
        return store, ok

    store, ok = asyncio.run(scenario())

    assert ok is accepted
    expected = mode if accepted else 0
    assert store.read_attribute(ENDPOINT_THERMOSTAT, CLUSTER_THERMOSTAT, ATTR_SYSTEM_MODE) == expected
