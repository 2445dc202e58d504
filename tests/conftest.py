"""Test configuration for local runs."""

from __future__ import annotations

import os
import sys
from datetime import datetime

import pytest

ROOT_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
BACKEND_DIR = os.path.join(ROOT_DIR, "backend")

for path in (ROOT_DIR, BACKEND_DIR):
    if path not in sys.path:
        sys.path.insert(0, path)

from core.heatpump.controller import HeatPumpController  # noqa: E402
from core.heatpump.device_store import DeviceStateStore, default_constraints, default_layout  # noqa: E402
from core.heatpump.notifications import NotificationBus  # noqa: E402
from core.heatpump.settings import HeatPumpSettings  # noqa: E402
from core.heatpump.thermal_model import LinearPowerModel, ModelParameters  # noqa: E402
from core.heatpump.weather import OutdoorTemperatureTable  # noqa: E402

# 1 kW + 0.5 kW per °C of flow temperature; flow rate and outdoor ignored.
# Binary-exact values keep expected powers exact.
TEST_PARAMS = ModelParameters(intercept=1.0, coefficients=(0.5, 0.0, 0.0))


class FakeClock:
    """Settable wall clock."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def settings() -> HeatPumpSettings:
    return HeatPumpSettings(weather_enabled=False, tick_interval_seconds=3600)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 11, 28, 10, 30))


def build_controller(
    settings: HeatPumpSettings,
    clock: FakeClock,
    params: ModelParameters = TEST_PARAMS,
    temperatures: OutdoorTemperatureTable | None = None,
) -> HeatPumpController:
    """Controller wired to a fresh store and bus. Call start() inside a running loop."""
    store = DeviceStateStore(default_layout(settings), default_constraints(settings))
    return HeatPumpController(
        settings,
        store,
        NotificationBus(),
        temperatures or OutdoorTemperatureTable({hour: 5.0 for hour in range(24)}),
        LinearPowerModel(params),
        clock=clock,
    )
