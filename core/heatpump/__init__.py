"""Simulated heat pump control and forecast package."""

# Define public API
__all__ = [
    "HeatPumpSettings",
    "ScheduleSegment",
    "HeatPumpController",
    "DeviceStateStore",
    "NotificationBus",
    "SystemMode",
    "load_settings",
]

# Import settings
from .settings import HeatPumpSettings, ScheduleSegment, load_settings

# Import models
from .models import SystemMode

# Import runtime components
from .controller import HeatPumpController
from .device_store import DeviceStateStore
from .notifications import NotificationBus
