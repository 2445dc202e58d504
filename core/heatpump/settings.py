"""
Heat Pump Simulator Configuration Settings

User-facing settings are loaded from /data/options.json in production
or from the options block of config.yaml during development.
"""

import json
import logging
import os
import re
from dataclasses import dataclass, field

import yaml

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
OPTIONS_PATH = "/data/options.json"
CONFIG_PATH = os.path.join(REPO_ROOT, "config.yaml")


def _camel_to_snake(name: str) -> str:
    """Convert camelCase to snake_case."""
    s1 = re.sub("(.)([A-Z][a-z]+)", r"\1_\2", name)
    return re.sub("([a-z0-9])([A-Z])", r"\1_\2", s1).lower()


@dataclass(frozen=True)
class ScheduleSegment:
    """A time-of-day range (end hour inclusive) with a target temperature."""

    start_hour: int
    end_hour: int
    target_temperature: float

    def contains(self, hour: int) -> bool:
        return self.start_hour <= hour <= self.end_hour

    @classmethod
    def from_dict(cls, data: dict) -> "ScheduleSegment":
        """Create from dictionary."""
        converted = {_camel_to_snake(k): v for k, v in data.items()}

        # The original schedule format used "hour" for the start hour
        if "hour" in converted:
            converted["start_hour"] = converted.pop("hour")

        return cls(
            start_hour=int(converted["start_hour"]),
            end_hour=int(converted["end_hour"]),
            target_temperature=float(converted["target_temperature"]),
        )

    def to_dict(self) -> dict:
        return {
            "hour": self.start_hour,
            "endHour": self.end_hour,
            "targetTemperature": self.target_temperature,
        }


def _default_schedule() -> list[ScheduleSegment]:
    return [
        ScheduleSegment(start_hour=0, end_hour=6, target_temperature=16.0),
        ScheduleSegment(start_hour=7, end_hour=21, target_temperature=21.0),
        ScheduleSegment(start_hour=22, end_hour=23, target_temperature=16.0),
    ]


@dataclass
class HeatPumpSettings:
    """Configuration for the simulated heat pump."""

    # One-shot historical weather query
    latitude: float = 52.4143
    longitude: float = -1.7809
    timezone: str = "Europe/London"
    reference_date: str = "2024-11-28"
    weather_enabled: bool = True
    weather_timeout_seconds: float = 10.0

    model_path: str = "model/model_params.json"

    tick_interval_seconds: float = 60.0
    hold_minutes: int = 30

    heating_schedule: list[ScheduleSegment] = field(default_factory=_default_schedule)

    # Thermostat limits and initial readings (°C)
    min_heat_setpoint: float = 7.0
    max_heat_setpoint: float = 30.0
    initial_local_temperature: float | None = 20.0
    initial_outdoor_temperature: float = 15.0

    cors_origins: list[str] = field(default_factory=lambda: ["http://localhost:3001"])

    @property
    def resolved_model_path(self) -> str:
        """Model path, relative paths resolved against the repository root."""
        if os.path.isabs(self.model_path):
            return self.model_path
        return os.path.join(REPO_ROOT, self.model_path)

    @classmethod
    def from_dict(cls, data: dict) -> "HeatPumpSettings":
        """Create from dictionary."""
        converted = {_camel_to_snake(k): v for k, v in data.items()}

        if "heating_schedule" in converted:
            converted["heating_schedule"] = [
                ScheduleSegment.from_dict(s) for s in converted["heating_schedule"]
            ]

        # Nested weather block is accepted as well as flat keys
        weather = converted.pop("weather", None) or {}
        for key, value in weather.items():
            key = _camel_to_snake(key)
            if key == "enabled":
                key = "weather_enabled"
            elif key == "timeout_seconds":
                key = "weather_timeout_seconds"
            converted.setdefault(key, value)

        known = set(cls.__dataclass_fields__)
        unknown = set(converted) - known
        if unknown:
            raise ConfigurationError(f"Unknown settings: {sorted(unknown)}")

        settings = cls(**converted)
        settings.validate()
        return settings

    def validate(self):
        """Check limits and that every hour maps to exactly one schedule segment."""
        if self.min_heat_setpoint >= self.max_heat_setpoint:
            raise ConfigurationError(
                f"min_heat_setpoint ({self.min_heat_setpoint}) must be below "
                f"max_heat_setpoint ({self.max_heat_setpoint})"
            )
        if self.hold_minutes <= 0:
            raise ConfigurationError("hold_minutes must be positive")
        if self.tick_interval_seconds <= 0:
            raise ConfigurationError("tick_interval_seconds must be positive")

        for hour in range(24):
            matches = [s for s in self.heating_schedule if s.contains(hour)]
            if len(matches) != 1:
                raise ConfigurationError(
                    f"Heating schedule must match hour {hour} exactly once, "
                    f"found {len(matches)} segment(s)"
                )


def load_settings(path: str | None = None) -> HeatPumpSettings:
    """Load settings from options.json (production) or config.yaml (development).

    Args:
        path: Explicit options file (JSON or YAML). Skips the lookup order.

    Returns:
        Validated settings. Defaults are used when no file is found.
    """
    if path:
        return HeatPumpSettings.from_dict(_read_options(path))

    if os.path.exists(OPTIONS_PATH):
        logger.info(f"Loading settings from {OPTIONS_PATH}")
        return HeatPumpSettings.from_dict(_read_options(OPTIONS_PATH))

    if os.path.exists(CONFIG_PATH):
        logger.info(f"Loading settings from {CONFIG_PATH}")
        return HeatPumpSettings.from_dict(_read_options(CONFIG_PATH))

    logger.warning("No configuration file found, using default settings")
    settings = HeatPumpSettings()
    settings.validate()
    return settings


def _read_options(path: str) -> dict:
    """Read the options block from a JSON or YAML file."""
    try:
        with open(path) as f:
            if path.endswith(".json"):
                data = json.load(f)
            else:
                data = yaml.safe_load(f) or {}
    except (OSError, ValueError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Cannot read settings from {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Settings file {path} must contain a mapping")

    # config.yaml nests user options under "options" like the add-on manifest
    return data.get("options", data)
