"""
Heat Pump Simulator Custom Exceptions

Simple exception hierarchy for error handling.
"""


class HeatPumpError(Exception):
    """Base exception for the heat pump simulator."""

    pass


class ConfigurationError(HeatPumpError):
    """Configuration is invalid."""

    pass


class WeatherFetchError(HeatPumpError):
    """Cannot fetch the outdoor temperature series."""

    pass


class ModelLoadError(HeatPumpError):
    """Power model parameters are missing or invalid."""

    pass


class StateStoreError(HeatPumpError):
    """A device-state write was rejected."""

    pass


class SetpointOutOfRange(HeatPumpError, ValueError):
    """Requested setpoint is outside the thermostat limits."""

    pass
