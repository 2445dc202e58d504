"""
Rolling power forecast for the rest of the day.

Hours from the current hour to 23 are grouped into slots, one per run of
consecutive hours under the same schedule segment. Each slot reports the
average, minimum and maximum of the hourly predicted power.
"""

import math
from datetime import datetime

from .const import FORECAST_DEFAULT_TARGET, SECONDS_PER_DAY, SECONDS_PER_HOUR
from .models import Forecast, ForecastSlot
from .schedule import HeatingSchedule
from .thermal_model import LinearPowerModel, forecast_hour_power
from .weather import OutdoorTemperatureTable

FORECAST_ID = 1


def hourly_power_groups(
    current_hour: int,
    schedule: HeatingSchedule,
    temperatures: OutdoorTemperatureTable,
    model: LinearPowerModel,
) -> list[list[int]]:
    """Hourly power (mW, floored) grouped by schedule segment runs."""
    groups: list[list[int]] = []
    powers: list[int] = []
    previous_index = None

    for hour in range(current_hour, 24):
        index = schedule.index_for(hour)
        if previous_index is not None and index != previous_index and powers:
            groups.append(powers)
            powers = []
        previous_index = index

        segment = schedule.segments[index] if index >= 0 else None
        target = segment.target_temperature if segment else FORECAST_DEFAULT_TARGET
        power = forecast_hour_power(model, target, temperatures.temperature_at(hour))
        powers.append(math.floor(power))

    # Final flush, even when no segment change was seen
    groups.append(powers)
    return groups


def build_slot(powers: list[int]) -> ForecastSlot:
    hours = len(powers)
    average = sum(powers) / hours if hours else 0.0
    return ForecastSlot(
        duration_seconds=hours * SECONDS_PER_HOUR,
        nominal_power=average,
        min_power=min(powers, default=0),
        max_power=max(powers, default=0),
        nominal_energy=average * hours,
    )


def generate_forecast(
    current_hour: int,
    schedule: HeatingSchedule,
    temperatures: OutdoorTemperatureTable,
    model: LinearPowerModel,
    now: datetime,
) -> Forecast:
    """Build the forecast for hours current_hour..23 of today.

    Args:
        current_hour: First hour to forecast
        schedule: Heating schedule
        temperatures: Reference-day outdoor temperatures
        model: Power model
        now: Local time used to locate today's midnight

    Returns:
        Forecast starting at local midnight and spanning the whole day
    """
    groups = hourly_power_groups(current_hour, schedule, temperatures, model)

    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    start = int(midnight.timestamp())

    return Forecast(
        forecast_id=FORECAST_ID,
        start_epoch=start,
        end_epoch=start + SECONDS_PER_DAY - 1,
        slots=[build_slot(powers) for powers in groups],
        active_slot_number=0,
    )
