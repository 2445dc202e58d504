"""
Power/flow model and thermal derivation for the simulated heat pump.

Power is estimated by a precomputed linear regression:
    P (kW) = intercept + sum(features[i] * coef[i])
with features [flow temperature (°C), flow rate, outdoor temperature (°C)].

Flow temperature follows a fixed weather curve:
    T_flow = outdoor * slope + offset
and flow rate comes from the heat requirement at a fixed flow/return delta:
    flow = heat_required / (specific_heat * delta_T)

The live control loop and the forecast use different heat coefficients,
specific heat units and weather-curve sign handling. Both variants are kept
as-is; unifying them changes reported numbers.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Sequence

import numpy as np

from .const import (
    FLOW_DELTA_T,
    FLOW_MEASUREMENT_MAX,
    FORECAST_HEAT_COEFFICIENT,
    FORECAST_SPECIFIC_HEAT,
    LOOP_HEAT_COEFFICIENT,
    LOOP_SPECIFIC_HEAT,
    MAX_DELTA_FOR_FULL_DEMAND,
    WEATHER_CURVE_OFFSET,
    WEATHER_CURVE_SLOPE,
)
from .exceptions import ModelLoadError
from .models import LoadResult, SystemMode, ThermalOutputs

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModelParameters:
    """Linear power model parameters."""

    intercept: float = 0.0
    coefficients: tuple[float, ...] = field(default_factory=tuple)

    @classmethod
    def zero(cls) -> "ModelParameters":
        return cls(intercept=0.0, coefficients=())

    @classmethod
    def from_dict(cls, data: dict) -> "ModelParameters":
        """Create from a {"intercept", "coef"} mapping.

        Raises:
            ModelLoadError: If values are not numeric
        """
        if not isinstance(data, dict):
            raise ModelLoadError("Model parameters must be a mapping")
        try:
            intercept = float(data.get("intercept") or 0.0)
            coef = data.get("coef", data.get("coefficients")) or []
            coefficients = tuple(float(c) for c in coef)
        except (TypeError, ValueError) as e:
            raise ModelLoadError(f"Invalid model parameters: {e}") from e
        return cls(intercept=intercept, coefficients=coefficients)


def load_model_parameters(path: str) -> LoadResult[ModelParameters]:
    """Load model parameters once at startup.

    A missing or invalid file degrades to the zero model instead of failing.

    Args:
        path: Path to a JSON file with "intercept" and "coef"

    Returns:
        LoadResult holding the parameters (zero model when degraded)
    """
    try:
        with open(path) as f:
            params = ModelParameters.from_dict(json.load(f))
    except (OSError, ValueError, ModelLoadError) as e:
        logger.warning(f"Using zero power model, could not load {path}: {e}")
        return LoadResult(ModelParameters.zero(), degraded=True, reason=str(e))

    logger.info(
        f"Loaded power model: intercept={params.intercept}, "
        f"{len(params.coefficients)} coefficient(s)"
    )
    return LoadResult(params)


class LinearPowerModel:
    """Linear regression power predictor."""

    def __init__(self, params: ModelParameters):
        """Initialize power model.

        Args:
            params: Regression intercept and coefficients
        """
        self.params = params

    def predict(self, features: Sequence[float]) -> float:
        """Predict power in kW.

        Features beyond the known coefficients contribute nothing.

        Args:
            features: [flow temperature, flow rate, outdoor temperature]

        Returns:
            Predicted power (kW)
        """
        x = np.asarray(features, dtype=float)
        coef = np.zeros(len(x))
        known = min(len(x), len(self.params.coefficients))
        coef[:known] = self.params.coefficients[:known]
        return float(self.params.intercept + np.dot(x, coef))


def flow_temperature(outdoor_temp: float, absolute: bool = True) -> float:
    """Flow temperature from the weather curve.

    The live loop applies the slope to |outdoor|; the forecast does not.
    """
    scaled = outdoor_temp * WEATHER_CURVE_SLOPE
    if absolute:
        scaled = abs(scaled)
    return scaled + WEATHER_CURVE_OFFSET


def flow_rate(target_temp: float, outdoor_temp: float, heat_coefficient: float, specific_heat: float) -> float:
    """Water flow rate needed to carry the heat requirement at a fixed delta T."""
    heat_required = (target_temp - outdoor_temp) * heat_coefficient
    return heat_required / (specific_heat * FLOW_DELTA_T)


def heating_demand(setpoint: float, local_temp: float | None) -> int:
    """PI heating demand (0-100 %) from the setpoint/indoor delta.

    Unknown indoor temperature gives no demand.
    """
    if local_temp is None:
        return 0
    demand = round(((setpoint - local_temp) / MAX_DELTA_FOR_FULL_DEMAND) * 100)
    return max(0, min(100, demand))


def measured_flow(rate: float, heating_active: bool) -> int:
    """Flow measurement in 0.1 L/min, zero when not heating."""
    if not heating_active:
        return 0
    return max(0, min(FLOW_MEASUREMENT_MAX, round(rate * 60 * 10)))


def derive_outputs(
    model: LinearPowerModel,
    setpoint: float,
    outdoor_temp: float,
    mode: SystemMode,
    local_temp: float | None,
) -> ThermalOutputs:
    """Derive flow, power and demand for the live control loop.

    Args:
        model: Power model
        setpoint: Target indoor temperature (°C)
        outdoor_temp: Outdoor temperature for the current hour (°C)
        mode: System mode
        local_temp: Last indoor reading (°C) or None

    Returns:
        ThermalOutputs with power in mW
    """
    t_flow = flow_temperature(outdoor_temp, absolute=True)
    rate = flow_rate(setpoint, outdoor_temp, LOOP_HEAT_COEFFICIENT, LOOP_SPECIFIC_HEAT)
    demand = heating_demand(setpoint, local_temp)

    power = model.predict([t_flow, rate, outdoor_temp]) * 1000
    if mode != SystemMode.HEAT:
        # Not actively heating: scale by demand instead of forcing zero
        power = power * demand / 100

    active = mode == SystemMode.HEAT and demand > 0

    return ThermalOutputs(
        flow_temperature=t_flow,
        flow_rate=rate,
        power=power,
        pi_heating_demand=demand,
        is_heating_active=active,
        measured_flow=measured_flow(rate, active),
    )


def forecast_hour_power(model: LinearPowerModel, target_temp: float, outdoor_temp: float) -> float:
    """Predicted power (mW) for one forecast hour."""
    t_flow = flow_temperature(outdoor_temp, absolute=False)
    rate = flow_rate(target_temp, outdoor_temp, FORECAST_HEAT_COEFFICIENT, FORECAST_SPECIFIC_HEAT)
    return model.predict([t_flow, rate, outdoor_temp]) * 1000
