"""
In-memory device-state store.

Holds attribute state per endpoint and cluster in device units
(0.01 °C, mW, 0.1 L/min) and notifies subscribers of changes.
Every write carries a source tag so subscribers can tell their own
writes apart from changes made by someone else.
"""

import asyncio
import copy
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from .const import (
    ABS_MAX_POWER_MW,
    ABS_MIN_POWER_MW,
    ATTR_LOCAL_TEMPERATURE,
    ATTR_OUTDOOR_TEMPERATURE,
    ATTR_PI_HEATING_DEMAND,
    ATTR_RUNNING_STATE,
    ATTR_SETPOINT,
    ATTR_SYSTEM_MODE,
    CLUSTER_ENERGY_MANAGEMENT,
    CLUSTER_FLOW_MEASUREMENT,
    CLUSTER_POWER_MEASUREMENT,
    CLUSTER_POWER_SOURCE,
    CLUSTER_TEMPERATURE_MEASUREMENT,
    CLUSTER_THERMOSTAT,
    ENDPOINT_FLOW_SENSOR,
    ENDPOINT_HEAT_PUMP,
    ENDPOINT_THERMOSTAT,
    FLOW_MEASUREMENT_MAX,
)
from .exceptions import StateStoreError
from .models import SystemMode

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AttributeChange:
    """A single attribute change notification."""

    endpoint: str
    cluster: str
    name: str
    value: Any
    old_value: Any
    source: str | None


ChangeHandler = Callable[[AttributeChange], Awaitable[None]]
Constraint = tuple[float, float] | frozenset


def default_layout(settings) -> dict[str, dict[str, dict[str, Any]]]:
    """Initial attribute state for the heat pump, thermostat and flow sensor."""
    local = settings.initial_local_temperature
    return {
        ENDPOINT_HEAT_PUMP: {
            CLUSTER_POWER_SOURCE: {
                "status": 1,
                "order": 1,
                "description": "Grid",
            },
            CLUSTER_POWER_MEASUREMENT: {
                "powerMode": 2,
                "activePower": 0,
            },
            CLUSTER_FLOW_MEASUREMENT: {
                "measuredValue": None,
                "minMeasuredValue": 0,
                "maxMeasuredValue": FLOW_MEASUREMENT_MAX,
            },
            CLUSTER_ENERGY_MANAGEMENT: {
                "esaType": "SpaceHeating",
                "esaState": "Online",
                "absMinPower": ABS_MIN_POWER_MW,
                "absMaxPower": ABS_MAX_POWER_MW,
                "forecast": None,
            },
        },
        ENDPOINT_THERMOSTAT: {
            CLUSTER_THERMOSTAT: {
                "controlSequenceOfOperation": 2,  # heating only
                ATTR_SYSTEM_MODE: int(SystemMode.OFF),
                ATTR_LOCAL_TEMPERATURE: round(local * 100) if local is not None else None,
                ATTR_OUTDOOR_TEMPERATURE: round(settings.initial_outdoor_temperature * 100),
                ATTR_SETPOINT: 2000,
                "minHeatSetpointLimit": round(settings.min_heat_setpoint * 100),
                "maxHeatSetpointLimit": round(settings.max_heat_setpoint * 100),
                ATTR_PI_HEATING_DEMAND: 0,
                ATTR_RUNNING_STATE: {"heat": False},
            },
        },
        ENDPOINT_FLOW_SENSOR: {
            CLUSTER_TEMPERATURE_MEASUREMENT: {
                "measuredValue": None,
            },
        },
    }


def default_constraints(settings) -> dict[tuple[str, str, str], Constraint]:
    """Write constraints: an inclusive (min, max) range or a set of allowed values."""
    return {
        (ENDPOINT_THERMOSTAT, CLUSTER_THERMOSTAT, ATTR_SYSTEM_MODE): frozenset(int(mode) for mode in SystemMode),
        (ENDPOINT_THERMOSTAT, CLUSTER_THERMOSTAT, ATTR_SETPOINT): (
            round(settings.min_heat_setpoint * 100),
            round(settings.max_heat_setpoint * 100),
        ),
        (ENDPOINT_THERMOSTAT, CLUSTER_THERMOSTAT, ATTR_PI_HEATING_DEMAND): (0, 100),
        (ENDPOINT_HEAT_PUMP, CLUSTER_FLOW_MEASUREMENT, "measuredValue"): (0, FLOW_MEASUREMENT_MAX),
    }


class DeviceStateStore:
    """Attribute store with per-attribute change subscriptions."""

    def __init__(
        self,
        layout: dict[str, dict[str, dict[str, Any]]],
        constraints: dict[tuple[str, str, str], Constraint] | None = None,
    ):
        self._state = copy.deepcopy(layout)
        self._constraints = dict(constraints or {})
        self._subscribers: dict[tuple[str, str, str], list[ChangeHandler]] = {}
        self._pending: set[asyncio.Task] = set()

    def read_attribute(self, endpoint: str, cluster: str, name: str) -> Any:
        """Read a single attribute.

        Raises:
            KeyError: If the endpoint, cluster or attribute does not exist
        """
        return self._state[endpoint][cluster][name]

    async def write_attributes(
        self,
        endpoint: str,
        cluster: str,
        partial: dict[str, Any],
        source: str | None = None,
    ) -> bool:
        """Write several attributes of one cluster atomically.

        Nothing is written if any attribute is unknown or out of range.

        Args:
            endpoint: Endpoint id
            cluster: Cluster name
            partial: Attribute name -> new value
            source: Provenance tag delivered with change notifications

        Returns:
            True if the write was applied
        """
        try:
            self._validate(endpoint, cluster, partial)
        except StateStoreError as e:
            logger.warning(f"Rejected write to {endpoint}/{cluster}: {e}")
            return False

        attributes = self._state[endpoint][cluster]
        changes = []
        for name, value in partial.items():
            old_value = attributes[name]
            attributes[name] = value
            if old_value != value:
                changes.append(AttributeChange(endpoint, cluster, name, value, old_value, source))

        for change in changes:
            self._notify(change)

        return True

    def subscribe(self, endpoint: str, cluster: str, name: str, handler: ChangeHandler):
        """Register an async handler for changes to one attribute."""
        # Fail fast on typos
        self.read_attribute(endpoint, cluster, name)
        self._subscribers.setdefault((endpoint, cluster, name), []).append(handler)

    async def drain(self):
        """Wait until all pending change notifications have been handled."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _validate(self, endpoint: str, cluster: str, partial: dict[str, Any]):
        if endpoint not in self._state:
            raise StateStoreError(f"Unknown endpoint: {endpoint}")
        if cluster not in self._state[endpoint]:
            raise StateStoreError(f"Unknown cluster: {cluster}")

        attributes = self._state[endpoint][cluster]
        for name, value in partial.items():
            if name not in attributes:
                raise StateStoreError(f"Unknown attribute: {name}")
            limits = self._constraints.get((endpoint, cluster, name))
            if not limits or value is None:
                continue
            if isinstance(limits, frozenset):
                if value not in limits:
                    raise StateStoreError(f"{name}={value} not one of {sorted(limits)}")
                continue
            low, high = limits
            if not low <= value <= high:
                raise StateStoreError(f"{name}={value} outside [{low}, {high}]")

    def _notify(self, change: AttributeChange):
        handlers = self._subscribers.get((change.endpoint, change.cluster, change.name), [])
        if not handlers:
            return

        loop = asyncio.get_running_loop()
        for handler in handlers:
            task = loop.create_task(handler(change))
            self._pending.add(task)
            task.add_done_callback(self._on_delivered)

    def _on_delivered(self, task: asyncio.Task):
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Change handler failed: {exc}", exc_info=exc)
