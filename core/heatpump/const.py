"""Constants for the heat pump simulator."""

# Device-state store endpoints
ENDPOINT_HEAT_PUMP = "heat-pump"
ENDPOINT_THERMOSTAT = "heat-pump-thermostat"
ENDPOINT_FLOW_SENSOR = "flow-temperature-sensor"

# Clusters
CLUSTER_THERMOSTAT = "thermostat"
CLUSTER_POWER_MEASUREMENT = "electricalPowerMeasurement"
CLUSTER_FLOW_MEASUREMENT = "flowMeasurement"
CLUSTER_ENERGY_MANAGEMENT = "deviceEnergyManagement"
CLUSTER_TEMPERATURE_MEASUREMENT = "temperatureMeasurement"
CLUSTER_POWER_SOURCE = "powerSource"

# Thermostat attributes
ATTR_SYSTEM_MODE = "systemMode"
ATTR_SETPOINT = "occupiedHeatingSetpoint"
ATTR_LOCAL_TEMPERATURE = "localTemperature"
ATTR_OUTDOOR_TEMPERATURE = "outdoorTemperature"
ATTR_PI_HEATING_DEMAND = "piHeatingDemand"
ATTR_RUNNING_STATE = "thermostatRunningState"

# Weather curve: flow temperature = |outdoor| * slope + offset
WEATHER_CURVE_OFFSET = 35.0
WEATHER_CURVE_SLOPE = 0.5

# Fixed flow/return temperature difference (K)
FLOW_DELTA_T = 5.0

# Live control loop constants (SI: J/kg.K, flow in litres/second)
LOOP_HEAT_COEFFICIENT = 300.0
LOOP_SPECIFIC_HEAT = 4200.0

# Forecast constants (kJ/kg.K)
FORECAST_HEAT_COEFFICIENT = 200.0
FORECAST_SPECIFIC_HEAT = 4.186
FORECAST_DEFAULT_TARGET = 20.0

# Setpoint-to-indoor delta giving 100 % heating demand
MAX_DELTA_FOR_FULL_DEMAND = 5.0

# Flow measurement is uint16 in 0.1 L/min
FLOW_MEASUREMENT_MAX = 65533

# Device energy management power limits (mW)
ABS_MIN_POWER_MW = 250_000
ABS_MAX_POWER_MW = 5_000_000

# Seconds between 1970-01-01 and 2000-01-01
MATTER_EPOCH_OFFSET = 946_684_800

SECONDS_PER_HOUR = 3600
SECONDS_PER_DAY = 24 * SECONDS_PER_HOUR

# Sources of setpoint changes
CHANGE_SOURCE_SCHEDULE = "Schedule"
CHANGE_SOURCE_MANUAL = "Manual"

EVENT_SYSTEM_UPDATED = "systemUpdated"
