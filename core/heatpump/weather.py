"""
Open-Meteo archive client for the reference-day outdoor temperatures.

The series is fetched once at startup. Any failure leaves the simulator
running on an empty table where every hour reads 0 °C.
"""

import logging
from datetime import datetime

import requests

from .exceptions import WeatherFetchError
from .models import LoadResult

logger = logging.getLogger(__name__)

ARCHIVE_URL = "https://archive-api.open-meteo.com/v1/archive"


class OutdoorTemperatureTable:
    """Immutable hour -> outdoor temperature (°C) lookup."""

    def __init__(self, samples: dict[int, float] | None = None):
        self._samples = dict(samples or {})

    def temperature_at(self, hour: int) -> float:
        """Outdoor temperature for an hour, 0 °C when unknown."""
        return self._samples.get(hour, 0.0)

    def to_list(self) -> list[dict]:
        return [
            {"hour": hour, "temperature": temp}
            for hour, temp in sorted(self._samples.items())
        ]

    def __len__(self) -> int:
        return len(self._samples)


class OpenMeteoClient:
    """Simple Open-Meteo historical weather client."""

    def __init__(self, base_url: str = ARCHIVE_URL, timeout: float = 10.0):
        """Initialize client.

        Args:
            base_url: Archive API endpoint
            timeout: Request timeout in seconds
        """
        self.base_url = base_url
        self.timeout = timeout
        self.session = requests.Session()

    def get_hourly_temperatures(
        self,
        latitude: float,
        longitude: float,
        day: str,
        timezone: str = "Europe/London",
    ) -> OutdoorTemperatureTable:
        """Fetch the hourly 2 m temperature series for one day.

        Args:
            latitude: Location latitude
            longitude: Location longitude
            day: Date in YYYY-MM-DD format
            timezone: Timezone the hourly timestamps are reported in

        Returns:
            Table keyed by local hour

        Raises:
            WeatherFetchError: If the request fails or the payload is malformed
        """
        params = {
            "latitude": latitude,
            "longitude": longitude,
            "timezone": timezone,
            "hourly": "temperature_2m",
            "start_date": day,
            "end_date": day,
        }

        try:
            response = self.session.get(self.base_url, params=params, timeout=self.timeout)
            response.raise_for_status()
            payload = response.json()
        except requests.exceptions.RequestException as e:
            raise WeatherFetchError(f"Weather archive request failed: {e}") from e
        except ValueError as e:
            raise WeatherFetchError(f"Weather archive returned invalid JSON: {e}") from e

        return parse_hourly_temperatures(payload)


def parse_hourly_temperatures(payload: dict) -> OutdoorTemperatureTable:
    """Build a table from an Open-Meteo "hourly" payload.

    Raises:
        WeatherFetchError: If the hourly block is missing
    """
    hourly = payload.get("hourly") if isinstance(payload, dict) else None
    if not hourly:
        raise WeatherFetchError("Weather payload has no hourly data")

    times = hourly.get("time", [])
    temps = hourly.get("temperature_2m", [])

    samples: dict[int, float] = {}
    for time_str, temp in zip(times, temps):
        if temp is None:
            continue
        try:
            hour = datetime.fromisoformat(time_str).hour
            samples[hour] = float(temp)
        except (TypeError, ValueError):
            logger.debug(f"Skipping weather sample {time_str!r}: {temp!r}")
            continue

    return OutdoorTemperatureTable(samples)


def load_outdoor_temperatures(settings, client: OpenMeteoClient | None = None) -> LoadResult[OutdoorTemperatureTable]:
    """Fetch the reference-day series, degrading to an empty table.

    Args:
        settings: HeatPumpSettings with location and reference date
        client: Optional client (tests inject a fake)

    Returns:
        LoadResult with the table, degraded when the fetch failed or is disabled
    """
    if not settings.weather_enabled:
        logger.info("Weather fetch disabled, outdoor temperatures default to 0°C")
        return LoadResult(OutdoorTemperatureTable(), degraded=True, reason="disabled")

    client = client or OpenMeteoClient(timeout=settings.weather_timeout_seconds)
    logger.info(f"Fetching outdoor temperatures for {settings.reference_date}...")

    try:
        table = client.get_hourly_temperatures(
            settings.latitude,
            settings.longitude,
            settings.reference_date,
            settings.timezone,
        )
    except WeatherFetchError as e:
        logger.warning(f"Running with empty outdoor temperature table: {e}")
        return LoadResult(OutdoorTemperatureTable(), degraded=True, reason=str(e))

    logger.info(f"Loaded {len(table)} hourly outdoor temperature(s)")
    return LoadResult(table)
