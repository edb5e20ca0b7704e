"""
Open-Meteo weather client: current conditions plus a short daily forecast.
Free API, no key required.

API docs: https://open-meteo.com/en/docs
License: CC-BY 4.0
"""

import logging
from typing import Any, Dict, List, Optional

from agripipe.config import SOURCE_WEATHER
from agripipe.errors import SourceError
from agripipe.models import ErrorKind, PipelineQuery
from agripipe.sources.base import SourceAdapter

logger = logging.getLogger(__name__)

OPEN_METEO_FORECAST = "https://api.open-meteo.com/v1/forecast"
FORECAST_DAYS = 3


def _round(value: Optional[float]) -> Optional[float]:
    return round(float(value), 1) if value is not None else None


class WeatherAdapter(SourceAdapter):
    """
    Fetch current weather and a FORECAST_DAYS-day forecast.

    Payload:
        temperature: Current air temperature at 2 m (C)
        humidity: Current relative humidity (%)
        windSpeed: Current wind speed at 10 m (km/h)
        forecast: [{date, tempMax, tempMin, precipitation}]
        source: "open-meteo"
    """

    name = SOURCE_WEATHER

    def __init__(self, timeout_s: float = 8.0, session=None, forecast_days: int = FORECAST_DAYS):
        super().__init__(timeout_s=timeout_s, session=session)
        self.forecast_days = forecast_days

    def fetch(self, query: PipelineQuery) -> Dict[str, Any]:
        if query.coordinates is None:
            raise SourceError("Weather lookup needs resolved coordinates")

        params = {
            "latitude": query.coordinates.lat,
            "longitude": query.coordinates.lon,
            "current": "temperature_2m,relative_humidity_2m,wind_speed_10m",
            "daily": "temperature_2m_max,temperature_2m_min,precipitation_sum",
            "forecast_days": self.forecast_days,
            "timezone": "auto",
        }
        data = self._get_json(OPEN_METEO_FORECAST, params=params)

        current = data.get("current", {})
        if current.get("temperature_2m") is None:
            raise SourceError(
                "No current conditions returned from Open-Meteo",
                kind=ErrorKind.SERVER_ERROR,
            )

        daily = data.get("daily", {})
        dates = daily.get("time", [])
        temp_max = daily.get("temperature_2m_max", [])
        temp_min = daily.get("temperature_2m_min", [])
        precip = daily.get("precipitation_sum", [])

        forecast: List[Dict[str, Any]] = []
        for i, day in enumerate(dates):
            forecast.append({
                "date": day,
                "tempMax": _round(temp_max[i] if i < len(temp_max) else None),
                "tempMin": _round(temp_min[i] if i < len(temp_min) else None),
                "precipitation": _round(precip[i] if i < len(precip) else None),
            })

        if not forecast:
            logger.warning("No daily forecast returned from Open-Meteo")

        return {
            "temperature": _round(current.get("temperature_2m")),
            "humidity": _round(current.get("relative_humidity_2m")),
            "windSpeed": _round(current.get("wind_speed_10m")),
            "forecast": forecast,
            "source": "open-meteo",
        }
