"""
Fallback synthesizer: deterministic placeholder data for a source whose live
fetch failed.

Payloads are seeded from the source name and the query coordinates, so the
same failed request always produces the same placeholder. Jitter is kept
narrow enough that a fallback value never lands on the other side of an
insight threshold from the agronomic default it is centred on.
"""

import hashlib
import logging
from typing import Any, Dict, List, Optional

import numpy as np

from agripipe.config import (
    DEFAULT_COORDINATES,
    SOURCE_ENVIRONMENTAL,
    SOURCE_IMAGERY,
    SOURCE_LOCATION,
    SOURCE_WEATHER,
)
from agripipe.models import ErrorKind, PipelineQuery, SourceResult

logger = logging.getLogger(__name__)

FALLBACK_SOURCE_LABEL = "fallback"
FORECAST_DAYS = 3
# Fixed reference dates keep payloads independent of the wall clock
FORECAST_DATES = ["day+1", "day+2", "day+3"]


def _seed_for(source: str, lat: float, lon: float) -> int:
    raw = f"{source}:{lat:.4f}:{lon:.4f}".encode("utf-8")
    return int.from_bytes(hashlib.sha256(raw).digest()[:8], "big")


def _coords_for(query: Optional[PipelineQuery]):
    if query is not None and query.coordinates is not None:
        return query.coordinates.lat, query.coordinates.lon
    return DEFAULT_COORDINATES


class FallbackSynthesizer:
    """Zero-I/O generator of plausible placeholder payloads per source."""

    def synthesize(
        self,
        source: str,
        query: Optional[PipelineQuery] = None,
        error: Optional[ErrorKind] = None,
        error_message: Optional[str] = None,
    ) -> SourceResult:
        """
        Build a fallback SourceResult for a source.

        Args:
            source: Source name (location, weather, environmental, imagery).
            query: Query whose coordinates seed the payload (default coordinates if absent).
            error: Error kind of the live failure being replaced, if any.
            error_message: Detail of the live failure.

        Returns:
            SourceResult with success=False and is_fallback=True.
        """
        lat, lon = _coords_for(query)
        rng = np.random.default_rng(_seed_for(source, lat, lon))

        builders = {
            SOURCE_LOCATION: self._location,
            SOURCE_WEATHER: self._weather,
            SOURCE_ENVIRONMENTAL: self._environmental,
            SOURCE_IMAGERY: self._imagery,
        }
        builder = builders.get(source)
        payload: Dict[str, Any] = builder(rng, lat, lon) if builder else {}
        if payload:
            payload["source"] = FALLBACK_SOURCE_LABEL
            payload["quality"] = "low"

        return SourceResult(
            source=source,
            success=False,
            payload=payload,
            is_fallback=True,
            error=error,
            error_message=error_message,
        )

    @staticmethod
    def _location(rng: np.random.Generator, lat: float, lon: float) -> Dict[str, Any]:
        return {
            "lat": lat,
            "lon": lon,
            "displayName": "Unknown location",
            "state": None,
            "district": None,
            "pinCode": None,
            "confidence": 0.0,
        }

    @staticmethod
    def _weather(rng: np.random.Generator, lat: float, lon: float) -> Dict[str, Any]:
        temp_max = 30.0 + rng.uniform(-1.0, 1.0, FORECAST_DAYS)
        temp_min = 21.0 + rng.uniform(-1.0, 1.0, FORECAST_DAYS)
        precip = np.array([0.0, 5.0, 0.0]) + rng.uniform(0.0, 1.0, FORECAST_DAYS)
        forecast: List[Dict[str, Any]] = [
            {
                "date": FORECAST_DATES[i],
                "tempMax": round(float(temp_max[i]), 1),
                "tempMin": round(float(temp_min[i]), 1),
                "precipitation": round(float(precip[i]), 1),
            }
            for i in range(FORECAST_DAYS)
        ]
        return {
            "temperature": round(28.0 + float(rng.uniform(-1.0, 1.0)), 1),
            "humidity": round(65.0 + float(rng.uniform(-3.0, 3.0)), 1),
            "windSpeed": round(12.0 + float(rng.uniform(-2.0, 2.0)), 1),
            "forecast": forecast,
        }

    @staticmethod
    def _environmental(rng: np.random.Generator, lat: float, lon: float) -> Dict[str, Any]:
        return {
            "ndviValue": round(0.65 + float(rng.uniform(-0.03, 0.03)), 3),
            "landSurfaceTempC": round(28.0 + float(rng.uniform(-1.0, 1.0)), 1),
            "soilMoistureFraction": round(0.25 + float(rng.uniform(-0.03, 0.03)), 3),
            "soilPhValue": round(6.8 + float(rng.uniform(-0.2, 0.2)), 2),
            "soilTexture": "Loam",
            "organicCarbonGKg": round(12.0 + float(rng.uniform(-1.0, 1.0)), 1),
        }

    @staticmethod
    def _imagery(rng: np.random.Generator, lat: float, lon: float) -> Dict[str, Any]:
        return {
            "images": [{
                "imageId": "fallback_image_1",
                "cropHealth": "Good",
                "healthScore": round(70.0 + float(rng.uniform(-2.0, 2.0)), 1),
                "soilType": "Loam",
                "diseaseProbability": 0.0,
                "diseaseDetected": False,
            }],
            "summary": {
                "totalImages": 1,
                "overallHealth": "Good",
                "diseaseDetected": False,
            },
        }
