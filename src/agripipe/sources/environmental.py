"""
Environmental adapter: soil properties from ISRIC SoilGrids v2.0 combined
with satellite-derived surface conditions from NASA POWER.

Both APIs are free and need no key.
  SoilGrids docs: https://rest.isric.org/soilgrids/v2.0/docs
  NASA POWER docs: https://power.larc.nasa.gov/docs/services/api/

Payload:
    ndviValue: Vegetation index estimate (0-1) from rainfall + solar radiation
    landSurfaceTempC: Mean earth skin temperature over the window (C)
    soilMoistureFraction: Mean root-zone soil wetness (0-1)
    soilPhValue: Topsoil pH in water
    soilTexture: USDA texture class name, e.g. 'Loam', 'Sandy Clay'
    organicCarbonGKg: Soil organic carbon (g/kg)
    source: Which upstreams contributed
    missing: Upstreams that failed, e.g. ["soilgrids"]
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

import requests

from agripipe.config import SOURCE_ENVIRONMENTAL
from agripipe.errors import SourceError
from agripipe.models import ErrorKind, PipelineQuery
from agripipe.sources.base import SourceAdapter

logger = logging.getLogger(__name__)

SOILGRIDS_BASE = "https://rest.isric.org/soilgrids/v2.0/properties/query"
NASA_POWER_DAILY = "https://power.larc.nasa.gov/api/temporal/daily/point"

SOILGRIDS_PROPERTIES = [
    "phh2o",   # pH in water (pH * 10)
    "clay",    # Clay content (g/kg)
    "sand",    # Sand content (g/kg)
    "silt",    # Silt content (g/kg)
    "soc",     # Soil organic carbon (dg/kg)
]

# Plough layer
DEFAULT_DEPTH = "0-5cm"

# POWER uses -999 for missing days
POWER_FILL_VALUE = -999.0
POWER_LAG_DAYS = 7
POWER_WINDOW_DAYS = 14


def classify_texture(sand_pct: Optional[float], clay_pct: Optional[float],
                     silt_pct: Optional[float]) -> Optional[str]:
    """
    USDA soil texture class from sand/clay/silt percentages.

    Simplified triangle; returns None when any fraction is missing.
    """
    if sand_pct is None or clay_pct is None or silt_pct is None:
        return None

    if clay_pct >= 40:
        if silt_pct >= 40:
            return "Silty Clay"
        if sand_pct >= 45:
            return "Sandy Clay"
        return "Clay"
    if clay_pct >= 27:
        if sand_pct >= 45:
            return "Sandy Clay Loam"
        if sand_pct <= 20:
            return "Silty Clay Loam"
        return "Clay Loam"
    if sand_pct >= 85:
        return "Sand"
    if sand_pct >= 70:
        return "Loamy Sand"
    if sand_pct >= 52 or (clay_pct < 7 and silt_pct < 50):
        if clay_pct >= 20:
            return "Sandy Clay Loam"
        return "Sandy Loam"
    if silt_pct >= 80:
        return "Silt"
    if silt_pct >= 50:
        return "Silt Loam"
    return "Loam"


def estimate_ndvi(avg_precip_mm_day: float, avg_solar_kwh_m2_day: float) -> float:
    """
    Estimate an NDVI-like index (0.05-0.9) from rainfall and solar radiation.

    Higher precip + higher solar = more vegetation activity.
    """
    veg_score = min(100.0, (avg_precip_mm_day / 5.0) * 40 + (avg_solar_kwh_m2_day / 6.0) * 60)
    return round(0.05 + 0.85 * veg_score / 100.0, 3)


def _mean(values: List[float]) -> Optional[float]:
    valid = [v for v in values if v is not None and v != POWER_FILL_VALUE]
    if not valid:
        return None
    return sum(valid) / len(valid)


class EnvironmentalAdapter(SourceAdapter):
    """Soil + surface conditions for the query coordinates."""

    name = SOURCE_ENVIRONMENTAL

    def __init__(self, timeout_s: float = 10.0, session=None, depth: str = DEFAULT_DEPTH):
        super().__init__(timeout_s=timeout_s, session=session)
        self.depth = depth

    def fetch(self, query: PipelineQuery) -> Dict[str, Any]:
        if query.coordinates is None:
            raise SourceError("Environmental lookup needs resolved coordinates")
        lat, lon = query.coordinates.lat, query.coordinates.lon

        failures: List[Tuple[str, requests.exceptions.RequestException]] = []

        try:
            soil = self._fetch_soil(lat, lon)
        except requests.exceptions.RequestException as e:
            logger.warning("SoilGrids API request failed: %s", e)
            failures.append(("soilgrids", e))
            soil = {}

        try:
            surface = self._fetch_surface(lat, lon)
        except requests.exceptions.RequestException as e:
            logger.warning("NASA POWER API request failed: %s", e)
            failures.append(("nasa-power", e))
            surface = {}

        if len(failures) == 2:
            # Both upstreams down: surface the first error for classification
            raise failures[0][1]

        payload = {
            "ndviValue": surface.get("ndviValue"),
            "landSurfaceTempC": surface.get("landSurfaceTempC"),
            "soilMoistureFraction": surface.get("soilMoistureFraction"),
            "soilPhValue": soil.get("soilPhValue"),
            "soilTexture": soil.get("soilTexture"),
            "organicCarbonGKg": soil.get("organicCarbonGKg"),
            "source": "+".join(
                name for name, part in (("soilgrids", soil), ("nasa-power", surface)) if part
            ),
            "missing": [name for name, _ in failures],
        }

        if payload["soilPhValue"] is None and payload["soilMoistureFraction"] is None:
            raise SourceError(
                f"No soil pH or moisture available for ({lat}, {lon})",
                kind=ErrorKind.SERVER_ERROR,
            )
        return payload

    def _fetch_soil(self, lat: float, lon: float) -> Dict[str, Any]:
        """Query SoilGrids for pH, texture fractions and SOC at one point."""
        params = [("lat", lat), ("lon", lon), ("depth", self.depth), ("value", "mean")]
        for prop in SOILGRIDS_PROPERTIES:
            params.append(("property", prop))

        data = self._get_json(SOILGRIDS_BASE, params=params)

        values: Dict[str, float] = {}
        for layer in data.get("properties", {}).get("layers", []):
            name = layer.get("name", "")
            depths = layer.get("depths", [])
            if not depths:
                continue
            value = None
            for d in depths:
                if d.get("label", "") == self.depth:
                    value = d.get("values", {}).get("mean")
                    break
            # Fallback: use first depth
            if value is None:
                value = depths[0].get("values", {}).get("mean")
            if value is not None:
                values[name] = float(value)

        if not values:
            return {}

        def scaled(name: str) -> Optional[float]:
            # SoilGrids stores pH * 10, fractions in g/kg, SOC in dg/kg
            return values[name] / 10.0 if name in values else None

        ph = scaled("phh2o")
        soc = scaled("soc")
        return {
            "soilPhValue": round(ph, 2) if ph is not None else None,
            "soilTexture": classify_texture(scaled("sand"), scaled("clay"), scaled("silt")),
            "organicCarbonGKg": round(soc, 1) if soc is not None else None,
        }

    def _fetch_surface(self, lat: float, lon: float) -> Dict[str, Any]:
        """Recent NASA POWER daily means (POWER data lags about a week)."""
        end_dt = datetime.now() - timedelta(days=POWER_LAG_DAYS)
        start_dt = end_dt - timedelta(days=POWER_WINDOW_DAYS)
        params = {
            "parameters": "TS,GWETROOT,PRECTOTCORR,ALLSKY_SFC_SW_DWN",
            "community": "AG",
            "longitude": lon,
            "latitude": lat,
            "start": start_dt.strftime("%Y%m%d"),
            "end": end_dt.strftime("%Y%m%d"),
            "format": "JSON",
        }
        data = self._get_json(NASA_POWER_DAILY, params=params)

        parameters = data.get("properties", {}).get("parameter", {})
        skin_temp = _mean(list(parameters.get("TS", {}).values()))
        wetness = _mean(list(parameters.get("GWETROOT", {}).values()))
        precip = _mean(list(parameters.get("PRECTOTCORR", {}).values()))
        solar = _mean(list(parameters.get("ALLSKY_SFC_SW_DWN", {}).values()))

        surface: Dict[str, Any] = {}
        if skin_temp is not None:
            surface["landSurfaceTempC"] = round(skin_temp, 1)
        if wetness is not None:
            surface["soilMoistureFraction"] = round(wetness, 3)
        if precip is not None and solar is not None:
            surface["ndviValue"] = estimate_ndvi(precip, solar)
        return surface
