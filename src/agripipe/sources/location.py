"""
Location adapter: converts explicit coordinates, 'lat,lon' strings, Indian
PIN codes, known region names, or free text into structured location data.

PIN codes resolve offline (pgeocode); free text goes to OpenStreetMap
Nominatim. Payload shape:
    {lat, lon, displayName, state, district, pinCode, confidence, source}
"""

import logging
import re
from typing import Any, Dict, Optional, Tuple

import pgeocode

from agripipe.config import REGION_COORDINATES, SOURCE_LOCATION
from agripipe.errors import LocationNotFoundError
from agripipe.models import Coordinates, PipelineQuery
from agripipe.sources.base import SourceAdapter

logger = logging.getLogger(__name__)

NOMINATIM_SEARCH = "https://nominatim.openstreetmap.org/search"

_nomi = None


def _postal_lookup():
    """India postal code lookup (downloads ~2MB dataset on first use)."""
    global _nomi
    if _nomi is None:
        _nomi = pgeocode.Nominatim("IN")
    return _nomi


def _is_pin_code(location: str) -> bool:
    """Check if the location string looks like an Indian PIN code (6 digits)."""
    return bool(re.match(r"^\d{6}$", location.strip()))


def _is_coordinates(location: str) -> bool:
    """Check if the location string looks like lat,lon coordinates."""
    return bool(re.match(
        r"^-?\d+\.?\d*\s*,\s*-?\d+\.?\d*$", location.strip()
    ))


def _parse_coordinates(location: str) -> Tuple[float, float]:
    """Parse a 'lat,lon' string into (float, float)."""
    parts = location.strip().split(",")
    coords = Coordinates(float(parts[0].strip()), float(parts[1].strip()))
    coords.validate()
    return coords.lat, coords.lon


def _clean(value) -> Optional[str]:
    # pgeocode returns NaN for missing fields
    text = str(value) if value is not None else ""
    return None if text in ("", "nan") else text


def _location_payload(
    lat: float,
    lon: float,
    display_name: Optional[str] = None,
    state: Optional[str] = None,
    district: Optional[str] = None,
    pin_code: Optional[str] = None,
    confidence: float = 1.0,
    source: str = "",
) -> Dict[str, Any]:
    return {
        "lat": lat,
        "lon": lon,
        "displayName": display_name or f"{lat:.4f}, {lon:.4f}",
        "state": state,
        "district": district,
        "pinCode": pin_code,
        "confidence": confidence,
        "source": source,
    }


class LocationAdapter(SourceAdapter):
    """Resolve a PipelineQuery to coordinates and place names."""

    name = SOURCE_LOCATION

    def fetch(self, query: PipelineQuery) -> Dict[str, Any]:
        if query.coordinates is not None:
            query.coordinates.validate()
            return _location_payload(
                query.coordinates.lat, query.coordinates.lon, source="coordinates",
            )

        location = (query.region or "").strip()
        if not location:
            raise LocationNotFoundError("Location string is empty")

        if _is_coordinates(location):
            logger.info("Parsing coordinates: %s", location)
            lat, lon = _parse_coordinates(location)
            return _location_payload(lat, lon, source="coordinates")

        if _is_pin_code(location):
            logger.info("Resolving PIN code: %s (offline)", location)
            return self._geocode_pin(location)

        known = REGION_COORDINATES.get(location.lower())
        if known is not None:
            logger.info("Resolved region '%s' from built-in table", location)
            return _location_payload(
                known[0], known[1], display_name=location.title(),
                confidence=0.8, source="region_table",
            )

        return self._search(location)

    def _geocode_pin(self, pin_code: str) -> Dict[str, Any]:
        """Geocode an Indian PIN code using the offline pgeocode database."""
        result = _postal_lookup().query_postal_code(pin_code)

        if result is None or str(getattr(result, "latitude", "nan")) == "nan":
            raise LocationNotFoundError(
                f"Could not geocode PIN code '{pin_code}'. "
                "Verify it is a valid Indian postal code."
            )

        state = _clean(getattr(result, "state_name", None))
        county = _clean(getattr(result, "county_name", None))
        place = _clean(getattr(result, "place_name", None))
        display = ", ".join(filter(None, [place, county, state, "India"]))

        return _location_payload(
            float(result.latitude), float(result.longitude),
            display_name=display, state=state, district=county,
            pin_code=pin_code, confidence=0.9, source="pgeocode",
        )

    def _search(self, text: str) -> Dict[str, Any]:
        """Free-text search against OpenStreetMap Nominatim."""
        logger.info("Geocoding free text via Nominatim: %s", text)
        results = self._get_json(
            NOMINATIM_SEARCH,
            params={"q": text, "format": "json", "limit": 3, "addressdetails": 1},
        )
        if not results:
            raise LocationNotFoundError(f"No coordinates found for '{text}'")

        best = max(results, key=lambda r: float(r.get("importance") or 0.0))
        address = best.get("address", {})
        return _location_payload(
            float(best["lat"]), float(best["lon"]),
            display_name=best.get("display_name"),
            state=address.get("state"),
            district=address.get("state_district") or address.get("county"),
            pin_code=address.get("postcode"),
            confidence=round(float(best.get("importance") or 0.5), 3),
            source="nominatim",
        )
