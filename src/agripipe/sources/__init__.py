"""
Source adapters: one per external data family, each normalizing its upstream
into a fixed payload shape.

Modules:
    base           — SourceAdapter base class and HTTP helpers
    location       — PIN code / coordinates / region / free-text geocoding
    weather        — Open-Meteo current conditions + daily forecast
    environmental  — SoilGrids soil properties + NASA POWER surface data
    imagery        — Field photo analysis (remote analyzer or local colour analysis)
"""

from agripipe.sources.base import SourceAdapter
from agripipe.sources.environmental import EnvironmentalAdapter
from agripipe.sources.imagery import ImageryAdapter
from agripipe.sources.location import LocationAdapter
from agripipe.sources.weather import WeatherAdapter

__all__ = [
    "SourceAdapter",
    "LocationAdapter",
    "WeatherAdapter",
    "EnvironmentalAdapter",
    "ImageryAdapter",
]
