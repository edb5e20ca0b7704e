"""
Pipeline configuration: named thresholds for the insight rules, provider
timeouts, cache/retry policy, and environment-driven settings.

Insight thresholds and score weights live here (not inline in the rules) so
they can be tuned and tested independently of the engine.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

logger = logging.getLogger(__name__)

# ---- Source names (fixed set, one SourceResult each per run) ----
SOURCE_LOCATION = "location"
SOURCE_WEATHER = "weather"
SOURCE_ENVIRONMENTAL = "environmental"
SOURCE_IMAGERY = "imagery"
SOURCE_NAMES = (SOURCE_LOCATION, SOURCE_WEATHER, SOURCE_ENVIRONMENTAL, SOURCE_IMAGERY)

# Nagpur, Maharashtra. Used when a query carries no coordinates
DEFAULT_COORDINATES: Tuple[float, float] = (21.1458, 79.0882)

# Region names resolvable without any network call
REGION_COORDINATES: Dict[str, Tuple[float, float]] = {
    "nagpur": (21.1458, 79.0882),
    "maharashtra": (19.7515, 75.7139),
    "punjab": (31.1471, 75.3412),
    "karnataka": (15.3173, 75.7139),
    "madhya pradesh": (22.9734, 78.6569),
    "uttar pradesh": (26.8467, 80.9462),
    "gujarat": (22.2587, 71.1924),
    "kansas": (38.5111, -96.8005),
    "iowa": (41.8780, -93.0977),
    "california": (36.7783, -119.4179),
}

# ---- Resilient call executor ----
DEFAULT_MAX_RETRIES = 2
DEFAULT_BASE_DELAY_S = 0.5
DEFAULT_MAX_DELAY_S = 4.0

DEFAULT_LOCATION_TIMEOUT_S = 5.0
DEFAULT_WEATHER_TIMEOUT_S = 8.0
DEFAULT_ENVIRONMENTAL_TIMEOUT_S = 10.0
DEFAULT_IMAGERY_TIMEOUT_S = 15.0

# ---- Result cache ----
DEFAULT_CACHE_TTL_S = 300.0
DEFAULT_CACHE_MAX_ENTRIES = 1000

# ---- Recommendations / notifications ----
TOP_N_RECOMMENDATIONS = 5
SMS_MAX_LENGTH = 160
DEFAULT_LANGUAGE = "hi"
POST_RUN_WAIT_S = 5.0

# ---- Insight scoring ----
BASE_SCORE = 100

# (issue penalty, strength credit) per scored category
SCORE_WEIGHTS: Dict[str, Tuple[int, int]] = {
    "soilHealth": (35, 5),
    "cropSuitability": (10, 5),
    "yieldPotential": (20, 5),
    "climateAdaptation": (20, 5),
}

# Score bands, checked top-down: score >= threshold -> label
SCORE_BANDS = (
    (80, "Excellent"),
    (60, "Good"),
    (40, "Fair"),
    (0, "Poor"),
)

# Risk bands for issue-count categories: count >= threshold -> label
RISK_BANDS = (
    (3, "High"),
    (1, "Moderate"),
    (0, "Low"),
)

# Labels at or above which no overall-level recommendation is emitted
SATISFACTORY_LABELS = ("Excellent", "Good", "Low")

# ---- Soil health thresholds ----
SOIL_MOISTURE_LOW = 0.15
SOIL_MOISTURE_HIGH = 0.40
SOIL_PH_ACIDIC = 5.5
SOIL_PH_ALKALINE = 8.5
SANDY_TEXTURES = ("sand", "loamy sand")
CLAY_TEXTURES = ("clay", "silty clay", "sandy clay")
LOAM_TEXTURES = ("loam", "silt loam", "sandy loam", "clay loam", "silty clay loam", "sandy clay loam")

# ---- Water management thresholds ----
WATER_MOISTURE_LOW = 0.20
WATER_MOISTURE_HIGH = 0.35
HEAVY_RAIN_DAY_MM = 50.0
DRY_SPELL_MIN_DAYS = 3
DRY_SPELL_TOTAL_MM = 2.0

# ---- Pest risk thresholds ----
PEST_HUMIDITY_HIGH = 80.0
PEST_TEMPERATURE_WARM = 25.0
DISEASE_PROBABILITY_HIGH = 0.7

# ---- Yield potential thresholds ----
NDVI_HIGH = 0.6
NDVI_LOW = 0.3
YIELD_TEMP_OPTIMAL = (20.0, 30.0)
YIELD_TEMP_STRESS_HIGH = 35.0
YIELD_TEMP_STRESS_LOW = 10.0

# ---- Climate adaptation thresholds ----
HEAT_STRESS_MAX_C = 35.0
HEAVY_RAIN_EVENT_MM = 30.0
LAND_SURFACE_HOT_C = 40.0
COLD_REGION_LATITUDE = 30.0

# ---- Crop suitability ----
CROP_NDVI_GOOD = 0.5
WHEAT_HEAT_LIMIT_C = 30.0
BEST_CROP_SCORE = 5
GOOD_CROP_SCORE = 3

# Crop requirement table (temperature C, humidity %, soil moisture fraction)
CROP_REQUIREMENTS = [
    {"name": "Rice", "temp": (20, 35, 25), "humidity": (70, 90), "moisture": (0.5, 0.8), "regions": ("all",)},
    {"name": "Wheat", "temp": (15, 25, 20), "humidity": (50, 70), "moisture": (0.3, 0.6), "regions": ("northern", "central")},
    {"name": "Cotton", "temp": (20, 35, 28), "humidity": (50, 80), "moisture": (0.4, 0.7), "regions": ("central", "southern")},
    {"name": "Soybean", "temp": (22, 30, 26), "humidity": (60, 85), "moisture": (0.4, 0.7), "regions": ("central",)},
    {"name": "Maize", "temp": (20, 30, 25), "humidity": (60, 80), "moisture": (0.4, 0.6), "regions": ("all",)},
    {"name": "Sugarcane", "temp": (25, 35, 30), "humidity": (75, 95), "moisture": (0.6, 0.9), "regions": ("northern", "southern")},
    {"name": "Pulses", "temp": (18, 28, 23), "humidity": (40, 70), "moisture": (0.3, 0.5), "regions": ("all",)},
    {"name": "Groundnut", "temp": (22, 30, 26), "humidity": (50, 75), "moisture": (0.3, 0.6), "regions": ("southern", "western")},
    {"name": "Millets", "temp": (25, 35, 30), "humidity": (30, 60), "moisture": (0.2, 0.4), "regions": ("all",)},
    {"name": "Turmeric", "temp": (24, 32, 28), "humidity": (70, 90), "moisture": (0.5, 0.8), "regions": ("southern",)},
]

# Used when no crop scores as "best" for the current conditions
REGION_DEFAULT_CROPS: Dict[str, Tuple[Tuple[str, ...], Tuple[str, ...]]] = {
    "northern": (("Wheat", "Rice", "Sugarcane"), ("Maize", "Pulses")),
    "central": (("Soybean", "Cotton", "Maize"), ("Wheat", "Pulses")),
    "southern": (("Rice", "Cotton", "Groundnut"), ("Turmeric", "Pulses")),
    "western": (("Cotton", "Sugarcane", "Groundnut"), ("Millets", "Pulses")),
    "eastern": (("Rice", "Maize", "Pulses"), ("Sugarcane", "Cotton")),
}


def region_type(lat: float, lon: float) -> str:
    """Coarse Indian agro-region from coordinates."""
    if lat > 26:
        return "northern"
    if lat > 20:
        return "central"
    if lat > 15:
        return "southern"
    if lon > 75:
        return "eastern"
    return "western"


@dataclass
class Settings:
    """Runtime settings for a pipeline deployment."""
    cache_ttl_s: float = DEFAULT_CACHE_TTL_S
    cache_max_entries: int = DEFAULT_CACHE_MAX_ENTRIES
    max_retries: int = DEFAULT_MAX_RETRIES
    base_delay_s: float = DEFAULT_BASE_DELAY_S
    max_delay_s: float = DEFAULT_MAX_DELAY_S
    timeouts_s: Dict[str, float] = field(default_factory=lambda: {
        SOURCE_LOCATION: DEFAULT_LOCATION_TIMEOUT_S,
        SOURCE_WEATHER: DEFAULT_WEATHER_TIMEOUT_S,
        SOURCE_ENVIRONMENTAL: DEFAULT_ENVIRONMENTAL_TIMEOUT_S,
        SOURCE_IMAGERY: DEFAULT_IMAGERY_TIMEOUT_S,
    })
    post_run_wait_s: float = POST_RUN_WAIT_S
    db_path: Optional[str] = None
    imagery_api_url: Optional[str] = None
    imagery_api_key: Optional[str] = None
    twilio_account_sid: Optional[str] = None
    twilio_auth_token: Optional[str] = None
    twilio_phone_number: Optional[str] = None
    skip_notifications: bool = False


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring malformed %s=%r; using %s", name, raw, default)
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring malformed %s=%r; using %s", name, raw, default)
        return default


def load_settings() -> Settings:
    """
    Build Settings from environment variables.

    Unset or malformed values keep their defaults.
    """
    return Settings(
        cache_ttl_s=_env_float("AGRIPIPE_CACHE_TTL_S", DEFAULT_CACHE_TTL_S),
        cache_max_entries=_env_int("AGRIPIPE_CACHE_MAX_ENTRIES", DEFAULT_CACHE_MAX_ENTRIES),
        max_retries=_env_int("AGRIPIPE_MAX_RETRIES", DEFAULT_MAX_RETRIES),
        base_delay_s=_env_float("AGRIPIPE_BASE_DELAY_S", DEFAULT_BASE_DELAY_S),
        timeouts_s={
            SOURCE_LOCATION: _env_float("AGRIPIPE_LOCATION_TIMEOUT_S", DEFAULT_LOCATION_TIMEOUT_S),
            SOURCE_WEATHER: _env_float("AGRIPIPE_WEATHER_TIMEOUT_S", DEFAULT_WEATHER_TIMEOUT_S),
            SOURCE_ENVIRONMENTAL: _env_float("AGRIPIPE_ENV_TIMEOUT_S", DEFAULT_ENVIRONMENTAL_TIMEOUT_S),
            SOURCE_IMAGERY: _env_float("AGRIPIPE_IMAGERY_TIMEOUT_S", DEFAULT_IMAGERY_TIMEOUT_S),
        },
        db_path=os.environ.get("AGRIPIPE_DB_PATH") or None,
        imagery_api_url=os.environ.get("IMAGERY_API_URL") or None,
        imagery_api_key=os.environ.get("IMAGERY_API_KEY") or None,
        twilio_account_sid=os.environ.get("TWILIO_ACCOUNT_SID") or None,
        twilio_auth_token=os.environ.get("TWILIO_AUTH_TOKEN") or None,
        twilio_phone_number=os.environ.get("TWILIO_PHONE_NUMBER") or None,
        skip_notifications=os.environ.get("SKIP_NOTIFICATIONS", "").lower() == "true",
    )
