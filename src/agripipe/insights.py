"""
Insight derivation: rule-based judgments over one run's source results.

derive_insights() is pure. Same inputs always produce the same six insights,
in the same order, with no clock or randomness involved. Each insight records
the sources it read; if any of those were synthesized fallbacks the insight is
tainted (is_fallback=True) and names them in fallback_sources.

Usage:
    insights = derive_insights(results, Coordinates(21.1458, 79.0882))
    insights["soilHealth"].overall   # 'Poor'
"""

import logging
from collections import OrderedDict
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from agripipe import config
from agripipe.config import (
    SOURCE_ENVIRONMENTAL,
    SOURCE_IMAGERY,
    SOURCE_LOCATION,
    SOURCE_WEATHER,
)
from agripipe.models import Coordinates, Insight, SourceResult

logger = logging.getLogger(__name__)

SOIL_HEALTH = "soilHealth"
CROP_SUITABILITY = "cropSuitability"
WATER_MANAGEMENT = "waterManagement"
PEST_RISK = "pestRisk"
YIELD_POTENTIAL = "yieldPotential"
CLIMATE_ADAPTATION = "climateAdaptation"

CATEGORIES = (
    SOIL_HEALTH,
    CROP_SUITABILITY,
    WATER_MANAGEMENT,
    PEST_RISK,
    YIELD_POTENTIAL,
    CLIMATE_ADAPTATION,
)

# Sources each category reads (drives fallback taint). Every downstream
# measurement is taken at the resolved location, so all categories read it.
CATEGORY_SOURCES: Dict[str, Tuple[str, ...]] = {
    SOIL_HEALTH: (SOURCE_ENVIRONMENTAL, SOURCE_LOCATION),
    CROP_SUITABILITY: (SOURCE_WEATHER, SOURCE_ENVIRONMENTAL, SOURCE_LOCATION),
    WATER_MANAGEMENT: (SOURCE_ENVIRONMENTAL, SOURCE_WEATHER, SOURCE_LOCATION),
    PEST_RISK: (SOURCE_WEATHER, SOURCE_IMAGERY, SOURCE_LOCATION),
    YIELD_POTENTIAL: (SOURCE_ENVIRONMENTAL, SOURCE_WEATHER, SOURCE_IMAGERY, SOURCE_LOCATION),
    CLIMATE_ADAPTATION: (SOURCE_WEATHER, SOURCE_ENVIRONMENTAL, SOURCE_LOCATION),
}


def score_for(category: str, issues: Sequence[str], strengths: Sequence[str]) -> int:
    """Clamp(BASE - penalty*issues + credit*strengths, 0, 100)."""
    penalty, credit = config.SCORE_WEIGHTS[category]
    raw = config.BASE_SCORE - penalty * len(issues) + credit * len(strengths)
    return max(0, min(100, raw))


def score_label(score: int) -> str:
    for threshold, label in config.SCORE_BANDS:
        if score >= threshold:
            return label
    return config.SCORE_BANDS[-1][1]


def risk_label(issue_count: int) -> str:
    for threshold, label in config.RISK_BANDS:
        if issue_count >= threshold:
            return label
    return config.RISK_BANDS[-1][1]


def _number(payload: Mapping[str, Any], key: str) -> Optional[float]:
    value = payload.get(key)
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _forecast(weather: Mapping[str, Any]) -> List[Mapping[str, Any]]:
    forecast = weather.get("forecast") or []
    return [day for day in forecast if isinstance(day, Mapping)]


class _Context:
    """Payloads and fallback flags for one derivation pass."""

    def __init__(self, results: Mapping[str, SourceResult], location: Optional[Coordinates]):
        self.results = results
        self.weather = self._payload(SOURCE_WEATHER)
        self.environmental = self._payload(SOURCE_ENVIRONMENTAL)
        self.imagery = self._payload(SOURCE_IMAGERY)
        if location is None:
            loc = self._payload(SOURCE_LOCATION)
            lat, lon = _number(loc, "lat"), _number(loc, "lon")
            if lat is None or lon is None:
                lat, lon = config.DEFAULT_COORDINATES
            location = Coordinates(lat, lon)
        self.location = location

    def _payload(self, source: str) -> Mapping[str, Any]:
        result = self.results.get(source)
        return result.payload if result is not None else {}

    def insight(self, category: str, overall: str, score: Optional[int],
                issues: List[str], strengths: List[str], details: Dict[str, Any]) -> Insight:
        sources = CATEGORY_SOURCES[category]
        tainted = tuple(
            s for s in sources
            if s in self.results and self.results[s].is_fallback
        )
        return Insight(
            category=category,
            overall=overall,
            score=score,
            issues=tuple(issues),
            strengths=tuple(strengths),
            details=details,
            sources=sources,
            fallback_sources=tainted,
        )


def _soil_health(ctx: _Context) -> Insight:
    env = ctx.environmental
    issues: List[str] = []
    strengths: List[str] = []

    moisture = _number(env, "soilMoistureFraction")
    if moisture is not None:
        if moisture < config.SOIL_MOISTURE_LOW:
            issues.append("Low soil moisture")
        elif moisture > config.SOIL_MOISTURE_HIGH:
            issues.append("Excessive soil moisture")
        else:
            strengths.append("Optimal soil moisture")

    ph = _number(env, "soilPhValue")
    if ph is not None:
        if ph < config.SOIL_PH_ACIDIC:
            issues.append("Acidic soil")
        elif ph > config.SOIL_PH_ALKALINE:
            issues.append("Alkaline soil")
        else:
            strengths.append("Optimal soil pH")

    texture = (env.get("soilTexture") or "").strip().lower()
    if texture in config.SANDY_TEXTURES:
        issues.append("Sandy soil with low water retention")
    elif texture in config.CLAY_TEXTURES:
        issues.append("Heavy clay soil prone to waterlogging")
    elif texture in config.LOAM_TEXTURES:
        strengths.append("Balanced soil texture")

    score = score_for(SOIL_HEALTH, issues, strengths)
    details = {
        "soilMoisture": moisture,
        "soilPh": ph,
        "soilTexture": env.get("soilTexture"),
        "organicCarbonGKg": _number(env, "organicCarbonGKg"),
        "missingData": list(env.get("missing") or []),
    }
    return ctx.insight(SOIL_HEALTH, score_label(score), score, issues, strengths, details)


def _crop_suitability(ctx: _Context) -> Insight:
    temp = _number(ctx.weather, "temperature")
    humidity = _number(ctx.weather, "humidity")
    moisture = _number(ctx.environmental, "soilMoistureFraction")
    ndvi = _number(ctx.environmental, "ndviValue")
    region = config.region_type(ctx.location.lat, ctx.location.lon)

    best: List[str] = []
    good: List[str] = []
    avoid: List[str] = []
    reasoning: Dict[str, str] = {}

    for crop in config.CROP_REQUIREMENTS:
        if "all" not in crop["regions"] and region not in crop["regions"]:
            continue
        points = 0
        reasons: List[str] = []

        if temp is not None:
            t_min, t_max, t_opt = crop["temp"]
            if t_min <= temp <= t_max:
                points += 3
                reasons.append(f"Optimal temperature ({temp}C)")
            elif abs(temp - t_opt) <= 5:
                points += 2
                reasons.append(f"Suitable temperature ({temp}C)")
            else:
                points -= 1
                reasons.append(f"Temperature challenge ({temp}C)")

        if humidity is not None:
            h_min, h_max = crop["humidity"]
            if h_min <= humidity <= h_max:
                points += 2
                reasons.append(f"Good humidity ({humidity}%)")

        if moisture is not None:
            m_min, m_max = crop["moisture"]
            if m_min <= moisture <= m_max:
                points += 2
                reasons.append("Suitable soil moisture")

        if ndvi is not None and ndvi > config.CROP_NDVI_GOOD:
            points += 1
            reasons.append("Good vegetation health")

        reasoning[crop["name"]] = ", ".join(reasons)
        if points >= config.BEST_CROP_SCORE:
            best.append(crop["name"])
        elif points >= config.GOOD_CROP_SCORE:
            good.append(crop["name"])
        elif points <= 0:
            avoid.append(crop["name"])

    if not best:
        default_best, default_good = config.REGION_DEFAULT_CROPS[region]
        best.extend(c for c in default_best if c not in avoid)
        good.extend(c for c in default_good if c not in best and c not in good and c not in avoid)

    if temp is not None and temp > config.WHEAT_HEAT_LIMIT_C:
        if "Wheat" not in avoid:
            avoid.append("Wheat")
        reasoning["Wheat"] = "High temperature may affect wheat growth"
        best = [c for c in best if c != "Wheat"]
        good = [c for c in good if c != "Wheat"]

    strengths = [f"{c} well suited" for c in best]
    issues = [f"{c} unsuited" for c in avoid]
    score = score_for(CROP_SUITABILITY, issues, strengths)
    details = {
        "bestCrops": best,
        "goodCrops": good,
        "avoidCrops": avoid,
        "reasoning": reasoning,
        "regionType": region,
    }
    return ctx.insight(CROP_SUITABILITY, score_label(score), score, issues, strengths, details)


def _water_management(ctx: _Context) -> Insight:
    issues: List[str] = []
    strengths: List[str] = []
    levels = {
        "irrigationNeeds": "Low",
        "drainageNeeds": "Low",
        "droughtRisk": "Low",
        "floodRisk": "Low",
    }
    strategies: List[str] = []

    moisture = _number(ctx.environmental, "soilMoistureFraction")
    if moisture is not None:
        if moisture < config.WATER_MOISTURE_LOW:
            issues.append("Low soil moisture")
            levels["irrigationNeeds"] = "High"
            levels["droughtRisk"] = "High"
            strategies.append("Drip irrigation")
            strategies.append("Mulching to reduce evaporation")
        elif moisture > config.WATER_MOISTURE_HIGH:
            issues.append("Excess soil moisture")
            levels["drainageNeeds"] = "High"
            levels["floodRisk"] = "Moderate"
            strategies.append("Improve field drainage")
        else:
            strengths.append("Adequate soil moisture")

    forecast = _forecast(ctx.weather)
    # Days with no precipitation figure are skipped
    precip = [p for p in (_number(day, "precipitation") for day in forecast) if p is not None]

    if any(p > config.HEAVY_RAIN_DAY_MM for p in precip):
        issues.append("Heavy rainfall forecast")
        levels["floodRisk"] = "High"
        strategies.append("Clear drainage channels before rainfall")

    if len(precip) >= config.DRY_SPELL_MIN_DAYS and sum(precip) < config.DRY_SPELL_TOTAL_MM:
        issues.append("Dry spell forecast")
        strategies.append("Schedule irrigation for the dry spell")

    if not strategies:
        strategies.append("Rainwater harvesting")

    details = dict(levels)
    details["soilMoisture"] = moisture
    details["forecastPrecipitationMm"] = round(sum(precip), 1) if precip else None
    details["conservationStrategies"] = strategies
    return ctx.insight(WATER_MANAGEMENT, risk_label(len(issues)), None, issues, strengths, details)


def _pest_risk(ctx: _Context) -> Insight:
    issues: List[str] = []
    strengths: List[str] = []
    humidity = _number(ctx.weather, "humidity")
    temp = _number(ctx.weather, "temperature")

    if humidity is not None and humidity > config.PEST_HUMIDITY_HIGH:
        issues.append("High humidity - favorable for fungal diseases")
    if temp is not None and temp > config.PEST_TEMPERATURE_WARM:
        issues.append("Warm temperature - favorable for insect pests")

    images = ctx.imagery.get("images") or []
    probabilities = [
        _number(img, "diseaseProbability") or 0.0
        for img in images if isinstance(img, Mapping)
    ]
    max_probability = max(probabilities) if probabilities else 0.0
    if max_probability > config.DISEASE_PROBABILITY_HIGH:
        issues.append("Disease detected in field images")

    details = {
        "humidity": humidity,
        "temperature": temp,
        "maxDiseaseProbability": round(max_probability, 3),
        "imagesAnalyzed": len(probabilities),
    }
    return ctx.insight(PEST_RISK, risk_label(len(issues)), None, issues, strengths, details)


def _yield_potential(ctx: _Context) -> Insight:
    issues: List[str] = []
    strengths: List[str] = []

    ndvi = _number(ctx.environmental, "ndviValue")
    if ndvi is not None:
        if ndvi > config.NDVI_HIGH:
            strengths.append("High vegetation density")
        elif ndvi < config.NDVI_LOW:
            issues.append("Low vegetation density")

    temp = _number(ctx.weather, "temperature")
    if temp is not None:
        low, high = config.YIELD_TEMP_OPTIMAL
        if low <= temp <= high:
            strengths.append("Optimal temperature range")
        elif temp > config.YIELD_TEMP_STRESS_HIGH or temp < config.YIELD_TEMP_STRESS_LOW:
            issues.append("Temperature stress")

    summary = ctx.imagery.get("summary") or {}
    image_health = summary.get("overallHealth")
    if image_health == "Poor":
        issues.append("Poor crop health in field images")
    elif image_health in ("Excellent", "Good"):
        strengths.append("Healthy crop canopy in field images")

    score = score_for(YIELD_POTENTIAL, issues, strengths)
    details = {"ndvi": ndvi, "temperature": temp, "imageHealth": image_health}
    return ctx.insight(YIELD_POTENTIAL, score_label(score), score, issues, strengths, details)


def _climate_adaptation(ctx: _Context) -> Insight:
    issues: List[str] = []
    strengths: List[str] = []
    strategies: List[str] = []
    opportunities: List[str] = []

    forecast = _forecast(ctx.weather)
    max_temps = [t for t in (_number(day, "tempMax") for day in forecast) if t is not None]
    precip = [p for p in (_number(day, "precipitation") for day in forecast) if p is not None]

    heat = any(t > config.HEAT_STRESS_MAX_C for t in max_temps)
    heavy_rain = any(p > config.HEAVY_RAIN_EVENT_MM for p in precip)

    if heat:
        issues.append("Heat stress periods")
        strategies.append("Use heat-tolerant crop varieties")
        strategies.append("Adjust sowing dates to avoid peak heat")
    if heavy_rain:
        issues.append("Heavy rainfall events")
        strategies.append("Build raised beds and drainage")

    lst = _number(ctx.environmental, "landSurfaceTempC")
    if lst is not None and lst > config.LAND_SURFACE_HOT_C:
        issues.append("High land surface temperature")
        strategies.append("Maintain ground cover to cool soil")

    if ctx.location.lat > config.COLD_REGION_LATITUDE:
        strategies.append("Use cold-tolerant crop varieties")

    if forecast and not heat and not heavy_rain:
        strengths.append("Stable short-term climate outlook")
        opportunities.append("Favorable window for field operations")

    score = score_for(CLIMATE_ADAPTATION, issues, strengths)
    details = {
        "strategies": strategies,
        "risks": list(issues),
        "opportunities": opportunities,
    }
    return ctx.insight(CLIMATE_ADAPTATION, score_label(score), score, issues, strengths, details)


_RULES = (
    (SOIL_HEALTH, _soil_health),
    (CROP_SUITABILITY, _crop_suitability),
    (WATER_MANAGEMENT, _water_management),
    (PEST_RISK, _pest_risk),
    (YIELD_POTENTIAL, _yield_potential),
    (CLIMATE_ADAPTATION, _climate_adaptation),
)


def derive_insights(
    results: Mapping[str, SourceResult],
    location: Optional[Coordinates] = None,
) -> "OrderedDict[str, Insight]":
    """
    Derive the six category insights for one run.

    Args:
        results: SourceResult per source name (live or fallback).
        location: Resolved coordinates; read from the location result if None.

    Returns:
        OrderedDict category -> Insight, in CATEGORIES order.
    """
    ctx = _Context(results, location)
    insights: "OrderedDict[str, Insight]" = OrderedDict()
    for category, rule in _RULES:
        insights[category] = rule(ctx)

    tainted = [c for c, i in insights.items() if i.is_fallback]
    if tainted:
        logger.info("Insights derived from fallback data: %s", ", ".join(tainted))
    return insights


def fallback_insights() -> "OrderedDict[str, Insight]":
    """Placeholder insight set used when derivation itself fails."""
    insights: "OrderedDict[str, Insight]" = OrderedDict()
    for category in CATEGORIES:
        sources = CATEGORY_SOURCES[category]
        insights[category] = Insight(
            category=category,
            overall="Unknown",
            details={"reason": "analysis unavailable"},
            sources=sources,
            fallback_sources=sources,
        )
    return insights
