"""
Recommendation engine: turns insights into ranked, actionable advice, plus the
run summary and alert rows derived from the same insights.

Generation walks categories in insight order. Within one category,
issue-specific recommendations come before overall-level ones, and exact
duplicates (same category + action) are dropped keeping the first. prioritize()
is a stable sort on (priority, impact), so equal-ranked records keep that
generation order.
"""

import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from agripipe.config import SATISFACTORY_LABELS, TOP_N_RECOMMENDATIONS
from agripipe.insights import (
    CLIMATE_ADAPTATION,
    CROP_SUITABILITY,
    PEST_RISK,
    SOIL_HEALTH,
    WATER_MANAGEMENT,
    YIELD_POTENTIAL,
)
from agripipe.models import Insight, Recommendation

logger = logging.getLogger(__name__)

LEVEL_RANK = {"High": 0, "Medium": 1, "Low": 2}
# Unrecognized priority/impact values sort after Low
UNKNOWN_RANK = len(LEVEL_RANK)

CATEGORY_LABELS = {
    SOIL_HEALTH: "Soil Health",
    CROP_SUITABILITY: "Crop Suitability",
    WATER_MANAGEMENT: "Water Management",
    PEST_RISK: "Pest Risk",
    YIELD_POTENTIAL: "Yield Potential",
    CLIMATE_ADAPTATION: "Climate Adaptation",
}

# issue text -> (category, priority, impact, action, timeframe)
ISSUE_RECOMMENDATIONS: Dict[str, Dict[str, tuple]] = {
    SOIL_HEALTH: {
        "Low soil moisture": (
            "Water Management", "High", "High",
            "Implement irrigation system or improve water retention", "1-2 months"),
        "Excessive soil moisture": (
            "Water Management", "High", "Medium",
            "Improve field drainage to prevent waterlogging", "1-2 months"),
        "Acidic soil": (
            "Soil Management", "High", "Medium",
            "Apply agricultural lime to raise soil pH", "1-3 months"),
        "Alkaline soil": (
            "Soil Management", "High", "Medium",
            "Apply gypsum or elemental sulfur to lower soil pH", "1-3 months"),
        "Sandy soil with low water retention": (
            "Soil Management", "Medium", "Medium",
            "Add organic matter to improve water retention", "3-6 months"),
        "Heavy clay soil prone to waterlogging": (
            "Soil Management", "Medium", "Medium",
            "Add organic matter and gypsum to loosen heavy clay", "3-6 months"),
    },
    WATER_MANAGEMENT: {
        "Low soil moisture": (
            "Water Management", "High", "High",
            "Install drip irrigation to deliver water efficiently", "2-4 weeks"),
        "Excess soil moisture": (
            "Water Management", "High", "High",
            "Open drainage channels to remove excess water", "1-2 weeks"),
        "Heavy rainfall forecast": (
            "Water Management", "High", "Medium",
            "Clear drainage channels and protect stored produce before heavy rain", "Immediate"),
        "Dry spell forecast": (
            "Water Management", "Medium", "Medium",
            "Schedule irrigation for the coming dry days", "1-2 weeks"),
    },
    PEST_RISK: {
        "High humidity - favorable for fungal diseases": (
            "Disease Prevention", "Medium", "Medium",
            "Apply preventive fungicide and improve air circulation between plants", "1-2 weeks"),
        "Warm temperature - favorable for insect pests": (
            "Pest Management", "Medium", "Low",
            "Monitor fields for insect pests and set pheromone traps", "Ongoing"),
        "Disease detected in field images": (
            "Disease Management", "High", "High",
            "Remove infected plants and apply a targeted treatment", "Immediate"),
    },
    YIELD_POTENTIAL: {
        "Low vegetation density": (
            "Yield Optimization", "High", "Medium",
            "Apply balanced fertilizer and check crop stand density", "2-4 weeks"),
        "Temperature stress": (
            "Yield Optimization", "Medium", "Medium",
            "Use mulching and adjust irrigation timing to reduce temperature stress", "1-2 weeks"),
        "Poor crop health in field images": (
            "Crop Health", "High", "High",
            "Inspect affected areas and treat nutrient or disease problems", "Immediate"),
    },
}

# (category key, overall label) -> (category, priority, impact, action, timeframe)
OVERALL_RECOMMENDATIONS: Dict[tuple, tuple] = {
    (SOIL_HEALTH, "Poor"): (
        "Soil Health", "High", "High",
        "Conduct comprehensive soil testing and follow a soil improvement plan", "3-6 months"),
    (SOIL_HEALTH, "Fair"): (
        "Soil Health", "Medium", "Medium",
        "Add compost or green manure to build soil organic matter", "3-6 months"),
    (CROP_SUITABILITY, "Poor"): (
        "Crop Selection", "Medium", "Medium",
        "Consult the local agricultural extension officer on crop choice", "Next season"),
    (CROP_SUITABILITY, "Fair"): (
        "Crop Selection", "Medium", "Medium",
        "Consult the local agricultural extension officer on crop choice", "Next season"),
    (WATER_MANAGEMENT, "High"): (
        "Water Management", "High", "High",
        "Prepare a field water management plan for the season", "1-2 weeks"),
    (PEST_RISK, "High"): (
        "Pest Management", "High", "High",
        "Adopt integrated pest management (IPM) practices", "Immediate"),
    (PEST_RISK, "Moderate"): (
        "Pest Management", "Medium", "Medium",
        "Scout fields weekly for pest and disease symptoms", "Ongoing"),
    (YIELD_POTENTIAL, "Poor"): (
        "Yield Optimization", "High", "Medium",
        "Review fertilization and irrigation schedule with an agronomist", "1-2 months"),
    (YIELD_POTENTIAL, "Fair"): (
        "Yield Optimization", "Medium", "Medium",
        "Optimize fertilizer timing to improve yield", "1-2 months"),
}

FALLBACK_RECOMMENDATIONS = (
    Recommendation("Soil Health", "Medium", "Medium", "Conduct regular soil testing", "3-6 months"),
    Recommendation("Water Management", "Low", "Low", "Monitor soil moisture levels", "Ongoing"),
)

NEXT_STEPS = (
    "Review detailed analysis report",
    "Prioritize high-impact recommendations",
    "Schedule follow-up field inspection",
    "Monitor implementation progress",
)


def _make(template: tuple, source_insight: str) -> Recommendation:
    category, priority, impact, action, timeframe = template
    return Recommendation(category, priority, impact, action, timeframe, source_insight)


def _needs_attention(insight: Insight) -> bool:
    return bool(insight.issues) or insight.overall not in SATISFACTORY_LABELS


def _crop_specific(insight: Insight) -> List[Recommendation]:
    recs = []
    best = insight.details.get("bestCrops") or []
    avoid = insight.details.get("avoidCrops") or []
    if best:
        recs.append(Recommendation(
            "Crop Selection", "High", "High",
            f"Focus on: {', '.join(best)}", "Next season", CROP_SUITABILITY))
    if avoid:
        recs.append(Recommendation(
            "Crop Selection", "Medium", "Medium",
            f"Avoid: {', '.join(avoid)}", "Next season", CROP_SUITABILITY))
    return recs


def _climate_specific(insight: Insight) -> List[Recommendation]:
    strategies = insight.details.get("strategies") or []
    if not insight.issues or not strategies:
        return []
    return [Recommendation(
        "Climate Adaptation", "Medium", "Medium",
        f"Implement: {', '.join(strategies[:3])}", "3-6 months", CLIMATE_ADAPTATION)]


def _issue_specific(insight: Insight) -> List[Recommendation]:
    table = ISSUE_RECOMMENDATIONS.get(insight.category, {})
    return [_make(table[issue], insight.category) for issue in insight.issues if issue in table]


_SPECIFIC: Dict[str, Callable[[Insight], List[Recommendation]]] = {
    CROP_SUITABILITY: _crop_specific,
    CLIMATE_ADAPTATION: _climate_specific,
}


def generate_recommendations(insights: Mapping[str, Insight]) -> List[Recommendation]:
    """
    Build recommendations for every insight that needs attention.

    Args:
        insights: category -> Insight, in derivation order.

    Returns:
        Unranked recommendations with duplicates removed.
    """
    recs: List[Recommendation] = []
    seen = set()
    for category, insight in insights.items():
        if not _needs_attention(insight):
            continue
        specific = _SPECIFIC.get(category, _issue_specific)(insight)
        overall = OVERALL_RECOMMENDATIONS.get((category, insight.overall))
        candidates = specific + ([_make(overall, category)] if overall else [])
        for rec in candidates:
            key = (rec.category, rec.action)
            if key in seen:
                continue
            seen.add(key)
            recs.append(rec)
    return recs


def _rank(level: str) -> int:
    return LEVEL_RANK.get(level, UNKNOWN_RANK)


def prioritize(recs: Sequence[Recommendation]) -> List[Recommendation]:
    """Stable sort: priority first, then impact (High > Medium > Low > other)."""
    return sorted(recs, key=lambda r: (_rank(r.priority), _rank(r.impact)))


def top_recommendations(
    recs: Sequence[Recommendation], n: int = TOP_N_RECOMMENDATIONS
) -> List[Recommendation]:
    return prioritize(recs)[:n]


def fallback_recommendations() -> List[Recommendation]:
    """Generic advice used when insight derivation fails."""
    return list(FALLBACK_RECOMMENDATIONS)


def build_summary(
    insights: Mapping[str, Insight],
    recs: Sequence[Recommendation],
    n: int = TOP_N_RECOMMENDATIONS,
) -> Dict[str, Any]:
    """
    Short farmer-facing digest of one run.

    Returns:
        Dict with keyFindings, topRecommendations (actions), nextSteps, and
        usesFallbackData when any insight was tainted.
    """
    def overall(category: str) -> str:
        insight = insights.get(category)
        return insight.overall if insight is not None else "Unknown"

    crop = insights.get(CROP_SUITABILITY)
    best_count = len(crop.details.get("bestCrops") or []) if crop is not None else 0
    water = insights.get(WATER_MANAGEMENT)
    irrigation = water.details.get("irrigationNeeds", "Unknown") if water is not None else "Unknown"

    return {
        "keyFindings": [
            f"Soil Health: {overall(SOIL_HEALTH)}",
            f"Crop Suitability: {best_count} recommended crops",
            f"Water Management: {irrigation} irrigation needs",
            f"Pest Risk: {overall(PEST_RISK)}",
            f"Yield Potential: {overall(YIELD_POTENTIAL)}",
        ],
        "topRecommendations": [r.action for r in list(recs)[:n]],
        "nextSteps": list(NEXT_STEPS),
        "usesFallbackData": any(i.is_fallback for i in insights.values()),
    }


def build_alerts(
    insights: Mapping[str, Insight],
    predictions: Optional[Sequence[Mapping[str, Any]]] = None,
) -> List[Dict[str, Any]]:
    """
    Alert rows for the run: High-risk or Poor insights, plus high or critical
    predictions.
    """
    alerts: List[Dict[str, Any]] = []
    for category, insight in insights.items():
        if insight.overall in ("High", "Poor"):
            label = CATEGORY_LABELS.get(category, category)
            detail = f" ({'; '.join(insight.issues)})" if insight.issues else ""
            alerts.append({
                "type": "insight_alert",
                "severity": "high",
                "category": category,
                "message": f"{label}: {insight.overall}{detail}",
            })

    for prediction in predictions or []:
        if prediction.get("severity") in ("high", "critical"):
            alerts.append({
                "type": "prediction_alert",
                "severity": prediction["severity"],
                "category": prediction.get("type"),
                "message": prediction.get("message", ""),
            })

    if alerts:
        logger.info("Raised %d alert(s)", len(alerts))
    return alerts
