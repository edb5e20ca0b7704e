"""
Prediction providers: yield and risk outlooks derived from a run's insights
and collected data.

A provider is a collaborator of the orchestrator; swap in a model-backed one
by implementing predict().
"""

import logging
from typing import Any, Dict, List, Mapping

from agripipe.config import SOURCE_WEATHER
from agripipe.insights import PEST_RISK, WATER_MANAGEMENT
from agripipe.models import Insight, SourceResult

logger = logging.getLogger(__name__)

RISK_CATEGORIES = (WATER_MANAGEMENT, PEST_RISK)

# (lower bound exclusive, yield change %) checked in order for heat
HEAT_YIELD_EFFECTS = ((35.0, -15.0), (30.0, -5.0))
# (upper bound exclusive, yield change %) checked in order for cold
COLD_YIELD_EFFECTS = ((5.0, -20.0), (10.0, -10.0))
FAVORABLE_YIELD_CHANGE = 5.0
HIGH_SEVERITY_YIELD_DROP = -10.0


class PredictionProvider:
    """Interface: predict(insights, collection) -> list of prediction dicts."""

    def predict(
        self,
        insights: Mapping[str, Insight],
        collection: Mapping[str, SourceResult],
    ) -> List[Dict[str, Any]]:
        raise NotImplementedError


def yield_change_for_temperature(temp: float) -> float:
    """Expected yield change (%) for the current air temperature."""
    for bound, change in HEAT_YIELD_EFFECTS:
        if temp > bound:
            return change
    for bound, change in COLD_YIELD_EFFECTS:
        if temp < bound:
            return change
    return FAVORABLE_YIELD_CHANGE


class RuleBasedPredictionProvider(PredictionProvider):
    """Temperature-driven yield outlook plus one risk prediction per High risk."""

    def predict(self, insights, collection):
        predictions: List[Dict[str, Any]] = []

        weather = collection.get(SOURCE_WEATHER)
        temp = weather.payload.get("temperature") if weather is not None else None
        if temp is not None:
            change = yield_change_for_temperature(float(temp))
            predictions.append({
                "type": "yield_prediction",
                "severity": "high" if change < HIGH_SEVERITY_YIELD_DROP else "low",
                "message": f"Expected yield change: {change:+.0f}% at {float(temp):.1f}C",
                "data": {
                    "yieldChangePercent": change,
                    "temperature": float(temp),
                    "isFallback": weather.is_fallback,
                },
            })

        for category in RISK_CATEGORIES:
            insight = insights.get(category)
            if insight is not None and insight.overall == "High":
                predictions.append({
                    "type": "risk_prediction",
                    "severity": "critical",
                    "message": f"High {category} risk: {'; '.join(insight.issues)}",
                    "data": {"category": category, "issues": list(insight.issues)},
                })

        return predictions
