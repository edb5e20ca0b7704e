"""
Tests for recommendation generation, ranking, summary and alerts.
"""

import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT / "src"))

from conftest import LIVE_ENVIRONMENTAL, LIVE_WEATHER, NAGPUR, NO_IMAGES  # noqa: E402


def _insights(**overrides):
    from agripipe.insights import derive_insights
    from agripipe.models import SourceResult

    payloads = {
        "location": dict(NAGPUR),
        "weather": dict(LIVE_WEATHER),
        "environmental": dict(LIVE_ENVIRONMENTAL),
        "imagery": dict(NO_IMAGES),
    }
    payloads.update(overrides)
    return derive_insights({
        name: SourceResult(source=name, success=True, payload=payload)
        for name, payload in payloads.items()
    })


def _rec(priority, impact, action, category="Test"):
    from agripipe.models import Recommendation

    return Recommendation(category, priority, impact, action, "Ongoing")


class TestGenerateRecommendations:
    def test_dry_acidic_field_leads_with_water(self):
        from agripipe.recommendations import generate_recommendations, prioritize

        recs = prioritize(generate_recommendations(_insights()))

        assert recs[0].priority == "High"
        assert recs[0].category == "Water Management"
        actions = [r.action for r in recs]
        assert "Apply agricultural lime to raise soil pH" in actions
        assert "Focus on: Rice" in actions
        assert any(a.startswith("Avoid: ") for a in actions)

    def test_no_duplicate_category_action(self):
        from agripipe.recommendations import generate_recommendations

        recs = generate_recommendations(_insights())
        keys = [(r.category, r.action) for r in recs]
        assert len(keys) == len(set(keys))

    def test_satisfactory_insight_yields_nothing(self):
        from agripipe.insights import PEST_RISK
        from agripipe.models import Insight
        from agripipe.recommendations import generate_recommendations

        calm = {PEST_RISK: Insight(category=PEST_RISK, overall="Low")}
        assert generate_recommendations(calm) == []

    def test_issue_recs_precede_overall(self):
        from agripipe.insights import SOIL_HEALTH
        from agripipe.recommendations import generate_recommendations

        recs = [r for r in generate_recommendations(_insights()) if r.source_insight == SOIL_HEALTH]
        assert recs[-1].category == "Soil Health"
        assert recs[-1].action.startswith("Conduct comprehensive soil testing")

    def test_climate_strategies_capped_at_three(self):
        from agripipe.insights import CLIMATE_ADAPTATION
        from agripipe.models import Insight
        from agripipe.recommendations import generate_recommendations

        insight = Insight(
            category=CLIMATE_ADAPTATION, overall="Fair", score=60,
            issues=("Heat stress periods",),
            details={"strategies": ["a", "b", "c", "d"]},
        )
        recs = generate_recommendations({CLIMATE_ADAPTATION: insight})
        assert recs[0].action == "Implement: a, b, c"


class TestPrioritize:
    def test_priority_then_impact(self):
        from agripipe.recommendations import prioritize

        recs = [
            _rec("Low", "High", "a"),
            _rec("High", "Low", "b"),
            _rec("High", "High", "c"),
            _rec("Medium", "Medium", "d"),
        ]
        assert [r.action for r in prioritize(recs)] == ["c", "b", "d", "a"]

    def test_equal_rank_keeps_input_order(self):
        from agripipe.recommendations import prioritize

        recs = [_rec("Medium", "Medium", str(i)) for i in range(5)]
        assert [r.action for r in prioritize(recs)] == ["0", "1", "2", "3", "4"]

    def test_unknown_level_ranks_last(self):
        from agripipe.recommendations import prioritize

        recs = [_rec("Urgent", "High", "odd"), _rec("Low", "Low", "low")]
        assert [r.action for r in prioritize(recs)] == ["low", "odd"]

    def test_top_recommendations(self):
        from agripipe.recommendations import top_recommendations

        recs = [_rec("Low", "Low", str(i)) for i in range(8)] + [_rec("High", "High", "top")]
        top = top_recommendations(recs, n=3)
        assert [r.action for r in top] == ["top", "0", "1"]


class TestFallbackRecommendations:
    def test_generic_advice(self):
        from agripipe.recommendations import fallback_recommendations

        recs = fallback_recommendations()
        assert len(recs) >= 1
        assert recs[0].action == "Conduct regular soil testing"

    def test_returns_fresh_list(self):
        from agripipe.recommendations import fallback_recommendations

        first = fallback_recommendations()
        first.clear()
        assert fallback_recommendations()


class TestSummaryAndAlerts:
    def test_summary_fields(self):
        from agripipe.recommendations import build_summary, generate_recommendations, prioritize

        insights = _insights()
        recs = prioritize(generate_recommendations(insights))
        summary = build_summary(insights, recs)

        assert "Soil Health: Poor" in summary["keyFindings"]
        assert "Crop Suitability: 1 recommended crops" in summary["keyFindings"]
        assert "Water Management: High irrigation needs" in summary["keyFindings"]
        assert summary["topRecommendations"][0] == recs[0].action
        assert len(summary["topRecommendations"]) == 5
        assert summary["usesFallbackData"] is False

    def test_alerts_for_poor_insights_and_critical_predictions(self):
        from agripipe.recommendations import build_alerts

        predictions = [
            {"type": "yield_prediction", "severity": "low", "message": "fine"},
            {"type": "risk_prediction", "severity": "critical", "message": "flood"},
        ]
        alerts = build_alerts(_insights(), predictions)

        insight_alerts = [a for a in alerts if a["type"] == "insight_alert"]
        assert [a["category"] for a in insight_alerts] == ["soilHealth"]
        assert "Low soil moisture" in insight_alerts[0]["message"]

        prediction_alerts = [a for a in alerts if a["type"] == "prediction_alert"]
        assert len(prediction_alerts) == 1
        assert prediction_alerts[0]["severity"] == "critical"
