"""
End-to-end orchestrator tests with stubbed source adapters: degraded
providers, validation failures, caching, persistence and notification.
"""

import sys
import threading
import time
from pathlib import Path
from unittest.mock import patch

import requests

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT / "src"))

from conftest import NAGPUR, StubAdapter  # noqa: E402

PHONE = "+919812345678"


def _query(**kwargs):
    from agripipe.models import Coordinates, PipelineQuery

    kwargs.setdefault("coordinates", Coordinates(21.1458, 79.0882))
    return PipelineQuery(**kwargs)


def _http_error(status):
    resp = requests.Response()
    resp.status_code = status
    return requests.exceptions.HTTPError(f"{status} error", response=resp)


class _RecordingSender:
    def __init__(self):
        self.sent = []

    def send(self, target, message, language):
        from agripipe.notify import SendReceipt

        self.sent.append((target, message, language))
        return SendReceipt(success=True, message_id=f"SM{len(self.sent)}")


class _BrokenStore:
    def save_run(self, run, result):
        raise OSError("disk full")

    def save_alerts(self, run_id, alerts):
        raise OSError("disk full")


class _SlowStore:
    def __init__(self, release):
        self.release = release

    def save_run(self, run, result):
        self.release.wait(10)
        return run.run_id

    def save_alerts(self, run_id, alerts):
        return len(alerts)


class TestHappyPath:
    def test_live_sources(self, make_orchestrator):
        orchestrator = make_orchestrator()
        result = orchestrator.run(_query(farmer_id="farmer_001"))

        assert result.success is True
        assert result.status == "succeeded"
        assert result.cached is False
        assert result.farmer_id == "farmer_001"
        assert all(not r.is_fallback for r in result.collection.values())
        assert list(result.insights) == [
            "soilHealth", "cropSuitability", "waterManagement",
            "pestRisk", "yieldPotential", "climateAdaptation",
        ]
        assert result.recommendations[0].priority == "High"
        assert result.persistence["status"] == "saved"
        assert result.notification_status == "not_requested"

    def test_to_dict_shape(self, make_orchestrator):
        d = make_orchestrator().run(_query()).to_dict()

        assert d["success"] is True
        assert d["pipelineId"].startswith("pipeline_")
        assert set(d["dataCollection"]) == {"weather", "environmental", "imageAnalysis"}
        assert set(d["sources"]) == {"location", "weather", "environmental", "imagery"}
        assert len(d["insights"]) == 6
        assert d["summary"]["keyFindings"]
        assert d["location"]["lat"] == NAGPUR["lat"]


class TestDegradedProviders:
    def test_weather_hangs_and_environmental_fails(self, make_orchestrator, release):
        weather = StubAdapter("weather", block=release)
        environmental = StubAdapter("environmental", exc=_http_error(503))
        orchestrator = make_orchestrator(weather=weather, environmental=environmental)

        start = time.monotonic()
        result = orchestrator.run(_query())
        elapsed = time.monotonic() - start

        assert result.success is True
        assert result.collection["weather"].is_fallback is True
        assert result.collection["weather"].error.value == "timeout"
        assert result.collection["environmental"].is_fallback is True
        assert result.collection["environmental"].error.value == "server_error"
        assert result.collection["imagery"].is_fallback is False
        assert len(result.recommendations) >= 1
        assert result.insights["pestRisk"].is_fallback is True
        assert result.summary["usesFallbackData"] is True
        assert elapsed < 1.5

    def test_sources_are_collected_concurrently(self, make_orchestrator, release):
        orchestrator = make_orchestrator(
            weather=StubAdapter("weather", block=release),
            environmental=StubAdapter("environmental", block=release),
            imagery=StubAdapter("imagery", block=release),
        )

        start = time.monotonic()
        result = orchestrator.run(_query())
        elapsed = time.monotonic() - start

        assert result.success is True
        assert all(result.collection[s].is_fallback for s in ("weather", "environmental", "imagery"))
        # Three 0.3s timeouts in parallel, not in sequence
        assert elapsed < 0.8

    def test_transient_location_failure_uses_default_coordinates(self, make_orchestrator):
        from agripipe.config import DEFAULT_COORDINATES

        location = StubAdapter("location", exc=requests.exceptions.ConnectionError("dns"))
        result = make_orchestrator(location=location).run(_query(coordinates=None, region="Nagpur"))

        assert result.success is True
        assert result.collection["location"].is_fallback is True
        assert (result.location["lat"], result.location["lon"]) == DEFAULT_COORDINATES
        assert result.insights["pestRisk"].is_fallback is True
        assert result.insights["yieldPotential"].is_fallback is True
        assert all("location" in i.fallback_sources for i in result.insights.values())

    def test_hung_weather_does_not_starve_environmental(self, make_orchestrator, release):
        from agripipe.executor import ResilientCallExecutor
        from agripipe.models import Coordinates

        orchestrator = make_orchestrator(
            weather=StubAdapter("weather", block=release),
            executor=ResilientCallExecutor(base_delay_s=0.01, max_delay_s=0.05, max_workers=2),
        )

        results = [
            orchestrator.run(_query(coordinates=Coordinates(21.0 + i / 10, 79.0)))
            for i in range(4)
        ]

        assert all(r.collection["weather"].is_fallback for r in results)
        assert not any(r.collection["environmental"].is_fallback for r in results)

    def test_derivation_error_uses_fallback_insights(self, make_orchestrator):
        from agripipe.recommendations import fallback_recommendations

        with patch("agripipe.orchestrator.derive_insights", side_effect=RuntimeError("bad rule")):
            result = make_orchestrator().run(_query())

        assert result.success is True
        assert all(i.overall == "Unknown" for i in result.insights.values())
        assert result.recommendations == fallback_recommendations()

    def test_prediction_failure_is_absorbed(self, make_orchestrator):
        class Broken:
            def predict(self, insights, collection):
                raise RuntimeError("model offline")

        result = make_orchestrator(prediction_provider=Broken()).run(_query())

        assert result.success is True
        assert result.predictions == []


class TestValidation:
    def test_missing_location(self, make_orchestrator):
        from agripipe.models import PipelineQuery

        result = make_orchestrator().run(PipelineQuery(farmer_id="farmer_001"))
        d = result.to_dict()

        assert result.success is False
        assert d["status"] == "failed"
        assert d["error"]["type"] == "validation_error"
        assert len(d["fallbackData"]["insights"]) == 6
        assert len(d["fallbackData"]["recommendations"]) >= 1
        assert all(s["isFallback"] for s in d["fallbackData"]["sources"].values())

    def test_out_of_range_coordinates(self, make_orchestrator):
        from agripipe.models import Coordinates

        result = make_orchestrator().run(_query(coordinates=Coordinates(95.0, 79.0)))

        assert result.success is False
        assert "Latitude" in result.error["message"]

    def test_unresolvable_region(self, make_orchestrator):
        from agripipe.errors import LocationNotFoundError

        location = StubAdapter("location", exc=LocationNotFoundError("no match"))
        orchestrator = make_orchestrator(location=location)

        result = orchestrator.run(_query(coordinates=None, region="Atlantis"))

        assert result.success is False
        assert result.error == {
            "type": "validation_error",
            "message": "Could not resolve location 'Atlantis'",
        }
        assert result.fallback_data is not None

    def test_failures_are_not_cached(self, make_orchestrator):
        from agripipe.errors import LocationNotFoundError

        location = StubAdapter("location", exc=LocationNotFoundError("no match"))
        orchestrator = make_orchestrator(location=location)

        orchestrator.run(_query(coordinates=None, region="Atlantis"))
        orchestrator.run(_query(coordinates=None, region="Atlantis"))

        assert location.calls == 2


class TestCaching:
    def test_second_run_is_cached(self, make_orchestrator):
        location = StubAdapter("location", NAGPUR)
        orchestrator = make_orchestrator(location=location)

        first = orchestrator.run(_query())
        second = orchestrator.run(_query())

        assert first.cached is False
        assert second.cached is True
        assert second.pipeline_id == first.pipeline_id
        assert location.calls == 1
        assert orchestrator.cache.stats()["hits"] == 1

    def test_cache_hit_notifies_its_own_caller(self, make_orchestrator):
        from agripipe.notify import NotificationDispatcher, mask_phone

        sender = _RecordingSender()
        orchestrator = make_orchestrator(dispatcher=NotificationDispatcher({"sms": sender}))
        other = "+918887776665"

        first = orchestrator.run(_query(phone_number=PHONE))
        second = orchestrator.run(_query(phone_number=other))

        assert second.cached is True
        assert [target for target, _, _ in sender.sent] == [PHONE, other]
        assert [a.target for a in first.notifications] == [mask_phone(PHONE)]
        assert second.notification_status == "sent"
        assert [a.target for a in second.notifications] == [mask_phone(other)]

    def test_cache_hit_without_phone_carries_no_notifications(self, make_orchestrator):
        from agripipe.notify import NotificationDispatcher

        sender = _RecordingSender()
        orchestrator = make_orchestrator(dispatcher=NotificationDispatcher({"sms": sender}))

        orchestrator.run(_query(phone_number=PHONE))
        second = orchestrator.run(_query())

        assert second.cached is True
        assert second.notification_status == "not_requested"
        assert second.notifications == []
        assert len(sender.sent) == 1

    def test_concurrent_identical_queries_share_one_run(self, make_orchestrator):
        location = StubAdapter("location", NAGPUR)
        orchestrator = make_orchestrator(location=location)
        results = []

        threads = [
            threading.Thread(target=lambda: results.append(orchestrator.run(_query())))
            for _ in range(4)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join(10)

        assert len(results) == 4
        assert location.calls == 1
        assert len({r.pipeline_id for r in results}) == 1


class TestPostRun:
    def test_notification_sent(self, make_orchestrator):
        from agripipe.notify import NotificationDispatcher

        sender = _RecordingSender()
        orchestrator = make_orchestrator(dispatcher=NotificationDispatcher({"sms": sender}))

        result = orchestrator.run(_query(phone_number=PHONE, language="en"))

        assert result.notification_status == "sent"
        assert len(result.notifications) == 1
        assert result.notifications[0].success is True
        assert PHONE not in result.notifications[0].target
        target, message, language = sender.sent[0]
        assert target == PHONE
        assert language == "en"
        assert len(message) <= 160

    def test_notify_false_suppresses_alert(self, make_orchestrator):
        from agripipe.notify import NotificationDispatcher

        sender = _RecordingSender()
        orchestrator = make_orchestrator(dispatcher=NotificationDispatcher({"sms": sender}))

        result = orchestrator.run(_query(phone_number=PHONE, notify=False))

        assert result.notification_status == "not_requested"
        assert sender.sent == []

    def test_skipped_notifications(self, make_orchestrator):
        from agripipe.notify import NotificationDispatcher

        sender = _RecordingSender()
        orchestrator = make_orchestrator(
            dispatcher=NotificationDispatcher({"sms": sender}, skip=True))

        result = orchestrator.run(_query(phone_number=PHONE))

        assert result.notification_status == "skipped"
        assert sender.sent == []
        assert [a.error for a in result.notifications] == ["skipped"]

    def test_persistence_failure_keeps_success(self, make_orchestrator):
        result = make_orchestrator(store=_BrokenStore()).run(_query())

        assert result.success is True
        assert result.status == "succeeded"
        assert result.persistence["status"] == "failed"
        assert "disk full" in result.persistence["error"]

    def test_slow_persistence_reported_pending(self, make_orchestrator, release):
        from agripipe.config import Settings

        settings = Settings(
            timeouts_s={"location": 0.3, "weather": 0.3, "environmental": 0.3, "imagery": 0.3},
            post_run_wait_s=0.1,
        )
        orchestrator = make_orchestrator(store=_SlowStore(release), settings=settings)

        result = orchestrator.run(_query())

        assert result.success is True
        assert result.persistence == {"status": "pending"}

    def test_saved_run_is_retrievable(self, make_orchestrator):
        from agripipe.store import InMemoryRunStore

        store = InMemoryRunStore()
        result = make_orchestrator(store=store).run(_query(farmer_id="farmer_007"))

        saved = store.runs[result.pipeline_id]
        assert saved["status"] == "succeeded"
        assert saved["farmerId"] == "farmer_007"
        assert store.alerts[result.pipeline_id] == result.alerts
