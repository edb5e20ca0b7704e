"""
Pipeline orchestrator: sequences one run from query to result.

    started -> collecting -> deriving -> recommending -> persisting | notifying -> completed
                  \\-> failed (validation only)

Every provider call goes through the ResilientCallExecutor; a failed call is
replaced by fallback data, so a run with a usable location always succeeds.
Persistence and notification are best effort: they run in a background pool,
the run waits for them up to post_run_wait_s, and their failures never change
the run status.

Usage:
    orchestrator = build_default_orchestrator()
    result = orchestrator.run(PipelineQuery(coordinates=Coordinates(21.1458, 79.0882)))
    print(result.to_dict()["insights"])
"""

import logging
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional

from agripipe.cache import ResultCache
from agripipe.config import (
    SOURCE_ENVIRONMENTAL,
    SOURCE_IMAGERY,
    SOURCE_LOCATION,
    SOURCE_NAMES,
    SOURCE_WEATHER,
    Settings,
    load_settings,
)
from agripipe.errors import QueryValidationError
from agripipe.executor import RETRYABLE_KINDS, ResilientCallExecutor
from agripipe.fallback import FallbackSynthesizer
from agripipe.insights import derive_insights, fallback_insights
from agripipe.models import (
    RUN_FAILED,
    RUN_SUCCEEDED,
    Coordinates,
    Insight,
    NotificationAttempt,
    PipelineQuery,
    PipelineRun,
    Recommendation,
    SourceResult,
    utc_now_iso,
)
from agripipe.notify import (
    NotificationDispatcher,
    TwilioSmsSender,
    SKIPPED,
    TwilioVoiceSender,
    build_alert_message,
    mask_phone,
)
from agripipe.predictions import PredictionProvider, RuleBasedPredictionProvider
from agripipe.recommendations import (
    build_alerts,
    build_summary,
    fallback_recommendations,
    generate_recommendations,
    prioritize,
)
from agripipe.sources import (
    EnvironmentalAdapter,
    ImageryAdapter,
    LocationAdapter,
    SourceAdapter,
    WeatherAdapter,
)
from agripipe.store import InMemoryRunStore, RunStore, SqliteRunStore

logger = logging.getLogger(__name__)

PENDING = {"status": "pending"}


@dataclass
class PipelineResult:
    """Outcome of one pipeline run (or the cached copy of one)."""
    success: bool
    pipeline_id: str
    status: str
    timestamp: str = field(default_factory=utc_now_iso)
    farmer_id: Optional[str] = None
    location: Dict[str, Any] = field(default_factory=dict)
    collection: Dict[str, SourceResult] = field(default_factory=dict)
    insights: Dict[str, Insight] = field(default_factory=dict)
    recommendations: List[Recommendation] = field(default_factory=list)
    predictions: List[Dict[str, Any]] = field(default_factory=list)
    alerts: List[Dict[str, Any]] = field(default_factory=list)
    summary: Dict[str, Any] = field(default_factory=dict)
    notifications: List[NotificationAttempt] = field(default_factory=list)
    notification_status: str = "not_requested"
    persistence: Dict[str, Any] = field(default_factory=lambda: dict(PENDING))
    cached: bool = False
    error: Optional[Dict[str, str]] = None
    fallback_data: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        if not self.success:
            return {
                "success": False,
                "pipelineId": self.pipeline_id,
                "timestamp": self.timestamp,
                "status": self.status,
                "farmerId": self.farmer_id,
                "error": self.error,
                "fallbackData": self.fallback_data,
            }
        return {
            "success": True,
            "pipelineId": self.pipeline_id,
            "timestamp": self.timestamp,
            "status": self.status,
            "farmerId": self.farmer_id,
            "cached": self.cached,
            "location": self.location,
            "dataCollection": _data_collection(self.collection),
            "sources": {name: r.status_dict() for name, r in self.collection.items()},
            "insights": [i.to_dict() for i in self.insights.values()],
            "recommendations": [r.to_dict() for r in self.recommendations],
            "predictions": self.predictions,
            "alerts": self.alerts,
            "summary": self.summary,
            "notifications": [a.to_dict() for a in self.notifications],
            "notificationStatus": self.notification_status,
            "persistence": self.persistence,
        }


def _data_collection(collection: Mapping[str, SourceResult]) -> Dict[str, Any]:
    def payload(name: str) -> Dict[str, Any]:
        result = collection.get(name)
        return result.payload if result is not None else {}

    return {
        "weather": payload(SOURCE_WEATHER),
        "environmental": payload(SOURCE_ENVIRONMENTAL),
        "imageAnalysis": payload(SOURCE_IMAGERY),
    }


def fallback_result(
    query: PipelineQuery, synthesizer: Optional[FallbackSynthesizer] = None
) -> Dict[str, Any]:
    """
    Complete output built only from synthesized data, attached to failed runs
    so callers still have something to show.
    """
    synthesizer = synthesizer or FallbackSynthesizer()
    collection = {name: synthesizer.synthesize(name, query) for name in SOURCE_NAMES}
    insights = derive_insights(collection)
    recs = prioritize(generate_recommendations(insights)) or fallback_recommendations()
    return {
        "location": collection[SOURCE_LOCATION].payload,
        "dataCollection": _data_collection(collection),
        "sources": {name: r.status_dict() for name, r in collection.items()},
        "insights": [i.to_dict() for i in insights.values()],
        "recommendations": [r.to_dict() for r in recs],
    }


class PipelineOrchestrator:
    """
    Runs the pipeline with injected collaborators.

    Any collaborator left as None gets its production default, built from
    settings.
    """

    def __init__(
        self,
        location: Optional[SourceAdapter] = None,
        weather: Optional[SourceAdapter] = None,
        environmental: Optional[SourceAdapter] = None,
        imagery: Optional[SourceAdapter] = None,
        executor: Optional[ResilientCallExecutor] = None,
        synthesizer: Optional[FallbackSynthesizer] = None,
        cache: Optional[ResultCache] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        store: Optional[RunStore] = None,
        prediction_provider: Optional[PredictionProvider] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or Settings()
        s = self.settings
        self.adapters: Dict[str, SourceAdapter] = {
            SOURCE_LOCATION: location or LocationAdapter(timeout_s=s.timeouts_s[SOURCE_LOCATION]),
            SOURCE_WEATHER: weather or WeatherAdapter(timeout_s=s.timeouts_s[SOURCE_WEATHER]),
            SOURCE_ENVIRONMENTAL: environmental or EnvironmentalAdapter(
                timeout_s=s.timeouts_s[SOURCE_ENVIRONMENTAL]),
            SOURCE_IMAGERY: imagery or ImageryAdapter(
                timeout_s=s.timeouts_s[SOURCE_IMAGERY],
                api_url=s.imagery_api_url, api_key=s.imagery_api_key),
        }
        self.executor = executor or ResilientCallExecutor(s.base_delay_s, s.max_delay_s)
        self.synthesizer = synthesizer or FallbackSynthesizer()
        self.cache = cache or ResultCache(s.cache_max_entries, s.cache_ttl_s)
        self.dispatcher = dispatcher or NotificationDispatcher(
            {
                "sms": TwilioSmsSender(s.twilio_account_sid, s.twilio_auth_token, s.twilio_phone_number),
                "voice": TwilioVoiceSender(s.twilio_account_sid, s.twilio_auth_token, s.twilio_phone_number),
            },
            skip=s.skip_notifications,
        )
        self.store = store or InMemoryRunStore()
        self.prediction_provider = prediction_provider or RuleBasedPredictionProvider()

        self._fanout = ThreadPoolExecutor(max_workers=8, thread_name_prefix="collect")
        self._background = ThreadPoolExecutor(max_workers=4, thread_name_prefix="post-run")

    # ---- public API ----

    def run(self, query: PipelineQuery) -> PipelineResult:
        """
        Execute one pipeline run.

        Returns:
            PipelineResult. success=False only for validation failures, which
            carry error={"type": "validation_error", ...} and fallback_data.
        """
        run = PipelineRun(query)
        self._transition(run, "started")

        try:
            self._validate(query)
        except QueryValidationError as e:
            return self._fail(run, str(e))

        computed = []

        def compute() -> PipelineResult:
            computed.append(True)
            return self._execute(run)

        result = self.cache.get_or_compute(
            query.fingerprint(), self.settings.cache_ttl_s, compute,
            cache_if=lambda r: r.success,
        )
        if computed:
            return result

        run.finalize(RUN_SUCCEEDED if result.success else RUN_FAILED)
        logger.info("run=%s served from cache (pipeline %s)", run.run_id, result.pipeline_id)
        # Notification outcomes belong to the run that produced them
        served = replace(result, cached=True, notifications=[], notification_status="not_requested")
        notify = self._submit_notify(run, served) if served.success else None
        if notify is not None:
            wait([notify], timeout=self.settings.post_run_wait_s)
        self._apply_notification(served, notify)
        return served

    def shutdown(self) -> None:
        self._fanout.shutdown(wait=False)
        self._background.shutdown(wait=False)
        self.executor.shutdown()

    # ---- stages ----

    @staticmethod
    def _transition(run: PipelineRun, state: str) -> None:
        logger.info("run=%s state=%s", run.run_id, state)

    @staticmethod
    def _validate(query: PipelineQuery) -> None:
        if not query.has_location:
            raise QueryValidationError("Either coordinates or a region/location name is required")
        if query.coordinates is not None:
            try:
                query.coordinates.validate()
            except ValueError as e:
                raise QueryValidationError(str(e)) from e

    def _fail(self, run: PipelineRun, message: str) -> PipelineResult:
        run.finalize(RUN_FAILED)
        logger.warning("run=%s state=failed validation_error=%s", run.run_id, message)
        return PipelineResult(
            success=False,
            pipeline_id=run.run_id,
            status=run.status,
            farmer_id=run.query.farmer_id,
            error={"type": "validation_error", "message": message},
            fallback_data=fallback_result(run.query, self.synthesizer),
        )

    def _call(self, name: str, query: PipelineQuery) -> SourceResult:
        adapter = self.adapters[name]
        return self.executor.execute(
            name,
            lambda: adapter.fetch(query),
            timeout_s=self.settings.timeouts_s.get(name, adapter.timeout_s),
            max_retries=self.settings.max_retries,
        )

    def _with_fallback(self, result: SourceResult, query: PipelineQuery) -> SourceResult:
        if result.success:
            return result
        logger.warning(
            "source=%s using fallback data (error=%s)",
            result.source, result.error.value if result.error else None,
        )
        fallback = self.synthesizer.synthesize(
            result.source, query, error=result.error, error_message=result.error_message,
        )
        return replace(fallback, duration_s=result.duration_s, attempts=result.attempts)

    def _collect(self, run: PipelineRun) -> Optional[Dict[str, SourceResult]]:
        """Resolve location, then fan out to the data sources. None = unresolvable."""
        query = run.query
        location = self._call(SOURCE_LOCATION, query)
        if not location.success and query.coordinates is None and location.error not in RETRYABLE_KINDS:
            return None
        location = self._with_fallback(location, query)

        resolved = replace(
            query, coordinates=Coordinates(location.payload["lat"], location.payload["lon"])
        )
        futures = {
            name: self._fanout.submit(self._call, name, resolved)
            for name in (SOURCE_WEATHER, SOURCE_ENVIRONMENTAL, SOURCE_IMAGERY)
        }
        collection = {SOURCE_LOCATION: location}
        for name, future in futures.items():
            collection[name] = self._with_fallback(future.result(), resolved)
        return collection

    def _derive(self, run: PipelineRun, collection: Dict[str, SourceResult], coords: Coordinates):
        try:
            self._transition(run, "deriving")
            insights = derive_insights(collection, coords)
            self._transition(run, "recommending")
            recs = prioritize(generate_recommendations(insights))
        except Exception:
            logger.exception("run=%s derivation_error; using fallback insights", run.run_id)
            return fallback_insights(), fallback_recommendations()
        if not recs:
            recs = fallback_recommendations()
        return insights, recs

    def _predict(self, run, insights, collection) -> List[Dict[str, Any]]:
        try:
            return list(self.prediction_provider.predict(insights, collection))
        except Exception as e:
            logger.warning("run=%s prediction provider failed: %s", run.run_id, e)
            return []

    def _execute(self, run: PipelineRun) -> PipelineResult:
        query = run.query
        self._transition(run, "collecting")
        collection = self._collect(run)
        if collection is None:
            return self._fail(run, f"Could not resolve location '{query.region}'")

        loc = collection[SOURCE_LOCATION].payload
        coords = Coordinates(loc["lat"], loc["lon"])
        insights, recs = self._derive(run, collection, coords)
        predictions = self._predict(run, insights, collection)
        alerts = build_alerts(insights, predictions)

        result = PipelineResult(
            success=True,
            pipeline_id=run.run_id,
            status=RUN_SUCCEEDED,
            farmer_id=query.farmer_id,
            location=loc,
            collection=collection,
            insights=insights,
            recommendations=recs,
            predictions=predictions,
            alerts=alerts,
            summary=build_summary(insights, recs),
        )
        run.finalize(RUN_SUCCEEDED)
        self._post_run(run, result)
        self._transition(run, "completed")
        return result

    # ---- persistence and notification ----

    def _post_run(self, run: PipelineRun, result: PipelineResult) -> None:
        self._transition(run, "persisting")
        persist = self._background.submit(self._persist, run, result)
        notify = self._submit_notify(run, result)

        pending = [f for f in (persist, notify) if f is not None]
        wait(pending, timeout=self.settings.post_run_wait_s)

        result.persistence = persist.result() if persist.done() else dict(PENDING)
        self._apply_notification(result, notify)

    def _submit_notify(self, run: PipelineRun, result: PipelineResult) -> Optional[Future]:
        if not run.query.wants_notification:
            return None
        self._transition(run, "notifying")
        return self._background.submit(self._notify, run, result)

    @staticmethod
    def _apply_notification(result: PipelineResult, notify: Optional[Future]) -> None:
        if notify is None:
            result.notification_status = "not_requested"
        elif not notify.done():
            result.notification_status = "pending"
        else:
            result.notification_status, result.notifications = notify.result()

    def _persist(self, run: PipelineRun, result: PipelineResult) -> Dict[str, Any]:
        try:
            record_id = self.store.save_run(run, result)
            saved = self.store.save_alerts(run.run_id, result.alerts)
        except Exception as e:
            logger.error("run=%s persistence_error: %s", run.run_id, e)
            return {"status": "failed", "error": str(e)}
        logger.info("run=%s persisted as %s with %d alert(s)", run.run_id, record_id, saved)
        return {"status": "saved", "recordId": record_id, "alertsSaved": saved}

    def _notify(self, run: PipelineRun, result: PipelineResult):
        query = run.query
        try:
            message = build_alert_message(
                result.insights, result.recommendations,
                result.collection[SOURCE_WEATHER].payload, query.language,
            )
            attempts = self.dispatcher.dispatch(
                query.phone_number, message, query.channels, query.language,
            )
        except Exception as e:
            logger.error("run=%s notification_error target=%s: %s",
                         run.run_id, mask_phone(query.phone_number), e)
            return "failed", []
        if not attempts:
            return "skipped", []
        if all(a.error == SKIPPED for a in attempts):
            return "skipped", attempts
        status = "sent" if any(a.success for a in attempts) else "failed"
        return status, attempts


def build_default_orchestrator(settings: Optional[Settings] = None) -> PipelineOrchestrator:
    """Wire production collaborators from settings (environment if None)."""
    settings = settings or load_settings()
    store: RunStore = SqliteRunStore(settings.db_path) if settings.db_path else InMemoryRunStore()
    return PipelineOrchestrator(store=store, settings=settings)
