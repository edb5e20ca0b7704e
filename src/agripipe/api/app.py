"""
FastAPI application for the agricultural insight pipeline.

Endpoints:
    POST /pipeline     — Run the pipeline for a location (+ optional images/alert)
    GET  /health       — Health check
    GET  /cache/stats  — Result cache counters
    GET  /metrics      — Prometheus metrics
"""

import base64
import binascii
import logging
import time
from typing import Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

from agripipe import __version__
from agripipe.api.schemas import (
    CacheStatsResponse,
    FailedPipelineResponse,
    HealthResponse,
    PipelineRequest,
)
from agripipe.models import Coordinates, PipelineQuery
from agripipe.orchestrator import PipelineOrchestrator, PipelineResult, build_default_orchestrator

logger = logging.getLogger(__name__)

# ---- App setup ----
app = FastAPI(
    title="Agricultural Insight Pipeline API",
    description="Resilient multi-source agricultural insights and recommendations",
    version=__version__,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---- Prometheus metrics ----
RUN_COUNT = Counter("pipeline_runs_total", "Pipeline runs by outcome", ["status"])
RUN_LATENCY = Histogram(
    "pipeline_run_latency_seconds", "Pipeline run latency",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0],
)
SOURCE_FALLBACKS = Counter(
    "pipeline_source_fallback_total", "Source results replaced by fallback data",
    ["source"],
)

# ---- Global orchestrator (built on first use) ----
orchestrator: Optional[PipelineOrchestrator] = None


def get_orchestrator() -> PipelineOrchestrator:
    global orchestrator
    if orchestrator is None:
        orchestrator = build_default_orchestrator()
    return orchestrator


@app.on_event("shutdown")
def shutdown_event():
    if orchestrator is not None:
        orchestrator.shutdown()


def _decode_images(images):
    decoded = []
    for i, data in enumerate(images, start=1):
        # Accept data URLs as well as bare base64
        if data.startswith("data:") and "," in data:
            data = data.split(",", 1)[1]
        try:
            decoded.append(base64.b64decode(data, validate=True))
        except (binascii.Error, ValueError):
            raise HTTPException(status_code=422, detail=f"Image {i} is not valid base64")
    return decoded


def _to_query(request: PipelineRequest) -> PipelineQuery:
    coords = None
    if request.coordinates is not None:
        coords = Coordinates(request.coordinates.lat, request.coordinates.lon)
    return PipelineQuery(
        coordinates=coords,
        region=request.region,
        farmer_id=request.farmer_id,
        images=_decode_images(request.images),
        phone_number=request.phone_number,
        language=request.language,
        notify=request.notify,
        channels=list(request.channels),
    )


def _record_metrics(result: PipelineResult, latency: float) -> None:
    RUN_COUNT.labels(status="cached" if result.cached else result.status).inc()
    RUN_LATENCY.observe(latency)
    if result.success and not result.cached:
        for name, source_result in result.collection.items():
            if source_result.is_fallback:
                SOURCE_FALLBACKS.labels(source=name).inc()


@app.get("/health", response_model=HealthResponse)
def health_check():
    """Health check endpoint."""
    return HealthResponse(status="healthy", version=__version__)


@app.get("/cache/stats", response_model=CacheStatsResponse)
def cache_stats():
    return CacheStatsResponse(**get_orchestrator().cache.stats())


@app.get("/metrics")
def metrics():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.post("/pipeline", responses={422: {"model": FailedPipelineResponse}})
def run_pipeline(request: PipelineRequest):
    """
    Collect weather, soil and imagery data for the location, derive insights
    and ranked recommendations, and optionally alert the farmer.

    Provider outages never fail the request; affected sources come back with
    isFallback=true. Only an unusable location yields 422.
    """
    query = _to_query(request)

    start_time = time.time()
    result = get_orchestrator().run(query)
    _record_metrics(result, time.time() - start_time)

    status_code = 200 if result.success else 422
    return JSONResponse(content=result.to_dict(), status_code=status_code)


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    uvicorn.run(app, host="0.0.0.0", port=8000)
