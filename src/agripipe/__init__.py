"""
Resilient agricultural insight pipeline.

Modules:
    config           — Named thresholds, timeouts and environment-driven settings
    models           — Run, source result, insight and recommendation records
    executor         — Timeout + bounded-retry wrapper around one provider call
    fallback         — Deterministic placeholder data for failed providers
    sources          — Location, weather, environmental and imagery adapters
    insights         — Rule-based insight derivation
    recommendations  — Prioritized recommendations, summaries and alerts
    predictions      — Yield/risk prediction provider
    cache            — TTL result cache with single-flight computation
    notify           — SMS/voice alert dispatch with per-channel bookkeeping
    store            — Run and alert persistence
    orchestrator     — Sequences everything into one pipeline run
"""

__version__ = "1.0.0"
