"""
Shared fixtures: stub source adapters and a fast orchestrator factory.
No test touches the network.
"""

import sys
import threading
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT / "src"))

NAGPUR = {"lat": 21.1458, "lon": 79.0882, "displayName": "Nagpur, Maharashtra",
          "state": "Maharashtra", "district": "Nagpur", "pinCode": None,
          "confidence": 1.0, "source": "coordinates"}

LIVE_WEATHER = {
    "temperature": 32.0,
    "humidity": 85.0,
    "windSpeed": 10.0,
    "forecast": [
        {"date": "2026-10-19", "tempMax": 33.0, "tempMin": 23.0, "precipitation": 0.0},
        {"date": "2026-10-20", "tempMax": 34.0, "tempMin": 24.0, "precipitation": 5.0},
        {"date": "2026-10-21", "tempMax": 32.0, "tempMin": 22.0, "precipitation": 0.0},
    ],
    "source": "open-meteo",
}

LIVE_ENVIRONMENTAL = {
    "ndviValue": 0.5,
    "landSurfaceTempC": 31.0,
    "soilMoistureFraction": 0.12,
    "soilPhValue": 5.2,
    "soilTexture": None,
    "organicCarbonGKg": 9.0,
    "source": "soilgrids+nasa-power",
}

NO_IMAGES = {
    "images": [],
    "summary": {"totalImages": 0, "overallHealth": "Unknown", "diseaseDetected": False},
    "source": "local",
}


class StubAdapter:
    """Adapter double: returns a payload, raises, or blocks until released."""

    def __init__(self, name, payload=None, exc=None, block=None, timeout_s=1.0):
        self.name = name
        self.payload = payload or {}
        self.exc = exc
        self.block = block
        self.timeout_s = timeout_s
        self.calls = 0

    def fetch(self, query):
        self.calls += 1
        if self.block is not None:
            # Bounded so abandoned worker threads always exit
            self.block.wait(10)
        if self.exc is not None:
            raise self.exc
        return dict(self.payload)


@pytest.fixture
def release():
    """Event that unblocks hanging stubs at teardown."""
    event = threading.Event()
    yield event
    event.set()


@pytest.fixture
def make_orchestrator():
    """Factory for orchestrators wired with stubs and short timeouts."""
    from agripipe.config import Settings
    from agripipe.executor import ResilientCallExecutor
    from agripipe.orchestrator import PipelineOrchestrator

    created = []

    def factory(location=None, weather=None, environmental=None, imagery=None,
                timeout_s=0.3, **kwargs):
        settings = kwargs.pop("settings", None) or Settings(
            timeouts_s={
                "location": timeout_s,
                "weather": timeout_s,
                "environmental": timeout_s,
                "imagery": timeout_s,
            },
            base_delay_s=0.01,
            max_delay_s=0.05,
            post_run_wait_s=2.0,
        )
        orchestrator = PipelineOrchestrator(
            location=location or StubAdapter("location", NAGPUR),
            weather=weather or StubAdapter("weather", LIVE_WEATHER),
            environmental=environmental or StubAdapter("environmental", LIVE_ENVIRONMENTAL),
            imagery=imagery or StubAdapter("imagery", NO_IMAGES),
            executor=kwargs.pop("executor", None) or ResilientCallExecutor(
                base_delay_s=0.01, max_delay_s=0.05),
            settings=settings,
            **kwargs,
        )
        created.append(orchestrator)
        return orchestrator

    yield factory
    for orchestrator in created:
        orchestrator.shutdown()
