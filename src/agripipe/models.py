"""
Records flowing through one pipeline run.

Each record has a to_dict() that produces the outbound (camelCase) JSON shape.
"""

import hashlib
import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from agripipe.config import DEFAULT_LANGUAGE

RUN_RUNNING = "running"
RUN_SUCCEEDED = "succeeded"
RUN_FAILED = "failed"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class ErrorKind(str, Enum):
    """Classification of a failed provider call."""
    TIMEOUT = "timeout"
    SERVER_ERROR = "server_error"
    AUTH_ERROR = "auth_error"
    NETWORK_ERROR = "network_error"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class Coordinates:
    lat: float
    lon: float

    def validate(self) -> None:
        """Raise ValueError for out-of-range coordinates."""
        if not (-90 <= self.lat <= 90):
            raise ValueError(f"Latitude {self.lat} out of range [-90, 90]")
        if not (-180 <= self.lon <= 180):
            raise ValueError(f"Longitude {self.lon} out of range [-180, 180]")

    def to_dict(self) -> Dict[str, float]:
        return {"lat": self.lat, "lon": self.lon}


@dataclass
class PipelineQuery:
    """Inbound request for one pipeline run."""
    coordinates: Optional[Coordinates] = None
    region: Optional[str] = None
    farmer_id: Optional[str] = None
    images: List[bytes] = field(default_factory=list)
    phone_number: Optional[str] = None
    language: str = DEFAULT_LANGUAGE
    notify: Optional[bool] = None
    channels: List[str] = field(default_factory=lambda: ["sms"])

    @property
    def has_location(self) -> bool:
        return self.coordinates is not None or bool(self.region and self.region.strip())

    @property
    def wants_notification(self) -> bool:
        if self.notify is None:
            return bool(self.phone_number)
        return self.notify and bool(self.phone_number)

    def fingerprint(self) -> str:
        """
        Deterministic cache key for this query.

        Notification settings and the phone number are not part of the key,
        so alerts to different farmers share one analysis.
        """
        coords = None
        if self.coordinates is not None:
            coords = [round(self.coordinates.lat, 4), round(self.coordinates.lon, 4)]
        key = {
            "coordinates": coords,
            "region": (self.region or "").strip().lower() or None,
            "farmerId": self.farmer_id,
            "language": self.language,
            "images": [hashlib.sha256(img).hexdigest() for img in self.images],
        }
        raw = json.dumps(key, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()


@dataclass
class PipelineRun:
    """
    One invocation of the orchestrator. Finalized exactly once; immutable
    after that.
    """
    query: PipelineQuery
    run_id: str = field(default_factory=lambda: f"pipeline_{uuid.uuid4().hex}")
    started_at: str = field(default_factory=utc_now_iso)
    status: str = RUN_RUNNING
    completed_at: Optional[str] = None

    def finalize(self, status: str) -> None:
        if self.status != RUN_RUNNING:
            raise RuntimeError(f"Run {self.run_id} already finalized as {self.status}")
        if status not in (RUN_SUCCEEDED, RUN_FAILED):
            raise ValueError(f"Invalid terminal status: {status}")
        self.status = status
        self.completed_at = utc_now_iso()


@dataclass(frozen=True)
class SourceResult:
    """Outcome of one adapter call (live or synthesized)."""
    source: str
    success: bool
    payload: Dict[str, Any] = field(default_factory=dict)
    is_fallback: bool = False
    error: Optional[ErrorKind] = None
    error_message: Optional[str] = None
    duration_s: float = 0.0
    attempts: int = 0

    def status_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "isFallback": self.is_fallback,
            "error": self.error.value if self.error else None,
            "errorMessage": self.error_message,
            "durationMs": round(self.duration_s * 1000, 1),
            "attempts": self.attempts,
        }

    def to_dict(self) -> Dict[str, Any]:
        out = self.status_dict()
        out["source"] = self.source
        out["data"] = self.payload
        return out


@dataclass(frozen=True)
class Insight:
    """A categorical, scored judgment derived from one run's source results."""
    category: str
    overall: str
    score: Optional[int] = None
    issues: Tuple[str, ...] = ()
    strengths: Tuple[str, ...] = ()
    details: Dict[str, Any] = field(default_factory=dict)
    sources: Tuple[str, ...] = ()
    fallback_sources: Tuple[str, ...] = ()

    @property
    def is_fallback(self) -> bool:
        return bool(self.fallback_sources)

    @property
    def factors(self) -> List[str]:
        return list(self.issues) + list(self.strengths)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category,
            "overall": self.overall,
            "score": self.score,
            "issues": list(self.issues),
            "strengths": list(self.strengths),
            "factors": self.factors,
            "details": self.details,
            "sources": list(self.sources),
            "isFallback": self.is_fallback,
            "fallbackSources": list(self.fallback_sources),
        }


@dataclass(frozen=True)
class Recommendation:
    category: str
    priority: str
    impact: str
    action: str
    timeframe: str
    source_insight: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category,
            "priority": self.priority,
            "impact": self.impact,
            "action": self.action,
            "timeframe": self.timeframe,
            "sourceInsight": self.source_insight,
        }


@dataclass(frozen=True)
class NotificationAttempt:
    """Outcome of sending one alert through one channel."""
    channel: str
    success: bool
    target: str
    error: Optional[str] = None
    message_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "channel": self.channel,
            "success": self.success,
            "target": self.target,
            "error": self.error,
            "messageId": self.message_id,
        }
