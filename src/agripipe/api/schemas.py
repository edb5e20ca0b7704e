"""
Pydantic request/response schemas for the pipeline HTTP API.

Coordinate ranges are not checked here: the orchestrator reports them as a
validation_error body carrying fallbackData.
"""

from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class CoordinatesIn(BaseModel):
    lat: float = Field(..., description="Latitude in decimal degrees")
    lon: float = Field(..., description="Longitude in decimal degrees")


class PipelineRequest(BaseModel):
    """Input schema for POST /pipeline."""
    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "examples": [{
                "coordinates": {"lat": 21.1458, "lon": 79.0882},
                "farmerId": "farmer_001",
                "phoneNumber": "+919812345678",
                "language": "hi",
            }]
        },
    )

    region: Optional[str] = Field(
        None,
        description="Region name, Indian PIN code (e.g. '440001') or 'lat,lon'",
    )
    coordinates: Optional[CoordinatesIn] = None
    farmer_id: Optional[str] = Field(None, alias="farmerId")
    images: List[str] = Field(
        default_factory=list,
        description="Field photos, base64-encoded",
    )
    phone_number: Optional[str] = Field(None, alias="phoneNumber")
    language: str = Field("hi", description="Alert language: en, hi or mr")
    notify: Optional[bool] = Field(
        None,
        description="Send an alert (default: true when phoneNumber is given)",
    )
    channels: List[str] = Field(default_factory=lambda: ["sms"])


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str


class CacheStatsResponse(BaseModel):
    hits: int
    misses: int
    sets: int
    evictions: int
    expired: int
    size: int
    maxEntries: int
    inFlight: int
    hitRate: float


class ErrorBody(BaseModel):
    type: str
    message: str


class FailedPipelineResponse(BaseModel):
    """Shape of a 422 from POST /pipeline."""
    success: bool = False
    pipelineId: str
    timestamp: str
    status: str = "failed"
    farmerId: Optional[str] = None
    error: ErrorBody
    fallbackData: Dict
