"""
Imagery adapter: crop health, soil type and disease likelihood from field
photos.

When an analysis service is configured (IMAGERY_API_URL) each image is posted
to it; otherwise a local colour heuristic runs on the decoded pixels:
  - green-pixel ratio -> canopy health score
  - yellow/brown lesion pixels within the canopy -> disease probability
  - brightness of non-vegetation pixels -> coarse soil type
"""

import logging
from io import BytesIO
from typing import Any, Dict, List, Optional

import numpy as np
import requests
from PIL import Image, UnidentifiedImageError

from agripipe.config import DISEASE_PROBABILITY_HIGH, SOURCE_IMAGERY
from agripipe.errors import SourceError
from agripipe.models import ErrorKind, PipelineQuery
from agripipe.sources.base import USER_AGENT, SourceAdapter

logger = logging.getLogger(__name__)

ANALYSIS_SIZE = (128, 128)

HEALTH_LABELS = (
    (80, "Excellent"),
    (60, "Good"),
    (40, "Fair"),
    (0, "Poor"),
)


def health_label(score: float) -> str:
    for threshold, label in HEALTH_LABELS:
        if score >= threshold:
            return label
    return "Poor"


def _load_image(img_bytes: bytes) -> Image.Image:
    try:
        return Image.open(BytesIO(img_bytes)).convert("RGB")
    except (UnidentifiedImageError, OSError) as e:
        raise SourceError(f"Could not decode image: {e}") from e


def analyze_pixels(img: Image.Image) -> Dict[str, Any]:
    """Colour heuristic over a downscaled RGB image."""
    arr = np.asarray(img.resize(ANALYSIS_SIZE), dtype=float)
    r, g, b = arr[:, :, 0], arr[:, :, 1], arr[:, :, 2]
    total = float(r.size)

    green = (g > r) & (g > b) & (g > 60)
    yellow = (r > 150) & (g > 150) & (b < 80)
    brown = (r > 100) & (g < 100) & (b < 80)
    lesion = (yellow | brown) & ~green

    green_ratio = float(green.sum()) / total
    lesion_ratio = float(lesion.sum()) / total

    health_score = 100.0 * float(np.clip(green_ratio * 1.25 - lesion_ratio * 0.5, 0.0, 1.0))
    vegetation = green_ratio + lesion_ratio
    # Lesions only count against an actual canopy
    disease_probability = lesion_ratio / vegetation if green_ratio > 0.05 else 0.0

    soil_pixels = arr[~green]
    if soil_pixels.size == 0:
        soil_type = "Unknown"
    else:
        brightness = float(soil_pixels.mean())
        if brightness > 170:
            soil_type = "Sandy"
        elif brightness < 80:
            soil_type = "Clay"
        else:
            soil_type = "Loam"

    return {
        "cropHealth": health_label(health_score),
        "healthScore": round(health_score, 1),
        "soilType": soil_type,
        "diseaseProbability": round(float(disease_probability), 3),
        "greenRatio": round(green_ratio, 3),
    }


class ImageryAdapter(SourceAdapter):
    """Analyze every image attached to the query."""

    name = SOURCE_IMAGERY

    def __init__(self, timeout_s: float = 15.0, session=None,
                 api_url: Optional[str] = None, api_key: Optional[str] = None):
        super().__init__(timeout_s=timeout_s, session=session)
        self.api_url = api_url
        self.api_key = api_key

    def fetch(self, query: PipelineQuery) -> Dict[str, Any]:
        images: List[Dict[str, Any]] = []
        for i, img_bytes in enumerate(query.images, start=1):
            if self.api_url:
                analysis = self._analyze_remote(img_bytes)
            else:
                analysis = analyze_pixels(_load_image(img_bytes))
            probability = float(analysis.get("diseaseProbability") or 0.0)
            images.append({
                "imageId": f"image_{i}",
                "cropHealth": analysis.get("cropHealth", "Unknown"),
                "healthScore": analysis.get("healthScore"),
                "soilType": analysis.get("soilType", "Unknown"),
                "diseaseProbability": probability,
                "diseaseDetected": probability > DISEASE_PROBABILITY_HIGH,
            })

        return {
            "images": images,
            "summary": self._summarize(images),
            "source": "remote" if self.api_url else "local",
        }

    @staticmethod
    def _summarize(images: List[Dict[str, Any]]) -> Dict[str, Any]:
        if not images:
            return {"totalImages": 0, "overallHealth": "Unknown", "diseaseDetected": False}
        scores = [img["healthScore"] for img in images if img.get("healthScore") is not None]
        if scores:
            overall = health_label(sum(scores) / len(scores))
        else:
            overall = images[0]["cropHealth"]
        return {
            "totalImages": len(images),
            "overallHealth": overall,
            "diseaseDetected": any(img["diseaseDetected"] for img in images),
        }

    def _analyze_remote(self, img_bytes: bytes) -> Dict[str, Any]:
        """POST one image to the configured analysis service."""
        poster = self.session.post if self.session is not None else requests.post
        headers = {"Accept": "application/json", "User-Agent": USER_AGENT}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        resp = poster(
            self.api_url,
            files={"image": ("image.jpg", img_bytes, "application/octet-stream")},
            headers=headers,
            timeout=self.timeout_s,
        )
        resp.raise_for_status()
        data = resp.json()
        if not isinstance(data, dict):
            raise SourceError("Image analysis service returned a non-object body",
                              kind=ErrorKind.SERVER_ERROR)
        return data
