"""
Base class for source adapters.

fetch() raises on failure; the orchestrator always calls it through the
ResilientCallExecutor, which turns exceptions into failed SourceResults.
"""

import logging
from typing import Any, Dict, Optional

import requests

from agripipe.models import PipelineQuery

logger = logging.getLogger(__name__)

USER_AGENT = "agripipe/1.0 (+https://github.com/agripipe)"


class SourceAdapter:
    """One upstream data family normalized into a stable payload."""

    name: str = ""

    def __init__(self, timeout_s: float = 10.0, session: Optional[requests.Session] = None):
        self.timeout_s = timeout_s
        self.session = session

    def fetch(self, query: PipelineQuery) -> Dict[str, Any]:
        raise NotImplementedError

    def _get_json(self, url: str, params=None, headers=None) -> Any:
        """GET a JSON document; HTTP errors propagate for classification."""
        getter = self.session.get if self.session is not None else requests.get
        hdrs = {"Accept": "application/json", "User-Agent": USER_AGENT}
        if headers:
            hdrs.update(headers)
        resp = getter(url, params=params, headers=hdrs, timeout=self.timeout_s)
        resp.raise_for_status()
        return resp.json()
