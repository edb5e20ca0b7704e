"""
Resilient call executor: runs one provider call under a hard timeout with
bounded exponential-backoff retry, and always hands back a SourceResult.

A call that outlives its timeout is abandoned: the worker thread may still
finish, but its result is discarded and never applied to the run. Each source
gets its own worker pool, so calls hung on one provider cannot starve another.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeoutError
from typing import Any, Callable, Dict, Optional

import requests

from agripipe.config import DEFAULT_BASE_DELAY_S, DEFAULT_MAX_DELAY_S, DEFAULT_MAX_RETRIES
from agripipe.errors import SourceError
from agripipe.models import ErrorKind, SourceResult

logger = logging.getLogger(__name__)

RETRYABLE_KINDS = (ErrorKind.TIMEOUT, ErrorKind.SERVER_ERROR, ErrorKind.NETWORK_ERROR)


def classify_error(exc: BaseException) -> ErrorKind:
    """Map an exception raised by a provider call onto an ErrorKind."""
    if isinstance(exc, SourceError):
        return exc.kind
    if isinstance(exc, (FuturesTimeoutError, requests.exceptions.Timeout)):
        return ErrorKind.TIMEOUT
    if isinstance(exc, requests.exceptions.HTTPError):
        status = exc.response.status_code if exc.response is not None else None
        if status in (401, 403):
            return ErrorKind.AUTH_ERROR
        if status is not None and (status >= 500 or status == 429):
            return ErrorKind.SERVER_ERROR
        return ErrorKind.UNKNOWN
    if isinstance(exc, requests.exceptions.ConnectionError):
        return ErrorKind.NETWORK_ERROR
    return ErrorKind.UNKNOWN


class ResilientCallExecutor:
    """
    Wraps single provider calls with timeout + retry.

    Usage:
        executor = ResilientCallExecutor()
        result = executor.execute("weather", lambda: adapter.fetch(query), timeout_s=8)
        if not result.success:
            ...  # caller substitutes fallback data
    """

    def __init__(
        self,
        base_delay_s: float = DEFAULT_BASE_DELAY_S,
        max_delay_s: float = DEFAULT_MAX_DELAY_S,
        max_workers: int = 8,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.base_delay_s = base_delay_s
        self.max_delay_s = max_delay_s
        self._sleep = sleep
        self._clock = clock
        self.max_workers = max_workers
        self._pools: Dict[str, ThreadPoolExecutor] = {}
        self._lock = threading.Lock()
        self._closed = False

    def _pool_for(self, source: str) -> ThreadPoolExecutor:
        with self._lock:
            if self._closed:
                raise RuntimeError("executor has been shut down")
            pool = self._pools.get(source)
            if pool is None:
                pool = ThreadPoolExecutor(
                    max_workers=self.max_workers,
                    thread_name_prefix=f"source-call-{source}",
                )
                self._pools[source] = pool
            return pool

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retry number attempt+1 (attempt is 0-based)."""
        return min(self.base_delay_s * (2 ** attempt), self.max_delay_s)

    def execute(
        self,
        source: str,
        call: Callable[[], Dict[str, Any]],
        timeout_s: float,
        max_retries: int = DEFAULT_MAX_RETRIES,
    ) -> SourceResult:
        """
        Run call() until it succeeds, fails non-retryably, runs out of retries,
        or the overall timeout_s budget is spent.

        Args:
            source: Source name used for the result and log lines.
            call: Zero-argument callable returning the normalized payload dict.
            timeout_s: Total time budget across all attempts and backoff sleeps.
            max_retries: Retries allowed after the first attempt.

        Returns:
            SourceResult; success=False carries a classified ErrorKind.
        """
        started = self._clock()
        deadline = started + timeout_s
        attempt = 0
        kind: Optional[ErrorKind] = None
        message: Optional[str] = None

        while True:
            remaining = deadline - self._clock()
            if remaining <= 0:
                kind, message = ErrorKind.TIMEOUT, f"timeout budget of {timeout_s}s exhausted"
                break

            attempt_started = self._clock()
            future = None
            try:
                future = self._pool_for(source).submit(call)
                payload = future.result(timeout=remaining)
                if not isinstance(payload, dict):
                    raise SourceError(
                        f"{source} returned {type(payload).__name__}, expected dict"
                    )
            except Exception as e:
                if future is not None:
                    future.cancel()
                kind = classify_error(e)
                message = str(e) or type(e).__name__
                logger.warning(
                    "source_call source=%s attempt=%d elapsed_ms=%.1f outcome=failure error=%s detail=%s",
                    source, attempt + 1, (self._clock() - attempt_started) * 1000,
                    kind.value, message,
                )
            else:
                logger.info(
                    "source_call source=%s attempt=%d elapsed_ms=%.1f outcome=success",
                    source, attempt + 1, (self._clock() - attempt_started) * 1000,
                )
                return SourceResult(
                    source=source,
                    success=True,
                    payload=payload,
                    duration_s=self._clock() - started,
                    attempts=attempt + 1,
                )

            if kind not in RETRYABLE_KINDS or attempt >= max_retries:
                break
            delay = self.backoff_delay(attempt)
            if self._clock() + delay >= deadline:
                logger.info(
                    "source_call source=%s giving up: backoff %.2fs exceeds remaining budget",
                    source, delay,
                )
                break
            self._sleep(delay)
            attempt += 1

        logger.warning(
            "source_call source=%s gave up after %d attempt(s): %s",
            source, attempt + 1, kind.value,
        )
        return SourceResult(
            source=source,
            success=False,
            error=kind,
            error_message=message,
            duration_s=self._clock() - started,
            attempts=attempt + 1,
        )

    def shutdown(self) -> None:
        # Abandoned calls may still be running; don't block on them.
        with self._lock:
            self._closed = True
            pools = list(self._pools.values())
        for pool in pools:
            pool.shutdown(wait=False)
