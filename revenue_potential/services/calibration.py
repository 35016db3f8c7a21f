"""
Calibration Service Client and Policy Cache

The calibration service turns a population range summary into a scoring
policy. It runs jobs asynchronously:

    POST {base}/jobs            body: calibration payload   -> {"job_id": ...}
    GET  {base}/jobs/{job_id}                               -> {"status": ..., "result": ...}

status is one of queued, running, completed or failed. Polling is bounded
by a fixed attempt ceiling and fails closed: exhaustion, a failed job or
any transport error raises UpstreamError. No default policy is ever
substituted.

Validated policies are cached in-process per (period, sector, window) for
the policy's validity_days. Concurrent lookups of a key whose calibration is in
flight share that single in-flight future instead of starting a second
calibration. Failures are never cached.
"""

import asyncio
import json
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

import httpx

from revenue_potential.core.config import Settings
from revenue_potential.core.exceptions import UpstreamError


# Configure module logger
logger = logging.getLogger(__name__)


COMPLETED_STATUSES = {"completed", "succeeded", "success"}
FAILED_STATUSES = {"failed", "error", "cancelled", "expired"}

SECONDS_PER_DAY = 86400


# =============================================================================
# Calibration Client
# =============================================================================

class CalibrationClient:
    """
    HTTP client for the calibration job service.

    Args:
        base_url: Service base URL
        api_key: Optional bearer token
        max_attempts: Maximum number of status polls per job
        poll_interval: Seconds between polls
        timeout: Per-request timeout in seconds
        transport: Optional httpx transport (tests use httpx.MockTransport)
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        max_attempts: int = 60,
        poll_interval: float = 1.0,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.max_attempts = max_attempts
        self.poll_interval = poll_interval
        self.timeout = timeout
        self.transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> "CalibrationClient":
        return cls(
            base_url=settings.calibration_service_url,
            api_key=settings.calibration_api_key,
            max_attempts=settings.calibration_max_attempts,
            poll_interval=settings.calibration_poll_interval_seconds,
            timeout=settings.calibration_request_timeout_seconds,
        )

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def calibrate(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Submit a calibration job and wait for its policy.

        Args:
            payload: Calibration payload (see services/ranges.py)

        Returns:
            The raw policy dict returned by the job

        Raises:
            UpstreamError: Transport or HTTP errors, a failed job, an
                unparsable result, or attempts exhausted
        """
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                headers=self._headers(),
                timeout=self.timeout,
                transport=self.transport,
            ) as client:
                job_id = await self._submit(client, payload)
                return await self._poll(client, job_id)
        except httpx.HTTPStatusError as e:
            raise UpstreamError(
                f"Calibration service returned HTTP {e.response.status_code}",
                {"url": str(e.request.url)},
            ) from e
        except httpx.TimeoutException as e:
            raise UpstreamError(f"Calibration request timed out: {e}") from e
        except httpx.RequestError as e:
            raise UpstreamError(f"Calibration request failed: {e}") from e

    async def _submit(self, client: httpx.AsyncClient, payload: Dict[str, Any]) -> str:
        response = await client.post("/jobs", json=payload)
        response.raise_for_status()
        job_id = response.json().get("job_id")
        if not job_id:
            raise UpstreamError("Calibration service returned no job_id")
        logger.info(f"Calibration job {job_id} submitted for period={payload.get('period')}")
        return str(job_id)

    async def _poll(self, client: httpx.AsyncClient, job_id: str) -> Dict[str, Any]:
        for attempt in range(1, self.max_attempts + 1):
            response = await client.get(f"/jobs/{job_id}")
            response.raise_for_status()
            body = response.json()
            status = str(body.get("status", "")).lower()

            if status in COMPLETED_STATUSES:
                logger.info(f"Calibration job {job_id} completed after {attempt} polls")
                return self._parse_result(job_id, body.get("result"))
            if status in FAILED_STATUSES:
                raise UpstreamError(
                    f"Calibration job {job_id} ended with status '{status}'",
                    {"error": body.get("error")},
                )

            if attempt < self.max_attempts:
                await asyncio.sleep(self.poll_interval)

        raise UpstreamError(
            f"Calibration job {job_id} did not complete after {self.max_attempts} attempts"
        )

    @staticmethod
    def _parse_result(job_id: str, result: Any) -> Dict[str, Any]:
        if isinstance(result, str):
            try:
                result = json.loads(result)
            except json.JSONDecodeError as e:
                raise UpstreamError(f"Calibration job {job_id} returned invalid JSON: {e}") from e
        if not isinstance(result, dict):
            raise UpstreamError(f"Calibration job {job_id} returned no policy object")
        return result


# =============================================================================
# Policy Cache
# =============================================================================

CacheKey = Tuple[str, str, int]


class PolicyCache:
    """
    In-process cache of validated policies keyed by (period, sector, window).

    Entries expire after the policy's validity_days. In-flight creations
    are tracked in a pending map so concurrent callers await one future.

    Args:
        clock: Monotonic clock in seconds (injectable for tests)
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[CacheKey, Tuple[Any, float]] = {}
        self._pending: Dict[CacheKey, asyncio.Future] = {}

    def get(self, key: CacheKey) -> Optional[Any]:
        """Cached policy, or None when absent or expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        policy, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return policy

    def put(self, key: CacheKey, policy: Any) -> None:
        validity_days = getattr(policy, "validity_days", None) or 0
        self._entries[key] = (policy, self._clock() + float(validity_days) * SECONDS_PER_DAY)

    def invalidate(self, key: CacheKey) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def in_flight(self, key: CacheKey) -> bool:
        return key in self._pending

    async def get_or_create(
        self,
        key: CacheKey,
        factory: Callable[[], Awaitable[Any]],
    ) -> Tuple[Any, bool]:
        """
        Return the cached policy or create it once.

        Args:
            key: (period, sector, window_months)
            factory: Coroutine function producing a validated policy

        Returns:
            (policy, from_cache); from_cache is True for cache hits and for
            callers that joined an in-flight creation

        Raises:
            Whatever the factory raises, to the creator and to every joined
            caller alike
        """
        cached = self.get(key)
        if cached is not None:
            return cached, True

        pending = self._pending.get(key)
        if pending is not None:
            logger.info(f"Joining in-flight calibration for {key}")
            return await asyncio.shield(pending), True

        future = asyncio.get_running_loop().create_future()
        # Mark the exception as retrieved when nobody joined
        future.add_done_callback(lambda f: f.cancelled() or f.exception())
        self._pending[key] = future

        try:
            policy = await factory()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            future.set_exception(e)
            raise
        finally:
            self._pending.pop(key, None)

        self.put(key, policy)
        future.set_result(policy)
        return policy, False


_policy_cache = PolicyCache()


def get_policy_cache() -> PolicyCache:
    """Process-wide policy cache."""
    return _policy_cache
