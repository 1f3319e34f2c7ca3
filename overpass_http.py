"""
Overpass API HTTP layer.

All Overpass requests made by the service go through this module.
It provides:
- Process-local rate limiting: 1 request/second minimum spacing
- Thread-safe request execution (fresh requests.Session per call)
- Error classification into UpstreamError (HTTP status, non-JSON body,
  rate-limit and runtime-error remarks in the response body)
- request_trace integration for observability

No cache and no retry: a failed query fails the whole lookup.
Rate limiting is per-process.  When self-hosting Overpass,
point OVERPASS_BASE_URL at it and lower MIN_SPACING.
"""

import logging
import threading
import time
from typing import Any, Dict, Optional

import requests

from property_errors import UpstreamError
from request_trace import get_trace
from service_config import DEFAULT_OVERPASS_URL, DEFAULT_REQUEST_TIMEOUT

logger = logging.getLogger(__name__)

SERVICE_NAME = "overpass"


class OverpassHTTPClient:
    MIN_SPACING = 1.0  # seconds between HTTP requests

    def __init__(
        self,
        base_url: str = DEFAULT_OVERPASS_URL,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ):
        self._lock = threading.Lock()
        self._last_request_time = 0.0
        self.base_url = base_url
        self.timeout = timeout

    def query(
        self,
        overpass_ql: str,
        caller: str = "unknown",
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        """
        Execute an Overpass QL query, single attempt.

        Args:
            overpass_ql: The Overpass QL query string.
            caller: Identifier for trace attribution (e.g. "nearby_schools").
            timeout: HTTP timeout in seconds. Defaults to the client timeout.

        Returns:
            Parsed JSON response dict from Overpass.

        Raises:
            UpstreamError: On transport failure, timeout, non-2xx status,
                a non-JSON body, or an error remark in the body.
        """
        if timeout is None:
            timeout = self.timeout

        self._wait_for_slot()

        start = time.monotonic()
        trace = get_trace()

        def _record(status_code: int, provider_status: str = ""):
            if trace:
                trace.record_api_call(
                    service=SERVICE_NAME,
                    endpoint=caller,
                    elapsed_ms=int((time.monotonic() - start) * 1000),
                    status_code=status_code,
                    provider_status=provider_status,
                )

        try:
            session = requests.Session()
            session.trust_env = False
            resp = session.post(
                self.base_url,
                data={"data": overpass_ql},
                timeout=timeout,
            )
        except requests.exceptions.Timeout as e:
            _record(0, "timeout")
            raise UpstreamError(
                f"Overpass request timeout after {timeout}s [caller={caller}]",
                service=SERVICE_NAME,
            ) from e
        except requests.exceptions.RequestException as e:
            _record(0, "exception")
            raise UpstreamError(
                f"Overpass request failed: {e} [caller={caller}]",
                service=SERVICE_NAME,
            ) from e

        status_code = resp.status_code
        if status_code == 429:
            _record(status_code, "rate_limit")
            raise UpstreamError(
                f"Overpass 429 Too Many Requests [caller={caller}]",
                service=SERVICE_NAME,
                status_code=status_code,
            )
        if not 200 <= status_code < 300:
            _record(status_code, "http_error")
            raise UpstreamError(
                f"Overpass HTTP {status_code} [caller={caller}]",
                service=SERVICE_NAME,
                status_code=status_code,
            )

        try:
            data = resp.json()
        except ValueError as e:
            _record(status_code, "parse_error")
            raise UpstreamError(
                f"Overpass returned non-JSON response (HTTP {status_code}) [caller={caller}]",
                service=SERVICE_NAME,
                status_code=status_code,
            ) from e

        if not isinstance(data, dict):
            _record(status_code, "parse_error")
            raise UpstreamError(
                f"Overpass returned unexpected payload type {type(data).__name__} [caller={caller}]",
                service=SERVICE_NAME,
                status_code=status_code,
            )

        # Overpass may put errors in osm3s.remark or top-level remark
        osm3s = data.get("osm3s", {}) or {}
        remark = str(osm3s.get("remark") or data.get("remark") or "")
        remark_lower = remark.lower()
        if "too many requests" in remark_lower:
            _record(status_code, "rate_limit")
            raise UpstreamError(
                f"Overpass rate limit in response body [caller={caller}]",
                service=SERVICE_NAME,
                status_code=status_code,
            )
        if any(
            indicator in remark_lower
            for indicator in ["runtime error", "timed out", "out of memory"]
        ):
            _record(status_code, "body_error")
            raise UpstreamError(
                f"Overpass server error in response body: {remark[:100]} [caller={caller}]",
                service=SERVICE_NAME,
                status_code=status_code,
            )

        _record(status_code)
        return data

    def _wait_for_slot(self):
        """Enforce minimum spacing between requests from this process."""
        with self._lock:
            now = time.monotonic()
            elapsed_since_last = now - self._last_request_time
            if elapsed_since_last < self.MIN_SPACING:
                time.sleep(self.MIN_SPACING - elapsed_since_last)
            self._last_request_time = time.monotonic()
