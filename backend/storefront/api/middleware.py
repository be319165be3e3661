"""API middleware for request processing."""

import logging
import time
import uuid
from collections import defaultdict
from typing import Callable, Sequence

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

logger = logging.getLogger(__name__)

_STALE_CLIENT_THRESHOLD = 300  # seconds before a silent client's entry is evicted
REQUEST_ID_HEADER = "X-Request-ID"


class LoggingMiddleware(BaseHTTPMiddleware):
    """Logs each request with a request id, echoed back in ``X-Request-ID``."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.monotonic()
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.request_id = request_id

        try:
            response = await call_next(request)
        except Exception as e:
            process_time = time.monotonic() - start_time
            logger.error(
                "Request failed after %.3fs: %s",
                process_time,
                e,
                extra={
                    "request_id": request_id,
                    "method": request.method,
                    "path": request.url.path,
                    "process_time_s": round(process_time, 3),
                },
            )
            raise

        process_time = time.monotonic() - start_time
        logger.info(
            "%s %s -> %s in %.3fs",
            request.method,
            request.url.path,
            response.status_code,
            process_time,
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "client": request.client.host if request.client else "unknown",
                "process_time_s": round(process_time, 3),
            },
        )
        response.headers[REQUEST_ID_HEADER] = request_id
        response.headers["X-Process-Time"] = f"{process_time:.3f}"
        return response


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Sliding-window rate limiting per client address.

    Paths containing any of ``exempt_paths`` (gateway webhooks) are never
    limited. Stale client entries are evicted periodically.
    """

    def __init__(
        self,
        app,
        requests_per_period: int = 60,
        period_seconds: int = 60,
        exempt_paths: Sequence[str] = (),
    ) -> None:
        super().__init__(app)
        self.requests_per_period = requests_per_period
        self.period_seconds = period_seconds
        self.exempt_paths = tuple(exempt_paths)
        # Never evict a client whose requests still fall inside the window
        self.stale_after = max(_STALE_CLIENT_THRESHOLD, period_seconds)
        self._request_counts: dict[str, list[float]] = defaultdict(list)
        self._last_cleanup = time.monotonic()

    def _cleanup_stale_clients(self, now: float) -> None:
        if now - self._last_cleanup < self.stale_after:
            return
        cutoff = now - self.stale_after
        stale = [cid for cid, ts in self._request_counts.items() if not ts or ts[-1] < cutoff]
        for cid in stale:
            del self._request_counts[cid]
        self._last_cleanup = now

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        if any(exempt in path for exempt in self.exempt_paths):
            return await call_next(request)

        client_id = request.client.host if request.client else "unknown"
        now = time.monotonic()
        window_start = now - self.period_seconds

        timestamps = self._request_counts[client_id]
        self._request_counts[client_id] = [t for t in timestamps if t > window_start]
        self._cleanup_stale_clients(now)

        if len(self._request_counts[client_id]) >= self.requests_per_period:
            logger.warning("Rate limit exceeded for %s", client_id)
            return JSONResponse(
                status_code=429,
                content={"error": "Rate limit exceeded", "retry_after": self.period_seconds},
                headers={"Retry-After": str(self.period_seconds)},
            )

        self._request_counts[client_id].append(now)
        return await call_next(request)
