"""
Credential throttling middleware using the token bucket algorithm.

Only the credential submission route is throttled: it is the one endpoint an
unauthenticated client can hit repeatedly to guess secrets.
"""

import time
import logfire

from threading import Lock
from typing import Callable, Dict, Optional

from fastapi import FastAPI, Request, Response, status
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse


class TokenBucket:
    """
    Token bucket: each attempt takes one token, tokens refill at a constant rate.
    """

    def __init__(self, capacity: int, refill_rate: float, now: Callable[[], float] = time.monotonic):
        """
        Args:
            capacity: Maximum number of tokens the bucket can hold
            refill_rate: Number of tokens added per second
            now: Monotonic time source in seconds
        """
        self.capacity = capacity
        self.refill_rate = refill_rate
        self.now = now
        self.tokens = float(capacity)
        self.last_refill = now()
        self.last_used = self.last_refill
        self.lock = Lock()

    def _refill(self) -> None:
        current = self.now()
        elapsed = current - self.last_refill
        self.tokens = min(self.capacity, self.tokens + elapsed * self.refill_rate)
        self.last_refill = current

    def consume(self, tokens: int = 1) -> bool:
        """Take `tokens` from the bucket if enough are available."""
        with self.lock:
            self._refill()
            self.last_used = self.last_refill

            if self.tokens >= tokens:
                self.tokens -= tokens
                return True
            return False

    def is_idle(self, idle_seconds: float) -> bool:
        """Full and untouched for `idle_seconds`: the client has gone quiet."""
        with self.lock:
            self._refill()
            return self.tokens >= self.capacity and self.now() - self.last_used >= idle_seconds


class CredentialThrottleMiddleware(BaseHTTPMiddleware):
    """
    Per-client rate limit on credential submissions.
    """

    def __init__(
        self,
        app: FastAPI,
        requests_per_minute: int = 30,
        bucket_capacity: Optional[int] = None,
        throttled_paths: Optional[Dict[str, list]] = None,
        cleanup_interval: int = 3600,
        now: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            app: FastAPI application instance
            requests_per_minute: Sustained attempts allowed per client per minute
            bucket_capacity: Burst size (default: same as requests_per_minute)
            throttled_paths: Dict of {path: [methods]} to throttle
            cleanup_interval: Seconds between sweeps of idle buckets (default: 3600)
            now: Monotonic time source in seconds
        """
        super().__init__(app)

        self.requests_per_minute = requests_per_minute
        self.bucket_capacity = bucket_capacity or requests_per_minute
        self.refill_rate = requests_per_minute / 60.0  # per second
        self.throttled_paths = throttled_paths or {"/refresh-token": ["POST"]}
        self.cleanup_interval = cleanup_interval
        self.now = now

        self.buckets: Dict[str, TokenBucket] = {}
        self.bucket_lock = Lock()
        self.last_cleanup = now()

        logfire.info(
            f"Credential throttle initialized: {requests_per_minute} req/min, "
            f"capacity: {self.bucket_capacity}"
        )

    def _get_client_identifier(self, request: Request) -> str:
        # Forwarded addresses are resolved upstream by ProxyHeadersMiddleware,
        # only for trusted proxies
        return request.client.host if request.client else "unknown"

    def _get_or_create_bucket(self, client_id: str) -> TokenBucket:
        with self.bucket_lock:
            if client_id not in self.buckets:
                self.buckets[client_id] = TokenBucket(
                    capacity=self.bucket_capacity, refill_rate=self.refill_rate, now=self.now
                )
            return self.buckets[client_id]

    def _cleanup_old_buckets(self) -> None:
        """Drop buckets of clients that have gone quiet so the map stays bounded."""
        current = self.now()
        if current - self.last_cleanup < self.cleanup_interval:
            return

        with self.bucket_lock:
            to_remove = [
                client_id
                for client_id, bucket in self.buckets.items()
                if bucket.is_idle(self.cleanup_interval)
            ]
            for client_id in to_remove:
                del self.buckets[client_id]

            if to_remove:
                logfire.info(f"Cleaned up {len(to_remove)} idle credential throttle buckets")

            self.last_cleanup = current

    def _is_throttled(self, request: Request) -> bool:
        methods = self.throttled_paths.get(request.url.path)
        return bool(methods) and ("*" in methods or request.method.upper() in methods)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if not self._is_throttled(request):
            return await call_next(request)

        self._cleanup_old_buckets()

        client_id = self._get_client_identifier(request)
        bucket = self._get_or_create_bucket(client_id)

        if bucket.consume():
            return await call_next(request)

        logfire.warning(f"Credential throttle hit for {client_id} on {request.url.path}")

        # Time to get one token back
        retry_after = int(1 / self.refill_rate) + 1

        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content={
                "error": "Too many credential attempts",
                "retry_after": retry_after,
            },
            headers={"Retry-After": str(retry_after)},
        )
