"""Composite RPC interceptor: authentication, then an optional process-wide rate limit."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable

from quoteledger.auth import AuthInterceptor, Metadata
from quoteledger.errors import Status, StatusCode


class TokenBucket:
    """A token bucket holding up to ``burst`` tokens, refilled one per ``period`` seconds."""

    def __init__(
        self,
        burst: int,
        period: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if burst < 1:
            raise ValueError("burst must be >= 1")
        if period <= 0:
            raise ValueError("period must be positive")
        self.burst = burst
        self.period = period
        self._clock = clock
        self._tokens = float(burst)
        self._updated = clock()
        self._lock = threading.Lock()

    @classmethod
    def per_second(
        cls, requests: int, clock: Callable[[], float] = time.monotonic
    ) -> TokenBucket:
        """A bucket allowing ``requests`` per second with a burst of the same size."""
        if requests < 1:
            raise ValueError("requests per second must be >= 1")
        return cls(burst=requests, period=1.0 / requests, clock=clock)

    def check(self) -> bool:
        """Take one token if available; return whether it was taken."""
        with self._lock:
            now = self._clock()
            elapsed = max(now - self._updated, 0.0)
            self._updated = now
            self._tokens = min(float(self.burst), self._tokens + elapsed / self.period)
            if self._tokens >= 1.0:
                self._tokens -= 1.0
                return True
            return False


class LedgerGrpcInterceptor:
    """Authenticates each RPC and then applies the shared request limit, if any."""

    def __init__(
        self,
        auth: AuthInterceptor,
        requests_per_second: int | None = None,
        limiter: TokenBucket | None = None,
    ) -> None:
        self.auth = auth
        if limiter is None and requests_per_second is not None:
            limiter = TokenBucket.per_second(requests_per_second)
        self.limiter = limiter
        self.rate_limited = 0

    def intercept(self, metadata: Metadata) -> Metadata:
        """Return ``metadata`` if the call may proceed, else raise a Status."""
        metadata = self.auth.intercept(metadata)
        if self.limiter is not None and not self.limiter.check():
            self.rate_limited += 1
            raise Status(
                StatusCode.RESOURCE_EXHAUSTED,
                "global gRPC request rate limit exceeded (set GRPC_RATE_LIMIT_RPS)",
            )
        return metadata