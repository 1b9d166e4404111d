"""
API Middleware

- Request logging: binds a request id to the structlog context
- Rate limiting: per client, in process memory
- Security headers
"""

import asyncio
import time
import uuid
from collections import deque
from typing import Callable, Deque, Dict, Iterable, Optional

import structlog
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

logger = structlog.get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}
HSTS_HEADER = ("Strict-Transport-Security", "max-age=31536000; includeSubDomains")


def client_address(request: Request, trusted_proxies: Iterable[str] = ()) -> str:
    """
    Address the request came from.

    The peer address, unless the peer is a trusted proxy. Then X-Forwarded-For
    is walked from the right and the first hop not belonging to a trusted
    proxy wins. Hops further left are supplied by the caller.
    """
    peer = request.client.host if request.client else "unknown"
    trusted = set(trusted_proxies)
    if peer not in trusted:
        return peer

    forwarded = request.headers.get("x-forwarded-for", "")
    hops = [hop.strip() for hop in forwarded.split(",") if hop.strip()]
    for hop in reversed(hops):
        if hop not in trusted:
            return hop
    return peer


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One log line per request, tagged with a request id that every log
    emitted while handling it also carries."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = round((time.perf_counter() - started) * 1000, 2)

        log = logger.warning if response.status_code >= 500 else logger.info
        log(
            "Request handled",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=elapsed_ms,
            client=client_address(request),
        )

        response.headers[REQUEST_ID_HEADER] = request_id
        response.headers["X-Response-Time"] = f"{elapsed_ms}ms"
        return response


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Sliding window limiter keyed on the client address.

    Each worker keeps its own counters. Paths under an exempt prefix, such
    as Shopify webhooks, are never limited. X-Forwarded-For is only honoured
    when the peer is one of `trusted_proxies`.
    """

    def __init__(
        self,
        app,
        max_requests: int = 100,
        window_seconds: int = 60,
        exempt_prefixes: Iterable[str] = (),
        trusted_proxies: Iterable[str] = (),
    ):
        super().__init__(app)
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.exempt_prefixes = tuple(exempt_prefixes)
        self.trusted_proxies = frozenset(trusted_proxies)
        self._hits: Dict[str, Deque[float]] = {}
        self._last_sweep = time.monotonic()
        self._lock = asyncio.Lock()

    def _expire(self, hits: Deque[float], now: float) -> None:
        while hits and now - hits[0] >= self.window_seconds:
            hits.popleft()

    def _sweep(self, now: float) -> None:
        """Forget clients with no hit left in the window."""
        for client in list(self._hits):
            self._expire(self._hits[client], now)
            if not self._hits[client]:
                del self._hits[client]
        self._last_sweep = now

    async def _remaining(self, client: str, now: Optional[float] = None) -> int:
        """Record a hit and return how many are left, or -1 when over the limit."""
        now = time.monotonic() if now is None else now
        async with self._lock:
            if now - self._last_sweep >= self.window_seconds:
                self._sweep(now)

            hits = self._hits.setdefault(client, deque())
            self._expire(hits, now)
            if len(hits) >= self.max_requests:
                return -1
            hits.append(now)
            return self.max_requests - len(hits)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path.startswith(self.exempt_prefixes):
            return await call_next(request)

        client = client_address(request, self.trusted_proxies)
        remaining = await self._remaining(client)
        limit_headers = {"X-RateLimit-Limit": str(self.max_requests)}

        if remaining < 0:
            logger.warning("Rate limit exceeded", client=client, path=request.url.path)
            return JSONResponse(
                {"error": "Too many requests"},
                status_code=429,
                headers={**limit_headers, "X-RateLimit-Remaining": "0", "Retry-After": str(self.window_seconds)},
            )

        response = await call_next(request)
        response.headers.update({**limit_headers, "X-RateLimit-Remaining": str(remaining)})
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, enable_hsts: bool = False):
        super().__init__(app)
        self.headers = dict(SECURITY_HEADERS)
        if enable_hsts:
            self.headers[HSTS_HEADER[0]] = HSTS_HEADER[1]

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)
        response.headers.update(self.headers)
        return response
