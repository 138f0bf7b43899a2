"""
hrdd.security — HTTP middleware for the HRDD risk API.

The middleware here carries no policy of its own; hrdd.hrdd_api hands
each one the values it enforces:

    - RequestContextMiddleware: X-Request-ID and X-Catalogue-Fingerprint
      on every response, plus one JSON access-log line tagged with the
      catalogue that served the request
    - ResponseHeadersMiddleware: OWASP response headers, and
      Cache-Control looked up in a CachePolicy built from the app's
      route table
    - PayloadLimitMiddleware: 413/431 against limits sized from the
      largest portfolio request the API accepts
"""

from __future__ import annotations

import ipaddress
import json
import logging
import re
import time
import uuid
from collections.abc import Callable, Iterable
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

logger = logging.getLogger("hrdd.security")

NO_STORE = "no-store"

MAX_HEADER_BYTES = 16_384


# ---------------------------------------------------------------------------
# Request context: id, catalogue fingerprint, access log
# ---------------------------------------------------------------------------

class RequestContextMiddleware(BaseHTTPMiddleware):
    """Tag each request with an id and the fingerprint of the live catalogue.

    fingerprint is called after the handler ran, so a request that
    triggered a reload is logged against the catalogue it was answered from.
    """

    def __init__(self, app: Any, *, fingerprint: Callable[[], str | None]) -> None:
        super().__init__(app)
        self._fingerprint = fingerprint

    async def dispatch(self, request: Request, call_next: Any) -> Response:
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex[:16]
        request.state.request_id = request_id

        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = round((time.perf_counter() - started) * 1000, 1)

        catalogue = self._fingerprint()
        response.headers["X-Request-ID"] = request_id
        if catalogue is not None:
            response.headers["X-Catalogue-Fingerprint"] = catalogue[:16]

        _access_log({
            "event": "http_request",
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "latency_ms": elapsed_ms,
            "client": mask_client(request.client.host if request.client else None),
            "catalogue": catalogue[:16] if catalogue is not None else None,
        })
        return response


def mask_client(host: str | None) -> str:
    """Reduce a client address to its /16 (IPv4) or /48 (IPv6) network."""
    try:
        address = ipaddress.ip_address(host or "")
    except ValueError:
        return "unknown"
    prefix = 16 if address.version == 4 else 48
    return str(ipaddress.ip_network(f"{address}/{prefix}", strict=False))


def _access_log(entry: dict[str, Any]) -> None:
    status = entry["status"]
    level = logging.ERROR if status >= 500 else logging.WARNING if status >= 400 else logging.INFO
    logger.log(level, json.dumps(entry))


# ---------------------------------------------------------------------------
# Response headers and cache policy
# ---------------------------------------------------------------------------

class CachePolicy:
    """Cache-Control values keyed by route.

    Filled from the application's route table once every endpoint is
    registered. Non-GET requests and paths matching no registered GET
    route are always no-store.
    """

    def __init__(self) -> None:
        self._rules: list[tuple[re.Pattern[str], str]] = []

    def register_routes(self, routes: Iterable[Any], cache_control: Callable[[str], str]) -> None:
        """Record cache_control(route.path) for every GET route."""
        for route in routes:
            methods = getattr(route, "methods", None) or ()
            pattern = getattr(route, "path_regex", None)
            if "GET" in methods and pattern is not None:
                self._rules.append((pattern, cache_control(route.path)))

    def header_for(self, method: str, path: str) -> str:
        if method != "GET":
            return NO_STORE
        for pattern, value in self._rules:
            if pattern.match(path):
                return value
        return NO_STORE

    def __len__(self) -> int:
        return len(self._rules)


_STATIC_HEADERS: dict[str, str] = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
    "Cross-Origin-Resource-Policy": "same-site",
    "Permissions-Policy": "geolocation=(), camera=(), microphone=()",
}


class ResponseHeadersMiddleware(BaseHTTPMiddleware):
    """OWASP headers on every response, HSTS when enabled, per-route Cache-Control."""

    def __init__(self, app: Any, *, cache_policy: CachePolicy, enable_hsts: bool = False) -> None:
        super().__init__(app)
        self._cache_policy = cache_policy
        self._headers = dict(_STATIC_HEADERS)
        if enable_hsts:
            self._headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

    async def dispatch(self, request: Request, call_next: Any) -> Response:
        response = await call_next(request)
        response.headers.update(self._headers)
        response.headers["Cache-Control"] = self._cache_policy.header_for(
            request.method, request.url.path,
        )
        return response


# ---------------------------------------------------------------------------
# Payload limits
# ---------------------------------------------------------------------------

class PayloadLimitMiddleware(BaseHTTPMiddleware):
    """Reject bodies over max_body_bytes (413) and headers over max_header_bytes (431)."""

    def __init__(
        self,
        app: Any,
        *,
        max_body_bytes: int,
        max_header_bytes: int = MAX_HEADER_BYTES,
    ) -> None:
        super().__init__(app)
        self.max_body_bytes = max_body_bytes
        self.max_header_bytes = max_header_bytes

    async def dispatch(self, request: Request, call_next: Any) -> Response:
        header_bytes = sum(len(name) + len(value) for name, value in request.headers.raw)
        if header_bytes > self.max_header_bytes:
            return _too_large(431, "Request headers too large", self.max_header_bytes)

        declared = request.headers.get("content-length", "")
        if declared.isdigit() and int(declared) > self.max_body_bytes:
            return _too_large(413, "Request body too large", self.max_body_bytes)

        return await call_next(request)


def _too_large(status_code: int, detail: str, limit: int) -> Response:
    return JSONResponse(status_code=status_code, content={"detail": detail, "limit_bytes": limit})
