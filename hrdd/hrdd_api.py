#!/usr/bin/env python3
"""
hrdd_api.py — HRDD Risk API Server

Serves the country catalogue and the baseline risk engine over HTTP.
The catalogue is loaded once from a text file at startup (or lazily on
first use) and held in memory; every scoring request recomputes from
that snapshot and the weights/selection in the request body.

Endpoints:
    GET  /                     → API metadata
    GET  /health               → Liveness check
    GET  /ready                → Readiness check with catalogue diagnostics
    GET  /countries            → All country records
    GET  /countries/{iso}      → One country record
    GET  /bands                → Risk band legend
    GET  /duplicates           → Duplicate ISO codes resolved at last load
    POST /calculate-risk       → Weighted score + band for one country
    POST /baseline             → Portfolio baseline risk summary
    POST /catalogue/reload     → Re-read the catalogue file (ENABLE_RELOAD=1)

Environment variables:
    ENV               — "dev" or "prod" (default: "prod")
    ALLOWED_ORIGINS   — Comma-separated extra CORS origins
    ENABLE_DOCS       — "1" to force-enable /docs in prod
    REQUIRE_DATA      — "1" to hard-fail startup if the catalogue cannot load
    REDIS_URL         — Optional Redis URL for distributed rate limiting
    COUNTRY_DATA_PATH — Catalogue file (default: hrdd/data/countries.txt)
    ENABLE_RELOAD     — "1" to enable POST /catalogue/reload

Requires: fastapi, uvicorn, slowapi

Run (development):
    python -m hrdd.hrdd_api
"""

from __future__ import annotations

import json
import logging
import os
import sys
import threading
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.middleware.gzip import GZipMiddleware

from hrdd.catalogue import Catalogue, CatalogueError, load_file
from hrdd.constants import DEFAULT_CATALOGUE_PATH, DISPLAY_PRECISION
from hrdd.portfolio import BaselineRequest, CalculateRiskRequest, max_request_bytes
from hrdd.risk_engine import RiskEngine
from hrdd.score_cache import ScoreCache
from hrdd.security import (
    NO_STORE,
    CachePolicy,
    PayloadLimitMiddleware,
    RequestContextMiddleware,
    ResponseHeadersMiddleware,
)

API_VERSION = "1.0.0"


# ---------------------------------------------------------------------------
# Logging configuration — structured JSON to stdout
# ---------------------------------------------------------------------------

_log_level = logging.DEBUG if os.getenv("ENV", "prod") == "dev" else logging.INFO
logging.basicConfig(
    level=_log_level,
    format="%(message)s",
    stream=sys.stdout,
)
logger = logging.getLogger("hrdd.api")


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------

ENV = os.getenv("ENV", "prod").lower().strip()
ALLOWED_ORIGINS_RAW = os.getenv("ALLOWED_ORIGINS", "").strip()
ENABLE_DOCS = os.getenv("ENABLE_DOCS", "").strip() == "1"
REQUIRE_DATA = os.getenv("REQUIRE_DATA", "").strip() == "1"
REDIS_URL = os.getenv("REDIS_URL", "").strip() or None
COUNTRY_DATA_PATH = Path(os.getenv("COUNTRY_DATA_PATH", "").strip() or DEFAULT_CATALOGUE_PATH)
ENABLE_RELOAD = os.getenv("ENABLE_RELOAD", "").strip() == "1"


# ---------------------------------------------------------------------------
# Rate limiter
# ---------------------------------------------------------------------------

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=["120/minute"],
    storage_uri=REDIS_URL if REDIS_URL else "memory://",
    strategy="fixed-window",
)


# ---------------------------------------------------------------------------
# Catalogue state — one snapshot per process, swapped atomically on reload
# ---------------------------------------------------------------------------

class CatalogueState:
    """Holds the current catalogue snapshot and the last load failure."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self.catalogue: Catalogue | None = None
        self.load_error: str | None = None
        self.loaded_at: str | None = None
        self._attempted = False
        self._lock = threading.Lock()

    def load(self) -> bool:
        """(Re)load from self.path. On failure the previous snapshot stays."""
        with self._lock:
            self._attempted = True
            try:
                catalogue = load_file(self.path)
            except CatalogueError as exc:
                self.load_error = f"{type(exc).__name__}: {exc}"
                logger.error(json.dumps({
                    "event": "catalogue_load_failed",
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                    "kept_previous": self.catalogue is not None,
                }))
                return False
            self.catalogue = catalogue
            self.load_error = None
            self.loaded_at = datetime.now(UTC).isoformat()
            return True

    def get(self) -> Catalogue | None:
        if not self._attempted:
            self.load()
        return self.catalogue


def _build_docs_kwargs() -> dict[str, Any]:
    if ENV == "prod" and not ENABLE_DOCS:
        return {"docs_url": None, "redoc_url": None, "openapi_url": None}
    return {"docs_url": "/docs", "redoc_url": "/redoc"}


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------

@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Load the catalogue at startup. REQUIRE_DATA=1 makes failure fatal."""
    logger.info(json.dumps({
        "event": "startup",
        "env": ENV,
        "require_data": REQUIRE_DATA,
        "reload_enabled": ENABLE_RELOAD,
        "rate_limit_backend": "redis" if REDIS_URL else "memory",
    }))

    state: CatalogueState = app.state.catalogue_state
    if not state.load():
        if REQUIRE_DATA:
            logger.error(json.dumps({
                "event": "startup_abort",
                "reason": "REQUIRE_DATA=1 but catalogue failed to load",
            }))
            sys.exit(1)
        logger.warning(json.dumps({
            "event": "startup_degraded",
            "reason": state.load_error,
        }))

    yield

    logger.info(json.dumps({"event": "shutdown"}))


app = FastAPI(
    title="HRDD Risk API",
    description="Human-rights due-diligence country risk scoring — baseline risk",
    version=API_VERSION,
    lifespan=_lifespan,
    **_build_docs_kwargs(),
)

app.state.limiter = limiter
app.state.engine = RiskEngine()
app.state.score_cache = ScoreCache(app.state.engine)
app.state.catalogue_state = CatalogueState(COUNTRY_DATA_PATH)


# ---------------------------------------------------------------------------
# CORS
# ---------------------------------------------------------------------------

DEV_ORIGINS: list[str] = [
    "http://localhost:3000",
]

_CORS_ORIGINS: list[str] = list(DEV_ORIGINS) if ENV == "dev" else []

if ALLOWED_ORIGINS_RAW:
    for _o in ALLOWED_ORIGINS_RAW.split(","):
        _o = _o.strip()
        if _o and _o not in _CORS_ORIGINS:
            _CORS_ORIGINS.append(_o)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_CORS_ORIGINS,
    allow_credentials=False,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID", "X-Catalogue-Fingerprint"],
    max_age=3600,
)

logger.info("CORS configured for: %s", _CORS_ORIGINS)


# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------

HEALTH_PATHS = frozenset(("/health", "/ready"))
CATALOGUE_MAX_AGE = 60
"""Seconds a catalogue read may be cached. Short because /catalogue/reload can swap it."""

cache_policy = CachePolicy()


def _current_fingerprint() -> str | None:
    catalogue = app.state.catalogue_state.catalogue
    return catalogue.fingerprint if catalogue is not None else None


def _cache_control(path: str) -> str:
    if path in HEALTH_PATHS:
        return NO_STORE
    if path == "/":
        return "public, max-age=3600"
    return f"public, max-age={CATALOGUE_MAX_AGE}"


# Last registered runs outermost.
app.add_middleware(ResponseHeadersMiddleware, cache_policy=cache_policy, enable_hsts=(ENV == "prod"))
app.add_middleware(PayloadLimitMiddleware, max_body_bytes=max_request_bytes())
app.add_middleware(RequestContextMiddleware, fingerprint=_current_fingerprint)
app.add_middleware(GZipMiddleware, minimum_size=500)


# ---------------------------------------------------------------------------
# Error handlers
# ---------------------------------------------------------------------------

@app.exception_handler(RateLimitExceeded)
async def _rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    return JSONResponse(
        status_code=429,
        content={"detail": "Rate limit exceeded. Try again later."},
        headers={"Retry-After": "60"},
    )


@app.exception_handler(Exception)
async def _global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    request_id = getattr(request.state, "request_id", "unknown")
    logger.error(json.dumps({
        "event": "unhandled_exception",
        "exception_type": type(exc).__name__,
        "request_id": request_id,
        "path": request.url.path,
    }))
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error."},
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _require_catalogue() -> Catalogue:
    """Current catalogue, or 503 if none has ever loaded."""
    catalogue = app.state.catalogue_state.get()
    if catalogue is None:
        raise HTTPException(
            status_code=503,
            detail="Country catalogue not available.",
        )
    return catalogue


def _invalid_input(message: str, details: Any) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={
            "error": "INVALID_RISK_INPUT",
            "message": message,
            "details": details,
        },
    )


async def _parse_body(request: Request, model: type[BaseModel]) -> BaseModel | JSONResponse:
    """Parse and validate a JSON body. Returns the model or a 400 response."""
    try:
        raw_body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return _invalid_input("Request body is not valid JSON.", {"parse_error": "Could not decode JSON."})

    if not isinstance(raw_body, dict):
        return _invalid_input("Request body must be a JSON object.", {})

    try:
        return model(**raw_body)
    except ValidationError as exc:
        detail_items = [
            {
                "field": ".".join(str(p) for p in e.get("loc", [])),
                "message": e.get("msg", "Validation failed"),
            }
            for e in exc.errors()
        ]
        return _invalid_input(
            "Request validation failed.",
            detail_items[0] if len(detail_items) == 1 else detail_items,
        )


def _find_country(catalogue: Catalogue, iso_code: str):
    code = iso_code.strip()
    return catalogue.get(code) or catalogue.get(code.upper())


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@app.get("/")
@limiter.limit("60/minute")
async def root(request: Request) -> dict:
    """API metadata."""
    catalogue = app.state.catalogue_state.get()
    return {
        "name": "HRDD Risk API",
        "version": API_VERSION,
        "countries": len(catalogue) if catalogue is not None else 0,
        "default_weights": list(app.state.engine.default_weights),
    }


@app.get("/health", include_in_schema=False)
async def health(request: Request) -> JSONResponse:
    """Liveness check. No I/O, no state reads, always 200."""
    return JSONResponse(
        status_code=200,
        content={"status": "ok", "version": API_VERSION},
    )


@app.get("/ready")
@limiter.limit("60/minute")
async def ready(request: Request) -> JSONResponse:
    """Readiness check — always 200; business readiness is the 'ready' field."""
    state: CatalogueState = app.state.catalogue_state
    catalogue = state.get()
    body = {
        "ready": catalogue is not None,
        "status": "healthy" if catalogue is not None and state.load_error is None else "degraded",
        "version": API_VERSION,
        "country_count": len(catalogue) if catalogue is not None else 0,
        "duplicate_count": len(catalogue.duplicates) if catalogue is not None else 0,
        "catalogue_fingerprint": catalogue.fingerprint if catalogue is not None else None,
        "loaded_at": state.loaded_at,
        "load_error": state.load_error,
        "score_cache": app.state.score_cache.stats,
        "timestamp": datetime.now(UTC).isoformat(),
    }
    return JSONResponse(status_code=200, content=body)


@app.get("/countries")
@limiter.limit("60/minute")
async def list_countries(request: Request) -> Any:
    """All country records in catalogue order."""
    catalogue = _require_catalogue()
    return [c.to_dict() for c in catalogue.countries]


@app.get("/countries/{iso_code}")
@limiter.limit("120/minute")
async def get_country(iso_code: str, request: Request) -> Any:
    """One country record by ISO code."""
    catalogue = _require_catalogue()
    record = _find_country(catalogue, iso_code)
    if record is None:
        raise HTTPException(status_code=404, detail="Country not found")
    return record.to_dict()


@app.get("/bands")
@limiter.limit("60/minute")
async def list_bands(request: Request) -> Any:
    """Risk band legend: [{name, range, color}, ...]."""
    return app.state.engine.band_definitions()


@app.get("/duplicates")
@limiter.limit("60/minute")
async def list_duplicates(request: Request) -> Any:
    """Duplicate ISO codes resolved (last row wins) when the catalogue loaded."""
    catalogue = _require_catalogue()
    return [d.to_dict() for d in catalogue.duplicates]


@app.post("/calculate-risk")
@limiter.limit("120/minute")
async def calculate_risk(request: Request) -> JSONResponse:
    """Weighted score and band for one country.

    400 → INVALID_RISK_INPUT (bad JSON, missing code, invalid weights)
    404 → unknown country
    """
    parsed = await _parse_body(request, CalculateRiskRequest)
    if isinstance(parsed, JSONResponse):
        return parsed
    req: CalculateRiskRequest = parsed

    catalogue = _require_catalogue()
    record = _find_country(catalogue, req.country_iso_code)
    if record is None:
        raise HTTPException(status_code=404, detail="Country not found")

    engine: RiskEngine = app.state.engine
    score = engine.weighted_score(record, req.weights)
    result = engine.band(score)

    return JSONResponse(status_code=200, content={
        "country": record.name,
        "isoCode": record.iso_code,
        "originalRiskScore": record.base_risk_score,
        "weightedRiskScore": round(score, DISPLAY_PRECISION),
        "riskBand": result.name,
        "riskColor": result.color,
    })


@app.post("/baseline")
@limiter.limit("120/minute")
async def baseline(request: Request) -> JSONResponse:
    """Volume-weighted baseline risk for a portfolio selection.

    Selected codes missing from the catalogue score 0 and are listed in
    portfolio.unmatched.
    """
    parsed = await _parse_body(request, BaselineRequest)
    if isinstance(parsed, JSONResponse):
        return parsed
    req: BaselineRequest = parsed

    catalogue = _require_catalogue()
    engine: RiskEngine = app.state.engine
    selection = req.to_selection()
    weights = req.weights if req.weights is not None else engine.default_weights

    scores = app.state.score_cache.get_scores(catalogue, weights)
    summary = engine.summarize_portfolio(selection, catalogue.countries, weights, scores=scores)
    return JSONResponse(status_code=200, content=summary)


@app.post("/catalogue/reload", include_in_schema=False)
@limiter.limit("6/minute")
async def reload_catalogue(request: Request) -> JSONResponse:
    """Re-read the catalogue file. A failed reload keeps the previous snapshot."""
    if not ENABLE_RELOAD:
        raise HTTPException(status_code=404, detail="Not Found")

    state: CatalogueState = app.state.catalogue_state
    ok = state.load()
    if not ok:
        return JSONResponse(status_code=422, content={
            "error": "CATALOGUE_LOAD_FAILED",
            "message": state.load_error,
            "kept_previous": state.catalogue is not None,
        })

    dropped = app.state.score_cache.invalidate()
    catalogue = state.catalogue
    logger.info(json.dumps({
        "event": "catalogue_reloaded",
        "countries": len(catalogue),
        "duplicates": len(catalogue.duplicates),
        "cache_tables_dropped": dropped,
    }))
    return JSONResponse(status_code=200, content={
        "countries": len(catalogue),
        "duplicates": [d.to_dict() for d in catalogue.duplicates],
        "catalogue_fingerprint": catalogue.fingerprint,
    })


# Every GET route is registered by now.
cache_policy.register_routes(app.routes, _cache_control)


# ---------------------------------------------------------------------------
# Entry point (development only)
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    try:
        import uvicorn
    except ImportError:
        print("Install uvicorn: pip install uvicorn", file=sys.stderr)
        sys.exit(1)

    print(f"HRDD Risk API {API_VERSION} — serving catalogue from {COUNTRY_DATA_PATH}")
    uvicorn.run(app, host="0.0.0.0", port=8000)  # noqa: S104
