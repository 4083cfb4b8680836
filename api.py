"""
FastAPI server for the Texas Electricity Plan Engine.

Loads the territory tables on startup, then serves ZIP validation, plan
search, faceted navigation and plan comparison as JSON.
Every response is wrapped as {success, data|error, meta}.
"""

import logging
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from plan_engine.config import Config
from plan_engine.engine import PlanEngine
from plan_engine.exceptions import ApiErrorType, PlanApiError, RateLimitError, ValidationError
from plan_engine.rate_limit import RateLimiter

API_VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("api")

# ---------------------------------------------------------------------------
# Global engine + limiter (built once at startup)
# ---------------------------------------------------------------------------
engine: Optional[PlanEngine] = None
limiter = RateLimiter(max_requests=60, window_seconds=60)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the engine on startup, release connections on shutdown."""
    global engine, limiter
    t0 = time.time()

    config = Config.from_env()
    logging.getLogger().setLevel(config.log_level)
    limiter = RateLimiter(max_requests=config.rate_limit_per_minute, window_seconds=60)
    engine = PlanEngine(config)
    logger.info(f"Engine ready in {time.time() - t0:.1f}s")

    yield

    if engine:
        engine.close()
    logger.info("Shutdown complete.")


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------
app = FastAPI(
    title="Texas Electricity Plan API",
    description="ZIP validation, TDSP resolution, faceted plan search and cost comparison for Texas.",
    version=API_VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_start_time = time.time()


@app.middleware("http")
async def request_context(request: Request, call_next):
    request.state.request_id = f"req_{uuid.uuid4().hex[:12]}"
    request.state.started = time.time()
    response = await call_next(request)
    response.headers["X-Request-ID"] = request.state.request_id
    return response


# ---------------------------------------------------------------------------
# Envelope
# ---------------------------------------------------------------------------
def _meta(request: Request) -> dict:
    started = getattr(request.state, "started", time.time())
    return {
        "request_id": getattr(request.state, "request_id", f"req_{uuid.uuid4().hex[:12]}"),
        "timestamp": datetime.utcnow().isoformat(),
        "response_time_ms": int((time.time() - started) * 1000),
        "version": API_VERSION,
    }


def ok(request: Request, data) -> dict:
    return {"success": True, "data": data, "meta": _meta(request)}


def error_response(request: Request, status_code: int, error: dict, headers: dict = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": error, "meta": _meta(request)},
        headers=headers,
    )


_NOT_FOUND_TYPES = {ApiErrorType.NOT_FOUND, ApiErrorType.ESIID_NOT_FOUND}


@app.exception_handler(ValidationError)
async def handle_validation_error(request: Request, exc: ValidationError):
    return error_response(request, 400, {"code": exc.code, "message": exc.message, "details": exc.details})


@app.exception_handler(RateLimitError)
async def handle_rate_limit(request: Request, exc: RateLimitError):
    headers = {
        "Retry-After": str(exc.retry_after),
        "X-RateLimit-Limit": str(limiter.max_requests),
        "X-RateLimit-Remaining": "0",
    }
    return error_response(
        request, 429,
        {"code": "RATE_LIMITED", "message": exc.message, "retry_after": exc.retry_after},
        headers,
    )


@app.exception_handler(PlanApiError)
async def handle_plan_api_error(request: Request, exc: PlanApiError):
    if exc.error_type in _NOT_FOUND_TYPES:
        status_code = 404
    elif exc.error_type == ApiErrorType.INVALID_TDSP:
        status_code = 400
    else:
        status_code = 500
        logger.error(f"{request.url.path} failed: {exc.error_type.value} {exc.message}")
    return error_response(request, status_code, exc.to_dict())


@app.exception_handler(RequestValidationError)
async def handle_request_validation(request: Request, exc: RequestValidationError):
    return error_response(
        request, 400,
        {"code": "VALIDATION_ERROR", "message": "Invalid request", "details": {"errors": exc.errors()}},
    )


@app.exception_handler(StarletteHTTPException)
async def handle_http_exception(request: Request, exc: StarletteHTTPException):
    return error_response(request, exc.status_code, {"code": f"HTTP_{exc.status_code}", "message": exc.detail})


@app.exception_handler(Exception)
async def handle_unexpected(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.url.path}: {exc}")
    return error_response(request, 500, {"code": "INTERNAL_ERROR", "message": "Internal server error"})


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------
def get_engine() -> PlanEngine:
    if not engine:
        raise HTTPException(status_code=503, detail="Engine is still loading. Try again shortly.")
    return engine


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.headers.get("x-real-ip") or (request.client.host if request.client else "unknown")


def enforce_rate_limit(request: Request, response: Response):
    result = limiter.check(client_ip(request), request.url.path)
    if not result["allowed"]:
        raise RateLimitError("Rate limit exceeded. Please try again later.", result["retry_after"])
    response.headers["X-RateLimit-Limit"] = str(limiter.max_requests)
    response.headers["X-RateLimit-Remaining"] = str(result["remaining"])


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------
class SearchFilters(BaseModel):
    term: Optional[int] = None
    green: Optional[int] = None
    rate_type: Optional[str] = None
    provider: Optional[str] = None
    prepaid: Optional[bool] = None
    time_of_use: Optional[bool] = None
    requires_auto_pay: Optional[bool] = None


class SearchRequest(BaseModel):
    zip_code: str = Field(..., description="5-digit Texas ZIP code")
    address: Optional[str] = Field(None, description="Street address, used for split ZIPs")
    usage: Optional[int] = Field(None, description="Monthly usage in kWh (100-5000)")
    filters: SearchFilters = Field(default_factory=SearchFilters)


class ZIPNavigateRequest(BaseModel):
    zip_code: str
    validate_plans_available: bool = False


class ESIIDLookupRequest(BaseModel):
    address: str
    zip_code: str
    usage: Optional[int] = None


class CompareRequest(BaseModel):
    city: str
    plan_ids: List[str]
    monthly_usage_kwh: Optional[int] = None
    analysis_months: Optional[int] = None
    include_promotions: Optional[bool] = None
    include_connect_fees: Optional[bool] = None
    tax_rate: Optional[float] = None


_LIST_PARAMS = ("limit", "offset", "city")


def _filter_query(request: Request) -> dict:
    return {k: v for k, v in request.query_params.items() if k not in _LIST_PARAMS}


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------
@app.get("/health")
async def health(request: Request):
    """Liveness plus upstream, database and cache status."""
    if not engine:
        return ok(request, {"status": "loading", "engine_loaded": False,
                            "uptime_seconds": round(time.time() - _start_time, 1)})
    data = engine.health()
    data["engine_loaded"] = True
    data["uptime_seconds"] = round(time.time() - _start_time, 1)
    return ok(request, data)


router = APIRouter(prefix="/api", dependencies=[Depends(enforce_rate_limit)])


@router.post("/search")
def search(req: SearchRequest, request: Request, eng: PlanEngine = Depends(get_engine)):
    """Plans for a ZIP code; the address settles split-TDSP ZIPs."""
    filters = req.filters.model_dump(exclude_none=True)
    return ok(request, eng.search_plans(req.zip_code, req.address, req.usage, filters))


@router.get("/zip/validate")
def zip_validate(request: Request, zip_code: str = Query(..., description="5-digit ZIP code"),
                 eng: PlanEngine = Depends(get_engine)):
    return ok(request, eng.validate_zip(zip_code))


@router.post("/zip/navigate")
def zip_navigate(req: ZIPNavigateRequest, request: Request, eng: PlanEngine = Depends(get_engine)):
    return ok(request, eng.zip_navigate(req.zip_code, req.validate_plans_available))


@router.get("/deregulated-areas")
def deregulated_areas(request: Request, eng: PlanEngine = Depends(get_engine)):
    return ok(request, eng.deregulated_areas())


@router.post("/esiid/lookup")
def esiid_lookup(req: ESIIDLookupRequest, request: Request, eng: PlanEngine = Depends(get_engine)):
    return ok(request, eng.esiid_lookup(req.address, req.zip_code, req.usage))


@router.get("/plans/list")
def plans_list(request: Request, city: str = Query(..., min_length=2),
               limit: int = Query(50), offset: int = Query(0),
               eng: PlanEngine = Depends(get_engine)):
    """
    Filtered, sorted, paged plans for a city.

    Filter params: contract, type, min, max, fee, green, providers, rating,
    features, promo, no-etf, sort, order.
    """
    return ok(request, eng.list_plans(city, _filter_query(request), limit, offset))


@router.post("/plans/compare")
def plans_compare(req: CompareRequest, request: Request, eng: PlanEngine = Depends(get_engine)):
    settings = req.model_dump(exclude={"city", "plan_ids"}, exclude_none=True)
    return ok(request, eng.compare_plans(req.city, req.plan_ids, settings))


@router.get("/plans/suggestions")
def plans_suggestions(request: Request, city: str = Query(..., min_length=2),
                      limit: int = Query(5), eng: PlanEngine = Depends(get_engine)):
    query = {k: v for k, v in _filter_query(request).items() if k != "limit"}
    return ok(request, eng.plan_suggestions(city, query, limit))


@router.get("/search/faceted")
def faceted(request: Request, path: str = Query(..., description="/electricity-plans/{city}/{filters...}"),
            require_plans: bool = Query(True), eng: PlanEngine = Depends(get_engine)):
    data = eng.faceted_search(path, require_plans)
    if not data["is_valid"] and data.get("redirect_url") == "/404":
        return error_response(request, 404, {"code": "NOT_FOUND", "message": data["error"]})
    return ok(request, data)


@router.get("/search/faceted-autocomplete")
def faceted_autocomplete(request: Request, q: str = Query(""), limit: int = Query(8),
                         city: Optional[str] = Query(None), eng: PlanEngine = Depends(get_engine)):
    return ok(request, eng.autocomplete(q, limit, city))


app.include_router(router)
