"""
FastAPI Application Entry Point
Bundle Store & Cart Transform Sync - Python Backend
"""
from fastapi import FastAPI, Request, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse
import os
import asyncio
from dotenv import load_dotenv
from starlette.middleware.base import BaseHTTPMiddleware
import logging
import json
import sys
import time
import uuid as _uuid
from typing import Callable, Dict
from routers import (
    bundles,
    bundle_steps,
    bulk,
    combinations,
    products,
    storefront,
    setup,
)

from database import init_db, check_db_health
from schemas.bundle_schemas import ErrorCode
from services.errors import BundleServiceError
from collections import defaultdict
from asyncio import Lock

# Load environment variables
load_dotenv()


# ---- Logging setup (JSON; good for Cloud Run) ----
class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "severity": record.levelname,
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%S%z"),
            "logger": record.name,
            "message": record.getMessage(),
        }
        # Include traceback if present
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
handler = logging.StreamHandler(sys.stdout)
handler.setFormatter(JsonFormatter())

root = logging.getLogger()
root.handlers = [handler]
root.setLevel(LOG_LEVEL)

# Optional: crank down noisy libs
logging.getLogger("uvicorn.access").setLevel(logging.INFO)
logging.getLogger("uvicorn.error").setLevel(logging.INFO)
logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)  # bump to INFO to see SQL
logging.getLogger("httpx").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Bundle Store API",
    description="Merchant bundles stored as Shopify metaobjects, synced to the cart transform",
    version="1.0.0",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json"
)

cors_origins_raw = os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:5000")
cors_origins = [origin.strip() for origin in cors_origins_raw.split(",") if origin.strip()]
if not cors_origins:
    cors_origins = ["http://localhost:3000"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
# ---- Request/Response logging middleware ----
class RequestIDMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable):
        request_id = request.headers.get("X-Request-Id") or str(_uuid.uuid4())
        start = time.time()

        # Attach request_id so handlers can use it
        request.state.request_id = request_id

        # Log request (avoid reading full body for base64 image uploads)
        logger.info(
            f"REQ {request.method} {request.url.path} "
            f"qs={request.url.query!s} ip={request.client.host if request.client else '-'} "
            f"rid={request_id} shop={request.headers.get('X-Shopify-Shop-Domain','-')}"
        )
        try:
            response = await call_next(request)
        except Exception:
            logger.exception(f"Uncaught exception in request pipeline rid={request_id}")
            raise

        dur_ms = int((time.time() - start) * 1000)
        logger.info(
            f"RES {request.method} {request.url.path} "
            f"status={response.status_code} durMs={dur_ms} rid={request_id}"
        )
        # Make request id visible to clients
        response.headers["X-Request-Id"] = request_id
        return response

app.add_middleware(RequestIDMiddleware)


# ---- Rate Limiting Middleware ----
class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Simple in-memory rate limiter.
    Limits requests per shop (or IP when no shop header) per time window.
    """
    def __init__(self, app, requests_per_minute: int = 60):
        super().__init__(app)
        self.requests_per_minute = requests_per_minute
        self.window_seconds = 60
        self._requests: Dict[str, list] = defaultdict(list)
        self._lock = Lock()
        # Endpoints exempt from rate limiting
        self._exempt_paths = {"/healthz", "/api/health", "/", "/api/docs", "/api/redoc", "/api/openapi.json"}

    async def dispatch(self, request: Request, call_next: Callable):
        if request.url.path in self._exempt_paths:
            return await call_next(request)

        client_key = request.headers.get("X-Shopify-Shop-Domain") or (
            request.client.host if request.client else "unknown"
        )
        current_time = time.time()

        async with self._lock:
            # Clean old requests outside window
            self._requests[client_key] = [
                t for t in self._requests[client_key]
                if current_time - t < self.window_seconds
            ]

            if len(self._requests[client_key]) >= self.requests_per_minute:
                logger.warning(f"Rate limit exceeded for client: {client_key}")
                return JSONResponse(
                    status_code=429,
                    content={
                        "error": True,
                        "message": "Rate limit exceeded",
                        "code": ErrorCode.LIMIT_EXCEEDED.value,
                        "details": {"retryAfterSeconds": self.window_seconds},
                    },
                    headers={"Retry-After": str(self.window_seconds)},
                )

            self._requests[client_key].append(current_time)

        response = await call_next(request)

        remaining = self.requests_per_minute - len(self._requests.get(client_key, []))
        response.headers["X-RateLimit-Limit"] = str(self.requests_per_minute)
        response.headers["X-RateLimit-Remaining"] = str(max(0, remaining))
        response.headers["X-RateLimit-Reset"] = str(int(current_time + self.window_seconds))

        return response


# Add rate limiting (configurable via env)
RATE_LIMIT_ENABLED = os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true"
RATE_LIMIT_RPM = int(os.getenv("RATE_LIMIT_RPM", "120"))  # 120 requests per minute default

if RATE_LIMIT_ENABLED:
    app.add_middleware(RateLimitMiddleware, requests_per_minute=RATE_LIMIT_RPM)
    logger.info(f"Rate limiting enabled: {RATE_LIMIT_RPM} requests/minute")


@app.get("/")
async def root():
    return {"ok": True, "service": "bundle-store"}

@app.get("/healthz")
async def healthz():
    """Basic health check for load balancers."""
    return {"ok": True}


@app.get("/api/health")
async def api_health():
    """Comprehensive health check including database status."""
    db_health = await check_db_health()
    overall_status = "healthy" if db_health["status"] == "healthy" else "degraded"
    return {
        "status": overall_status,
        "database": db_health,
        "timestamp": time.time(),
    }


# --- Error handlers ---
def _envelope(status_code: int, message: str, code: ErrorCode, details=None) -> JSONResponse:
    content = {"error": True, "message": message, "code": code.value}
    if details is not None:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content)

@app.exception_handler(BundleServiceError)
async def bundle_service_exception_handler(request: Request, exc: BundleServiceError):
    if exc.status_code >= 500:
        logger.error(f"{exc.code.value}: {exc.message} details={exc.details}")
    else:
        logger.info(f"{exc.code.value}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_envelope())

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    logger.error(f"Validation error: {errors}")
    messages = [str(err.get("msg", "")).removeprefix("Value error, ") for err in errors]
    return _envelope(
        400,
        ", ".join(messages) or "Validation failed",
        ErrorCode.VALIDATION_ERROR,
        {"errors": json.loads(json.dumps(errors, default=str))},
    )

@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    code = ErrorCode.BUNDLE_NOT_FOUND if exc.status_code == 404 else ErrorCode.VALIDATION_ERROR
    if exc.status_code >= 500:
        code = ErrorCode.INTERNAL_ERROR
    return _envelope(exc.status_code, str(exc.detail), code)

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return _envelope(500, "Internal server error", ErrorCode.INTERNAL_ERROR)

# --- Routers ---
# Literal paths (storefront, calculate-price, bulk-*) go before /bundles/{bundle_id}/...
app.include_router(storefront.router, prefix="/api", tags=["storefront"])
app.include_router(bulk.router, prefix="/api", tags=["bulk"])
app.include_router(products.router, prefix="/api", tags=["products"])
app.include_router(bundles.router, prefix="/api", tags=["bundles"])
app.include_router(bundle_steps.router, prefix="/api", tags=["bundle-steps"])
app.include_router(combinations.router, prefix="/api", tags=["combinations"])
app.include_router(setup.router, prefix="/api", tags=["setup"])

# --- Startup/shutdown ---
@app.on_event("startup")
async def startup():
    logger.info("Starting Bundle Store API...")
    if os.getenv("INIT_DB_ON_STARTUP", "true").lower() == "true":
        try:
            logger.info("Initializing database tables...")
            await asyncio.wait_for(init_db(), timeout=120)  # 2 minutes for slow connections
            logger.info("Database initialized successfully")
        except asyncio.TimeoutError:
            logger.error("DB init timed out after 120s, continuing without init")
        except Exception as e:
            logger.error(f"DB init failed (continuing to serve): {e}", exc_info=True)
    else:
        logger.info("Skipping DB init on startup")
@app.on_event("shutdown")
async def shutdown():
    logger.info("Shutting down Bundle Store API...")

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", 8080)),
        reload=os.getenv("NODE_ENV") != "production"
    )
