import sentry_sdk
import os
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import OperationalError
from starlette.exceptions import HTTPException as StarletteHTTPException
import time
import structlog
import uuid

from app.core.logging_config import configure_logging
from app.core.config import settings
from app.core.celery_app import celery_app  # noqa: F401  binds shared tasks to the broker
from app.core.exceptions import APIError, CacheUnavailable
from app.core.rate_limiter import limiter
from app.cache.store import build_cache_store
from app.db.session import engine
from app.api.v1 import admin, cart, categories, products, reviews
from app.utils.response import error

API_VERSION = "1.0.0"

# --------------------------------------------------
# CONFIGURE LOGGING (FIRST)
# --------------------------------------------------
configure_logging()
logger = structlog.get_logger()

# --------------------------------------------------
# INITIALIZE SENTRY (ONLY IN PRODUCTION)
# --------------------------------------------------
if settings.ENVIRONMENT == "production" and settings.SENTRY_DSN:
    try:
        sentry_sdk.init(
            dsn=settings.SENTRY_DSN,
            environment=settings.ENVIRONMENT,
            traces_sample_rate=0.1,
            integrations=[
                FastApiIntegration(),
                SqlalchemyIntegration(),
            ],
        )
        logger.info("sentry_initialized")
    except Exception as e:
        logger.warning("sentry_init_failed", error=str(e))
        # Application continues without Sentry monitoring

# --------------------------------------------------
# CREATE FASTAPI APP (SINGLE INITIALIZATION)
# --------------------------------------------------
app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    docs_url=f"{settings.API_V1_STR}/docs",
    redoc_url=f"{settings.API_V1_STR}/redoc"
)

# The cache is an injected capability; tests swap in an in-memory store.
app.state.cache_store = build_cache_store()

# --------------------------------------------------
# RATE LIMITING SETUP
# --------------------------------------------------
app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return error(
        status_code=429,
        kind="rate_limited",
        message="Too many requests. Please try again later.",
    )

# --------------------------------------------------
# CORS MIDDLEWARE
# --------------------------------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.BACKEND_CORS_ORIGINS),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
    allow_headers=[
        "Content-Type",
        "Authorization",
        "X-Correlation-ID",
        "X-Requested-With",
    ],
    expose_headers=["X-Process-Time", "X-Correlation-ID"],
    max_age=3600,
)

# --------------------------------------------------
# REQUEST TIMING MIDDLEWARE
# --------------------------------------------------
@app.middleware("http")
async def add_process_time_header(request: Request, call_next):
    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time
    response.headers["X-Process-Time"] = str(process_time)
    return response


# --------------------------------------------------
# REQUEST LOGGING MIDDLEWARE
# --------------------------------------------------
@app.middleware("http")
async def log_requests(request: Request, call_next):
    logger.info(
        "request_started",
        method=request.method,
        path=request.url.path,
        client_ip=request.client.host if request.client else None,
    )

    response = await call_next(request)

    logger.info(
        "request_completed",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
    )

    return response


# Registered last so it runs outermost and request logs carry the id.
@app.middleware("http")
async def add_correlation_id(request: Request, call_next):
    correlation_id = request.headers.get("X-Correlation-ID") or str(uuid.uuid4())

    request.state.correlation_id = correlation_id
    structlog.contextvars.bind_contextvars(correlation_id=correlation_id)

    try:
        response = await call_next(request)
    finally:
        structlog.contextvars.unbind_contextvars("correlation_id")

    response.headers["X-Correlation-ID"] = correlation_id
    return response

# --------------------------------------------------
# MOUNT STATIC FILES
# --------------------------------------------------
os.makedirs(settings.MEDIA_ROOT, exist_ok=True)
app.mount(settings.MEDIA_URL_PREFIX, StaticFiles(directory=settings.MEDIA_ROOT), name="media")

# --------------------------------------------------
# INCLUDE ROUTERS
# --------------------------------------------------
app.include_router(categories.router, prefix=f"{settings.API_V1_STR}/categories", tags=["Categories"])
app.include_router(products.router, prefix=f"{settings.API_V1_STR}/products", tags=["Products"])
app.include_router(cart.router, prefix=f"{settings.API_V1_STR}/cart", tags=["Cart"])
app.include_router(reviews.router, prefix=f"{settings.API_V1_STR}/reviews", tags=["Reviews"])
app.include_router(admin.router, prefix=f"{settings.API_V1_STR}/admin", tags=["Admin"])

# --------------------------------------------------
# HEALTH CHECK ENDPOINTS
# --------------------------------------------------
@app.get("/health")
def health_check():
    return {
        "status": "healthy",
        "environment": settings.ENVIRONMENT,
        "version": API_VERSION
    }


@app.get("/health/database")
def database_health_check():
    try:
        with engine.connect() as connection:
            connection.exec_driver_sql("SELECT 1")
        return {"status": "healthy"}
    except Exception as exc:
        return {
            "status": "unhealthy",
            "reason": f"Database connectivity check failed: {exc}",
        }


@app.get("/health/cache")
def cache_health_check(request: Request):
    # The service keeps answering from the store when the cache is down.
    try:
        stats = request.app.state.cache_store.stats()
    except CacheUnavailable as exc:
        return {"status": "degraded", "reason": str(exc)}
    return {"status": "healthy", "backend": stats.get("backend"), "total_keys": stats.get("total_keys")}


@app.get(f"{settings.API_V1_STR}/version")
def get_version():
    return {
        "version": API_VERSION,
        "commit": os.getenv("GIT_COMMIT", "unknown"),
    }

# --------------------------------------------------
# EXCEPTION HANDLERS
# --------------------------------------------------
@app.exception_handler(APIError)
async def api_error_handler(request: Request, exc: APIError):
    if exc.status_code >= 500:
        logger.error("api_error", kind=exc.kind, detail=exc.message, path=request.url.path)
    return error(
        status_code=exc.status_code,
        kind=exc.kind,
        message=exc.message,
        errors=exc.errors,
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    detail = exc.detail

    if isinstance(detail, str):
        message = detail
        errors = []
    elif isinstance(detail, list):
        message = "Request failed"
        errors = detail
    elif isinstance(detail, dict):
        message = detail.get("message", "Request failed")
        errors = detail.get("errors", [])
    else:
        message = "Request failed"
        errors = []

    kind = {
        status.HTTP_404_NOT_FOUND: "not_found",
        status.HTTP_405_METHOD_NOT_ALLOWED: "method_not_allowed",
    }.get(exc.status_code, "http_error")
    return error(
        status_code=exc.status_code,
        kind=kind,
        message=message,
        errors=errors,
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
        for err in exc.errors()
    ]
    return error(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        kind="validation_error",
        message="Validation failed",
        errors=errors,
    )


@app.exception_handler(OperationalError)
async def store_unavailable_handler(request: Request, exc: OperationalError):
    logger.error("store_unavailable", path=request.url.path, detail=str(exc.orig))
    return error(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        kind="store_unavailable",
        message="Catalog store is unavailable. Please try again later.",
    )

# --------------------------------------------------
# GLOBAL EXCEPTION HANDLER
# --------------------------------------------------
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    # Unexpected exceptions: log the original, answer with a generic message
    logger.exception("unhandled_exception", error_type=type(exc).__name__, detail=str(exc))

    if settings.DEBUG and settings.ENVIRONMENT != "production":
        return error(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            kind="internal_error",
            message=f"Internal server error: {str(exc)}",
            errors=[{"type": type(exc).__name__}],
        )

    return error(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        kind="internal_error",
        message="Internal server error",
    )
