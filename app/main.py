import logging
from datetime import datetime, timezone
from typing import Optional
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from app.api.deps import get_narrative_analysis_gateway, get_text_extraction_gateway
from app.api.router import api_router
from app.config import settings
from app.core.circuit_breaker import (
    CircuitBreakerOpenException,
    anthropic_api_circuit_breaker,
    vision_api_circuit_breaker,
)
from app.core.exceptions import AppException, ErrorCode
from app.core.logging_config import setup_logging, cleanup_old_logs
from app.core.logging_utils import get_request_id, sanitize_log_message
from app.database import close_db, init_db
from app.middleware.logging_middleware import LoggingMiddleware
from app.middleware.rate_limit import setup_rate_limiting
from app.middleware.security import setup_security_middleware
from app.services.enrichment_queue import EnrichmentQueue
from app.services.enrichment_service import EnrichmentProcessor

logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    openapi_url=f"{settings.API_PREFIX}/openapi.json",
    docs_url=f"{settings.API_PREFIX}/docs",
    redoc_url=f"{settings.API_PREFIX}/redoc",
)


@app.on_event("startup")
async def startup_event():
    """Initialize logging, the schema (when enabled) and the enrichment workers."""
    setup_logging()
    cleanup_old_logs()

    if settings.DB_AUTO_CREATE:
        await init_db()

    processor = EnrichmentProcessor(
        text_gateway=get_text_extraction_gateway(),
        narrative_gateway=get_narrative_analysis_gateway(),
    )
    app.state.enrichment_queue = EnrichmentQueue(processor)
    await app.state.enrichment_queue.start()

    logger.info("Application startup complete")


@app.on_event("shutdown")
async def shutdown_event():
    """Drain the enrichment queue and close database connections."""
    queue: Optional[EnrichmentQueue] = getattr(app.state, "enrichment_queue", None)
    if queue is not None:
        await queue.stop()
    await close_db()
    logger.info("Application shutdown complete")


# CORS middleware; mobile clients authenticate with bearer tokens, not cookies
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.BACKEND_CORS_ORIGINS,
    allow_credentials=False,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID", "Accept", "Origin"],
)

# Security middleware (request size limit + security headers)
setup_security_middleware(app, max_request_size=settings.MAX_REQUEST_SIZE)

# Request ID + request logging
app.add_middleware(LoggingMiddleware)

# Rate limiting
setup_rate_limiting(app)

# Include API router
app.include_router(api_router, prefix=settings.API_PREFIX)


def error_response(status_code: int, code: str, message: str, headers: Optional[dict] = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": {"code": code, "message": message}},
        headers=headers,
    )


HTTP_STATUS_ERROR_CODES = {
    status.HTTP_401_UNAUTHORIZED: ErrorCode.UNAUTHORIZED,
    status.HTTP_403_FORBIDDEN: ErrorCode.FORBIDDEN,
    status.HTTP_404_NOT_FOUND: ErrorCode.NOT_FOUND,
}


# Exception handlers with logging
@app.exception_handler(AppException)
async def app_exception_handler(request: Request, exc: AppException):
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        sanitize_log_message(
            f"Request failed: {exc.code.value}",
            RequestID=get_request_id(request),
            Path=request.url.path,
            Method=request.method,
            StatusCode=exc.status_code,
            Detail=exc.detail
        )
    )
    return error_response(exc.status_code, exc.code.value, str(exc.detail), headers=exc.headers)


def _validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Validation failed"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path", "form"))
    message = str(first.get("msg", "Invalid value")).removeprefix("Value error, ")
    return f"{location}: {message}" if location else message


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    message = _validation_message(exc)
    logger.warning(
        sanitize_log_message(
            "Request validation failed",
            RequestID=get_request_id(request),
            Path=request.url.path,
            Method=request.method,
            Detail=message
        )
    )
    return error_response(status.HTTP_400_BAD_REQUEST, ErrorCode.VALIDATION_ERROR.value, message)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code >= 500:
        code = ErrorCode.SERVER_ERROR
    else:
        code = HTTP_STATUS_ERROR_CODES.get(exc.status_code, ErrorCode.VALIDATION_ERROR)
    message = "Route not found" if exc.status_code == status.HTTP_404_NOT_FOUND and exc.detail == "Not Found" else str(exc.detail)
    return error_response(exc.status_code, code.value, message, headers=getattr(exc, "headers", None))


@app.exception_handler(CircuitBreakerOpenException)
async def circuit_breaker_handler(request: Request, exc: CircuitBreakerOpenException):
    logger.warning(
        sanitize_log_message(
            "Circuit breaker open",
            RequestID=get_request_id(request),
            Path=request.url.path,
            Method=request.method,
            Message=exc.message
        )
    )
    return error_response(
        status.HTTP_503_SERVICE_UNAVAILABLE,
        ErrorCode.SERVICE_UNAVAILABLE.value,
        "Service temporarily unavailable. Please try again later.",
    )


# Generic exception handler for unhandled exceptions
@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.exception(
        sanitize_log_message(
            f"Unhandled exception: {type(exc).__name__}",
            RequestID=get_request_id(request),
            Path=request.url.path,
            Method=request.method,
            ExceptionMessage=str(exc)
        )
    )
    return error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        ErrorCode.SERVER_ERROR.value,
        "Internal server error" if settings.ENVIRONMENT == "production" else str(exc),
    )


@app.get("/health")
async def health_check(request: Request):
    """Liveness plus enrichment queue and circuit breaker state."""
    queue: Optional[EnrichmentQueue] = getattr(request.app.state, "enrichment_queue", None)
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": settings.PROJECT_NAME,
        "enrichment": queue.stats() if queue is not None else {"running": False},
        "circuitBreakers": [
            vision_api_circuit_breaker.get_status(),
            anthropic_api_circuit_breaker.get_status(),
        ],
    }


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": settings.PROJECT_NAME,
        "version": settings.VERSION,
        "docs": f"{settings.API_PREFIX}/docs"
    }
