"""
Tenantflow - Main FastAPI Application.

REST layer of the orchestration core: operation submission, execution
status and invalidation events. Starts the worker pool and, when Redis is
enabled, the invalidation stream consumer.
"""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging
import time

from api import dependencies
from api.routes import events, executions, health, operations
from core.domain.exceptions import (
    AuthorizationError,
    ClassificationError,
    DirectServiceError,
    DispatcherError,
    ExecutionNotFoundError,
    OrchestrationError,
)


# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


# =============================================================================
# CREATE FASTAPI APP
# =============================================================================

app = FastAPI(
    title="Tenantflow - Orchestration API",
    description="""
    Multi-tenant operation gateway and durable workflow orchestration.

    Features:
    - Simple vs complex operation classification
    - Tenant context and permission enforcement on every hop
    - Durable, retryable workflows with saga compensation
    - Live execution status, history and cancellation
    - Event-driven permission and aggregation cache invalidation
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)


# =============================================================================
# CORS MIDDLEWARE
# =============================================================================

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
    allow_headers=["*"],
    expose_headers=["*"],
)


# =============================================================================
# REQUEST LOGGING MIDDLEWARE
# =============================================================================

@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all requests with timing."""
    start_time = time.time()

    logger.info(f"→ {request.method} {request.url.path}")

    response = await call_next(request)

    duration = time.time() - start_time
    logger.info(
        f"← {request.method} {request.url.path} "
        f"[{response.status_code}] ({duration:.3f}s)"
    )

    return response


# =============================================================================
# EXCEPTION HANDLERS
# =============================================================================

def _error_response(request: Request, status_code: int, error: str, exc: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": error,
            "detail": str(exc),
            "path": request.url.path,
        },
    )


@app.exception_handler(ClassificationError)
async def classification_error_handler(request: Request, exc: ClassificationError):
    logger.warning(f"Rejected malformed request: {exc}")
    return _error_response(request, 400, "Malformed request", exc)


@app.exception_handler(AuthorizationError)
async def authorization_error_handler(request: Request, exc: AuthorizationError):
    if exc.reason == AuthorizationError.UNAUTHORIZED:
        return _error_response(request, 401, "Unauthorized", exc)
    return _error_response(request, 403, "Forbidden", exc)


@app.exception_handler(ExecutionNotFoundError)
async def not_found_handler(request: Request, exc: ExecutionNotFoundError):
    return _error_response(request, 404, "Execution not found", exc)


@app.exception_handler(DispatcherError)
async def dispatcher_error_handler(request: Request, exc: DispatcherError):
    logger.error(f"Dispatcher unavailable: {exc}")
    return _error_response(request, 503, "Execution backend unavailable, safe to resubmit", exc)


@app.exception_handler(DirectServiceError)
async def direct_service_error_handler(request: Request, exc: DirectServiceError):
    return _error_response(request, exc.status, "Service error", exc)


@app.exception_handler(OrchestrationError)
async def orchestration_error_handler(request: Request, exc: OrchestrationError):
    logger.error(f"Orchestration error: {exc}")
    return _error_response(request, 500, "Orchestration error", exc)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle all uncaught exceptions."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return _error_response(request, 500, "Internal server error", exc)


# =============================================================================
# STARTUP/SHUTDOWN EVENTS
# =============================================================================

@app.on_event("startup")
async def startup_event():
    """Prepare storage, rebuild the idempotency index and start workers."""
    logger.info("🚀 Tenantflow API starting up...")

    if dependencies.uses_database_backend():
        from core.infrastructure.database.config import init_database
        await init_database(dependencies.get_database_engine())

    indexed = await dependencies.get_dispatcher().rebuild_index()
    logger.info(f"Idempotency index rebuilt with {indexed} in-flight executions")

    await dependencies.get_worker_pool().start()

    consumer = dependencies.get_invalidation_consumer()
    if consumer is not None:
        consumer.start()

    logger.info("📚 Swagger UI available at: /docs")


@app.on_event("shutdown")
async def shutdown_event():
    """Stop workers and consumers, release connections."""
    logger.info("👋 Tenantflow API shutting down...")

    consumer = dependencies.get_invalidation_consumer()
    if consumer is not None:
        await consumer.stop()

    await dependencies.get_worker_pool().stop()

    if dependencies.uses_database_backend():
        from core.infrastructure.database.config import close_database
        await close_database(dependencies.get_database_engine())


# =============================================================================
# INCLUDE ROUTERS
# =============================================================================

app.include_router(
    health.router,
    tags=["Health"]
)

app.include_router(
    operations.router,
    prefix="/operations",
    tags=["Operations"]
)

app.include_router(executions.router)

app.include_router(events.router)


# =============================================================================
# ROOT ENDPOINT
# =============================================================================

@app.get("/", tags=["Root"])
async def root():
    """API root endpoint."""
    return {
        "message": "Tenantflow - Orchestration API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health"
    }
