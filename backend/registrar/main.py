"""
Registration API - Main Application Entry Point

A resilient front for a ticketing backend demonstrating:
- Typed ticketing client with TTL caching and classified errors
- Identity-based item resolution with quota-aware availability
- Durable registration retries with exponential backoff
- Structured logging with request correlation
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from registrar.core.config import get_settings
from registrar.core.errors import RetryRecordNotFound, TicketingError
from registrar.core.logging import setup_logging, get_logger
from registrar.core.metrics import metrics_endpoint
from registrar.api.router import api_router
from registrar.api.middleware import RequestLoggingMiddleware
from registrar.db.session import create_engine_from_settings, create_session_factory
from registrar.services.container import build_container
from registrar.services.store_factory import get_record_store

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle: startup and shutdown hooks."""
    setup_logging(settings)
    logger = get_logger(__name__)

    logger.info(
        "application_starting",
        app=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
        record_store=settings.RECORD_STORE,
    )

    engine = None
    session_factory = None
    if settings.RECORD_STORE.lower() == "sql":
        engine = create_engine_from_settings(settings)
        session_factory = create_session_factory(engine)

    container = build_container(settings, get_record_store(settings, session_factory))
    app.state.container = container

    # Pick up retries that were pending when the last process stopped
    resumed = await container.retries.resume_pending()
    logger.info("application_ready", resumed_retries=resumed)

    yield

    # Cleanup
    await container.aclose()
    if engine is not None:
        await engine.dispose()
    logger.info("application_shutdown")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Registration API with cached ticketing access and durable retries",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Custom middleware
app.add_middleware(RequestLoggingMiddleware)

# Routes
app.include_router(api_router)


@app.exception_handler(TicketingError)
async def ticketing_error_handler(request: Request, exc: TicketingError):
    # Upstream 4xx are the caller's problem; anything else is a bad gateway
    status_code = exc.status_code if exc.is_client_error else 502
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, "code": exc.code.value},
    )


@app.exception_handler(RetryRecordNotFound)
async def retry_not_found_handler(request: Request, exc: RetryRecordNotFound):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.get("/health", tags=["Health"])
async def health_check(request: Request):
    """Health check endpoint for Docker and load balancers."""
    health = await request.app.state.container.api.get_health()
    return {
        "status": "healthy" if health["ticketing"]["healthy"] else "degraded",
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        **health,
    }


@app.get("/metrics", tags=["Health"])
def metrics():
    return metrics_endpoint()


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
    }
