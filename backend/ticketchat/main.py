from typing import Optional

import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from supabase import Client

from .core.config import Settings, get_settings
from .core.database import get_supabase_client
from .core.errors import (
    FilterCompilerError,
    IterationLimitError,
    JobNotFoundError,
    ProviderError,
    ServiceNotFoundError,
    SetupRequiredError,
)
from .core.logging import configure_logging, get_logger, get_trace_id
from .core.middleware import TraceIDMiddleware
from .core.rate_limit import RateLimiter
from .routes import chat, connections, health, jobs, metrics, prompts, tickets
from .services.ai.orchestration import ChatOrchestrator
from .services.ai.providers import ProviderAdapter
from .services.ai.titles import ChatTitleGenerator
from .services.connection_check import ConnectionChecker
from .services.connections import ConnectionStore
from .services.jobs.manager import JobManager
from .services.jobs.store import JobStore
from .services.jobs.worker import JobWorker

settings = get_settings()

# JSON output in production (containerized), console output in development
configure_logging(log_level=settings.log_level, json_output=settings.log_json)

logger = get_logger(__name__)

app = FastAPI(
    title="Ticket Chat Orchestrator API",
    description="LLM tool-calling chat over FreshService tickets with background search jobs",
    version="1.0.0"
)

# CORS for local dev; restrict in production
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Add trace ID middleware (must be after CORS middleware)
app.add_middleware(TraceIDMiddleware)


def build_services(
    app: FastAPI,
    settings: Settings,
    supabase_client: Optional[Client],
    http_client: Optional[httpx.AsyncClient] = None,
) -> None:
    """
    Construct the long-lived services and attach them to ``app.state``.

    The rate limiter is created here, once per process, and shared by every
    component that calls a vendor.
    """
    rate_limiter = RateLimiter()
    adapter = ProviderAdapter(rate_limiter, http_client=http_client)

    app.state.settings = settings
    app.state.rate_limiter = rate_limiter
    app.state.http_client = http_client
    app.state.adapter = adapter

    if supabase_client is None:
        logger.warning(
            "app_startup_database_unavailable",
            message="Supabase not configured. Chat, job and ticket endpoints will return 503.",
        )
        app.state.connections = None
        app.state.job_manager = None
        app.state.job_worker = None
        app.state.orchestrator = None
        app.state.title_generator = None
        app.state.connection_checker = None
        return

    connections = ConnectionStore(supabase_client)
    job_store = JobStore(supabase_client)
    job_manager = JobManager(job_store, settings, http_client=http_client)

    app.state.connections = connections
    app.state.job_manager = job_manager
    app.state.job_worker = JobWorker(job_store, connections, rate_limiter, settings, http_client=http_client)
    app.state.orchestrator = ChatOrchestrator(
        adapter,
        connections,
        job_manager,
        rate_limiter,
        settings,
        http_client=http_client,
    )
    app.state.title_generator = ChatTitleGenerator(supabase_client, adapter)
    app.state.connection_checker = ConnectionChecker(
        connections, adapter, rate_limiter, settings, http_client=http_client
    )


@app.on_event("startup")
async def startup_event():
    """Initialize services on application startup."""
    logger.info("app_startup_started")
    build_services(app, settings, get_supabase_client(settings))
    logger.info(
        "app_startup_completed",
        default_llm_provider=settings.llm_provider,
        worker_base_url=settings.worker_base_url,
    )


@app.on_event("shutdown")
async def shutdown_event():
    """Let in-flight worker triggers finish so their failures are recorded."""
    logger.info("app_shutdown_started")
    job_manager = getattr(app.state, "job_manager", None)
    if job_manager is not None:
        await job_manager.wait_for_dispatches()
    logger.info("app_shutdown_completed")


def _error_response(status_code: int, content: dict) -> JSONResponse:
    trace_id = get_trace_id()
    response = JSONResponse(status_code=status_code, content={**content, "trace_id": trace_id})
    if trace_id:
        response.headers["X-Trace-ID"] = trace_id
    return response


# Error handlers
@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTP exceptions. The middleware records the request metrics."""
    logger.warning(
        "http_exception",
        status_code=exc.status_code,
        detail=exc.detail,
        path=request.url.path,
        method=request.method,
    )
    return _error_response(exc.status_code, {"detail": exc.detail, "status_code": exc.status_code})


@app.exception_handler(SetupRequiredError)
async def setup_required_handler(request: Request, exc: SetupRequiredError):
    logger.warning("setup_required", error=str(exc), service_type=exc.service_type, path=request.url.path)
    return _error_response(400, {"error": str(exc), "code": "SETUP_REQUIRED", "service_type": exc.service_type})


@app.exception_handler(ProviderError)
async def provider_error_handler(request: Request, exc: ProviderError):
    logger.warning(
        "provider_error",
        provider=exc.provider,
        status_code=exc.status_code,
        path=request.url.path,
    )
    if exc.status_code == 429:
        return _error_response(429, {"error": "Rate limits exceeded, please try again later.", "code": "RATE_LIMITED"})
    if exc.status_code == 402:
        return _error_response(402, {"error": "Payment required, please add funds to your AI provider account.", "code": "PAYMENT_REQUIRED"})
    if exc.status_code in (401, 403):
        return _error_response(400, {"error": f"The {exc.provider} API key was rejected.", "code": "SETUP_REQUIRED"})
    return _error_response(502, {
        "error": f"AI provider error ({exc.provider})",
        "code": "PROVIDER_ERROR",
        "provider_status": exc.status_code,
    })


@app.exception_handler(IterationLimitError)
async def iteration_limit_handler(request: Request, exc: IterationLimitError):
    return _error_response(500, {"error": str(exc), "code": "ITERATION_LIMIT"})


@app.exception_handler(FilterCompilerError)
async def filter_compiler_handler(request: Request, exc: FilterCompilerError):
    logger.warning(
        "filter_compiler_error",
        error=str(exc),
        query=exc.query,
        vendor_status=exc.status_code,
        path=request.url.path,
    )
    return _error_response(502, exc.to_dict())


@app.exception_handler(JobNotFoundError)
async def job_not_found_handler(request: Request, exc: JobNotFoundError):
    return _error_response(404, {"error": str(exc), "code": "JOB_NOT_FOUND"})


@app.exception_handler(ServiceNotFoundError)
async def service_not_found_handler(request: Request, exc: ServiceNotFoundError):
    return _error_response(404, {"error": str(exc), "code": "SERVICE_NOT_FOUND"})


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle general exceptions."""
    logger.error(
        "unhandled_exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
        method=request.method,
        exc_info=True,
    )
    return _error_response(500, {"detail": "Internal server error", "status_code": 500})


# Include routers
app.include_router(health.router, prefix="/health", tags=["Health"])
app.include_router(chat.router, prefix="/chat", tags=["Chat"])
app.include_router(connections.router, prefix="/connections", tags=["Connections"])
app.include_router(jobs.router, prefix="/jobs", tags=["Jobs"])
app.include_router(tickets.router, prefix="/tickets", tags=["Tickets"])
app.include_router(prompts.router, prefix="/prompts", tags=["Prompts"])
app.include_router(metrics.router, prefix="/metrics", tags=["Metrics"])
