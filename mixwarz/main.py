"""
MixWarz Competition Round Engine

FastAPI application entry point.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Dict, Type

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError

from mixwarz.config import get_settings
from mixwarz.database import close_db, get_session_maker, init_db
from mixwarz.api.v1 import router as api_v1_router
from mixwarz.api.middleware.request_id import RequestIdMiddleware
from mixwarz.kernel.errors import (
    AssignmentNotFound,
    AssignmentsLocked,
    CompetitionEngineError,
    CompetitionNotFound,
    ConcurrencyConflict,
    InsufficientParticipants,
    InvalidTransition,
    PersistenceFailure,
    PhaseNotReached,
    VoteRejected,
    WinnerSelectionRejected,
)
from mixwarz.kernel.notifications import LoggingNotificationSink
from mixwarz.kernel.store.sql import SqlCompetitionStore
from mixwarz.orchestration.scheduler import CompetitionScheduler
from mixwarz.schemas.common import HealthResponse
from mixwarz.logging_config import configure_logging, get_logger

settings = get_settings()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan handler.

    Sets up the store and starts the competition scheduler.
    """
    configure_logging(
        log_level=settings.log_level,
        environment=settings.environment,
        debug=settings.debug,
    )

    logger.info("Starting %s v%s", settings.project_name, settings.version)
    await init_db()
    logger.info("Database initialized")

    app.state.store = SqlCompetitionStore(get_session_maker())
    app.state.notifier = LoggingNotificationSink()
    app.state.scheduler = CompetitionScheduler(
        app.state.store,
        settings,
        notifier=app.state.notifier,
    )
    if settings.scheduler_enabled:
        app.state.scheduler.start()

    yield

    logger.info("Shutting down...")
    await app.state.scheduler.stop()
    await close_db()
    logger.info("Database connections closed")


app = FastAPI(
    title=settings.project_name,
    description="""
    MixWarz Competition Round Engine

    Drives mixing competitions from submission through two voting rounds
    to a final podium.

    ## Features

    - **Lifecycle**: Deadline-driven status transitions run by a background scheduler
    - **Round 1**: Anonymized peer review groups with balanced assignments
    - **Round 2**: Finalist voting with automatic or organizer-resolved winners
    - **Results**: Standings with competition ranking and a top-3 podium
    """,
    version=settings.version,
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)


# add_middleware stacks innermost-first, so the last one added is outermost.
_cors_origins = [
    "http://localhost:3000",
    "http://localhost:5173",  # Vite default
    "http://127.0.0.1:3000",
]
if not (settings.debug or settings.environment == "development"):
    _cors_origins = ["https://mixwarz.example.com"] + _cors_origins

app.add_middleware(RequestIdMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _cors_headers(request: Request) -> dict:
    """CORS headers for error responses; 500s often bypass the CORS middleware."""
    origin = request.headers.get("origin") or ""
    allow_origin = origin if origin in _cors_origins else _cors_origins[0]
    return {
        "Access-Control-Allow-Origin": allow_origin,
        "Access-Control-Allow-Credentials": "true",
        "Access-Control-Allow-Methods": "*",
        "Access-Control-Allow-Headers": "*",
    }


# Most specific class first; lookup walks the exception's MRO order.
_ENGINE_ERROR_STATUS: Dict[Type[CompetitionEngineError], int] = {
    CompetitionNotFound: status.HTTP_404_NOT_FOUND,
    AssignmentNotFound: status.HTTP_404_NOT_FOUND,
    ConcurrencyConflict: status.HTTP_409_CONFLICT,
    InvalidTransition: status.HTTP_409_CONFLICT,
    PhaseNotReached: status.HTTP_409_CONFLICT,
    AssignmentsLocked: status.HTTP_409_CONFLICT,
    InsufficientParticipants: status.HTTP_409_CONFLICT,
    VoteRejected: status.HTTP_422_UNPROCESSABLE_ENTITY,
    WinnerSelectionRejected: status.HTTP_422_UNPROCESSABLE_ENTITY,
    PersistenceFailure: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def _status_for(exc: CompetitionEngineError) -> int:
    for cls in type(exc).__mro__:
        if cls in _ENGINE_ERROR_STATUS:
            return _ENGINE_ERROR_STATUS[cls]
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@app.exception_handler(CompetitionEngineError)
async def engine_exception_handler(request: Request, exc: CompetitionEngineError):
    """Map engine errors to HTTP responses."""
    status_code = _status_for(exc)
    headers = _cors_headers(request)
    req_id = getattr(request.state, "request_id", None)
    if req_id:
        headers["X-Request-ID"] = req_id

    if isinstance(exc, InvalidTransition):
        # State names stay in the logs
        logger.warning("Rejected transition: %s", exc.message)
        detail = "The competition cannot make that change in its current state"
    elif isinstance(exc, PersistenceFailure):
        logger.error("Persistence failure: %s", exc.message)
        detail = "Service temporarily unavailable"
    else:
        detail = exc.message

    content = {"detail": detail, "code": type(exc).__name__}
    if req_id and status_code >= 500:
        content["request_id"] = req_id
    return JSONResponse(status_code=status_code, content=content, headers=headers)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Ensure 401/403/404 etc. responses have CORS headers."""
    headers = _cors_headers(request)
    req_id = getattr(request.state, "request_id", None)
    if req_id:
        headers["X-Request-ID"] = req_id
    content = {"detail": exc.detail}
    if req_id and exc.status_code >= 500:
        content["request_id"] = req_id
    return JSONResponse(status_code=exc.status_code, content=content, headers=headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
):
    """Handle request validation errors."""
    errors = []
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error["loc"])
        errors.append({
            "field": field,
            "message": error["msg"],
            "type": error["type"],
        })
    headers = _cors_headers(request)
    req_id = getattr(request.state, "request_id", None)
    if req_id:
        headers["X-Request-ID"] = req_id
    content = {"detail": "Validation error", "errors": errors}
    if req_id:
        content["request_id"] = req_id
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=content,
        headers=headers,
    )


@app.exception_handler(Exception)
async def general_exception_handler(
    request: Request,
    exc: Exception,
):
    """Handle unexpected exceptions."""
    logger.exception("Unhandled exception: %s", exc)
    headers = _cors_headers(request)
    req_id = getattr(request.state, "request_id", None)
    if req_id:
        headers["X-Request-ID"] = req_id
    if settings.debug:
        content = {
            "detail": str(exc),
            "type": type(exc).__name__,
            "request_id": req_id,
        }
    else:
        content = {"detail": "Internal server error", "request_id": req_id}
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=content,
        headers=headers,
    )


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check(request: Request):
    """Check application health."""
    scheduler = getattr(request.app.state, "scheduler", None)
    return HealthResponse(
        status="ok",
        version=settings.version,
        scheduler="running" if scheduler is not None and scheduler.running else "stopped",
    )


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with API information."""
    return {
        "name": settings.project_name,
        "version": settings.version,
        "docs": "/docs" if settings.debug else "disabled",
        "api": {
            "v1": settings.api_v1_prefix,
        },
    }


app.include_router(
    api_v1_router,
    prefix=settings.api_v1_prefix,
)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "mixwarz.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )
