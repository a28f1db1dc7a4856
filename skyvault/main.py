"""
Skyvault Social Graph Archive

FastAPI application entry point.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from skyvault.api.deps import Services, build_services, get_services
from skyvault.api.middleware.request_id import REQUEST_ID_HEADER, RequestIdMiddleware
from skyvault.api.v1 import router as api_v1_router
from skyvault.config import get_settings
from skyvault.database import close_db
from skyvault.kernel.errors import NotFound, StorageError
from skyvault.logging_config import configure_logging, get_logger
from skyvault.schemas.common import HealthResponse

settings = get_settings()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan handler.

    Configures logging, wires the services (unless already provided on
    app.state) and closes storage on shutdown.
    """
    configure_logging(
        log_level=settings.log_level,
        environment=settings.environment,
        debug=settings.debug,
    )

    logger.info("Starting %s v%s", settings.project_name, settings.version)
    services: Services = getattr(app.state, "services", None) or build_services(settings)
    await services.initialize()
    app.state.services = services
    logger.info("Storage initialized (%s)", services.storage_name)

    yield

    logger.info("Shutting down...")
    await services.close()
    if settings.storage_backend == "sql" or settings.workspace_backend == "sql":
        await close_db()
    logger.info("Storage closed")


app = FastAPI(
    title=settings.project_name,
    description="""
    Skyvault Social Graph Archive

    Versioned, snapshot-scoped archive of captured social posts, profiles
    and follow edges.

    ## Features

    - **Records**: hash-chained versions with a provenance ledger
    - **Snapshots**: create, delete, export, import, duplicate, compare
    - **Threads**: conversation trees re-rooted on any post
    - **Workspaces**: named caches of resolved posts and threads
    """,
    version=settings.version,
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

_cors_origins = [
    "http://localhost:3000",
    "http://localhost:5173",
    "http://127.0.0.1:3000",
]

# Last added = outermost: CORS must wrap the request id middleware
app.add_middleware(RequestIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error(request: Request, status_code: int, content: dict) -> JSONResponse:
    headers = {}
    req_id = getattr(request.state, "request_id", None)
    if req_id:
        headers[REQUEST_ID_HEADER] = req_id
        if status_code >= 500:
            content["request_id"] = req_id
    return JSONResponse(status_code=status_code, content=content, headers=headers)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return _error(request, exc.status_code, {"detail": exc.detail})


@app.exception_handler(NotFound)
async def not_found_handler(request: Request, exc: NotFound):
    return _error(request, status.HTTP_404_NOT_FOUND, {"detail": str(exc), "code": "not_found"})


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError):
    """Backend I/O failures: the operation was aborted, the caller may retry."""
    logger.error("Storage failure in %s: %s", exc.operation or "unknown", exc)
    return _error(
        request,
        status.HTTP_503_SERVICE_UNAVAILABLE,
        {"detail": "Storage unavailable", "code": "storage_error"},
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle request validation errors."""
    errors = []
    for error in exc.errors():
        errors.append({
            "field": ".".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        })
    return _error(
        request,
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        {"detail": "Validation error", "errors": errors},
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled exception: %s", exc)
    if settings.debug:
        content = {"detail": str(exc), "type": type(exc).__name__}
    else:
        content = {"detail": "Internal server error"}
    return _error(request, status.HTTP_500_INTERNAL_SERVER_ERROR, content)


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check(request: Request):
    """Check application health."""
    services = get_services(request)
    snapshots = await services.snapshots.list()
    return HealthResponse(
        status="ok",
        version=settings.version,
        storage=services.storage_name,
        snapshots=len(snapshots),
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


app.include_router(api_v1_router, prefix=settings.api_v1_prefix)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "skyvault.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )
