"""Main FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from gradebook.api.v1.router import api_router
from gradebook.core.config import Settings, get_settings
from gradebook.core.database import Database
from gradebook.core.exceptions import AppException, IntegrityConflictError, InternalError
from gradebook.middleware.logging import RequestLoggingMiddleware

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    """Configure root logging and quiet noisy libraries."""
    logging.basicConfig(
        level=logging.DEBUG if settings.DEBUG else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    # Suppress noisy SQLAlchemy and other library logs
    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("python_multipart").setLevel(logging.WARNING)
    logging.getLogger("python_multipart.multipart").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    settings: Settings = app.state.settings
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    yield
    logger.info("Shutting down application")
    app.state.database.dispose()


def create_application(
    settings: Settings | None = None,
    database: Database | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    The application owns its settings and database handle; nothing is
    shared between instances.
    """
    settings = settings or get_settings()
    configure_logging(settings)

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="""
Exam lifecycle and grading engine for multi-school deployments.

## Features

- **Exam Lifecycle**: DRAFT -> PUBLISHED -> LOCKED, with unlock back to PUBLISHED
- **Subject Snapshots**: marks structure frozen per exam
- **Marks Entry**: teaching-assignment checks, roster filtering, Excel sheets
- **Grading**: standard percentage ladder and credit-weighted advanced track
- **Report Cards**: aggregation, class-section ranking and publication

## Authentication

All endpoints require an `Authorization: Bearer <token>` header issued by the
identity service. The token carries the school, roles and, for students and
guardians, the student ids they may see.

## Error Handling

All errors follow a standard format:
```json
{
  "success": false,
  "error": {
    "code": "ERROR_CODE",
    "message": "Human readable message",
    "details": {}
  }
}
```
        """,
        openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.database = database or Database.from_settings(settings)

    # Add middlewares
    app.add_middleware(RequestLoggingMiddleware)

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately in production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    @app.exception_handler(AppException)
    async def app_exception_handler(request: Request, exc: AppException):
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.detail,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=422,
            content={
                "success": False,
                "error": {
                    "code": "VALIDATION_ERROR",
                    "message": "Request validation failed",
                    "details": {"errors": jsonable_errors(exc)},
                },
            },
        )

    @app.exception_handler(IntegrityError)
    async def integrity_exception_handler(request: Request, exc: IntegrityError):
        logger.warning(f"Integrity conflict: {exc.orig}")
        error = IntegrityConflictError()
        return JSONResponse(status_code=error.status_code, content=error.detail)

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception")
        error = InternalError("An internal server error occurred")
        return JSONResponse(status_code=error.status_code, content=error.detail)

    # Health check endpoint
    @app.get("/health", tags=["Health"])
    async def health_check():
        """Health check endpoint for load balancers and monitoring."""
        return {
            "status": "healthy",
            "app": settings.APP_NAME,
            "version": settings.APP_VERSION,
        }

    # Include API router
    app.include_router(api_router, prefix=settings.API_V1_PREFIX)

    return app


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    """Request validation errors without non-serialisable context objects."""
    errors = []
    for error in exc.errors():
        error = dict(error)
        if "ctx" in error:
            error["ctx"] = {k: str(v) for k, v in error["ctx"].items()}
        errors.append(error)
    return jsonable_encoder(errors)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "gradebook.main:create_application",
        factory=True,
        host="0.0.0.0",
        port=8000,
        reload=get_settings().DEBUG,
    )
