"""
TaskGate API Server

Entry point for the FastAPI application.
"""

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.core.config import get_settings
from app.core.errors import EngineError
from app.core.middleware import RequestContextMiddleware, SecurityHeadersMiddleware
from app.api.v1 import router as api_v1_router
from taskgate_shared.schemas.common import ErrorKind

settings = get_settings()
log = structlog.get_logger()


# ---------------------------------------------------------------------------
# Error rendering
# ---------------------------------------------------------------------------


async def engine_error_handler(request: Request, exc: EngineError) -> JSONResponse:
    log.info(
        "request.rejected",
        code=exc.kind.value,
        status=exc.status_code,
        reason=exc.reason,
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"loc": [str(p) for p in e.get("loc", ())], "msg": e.get("msg"), "type": e.get("type")}
        for e in exc.errors()
    ]
    return JSONResponse(
        status_code=422,
        content={
            "error": {
                "code": ErrorKind.VALIDATION_FAILED.value,
                "message": "Request validation failed",
                "status": 422,
                "details": {"errors": errors},
            }
        },
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    # The session dependency has already rolled back by the time we get here
    log.exception("request.failed", error=type(exc).__name__)
    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": ErrorKind.INTERNAL_ERROR.value,
                "message": "Internal server error",
                "status": 500,
            }
        },
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="TaskGate",
        description="Task lifecycle and authorization engine.",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    # Middleware (the last one added runs outermost)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "PUT", "DELETE"],
        allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
    )
    app.add_middleware(RequestContextMiddleware)

    app.add_exception_handler(EngineError, engine_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    # API routes
    app.include_router(api_v1_router, prefix="/api/v1")

    @app.get("/health", tags=["System"])
    async def health_check():
        """Health check endpoint for liveness probes."""
        return {"status": "ok"}

    @app.get("/ready", tags=["System"])
    async def readiness_check():
        """Readiness check endpoint for startup probes."""
        return {"status": "ready"}

    @app.on_event("startup")
    async def on_startup():
        log.info("TaskGate starting", debug=settings.debug)

    @app.on_event("shutdown")
    async def on_shutdown():
        log.info("TaskGate shutting down")

    return app


app = create_app()
