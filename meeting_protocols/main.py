"""
Meeting Protocols API - Main Application Entry Point

FastAPI application for collaborative meeting protocols.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from meeting_protocols import __version__
from meeting_protocols.core.config import settings
from meeting_protocols.core.database import init_db
from meeting_protocols.core.errors import ServiceError
from meeting_protocols.core.logging_config import configure_logging
from meeting_protocols.protocols.router import router as protocols_router
from meeting_protocols.realtime.broadcast import Broadcaster
from meeting_protocols.realtime.router import router as realtime_router
from meeting_protocols.realtime.session import CollaborationSession
from meeting_protocols.tasks.router import router as tasks_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    # Startup
    configure_logging()
    await init_db()
    broadcaster = Broadcaster()
    await broadcaster.start()
    app.state.broadcaster = broadcaster
    app.state.collaboration = CollaborationSession(broadcaster)
    logger.info("%s started (%s)", settings.app_name, settings.environment)
    yield
    # Shutdown
    await broadcaster.stop()


app = FastAPI(
    title=settings.app_name,
    description="Collaborative editing, versioning and real-time sync for meeting protocols",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# CORS Middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# Error Handlers
# =============================================================================


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "Invalid request", "details": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    content = {"error": "Internal Server Error"}
    if settings.is_development:
        content["details"] = str(exc)
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=content)


# Health Check
@app.get("/health", tags=["system"])
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy", "version": __version__}


# Include Routers
app.include_router(protocols_router, prefix=settings.api_prefix)
app.include_router(tasks_router, prefix=settings.api_prefix)
app.include_router(realtime_router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("meeting_protocols.main:app", host="0.0.0.0", port=8000, reload=True)
