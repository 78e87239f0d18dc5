"""
ShiftCount API — FastAPI Application Entry Point
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.requests import Request

from core.config import get_settings
from counting.errors import CountingError

settings = get_settings()
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info("api.starting", app=settings.app_name, version=settings.app_version, env=settings.app_env)
    yield
    logger.info("api.stopping", app=settings.app_name)


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Shift stock counting: distribute, count, submit, review, commit",
    lifespan=lifespan,
)


@app.exception_handler(CountingError)
async def counting_error_handler(request: Request, exc: CountingError):
    """Map the counting error taxonomy onto HTTP status codes."""
    if exc.http_status >= 500:
        logger.error("api.request_failed", path=request.url.path, code=exc.code, error=exc.message)
    return JSONResponse(
        status_code=exc.http_status,
        content={"detail": exc.message, "code": exc.code},
    )


# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Import and register routers
from api.v1.routers import counts, distribution, overview, reports

app.include_router(distribution.router)
app.include_router(counts.router)
app.include_router(reports.router)
app.include_router(overview.router)


@app.get("/health")
async def health_check():
    """Health check endpoint for load balancers."""
    return {"status": "healthy", "version": settings.app_version}
